"""
Core modules for MCP Monitor.

This package contains call instrumentation, cost policy, alert detection
and the metrics query facade.
"""
