"""
Storage layer for MCP Monitor.

SQLite-backed registry of servers and append-only performance log.
"""
