"""
MCP Monitor.

Records latency, outcome and cost of calls to MCP servers and reports
aggregate metrics over them.
"""

from .config.loader import MonitorConfig, load_monitor_config
from .core.instrumentor import CallResult, MonitorDecision
from .core.metrics import TimeRange
from .monitor import MCPMonitor
from .storage.models import MonitoredServer, OperationCount, PerformanceLog, ServerAggregate
from .storage.repository import (
    MonitorStoreError,
    PersistenceError,
    StoreUninitializedError,
)

__all__ = [
    "CallResult",
    "MCPMonitor",
    "MonitorConfig",
    "MonitorDecision",
    "MonitorStoreError",
    "MonitoredServer",
    "OperationCount",
    "PerformanceLog",
    "PersistenceError",
    "ServerAggregate",
    "StoreUninitializedError",
    "TimeRange",
    "load_monitor_config",
]
