"""
Data models for storage layer.

Defines the monitored server registry entry, the per-call performance log
and the aggregate computed over a set of logs.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class MonitoredServer:
    """A named MCP server whose calls are tracked.

    ``id`` and ``added_at`` are assigned by the store; leave them unset when
    registering.
    """
    name: str
    url: Optional[str] = None
    category: Optional[str] = None
    version: Optional[str] = None
    enabled: bool = True
    cost_per_call: Optional[float] = None
    id: Optional[int] = None
    added_at: Optional[datetime] = None


@dataclass(frozen=True)
class PerformanceLog:
    """Immutable record of one monitored call.

    ``metadata`` is opaque text: the store writes exactly what it is given
    and returns exactly that on read. ``cost_usd`` is a snapshot of the
    server's cost at log time.
    """
    server_name: str
    operation: str
    latency_ms: float
    success: bool
    error_type: Optional[str] = None
    tokens_used: Optional[int] = None
    cost_usd: Optional[float] = None
    metadata: Optional[str] = None
    timestamp: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        """Validate latency is a duration."""
        if self.latency_ms < 0:
            raise ValueError("latency_ms cannot be negative")


@dataclass(frozen=True)
class ServerAggregate:
    """Grouped statistics for one server over a filtered set of logs."""
    server_name: str
    total_calls: int
    successful_calls: int
    error_calls: int
    success_rate: float
    avg_latency_ms: float
    min_latency_ms: float
    max_latency_ms: float
    total_cost_usd: float

    @property
    def error_rate(self) -> float:
        """Share of failed calls, 0.0 when there were no calls."""
        if self.total_calls == 0:
            return 0.0
        return self.error_calls / self.total_calls

    @classmethod
    def empty(cls, server_name: str) -> "ServerAggregate":
        """Zero-valued aggregate representing "no data" for a server."""
        return cls(
            server_name=server_name,
            total_calls=0,
            successful_calls=0,
            error_calls=0,
            success_rate=0.0,
            avg_latency_ms=0.0,
            min_latency_ms=0.0,
            max_latency_ms=0.0,
            total_cost_usd=0.0,
        )


@dataclass(frozen=True)
class OperationCount:
    """Number of logged calls for one operation name."""
    operation: str
    count: int
