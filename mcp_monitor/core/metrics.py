"""
Metrics queries over the log store.

Combines the store's grouped aggregates with statistics it does not keep:
windowed latency percentiles, hourly call rate and error rate.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .percentiles import LatencyPercentiles, compute_latency_percentiles
from mcp_monitor.storage.models import OperationCount, PerformanceLog, ServerAggregate
from mcp_monitor.storage.repository import LogStore

CALLS_PER_HOUR_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class TimeRange:
    """Resolved time window; both bounds are inclusive."""
    start: datetime
    end: datetime

    def __post_init__(self):
        """Validate time window is logical."""
        if self.start > self.end:
            raise ValueError("start must be before end")

    @classmethod
    def last(cls, delta: timedelta, now: Optional[datetime] = None) -> "TimeRange":
        """Window ending at ``now`` (default: current time) spanning ``delta``."""
        end = now or datetime.now()
        return cls(start=end - delta, end=end)


@dataclass(frozen=True)
class ServerPerformance:
    """Aggregate plus derived statistics for one server."""
    aggregate: ServerAggregate
    percentiles: LatencyPercentiles
    calls_per_hour: float

    @property
    def server_name(self) -> str:
        return self.aggregate.server_name

    @property
    def error_rate(self) -> float:
        return self.aggregate.error_rate


@dataclass(frozen=True)
class OverallSummary:
    """Totals folded across per-server aggregates."""
    total_calls: int
    successful_calls: int
    error_calls: int
    success_rate: float
    avg_latency_ms: float
    total_cost_usd: float


def summarize_overall(aggregates: Iterable[ServerAggregate]) -> OverallSummary:
    """Fold per-server aggregates into one overall summary.

    Average latency is weighted by each server's call count.
    """
    total = successful = 0
    latency_sum = cost = 0.0
    for aggregate in aggregates:
        total += aggregate.total_calls
        successful += aggregate.successful_calls
        latency_sum += aggregate.avg_latency_ms * aggregate.total_calls
        cost += aggregate.total_cost_usd

    return OverallSummary(
        total_calls=total,
        successful_calls=successful,
        error_calls=total - successful,
        success_rate=successful / total if total else 0.0,
        avg_latency_ms=latency_sum / total if total else 0.0,
        total_cost_usd=cost,
    )


def _bounds(time_range: Optional[TimeRange]) -> tuple:
    if time_range is None:
        return None, None
    return time_range.start, time_range.end


class MetricsQuery:
    """Read-side facade answering "how is server X doing over range Y".

    Every call reads the store directly; nothing is cached. Storage errors
    propagate to the caller.
    """

    def __init__(self, store: LogStore, percentile_window: int = 100):
        """Initialize the facade.

        Args:
            store: Log store to read from
            percentile_window: Number of most recent logs used for percentiles
        """
        if percentile_window <= 0:
            raise ValueError("percentile_window must be > 0")
        self.store = store
        self.percentile_window = percentile_window

    def get_server_metrics(
        self,
        server_name: str,
        time_range: Optional[TimeRange] = None
    ) -> ServerAggregate:
        """Aggregate for one server; a zero aggregate when it has no logs."""
        start, end = _bounds(time_range)
        aggregates = self.store.query_aggregates(server_name, start, end)
        if not aggregates:
            return ServerAggregate.empty(server_name)
        return aggregates[0]

    def get_all_metrics(self, time_range: Optional[TimeRange] = None) -> List[ServerAggregate]:
        """Per-server aggregates for every server with logs in the range."""
        start, end = _bounds(time_range)
        return self.store.query_aggregates(None, start, end)

    def get_recent_logs(
        self,
        server_name: Optional[str] = None,
        limit: int = 100
    ) -> List[PerformanceLog]:
        """Most recent logs, newest first, with no time bound."""
        return self.store.query_logs(server_name, limit=limit)

    def get_latency_percentiles(self, server_name: str) -> LatencyPercentiles:
        """p50/p95/p99 over the last ``percentile_window`` logs of a server.

        The window is by count, not by time, so the result reflects recent
        calls even when the caller is looking at a longer range.
        """
        recent = self.store.query_logs(server_name, limit=self.percentile_window)
        return compute_latency_percentiles(recent)

    def get_calls_per_hour(self, server_name: str, now: Optional[datetime] = None) -> float:
        """Calls in the last 24 hours divided by 24."""
        reference = now or datetime.now()
        end = now  # unbounded above unless the caller pins "now"
        aggregates = self.store.query_aggregates(
            server_name, reference - CALLS_PER_HOUR_WINDOW, end
        )
        calls = aggregates[0].total_calls if aggregates else 0
        return calls / 24

    def get_operation_counts(
        self,
        server_name: Optional[str] = None,
        time_range: Optional[TimeRange] = None
    ) -> List[OperationCount]:
        """Calls per operation, most frequent first, across one or all servers."""
        start, end = _bounds(time_range)
        return self.store.query_operation_counts(server_name, start, end)

    def get_server_performance(
        self,
        server_name: str,
        time_range: Optional[TimeRange] = None
    ) -> ServerPerformance:
        """Aggregate, percentiles and call rate for one server."""
        return ServerPerformance(
            aggregate=self.get_server_metrics(server_name, time_range),
            percentiles=self.get_latency_percentiles(server_name),
            calls_per_hour=self.get_calls_per_hour(server_name),
        )
