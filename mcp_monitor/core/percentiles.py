"""
Windowed latency percentiles.

Computes p50/p95/p99 over the most recent logs of a server.
"""

from dataclasses import dataclass
from typing import List, Sequence

from mcp_monitor.storage.models import PerformanceLog


@dataclass(frozen=True)
class LatencyPercentiles:
    """Latency percentiles over a window of recent calls."""
    p50_ms: float
    p95_ms: float
    p99_ms: float
    sample_count: int


def windowed_percentile(sorted_values: Sequence[float], percentile: float) -> float:
    """Pick the element at floor(n * percentile) of an ascending sequence.

    Nearest-rank without interpolation; the index is clamped to the last
    element, and an empty sequence yields 0.0.

    Args:
        sorted_values: Values sorted ascending
        percentile: Fraction between 0 and 1

    Returns:
        Selected value
    """
    if percentile < 0 or percentile > 1:
        raise ValueError("percentile must be between 0 and 1")

    n = len(sorted_values)
    if n == 0:
        return 0.0

    index = min(int(n * percentile), n - 1)
    return float(sorted_values[index])


def compute_latency_percentiles(logs: List[PerformanceLog]) -> LatencyPercentiles:
    """Compute p50/p95/p99 latency over the given logs.

    The caller decides the window, normally the last N logs of one server.
    Results therefore describe recent behavior and do not match a
    percentile over an arbitrary requested time range.
    """
    latencies = sorted(log.latency_ms for log in logs)
    return LatencyPercentiles(
        p50_ms=windowed_percentile(latencies, 0.50),
        p95_ms=windowed_percentile(latencies, 0.95),
        p99_ms=windowed_percentile(latencies, 0.99),
        sample_count=len(latencies),
    )
