"""
Alert threshold detection.

Flags slow or failed calls, and servers whose error rate or spend crosses
a configured limit. Detection only: delivering an alert is left to the
handler the monitor is given.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from mcp_monitor.storage.models import ServerAggregate


class AlertKind(Enum):
    """What condition an alert reports."""
    HIGH_LATENCY = "high_latency"
    CALL_FAILURE = "call_failure"
    ERROR_RATE = "error_rate"
    COST_LIMIT = "cost_limit"


class AlertSeverity(Enum):
    """Severity levels for detected alerts."""
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AlertEvent:
    """Detected threshold breach with details and explanation."""
    kind: AlertKind
    severity: AlertSeverity
    server_name: str
    observed_value: float
    threshold: float
    message: str
    operation: Optional[str] = None


def detect_call_alerts(
    server_name: str,
    operation: str,
    latency_ms: float,
    success: bool,
    latency_threshold_ms: float,
) -> List[AlertEvent]:
    """Check a single logged call against the per-call thresholds.

    Rules:
    - HIGH_LATENCY (WARNING): latency strictly above the threshold
    - CALL_FAILURE (WARNING): the call failed

    Args:
        server_name: Server that was called
        operation: Operation that was called
        latency_ms: Measured latency of the call
        success: Outcome of the call
        latency_threshold_ms: Latency above which a call is slow

    Returns:
        List of detected alerts (empty if none)
    """
    alerts = []

    if latency_ms > latency_threshold_ms:
        alerts.append(AlertEvent(
            kind=AlertKind.HIGH_LATENCY,
            severity=AlertSeverity.WARNING,
            server_name=server_name,
            operation=operation,
            observed_value=latency_ms,
            threshold=latency_threshold_ms,
            message=f"High latency for {server_name}/{operation}: {latency_ms:.1f}ms > {latency_threshold_ms:.0f}ms"
        ))

    if not success:
        alerts.append(AlertEvent(
            kind=AlertKind.CALL_FAILURE,
            severity=AlertSeverity.WARNING,
            server_name=server_name,
            operation=operation,
            observed_value=0.0,
            threshold=1.0,
            message=f"Call failed for {server_name}/{operation}"
        ))

    return alerts


def detect_error_rate_alert(
    aggregate: ServerAggregate,
    error_rate_threshold: float,
) -> Optional[AlertEvent]:
    """Flag a server whose error rate is strictly above the threshold.

    A server with no calls never breaches.
    """
    if aggregate.total_calls == 0:
        return None

    error_rate = aggregate.error_rate
    if error_rate <= error_rate_threshold:
        return None

    return AlertEvent(
        kind=AlertKind.ERROR_RATE,
        severity=AlertSeverity.CRITICAL,
        server_name=aggregate.server_name,
        observed_value=error_rate,
        threshold=error_rate_threshold,
        message=(
            f"Error rate for {aggregate.server_name}: {error_rate:.1%} "
            f"({aggregate.error_calls}/{aggregate.total_calls}) > {error_rate_threshold:.1%}"
        )
    )


def detect_cost_limit_alert(
    aggregates: Iterable[ServerAggregate],
    daily_cost_limit_usd: Optional[float],
) -> Optional[AlertEvent]:
    """Flag total spend over a one-day window above the daily limit.

    Args:
        aggregates: Per-server aggregates covering the last day
        daily_cost_limit_usd: Limit in USD, None to disable the check

    Returns:
        Alert when the summed cost is strictly above the limit, else None
    """
    if daily_cost_limit_usd is None:
        return None

    total_cost = sum(a.total_cost_usd for a in aggregates)
    if total_cost <= daily_cost_limit_usd:
        return None

    return AlertEvent(
        kind=AlertKind.COST_LIMIT,
        severity=AlertSeverity.CRITICAL,
        server_name="*",
        observed_value=total_cost,
        threshold=daily_cost_limit_usd,
        message=f"Daily cost ${total_cost:.4f} exceeds limit ${daily_cost_limit_usd:.2f}"
    )
