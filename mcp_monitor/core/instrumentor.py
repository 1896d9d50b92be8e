"""
Call instrumentation.

Times MCP calls, records them in the log store and checks alert thresholds
without changing what the call returns or raises.
"""

import asyncio
import json
import random
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from .alerts import AlertEvent, detect_call_alerts
from .cost import CostPolicy, resolve_call_cost
from .logging import get_logger
from mcp_monitor.config.loader import MonitorConfig
from mcp_monitor.storage.models import PerformanceLog
from mcp_monitor.storage.repository import LogStore

logger = get_logger(__name__)

AlertHandler = Callable[[AlertEvent], None]
Metadata = Union[str, Mapping[str, Any], None]


class MonitorDecision(Enum):
    """Whether a call is recorded, decided before the call starts."""
    LOGGED = "logged"
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_SAMPLED = "skipped_sampled"


@dataclass(frozen=True)
class CallResult:
    """Envelope returned for every monitored call.

    Exactly one of ``result`` / ``error`` is meaningful, depending on
    ``success``. A failing call never raises out of ``monitor_call``; its
    exception is carried in ``error``.
    """
    success: bool
    latency_ms: float
    timestamp: datetime
    decision: MonitorDecision
    result: Any = None
    error: Optional[Exception] = None

    @property
    def error_type(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None


def encode_metadata(metadata: Metadata) -> Optional[str]:
    """Serialize call metadata to the opaque text stored with a log.

    Strings are stored unchanged; mappings are written as JSON and must
    hold only JSON-native values (str keys; str, number, bool, None, list
    and dict values) so that decode_metadata returns an equal mapping.

    Raises:
        ValueError: If the mapping would not come back unchanged
        TypeError: If a value cannot be written as JSON at all
    """
    if metadata is None or isinstance(metadata, str):
        return metadata
    mapping = dict(metadata)
    text = json.dumps(mapping, sort_keys=True, allow_nan=False)
    if json.loads(text) != mapping:
        raise ValueError("metadata does not survive a JSON round trip")
    return text


def decode_metadata(text: Optional[str]) -> Any:
    """Parse metadata written by encode_metadata from a mapping."""
    if text is None:
        return None
    return json.loads(text)


def log_alert(alert: AlertEvent) -> None:
    """Default alert handler: emit the alert as a warning log line."""
    logger.warning(
        alert.message,
        alert_kind=alert.kind.value,
        severity=alert.severity.value,
        server_name=alert.server_name,
        observed=alert.observed_value,
        threshold=alert.threshold,
    )


class CallInstrumentor:
    """Wraps MCP calls to time, classify and record them.

    Recording is best-effort: a failure to look up cost, write the log or
    evaluate alerts is logged and never changes the envelope the caller
    receives.
    """

    def __init__(
        self,
        store: LogStore,
        config: Optional[MonitorConfig] = None,
        alert_handler: Optional[AlertHandler] = None,
        random_source: Callable[[], float] = random.random,
    ):
        """Initialize the instrumentor.

        Args:
            store: Log store receiving call records
            config: Monitor configuration (defaults if omitted)
            alert_handler: Receives each detected alert (defaults to logging)
            random_source: Uniform [0, 1) generator used for sampling
        """
        self.store = store
        self.config = config or MonitorConfig.default()
        self.alert_handler = alert_handler or log_alert
        self.random_source = random_source

    @property
    def cost_policy(self) -> CostPolicy:
        if self.config.monitoring.charge_failed_calls:
            return CostPolicy.CHARGE_ALL
        return CostPolicy.CHARGE_SUCCESS_ONLY

    def decide(self) -> MonitorDecision:
        """Decide whether the next call is recorded.

        Disabled monitoring is a hard bypass; otherwise one uniform draw per
        call is compared against the sample rate.
        """
        if not self.config.monitoring.enabled:
            return MonitorDecision.SKIPPED_DISABLED
        if self.random_source() > self.config.monitoring.sample_rate:
            return MonitorDecision.SKIPPED_SAMPLED
        return MonitorDecision.LOGGED

    async def monitor_call(
        self,
        server_name: str,
        operation: str,
        work: Callable[[], Awaitable[Any]],
        metadata: Metadata = None,
        tokens_used: Optional[int] = None,
    ) -> CallResult:
        """Run ``work`` once and return its timed outcome.

        Args:
            server_name: Server being called (required)
            operation: Logical operation name (required)
            work: Zero-argument callable returning an awaitable
            metadata: Optional string or mapping stored with the log
            tokens_used: Optional usage figure stored with the log

        Returns:
            CallResult carrying the result or the raised exception

        Raises:
            ValueError: If server_name or operation is missing/empty
        """
        if not server_name or not server_name.strip():
            raise ValueError("server_name is required and cannot be empty")
        if not operation or not operation.strip():
            raise ValueError("operation is required and cannot be empty")

        decision = self.decide()

        start = time.perf_counter()
        try:
            value = await work()
        except Exception as e:
            outcome = CallResult(
                success=False,
                error=e,
                latency_ms=(time.perf_counter() - start) * 1000,
                timestamp=datetime.now(),
                decision=decision,
            )
        else:
            outcome = CallResult(
                success=True,
                result=value,
                latency_ms=(time.perf_counter() - start) * 1000,
                timestamp=datetime.now(),
                decision=decision,
            )

        if decision == MonitorDecision.LOGGED:
            await self._record(server_name, operation, outcome, metadata, tokens_used)
            self._check_alerts(server_name, operation, outcome)

        return outcome

    async def _record(
        self,
        server_name: str,
        operation: str,
        outcome: CallResult,
        metadata: Metadata,
        tokens_used: Optional[int],
    ) -> None:
        try:
            server = await asyncio.to_thread(self.store.get_server, server_name)
            log = PerformanceLog(
                server_name=server_name,
                operation=operation,
                latency_ms=outcome.latency_ms,
                success=outcome.success,
                error_type=outcome.error_type,
                tokens_used=tokens_used,
                cost_usd=resolve_call_cost(server, outcome.success, self.cost_policy),
                metadata=encode_metadata(metadata),
            )
            await asyncio.to_thread(self.store.append_log, log)
        except Exception:
            logger.error(
                "Failed to record performance log",
                server_name=server_name,
                operation=operation,
                exc_info=True,
            )

    def _check_alerts(self, server_name: str, operation: str, outcome: CallResult) -> None:
        try:
            alerts = detect_call_alerts(
                server_name=server_name,
                operation=operation,
                latency_ms=outcome.latency_ms,
                success=outcome.success,
                latency_threshold_ms=self.config.alerts.latency_threshold_ms,
            )
            for alert in alerts:
                self.alert_handler(alert)
        except Exception:
            logger.error(
                "Alert evaluation failed",
                server_name=server_name,
                operation=operation,
                exc_info=True,
            )
