"""
MCP monitor.

Ties the log store, call instrumentor and metrics queries together behind
one async object that applications construct once and pass around.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from mcp_monitor.config.loader import MonitorConfig, load_monitor_config
from mcp_monitor.core.instrumentor import (
    AlertHandler,
    CallInstrumentor,
    CallResult,
    Metadata,
)
from mcp_monitor.core.logging import get_logger
from mcp_monitor.core.metrics import MetricsQuery, ServerPerformance, TimeRange
from mcp_monitor.core.percentiles import LatencyPercentiles
from mcp_monitor.storage.models import (
    MonitoredServer,
    OperationCount,
    PerformanceLog,
    ServerAggregate,
)
from mcp_monitor.storage.repository import LogStore

logger = get_logger(__name__)


class MCPMonitor:
    """Monitors MCP server calls and answers metrics queries.

    Store work runs in a worker thread so that SQLite I/O never blocks the
    event loop. Nothing initializes implicitly: call ``initialize()`` (or use
    ``async with``) before anything else, and ``close()`` at shutdown.

    Example:
        async with MCPMonitor(load_monitor_config("mcp-monitor.yaml")) as monitor:
            result = await monitor.monitor_call(
                "filesystem", "read_file", lambda: client.read_file(path)
            )
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        store: Optional[LogStore] = None,
        alert_handler: Optional[AlertHandler] = None,
        random_source: Optional[Callable[[], float]] = None,
    ):
        """Initialize the monitor.

        Args:
            config: Monitor configuration (defaults if omitted)
            store: Log store to use (defaults to SQLite at config.storage.path)
            alert_handler: Receives detected alerts (defaults to logging)
            random_source: Uniform [0, 1) generator used for sampling
        """
        self.config = config or MonitorConfig.default()
        self.store = store or LogStore(self.config.storage.path)

        instrumentor_kwargs = {}
        if random_source is not None:
            instrumentor_kwargs["random_source"] = random_source
        self.instrumentor = CallInstrumentor(
            self.store, self.config, alert_handler, **instrumentor_kwargs
        )
        self.metrics = MetricsQuery(self.store, self.config.monitoring.percentile_window)
        self._initialized = False

    @classmethod
    def from_config_file(cls, path: str, **kwargs: Any) -> "MCPMonitor":
        """Build a monitor from a YAML configuration file."""
        return cls(load_monitor_config(path), **kwargs)

    @property
    def initialized(self) -> bool:
        return self._initialized and self.store.initialized

    async def initialize(self) -> None:
        """Set up storage and register configured servers. Idempotent.

        The monitor counts as initialized only once every configured server
        is registered, so a failed attempt can simply be retried.
        """
        if self.initialized:
            return

        await asyncio.to_thread(self.store.initialize)
        for server_config in self.config.servers:
            await self.register_server(MonitoredServer(
                name=server_config.name,
                url=server_config.url,
                category=server_config.category,
                version=server_config.version,
                enabled=server_config.enabled,
                cost_per_call=server_config.cost_per_call,
            ))
        self._initialized = True
        logger.info(
            "MCP monitor initialized",
            db_path=self.store.db_path,
            servers=len(self.config.servers),
        )

    async def register_server(self, server: MonitoredServer) -> int:
        """Register or replace a server by name.

        Raises:
            ValueError: If the server name is missing/empty
        """
        if not server.name or not server.name.strip():
            raise ValueError("server name is required and cannot be empty")
        return await asyncio.to_thread(self.store.register_server, server)

    async def get_servers(self) -> List[MonitoredServer]:
        return await asyncio.to_thread(self.store.get_all_servers)

    async def get_server(self, name: str) -> Optional[MonitoredServer]:
        return await asyncio.to_thread(self.store.get_server, name)

    async def monitor_call(
        self,
        server_name: str,
        operation: str,
        work: Callable[[], Awaitable[Any]],
        metadata: Metadata = None,
        tokens_used: Optional[int] = None,
    ) -> CallResult:
        """Run ``work`` and record it; see CallInstrumentor.monitor_call."""
        return await self.instrumentor.monitor_call(
            server_name, operation, work, metadata=metadata, tokens_used=tokens_used
        )

    async def get_server_metrics(
        self,
        server_name: str,
        time_range: Optional[TimeRange] = None
    ) -> ServerAggregate:
        return await asyncio.to_thread(self.metrics.get_server_metrics, server_name, time_range)

    async def get_all_metrics(self, time_range: Optional[TimeRange] = None) -> List[ServerAggregate]:
        return await asyncio.to_thread(self.metrics.get_all_metrics, time_range)

    async def get_recent_logs(
        self,
        server_name: Optional[str] = None,
        limit: int = 100
    ) -> List[PerformanceLog]:
        return await asyncio.to_thread(self.metrics.get_recent_logs, server_name, limit)

    async def get_latency_percentiles(self, server_name: str) -> LatencyPercentiles:
        return await asyncio.to_thread(self.metrics.get_latency_percentiles, server_name)

    async def get_server_performance(
        self,
        server_name: str,
        time_range: Optional[TimeRange] = None
    ) -> ServerPerformance:
        return await asyncio.to_thread(self.metrics.get_server_performance, server_name, time_range)

    async def get_operation_counts(
        self,
        server_name: Optional[str] = None,
        time_range: Optional[TimeRange] = None
    ) -> List[OperationCount]:
        return await asyncio.to_thread(self.metrics.get_operation_counts, server_name, time_range)

    async def cleanup(self, retention_days: Optional[int] = None) -> int:
        """Delete logs older than the retention period.

        Args:
            retention_days: Override for config.storage.retention_days

        Returns:
            Number of logs removed
        """
        days = retention_days if retention_days is not None else self.config.storage.retention_days
        removed = await asyncio.to_thread(self.store.purge_older_than, days)
        logger.info("Retention sweep finished", retention_days=days, removed=removed)
        return removed

    async def close(self) -> None:
        """Release storage. Safe to call more than once."""
        self._initialized = False
        self.store.close()

    async def __aenter__(self) -> "MCPMonitor":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
