"""
Unit tests for the metrics query facade.

Tests per-server and all-server aggregates, windowed percentiles, hourly
call rate and overall folding.
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta

import pytest

from mcp_monitor.core.metrics import (
    MetricsQuery,
    TimeRange,
    summarize_overall,
)
from mcp_monitor.storage.models import PerformanceLog, ServerAggregate
from mcp_monitor.storage.repository import LogStore, StoreUninitializedError


def _log(server, latency, timestamp, success=True, cost=None):
    return PerformanceLog(
        server_name=server,
        operation="call_tool",
        latency_ms=latency,
        success=success,
        error_type=None if success else "RuntimeError",
        cost_usd=cost,
        timestamp=timestamp,
    )


class TestMetricsQuery:
    """Test MetricsQuery over a real store."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = LogStore(os.path.join(self.temp_dir, "test.db"))
        self.store.initialize()
        self.metrics = MetricsQuery(self.store, percentile_window=100)
        self.now = datetime.now()

    def teardown_method(self):
        """Clean up test environment."""
        self.store.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_server_metrics_without_data_is_zero(self):
        """Test "no data" is a zero aggregate, not an error."""
        aggregate = self.metrics.get_server_metrics("filesystem")

        assert aggregate == ServerAggregate.empty("filesystem")
        assert aggregate.success_rate == 0.0
        assert aggregate.error_rate == 0.0

    def test_server_metrics(self):
        """Test the aggregate for one server ignores others."""
        self.store.append_logs([
            _log("filesystem", 100.0, self.now, success=True, cost=0.01),
            _log("filesystem", 200.0, self.now, success=False, cost=0.01),
            _log("github", 900.0, self.now),
        ])

        aggregate = self.metrics.get_server_metrics("filesystem")

        assert aggregate.total_calls == 2
        assert aggregate.successful_calls == 1
        assert aggregate.error_calls == 1
        assert aggregate.success_rate == 0.5
        assert aggregate.avg_latency_ms == 150.0
        assert aggregate.total_cost_usd == pytest.approx(0.02)

    def test_server_metrics_time_range(self):
        """Test a time range limits the aggregate."""
        self.store.append_logs([
            _log("filesystem", 100.0, self.now - timedelta(days=10)),
            _log("filesystem", 300.0, self.now - timedelta(hours=1)),
        ])

        last_day = TimeRange.last(timedelta(hours=24), now=self.now)
        aggregate = self.metrics.get_server_metrics("filesystem", last_day)

        assert aggregate.total_calls == 1
        assert aggregate.avg_latency_ms == 300.0

    def test_server_metrics_range_without_data(self):
        """Test an empty range still yields a zero aggregate."""
        self.store.append_log(_log("filesystem", 100.0, None), timestamp=self.now - timedelta(days=3))

        aggregate = self.metrics.get_server_metrics(
            "filesystem", TimeRange.last(timedelta(hours=1), now=self.now)
        )

        assert aggregate.total_calls == 0

    def test_all_metrics(self):
        """Test one aggregate per server and no overall row."""
        self.store.append_logs([
            _log("slack", 10.0, self.now),
            _log("filesystem", 20.0, self.now),
            _log("filesystem", 30.0, self.now),
        ])

        aggregates = self.metrics.get_all_metrics()

        assert [(a.server_name, a.total_calls) for a in aggregates] == [
            ("filesystem", 2), ("slack", 1)
        ]

    def test_recent_logs(self):
        """Test recent logs are newest first and limited."""
        self.store.append_logs([
            _log("filesystem", float(i), self.now - timedelta(minutes=i))
            for i in range(10)
        ])

        logs = self.metrics.get_recent_logs("filesystem", limit=3)

        assert [log.latency_ms for log in logs] == [0.0, 1.0, 2.0]

    def test_recent_logs_have_no_time_bound(self):
        """Test old logs are still returned."""
        self.store.append_log(_log("filesystem", 5.0, None), timestamp=self.now - timedelta(days=365))

        assert len(self.metrics.get_recent_logs()) == 1

    def test_percentiles_use_recent_window_only(self):
        """Test only the last N logs feed the percentiles."""
        metrics = MetricsQuery(self.store, percentile_window=5)
        old = [_log("filesystem", 10000.0, self.now - timedelta(hours=2)) for _ in range(20)]
        recent = [
            _log("filesystem", latency, self.now - timedelta(seconds=i))
            for i, latency in enumerate([10.0, 20.0, 30.0, 40.0, 50.0])
        ]
        self.store.append_logs(old + recent)

        percentiles = metrics.get_latency_percentiles("filesystem")

        assert percentiles.sample_count == 5
        assert percentiles.p50_ms == 30.0
        assert percentiles.p99_ms == 50.0

    def test_percentiles_hundred_values(self):
        """Test p50/p95/p99 over latencies 10..1000."""
        self.store.append_logs([
            _log("filesystem", 10.0 * i, self.now - timedelta(seconds=i))
            for i in range(1, 101)
        ])

        percentiles = self.metrics.get_latency_percentiles("filesystem")

        assert percentiles.p50_ms == 510.0
        assert percentiles.p95_ms == 960.0
        assert percentiles.p99_ms == 1000.0

    def test_percentiles_without_data(self):
        """Test no logs gives zero percentiles."""
        percentiles = self.metrics.get_latency_percentiles("filesystem")

        assert percentiles.p50_ms == 0.0
        assert percentiles.sample_count == 0

    def test_calls_per_hour(self):
        """Test last-24h count divided by 24."""
        self.store.append_logs(
            [_log("filesystem", 10.0, self.now - timedelta(minutes=10 * i)) for i in range(48)]
            + [_log("filesystem", 10.0, self.now - timedelta(days=2)) for _ in range(30)]
            + [_log("github", 10.0, self.now) for _ in range(5)]
        )

        assert self.metrics.get_calls_per_hour("filesystem", now=self.now) == 2.0
        assert self.metrics.get_calls_per_hour("unknown", now=self.now) == 0.0

    def test_operation_counts_time_range(self):
        """Test usage counts respect the requested range."""
        self.store.append_logs([
            PerformanceLog("filesystem", "read_file", 10.0, True, timestamp=self.now - timedelta(days=10)),
            PerformanceLog("filesystem", "write_file", 10.0, True, timestamp=self.now),
            PerformanceLog("github", "write_file", 10.0, True, timestamp=self.now),
        ])

        last_day = TimeRange.last(timedelta(hours=24), now=self.now)
        counts = self.metrics.get_operation_counts(time_range=last_day)
        everything = self.metrics.get_operation_counts("filesystem")

        assert [(c.operation, c.count) for c in counts] == [("write_file", 2)]
        assert [(c.operation, c.count) for c in everything] == [
            ("read_file", 1), ("write_file", 1)
        ]

    def test_server_performance(self):
        """Test the combined view for one server."""
        self.store.append_logs([
            _log("filesystem", 100.0, self.now - timedelta(minutes=1), success=True),
            _log("filesystem", 300.0, self.now - timedelta(minutes=2), success=False),
        ])

        performance = self.metrics.get_server_performance("filesystem")

        assert performance.server_name == "filesystem"
        assert performance.aggregate.total_calls == 2
        assert performance.error_rate == 0.5
        assert performance.percentiles.p50_ms == 300.0
        assert performance.calls_per_hour == pytest.approx(2 / 24)

    def test_read_errors_propagate(self):
        """Test query paths surface storage state errors."""
        self.store.close()

        with pytest.raises(StoreUninitializedError):
            self.metrics.get_server_metrics("filesystem")
        with pytest.raises(StoreUninitializedError):
            self.metrics.get_all_metrics()

    def test_invalid_window(self):
        """Test percentile window must be positive."""
        with pytest.raises(ValueError):
            MetricsQuery(self.store, percentile_window=0)


class TestTimeRange:
    """Test resolved time windows."""

    def test_last(self):
        """Test a window ending at a given instant."""
        now = datetime(2024, 1, 2, 12, 0, 0)
        window = TimeRange.last(timedelta(days=1), now=now)

        assert window.start == datetime(2024, 1, 1, 12, 0, 0)
        assert window.end == now

    def test_inverted_range_rejected(self):
        """Test start must not be after end."""
        with pytest.raises(ValueError):
            TimeRange(start=datetime(2024, 1, 2), end=datetime(2024, 1, 1))


class TestSummarizeOverall:
    """Test folding per-server aggregates."""

    def test_fold(self):
        """Test totals, rate and call-weighted latency."""
        aggregates = [
            ServerAggregate("a", 10, 9, 1, 0.9, 100.0, 50.0, 200.0, 0.5),
            ServerAggregate("b", 30, 15, 15, 0.5, 200.0, 100.0, 400.0, 1.5),
        ]

        overall = summarize_overall(aggregates)

        assert overall.total_calls == 40
        assert overall.successful_calls == 24
        assert overall.error_calls == 16
        assert overall.success_rate == pytest.approx(0.6)
        assert overall.avg_latency_ms == pytest.approx(175.0)
        assert overall.total_cost_usd == pytest.approx(2.0)

    def test_fold_empty(self):
        """Test no servers folds to zeros."""
        overall = summarize_overall([])

        assert overall.total_calls == 0
        assert overall.success_rate == 0.0
        assert overall.avg_latency_ms == 0.0
