"""
Repository pattern for data access.

Handles the server registry and the append-only performance log, and
computes grouped aggregates over the log on demand.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import MonitoredServer, OperationCount, PerformanceLog, ServerAggregate


class MonitorStoreError(Exception):
    """Base class for log store failures."""


class StoreUninitializedError(MonitorStoreError):
    """Raised when the store is used before initialize() or after close()."""


class PersistenceError(MonitorStoreError):
    """Raised when the storage engine rejects a read or write."""


_LOG_COLUMNS = """
    id, server_name, operation, latency_ms, success, error_type,
    tokens_used, cost_usd, metadata, timestamp
"""

_INSERT_LOG = """
    INSERT INTO performance_logs
    (server_name, operation, latency_ms, success, error_type,
     tokens_used, cost_usd, metadata, timestamp)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def _to_db_time(value: datetime) -> str:
    """Render a datetime in the fixed-width UTC form stored in timestamp columns.

    Naive datetimes are taken as local time. Storing UTC keeps string order
    equal to time order across DST transitions.
    """
    value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def _from_db_time(text: str) -> datetime:
    """Parse a stored UTC timestamp back to local naive time."""
    value = datetime.fromisoformat(text).replace(tzinfo=timezone.utc)
    return value.astimezone().replace(tzinfo=None)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _build_filters(
    server_name: Optional[str],
    start_time: Optional[datetime],
    end_time: Optional[datetime],
) -> tuple:
    conditions = []
    params: list = []
    if server_name is not None:
        conditions.append("server_name = ?")
        params.append(server_name)
    if start_time is not None:
        conditions.append("timestamp >= ?")
        params.append(_to_db_time(start_time))
    if end_time is not None:
        conditions.append("timestamp <= ?")
        params.append(_to_db_time(end_time))
    where = " WHERE " + " AND ".join(conditions) if conditions else ""
    return where, params


def _row_to_server(row: sqlite3.Row) -> MonitoredServer:
    return MonitoredServer(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        category=row["category"],
        version=row["version"],
        enabled=bool(row["enabled"]),
        cost_per_call=row["cost_per_call"],
        added_at=_from_db_time(row["added_at"]),
    )


def _row_to_log(row: sqlite3.Row) -> PerformanceLog:
    return PerformanceLog(
        id=row["id"],
        server_name=row["server_name"],
        operation=row["operation"],
        latency_ms=row["latency_ms"],
        success=bool(row["success"]),
        error_type=row["error_type"],
        tokens_used=row["tokens_used"],
        cost_usd=row["cost_usd"],
        metadata=row["metadata"],
        timestamp=_from_db_time(row["timestamp"]),
    )


def _log_params(log: PerformanceLog, timestamp: datetime) -> tuple:
    return (
        log.server_name,
        log.operation,
        float(log.latency_ms),
        1 if log.success else 0,
        log.error_type,
        log.tokens_used,
        log.cost_usd,
        log.metadata,
        _to_db_time(timestamp),
    )


class LogStore:
    """Durable store for monitored servers and their performance logs.

    The store holds no domain policy: sampling, cost policy, alerting and
    percentile math live in the core package. Every operation opens its own
    SQLite connection; concurrent use is serialized by SQLite itself.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self._initialized:
            raise StoreUninitializedError(
                f"Log store at {self.db_path} is not initialized"
            )
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open log store {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create tables and indexes. Safe to call more than once.

        Indexes on server_name, timestamp and operation keep the per-server
        and time-range filters used by the metrics queries cheap.
        """
        if self._initialized:
            return

        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open log store {self.db_path}: {e}") from e
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS mcp_servers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT UNIQUE NOT NULL,
                    url TEXT,
                    category TEXT,
                    version TEXT,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    cost_per_call REAL,
                    added_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS performance_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    server_name TEXT NOT NULL,
                    operation TEXT NOT NULL,
                    latency_ms REAL NOT NULL,
                    success INTEGER NOT NULL,
                    error_type TEXT,
                    tokens_used INTEGER,
                    cost_usd REAL,
                    metadata TEXT,
                    timestamp TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_performance_logs_server_name
                ON performance_logs(server_name);

                CREATE INDEX IF NOT EXISTS idx_performance_logs_timestamp
                ON performance_logs(timestamp);

                CREATE INDEX IF NOT EXISTS idx_performance_logs_operation
                ON performance_logs(operation);
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot create schema in {self.db_path}: {e}") from e
        finally:
            conn.close()

        self._initialized = True

    def register_server(self, server: MonitoredServer) -> int:
        """Insert or replace the registry entry for ``server.name``.

        All descriptive and cost fields are overwritten with the given
        values (replace, not merge). An existing row keeps its id and
        ``added_at``.

        Args:
            server: Server to register; ``id`` and ``added_at`` are ignored

        Returns:
            Surrogate id of the registry row
        """
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO mcp_servers
                (name, url, category, version, enabled, cost_per_call, added_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    url = excluded.url,
                    category = excluded.category,
                    version = excluded.version,
                    enabled = excluded.enabled,
                    cost_per_call = excluded.cost_per_call
            """, (
                server.name,
                server.url,
                server.category,
                server.version,
                1 if server.enabled else 0,
                server.cost_per_call,
                _to_db_time(_utc_now()),
            ))
            row = conn.execute(
                "SELECT id FROM mcp_servers WHERE name = ?", (server.name,)
            ).fetchone()
            conn.commit()
            return row["id"]

    def get_server(self, name: str) -> Optional[MonitoredServer]:
        """Look up a server by exact name; None when it is not registered."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM mcp_servers WHERE name = ?", (name,)
            ).fetchone()
            return _row_to_server(row) if row else None

    def get_all_servers(self) -> List[MonitoredServer]:
        """Return every registered server ordered by name."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM mcp_servers ORDER BY name").fetchall()
            return [_row_to_server(row) for row in rows]

    def append_log(
        self,
        log: PerformanceLog,
        timestamp: Optional[datetime] = None
    ) -> int:
        """Append one performance log.

        The store stamps the row with the current time; ``log.timestamp``
        is ignored. Loaders that replay historical data may pass an explicit
        ``timestamp`` instead.

        Args:
            log: Record to append
            timestamp: Optional override for the stored timestamp

        Returns:
            Surrogate id of the new row
        """
        stamp = timestamp if timestamp is not None else _utc_now()
        with self._connect() as conn:
            cursor = conn.execute(_INSERT_LOG, _log_params(log, stamp))
            conn.commit()
            return cursor.lastrowid

    def append_logs(self, logs: List[PerformanceLog]) -> List[int]:
        """Append several logs atomically, keeping each record's timestamp.

        Records without a timestamp are stamped with the current time. All
        rows are written in one transaction.

        Args:
            logs: Records to append

        Returns:
            Surrogate ids in input order
        """
        if not logs:
            return []

        now = _utc_now()
        ids = []
        with self._connect() as conn:
            for log in logs:
                stamp = log.timestamp if log.timestamp is not None else now
                cursor = conn.execute(_INSERT_LOG, _log_params(log, stamp))
                ids.append(cursor.lastrowid)
            conn.commit()
        return ids

    def query_logs(
        self,
        server_name: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 1000
    ) -> List[PerformanceLog]:
        """Fetch logs matching all given filters, newest first.

        Args:
            server_name: Optional exact server name
            start_time: Optional inclusive lower bound on timestamp
            end_time: Optional inclusive upper bound on timestamp
            limit: Maximum number of logs to return

        Returns:
            List of logs ordered by timestamp (newest first)
        """
        if limit < 0:
            raise ValueError("limit cannot be negative")

        where, params = _build_filters(server_name, start_time, end_time)
        query = (
            f"SELECT {_LOG_COLUMNS} FROM performance_logs{where} "
            "ORDER BY timestamp DESC, id DESC LIMIT ?"
        )
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [_row_to_log(row) for row in rows]

    def query_aggregates(
        self,
        server_name: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None
    ) -> List[ServerAggregate]:
        """Aggregate matching logs per server.

        Servers with no matching rows are absent from the result.

        Args:
            server_name: Optional exact server name
            start_time: Optional inclusive lower bound on timestamp
            end_time: Optional inclusive upper bound on timestamp

        Returns:
            One aggregate per server, ordered by server name
        """
        where, params = _build_filters(server_name, start_time, end_time)
        query = f"""
            SELECT
                server_name,
                COUNT(*) AS total_calls,
                SUM(CASE WHEN success = 1 THEN 1 ELSE 0 END) AS successful_calls,
                AVG(latency_ms) AS avg_latency,
                MIN(latency_ms) AS min_latency,
                MAX(latency_ms) AS max_latency,
                COALESCE(SUM(cost_usd), 0) AS total_cost
            FROM performance_logs{where}
            GROUP BY server_name
            ORDER BY server_name
        """

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        aggregates = []
        for row in rows:
            total = row["total_calls"]
            successful = row["successful_calls"] or 0
            aggregates.append(ServerAggregate(
                server_name=row["server_name"],
                total_calls=total,
                successful_calls=successful,
                error_calls=total - successful,
                success_rate=successful / total if total else 0.0,
                avg_latency_ms=float(row["avg_latency"] or 0),
                min_latency_ms=float(row["min_latency"] or 0),
                max_latency_ms=float(row["max_latency"] or 0),
                total_cost_usd=float(row["total_cost"]),
            ))
        return aggregates

    def query_operation_counts(
        self,
        server_name: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None
    ) -> List[OperationCount]:
        """Count matching logs per operation, most frequent first.

        Ties are ordered by operation name.
        """
        where, params = _build_filters(server_name, start_time, end_time)
        query = f"""
            SELECT operation, COUNT(*) AS call_count
            FROM performance_logs{where}
            GROUP BY operation
            ORDER BY call_count DESC, operation
        """

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [OperationCount(row["operation"], row["call_count"]) for row in rows]

    def purge_older_than(self, retention_days: int) -> int:
        """Delete logs with a timestamp strictly before now - retention_days.

        Args:
            retention_days: Age in days beyond which logs are removed

        Returns:
            Number of logs removed
        """
        if retention_days < 0:
            raise ValueError("retention_days cannot be negative")

        cutoff = _utc_now() - timedelta(days=retention_days)
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM performance_logs WHERE timestamp < ?",
                (_to_db_time(cutoff),)
            )
            conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        """Mark the store closed. Further operations raise until re-initialized."""
        self._initialized = False
