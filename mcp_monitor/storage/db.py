"""
Database connection management.

Provides SQLite connections for the monitor's log store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "mcp-monitor.db"

# Seconds a writer waits on a locked database before failing
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection with name-addressable rows.

    Each store operation opens its own connection, so concurrent callers
    (threads running store work for the event loop) are serialized by
    SQLite's own locking rather than by a shared handle.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection using sqlite3.Row rows
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    return conn
