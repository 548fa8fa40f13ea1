"""
Database connection management.

Provides the SQLite connection backing the ledger store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "bill_guard.db"
DEFAULT_TIMEOUT = 5.0


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = DEFAULT_TIMEOUT) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Transactions are controlled explicitly by the caller (BEGIN/COMMIT),
    so the connection is opened in autocommit mode.

    Args:
        db_path: Path to SQLite database file, or ":memory:"
        timeout: Seconds to wait for another writer to release its lock

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    target = db_path if db_path == ":memory:" else str(Path(db_path))
    conn = sqlite3.connect(target, isolation_level=None, check_same_thread=False, timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
