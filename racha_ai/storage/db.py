"""
Database connection management.

Provides the SQLite connection shared by the cache, ledger and call log.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".racha-ai.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    The connection runs in autocommit mode (``isolation_level=None``) so
    callers open their own ``BEGIN IMMEDIATE`` transactions where a
    read-then-write must be atomic across processes.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10.0, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
