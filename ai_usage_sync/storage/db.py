"""
SQLite connection management for the usage store.

One short-lived connection per repository operation. Jobs for different
providers may run as separate processes against the same file.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_usage_sync.db"
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a connection to the usage database.

    The parent directory is created on first use. WAL journaling lets the
    status and daily views read while a sync job is writing, and concurrent
    writers wait on the lock for up to BUSY_TIMEOUT_SECONDS.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
