"""
Database connection management.

Provides SQLite connection for data persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_vision_guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 10.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a competing writer's lock

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
