"""
Database connection management.

Provides SQLite connections for users, projects and interaction history.
"""

import sqlite3
from pathlib import Path

BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str = "ai_gen_broker.db") -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Connections wait on a busy database instead of failing immediately, so
    concurrent request threads can each hold their own connection.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
