"""
SQLite connections for the governance tables.

Each store call opens its own short-lived connection, so concurrent
requests never share a connection across threads.
"""

import sqlite3

DEFAULT_DB_PATH = "ai_provider_guard.db"

# Concurrent disclosure writers wait this long for the database lock
BUSY_TIMEOUT_SECONDS = 5.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a connection that waits on locks instead of failing immediately.

    Raises:
        sqlite3.Error: If the database file cannot be opened
    """
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
