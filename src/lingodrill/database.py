import sqlite3
import os
from typing import Optional

from .config import settings


def get_db_path() -> str:
    return os.path.join(settings.DB_DIR, settings.DB_FILE)


def get_db_connection(db_path: Optional[str] = None):
    """Establishes a connection to the SQLite database."""
    conn = sqlite3.connect(db_path or get_db_path())
    conn.row_factory = sqlite3.Row
    return conn


def create_log_table(db_path: Optional[str] = None):
    """Creates the log table if it doesn't exist."""
    conn = get_db_connection(db_path)
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                level TEXT,
                logger TEXT,
                message TEXT
            );
        """
        )
    conn.close()


def create_session_tables(db_path: Optional[str] = None):
    """Creates the session mirror and the active-session guard tables."""
    conn = get_db_connection(db_path)
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS practice_sessions (
                session_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                created_at DATETIME NOT NULL
            );
        """
        )
        # Single row: the guard is process-wide, not per session.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session_guard (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                session_id TEXT NOT NULL,
                acquired_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );
        """
        )
    conn.close()


def init_db(db_path: Optional[str] = None):
    """Initializes the database and creates necessary tables."""
    db_dir = os.path.dirname(db_path) if db_path else settings.DB_DIR
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir)
    create_log_table(db_path)
    create_session_tables(db_path)
