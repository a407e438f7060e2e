"""SQLite connection handling and schema for sessions and events."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from npc_chat.config import DATABASE_PATH
from npc_chat.errors import StorageError

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 10

SCHEMA = """
    CREATE TABLE IF NOT EXISTS sessions (
        session_id TEXT PRIMARY KEY,
        session_key TEXT NOT NULL UNIQUE,
        user_id TEXT NOT NULL,
        agent_id TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        last_active_at INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions (user_id, last_active_at);
    CREATE INDEX IF NOT EXISTS idx_sessions_agent ON sessions (agent_id, last_active_at);

    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        seq INTEGER NOT NULL,
        from_type TEXT NOT NULL,
        to_type TEXT NOT NULL,
        content TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        status TEXT,
        error_code TEXT,
        UNIQUE (session_id, seq),
        FOREIGN KEY (session_id) REFERENCES sessions(session_id)
    );
"""


@contextmanager
def get_connection(path: Path | str | None = None):
    """Context manager for database connections.

    ``sqlite3`` failures inside the block surface as ``StorageError``.
    """
    try:
        conn = sqlite3.connect(path or DATABASE_PATH, timeout=BUSY_TIMEOUT_SECONDS)
    except sqlite3.Error as e:
        raise StorageError(f"cannot open database: {e}") from e
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    except sqlite3.Error as e:
        raise StorageError(f"database error: {e}") from e
    finally:
        conn.close()


@contextmanager
def immediate_transaction(conn: sqlite3.Connection):
    """Take the database write lock up front so read-then-write steps cannot interleave."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


def init_db(path: Path | str | None = None) -> None:
    """Initialize the database with required tables."""
    with get_connection(path) as conn:
        conn.executescript(SCHEMA)
        conn.commit()
    logger.info(f"[STORE] Database ready at {path or DATABASE_PATH}")
