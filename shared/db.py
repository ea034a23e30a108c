from __future__ import annotations

import contextlib
import os
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

from .logging import get_logger

logger = get_logger("shared.db")

DEFAULT_DB_PATH = Path.home() / ".showcase" / "showcase.db"
DEFAULT_LOCK_TIMEOUT = 10.0

SQL_CREATE_CONFIG_TABLE = """
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY NOT NULL,
    value TEXT NOT NULL
)
"""

SQL_CREATE_MESSAGES_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    message_id TEXT PRIMARY KEY NOT NULL,
    channel_id TEXT NOT NULL,
    author_id TEXT NOT NULL,
    author_name TEXT NOT NULL,
    author_avatar TEXT,
    message_content TEXT NOT NULL,
    attachments TEXT NOT NULL DEFAULT '[]',
    timestamp INTEGER NOT NULL,
    is_used INTEGER NOT NULL DEFAULT 0
)
"""

SQL_CREATE_MESSAGES_CHANNEL_INDEX = """
CREATE INDEX IF NOT EXISTS idx_messages_channel_id ON messages (channel_id)
"""


def get_db_path() -> Path:
    raw = os.getenv("SHOWCASE_DB_PATH")
    return Path(raw).expanduser() if raw else DEFAULT_DB_PATH


class DatabaseLockError(RuntimeError):
    """Raised when the connection guard cannot be acquired in time."""


class DbConnection:
    """A single SQLite connection shared by the app, guarded by a mutex.

    The connection is opened with ``check_same_thread=False`` because
    blocking work is dispatched to worker threads; the guard serialises
    every use of it.
    """

    def __init__(self, conn: sqlite3.Connection, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        conn.row_factory = sqlite3.Row
        # explicit BEGIN/COMMIT in transaction(); no implicit transactions
        conn.isolation_level = None
        self._conn = conn
        self._lock = threading.Lock()
        self.lock_timeout = lock_timeout

    @classmethod
    def open(cls, path: Optional[Path] = None, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> "DbConnection":
        db_path = path or get_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
        logger.debug("db_opened", path=str(db_path))
        return cls(conn, lock_timeout=lock_timeout)

    @contextlib.contextmanager
    def guard(self) -> Iterator[sqlite3.Connection]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise DatabaseLockError(f"could not acquire database lock within {self.lock_timeout}s")
        try:
            yield self._conn
        finally:
            self._lock.release()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the guard and run the body inside BEGIN/COMMIT.

        Any exception rolls the transaction back and propagates.
        """
        with self.guard() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        with self.guard() as conn:
            conn.close()


def ensure_schema(db: DbConnection) -> None:
    """Create the tables the indexer reads and writes if they are missing."""
    with db.transaction() as conn:
        conn.execute(SQL_CREATE_CONFIG_TABLE)
        conn.execute(SQL_CREATE_MESSAGES_TABLE)
        conn.execute(SQL_CREATE_MESSAGES_CHANNEL_INDEX)


def read_config(db: DbConnection) -> Dict[str, str]:
    with db.guard() as conn:
        rows = conn.execute("SELECT key, value FROM config").fetchall()
    return {row[0]: row[1] for row in rows}


def write_config(db: DbConnection, values: Mapping[str, str]) -> None:
    with db.transaction() as conn:
        conn.executemany(
            "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
            list(values.items()),
        )


__all__ = [
    "DatabaseLockError",
    "DbConnection",
    "ensure_schema",
    "get_db_path",
    "read_config",
    "write_config",
]
