"""SQLite database shared by the local store and the mutation queue.

A single connection is shared between threads and serialized with a
re-entrant lock, so that a local write and the mutation it enqueues can be
committed in one transaction.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional, Union

from .exceptions import LocalStorageError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS lists (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    owner_id TEXT,
    store_id TEXT,
    store_name TEXT,
    color TEXT DEFAULT '#4CAF50',
    budget REAL,
    is_archived INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    sync_version INTEGER DEFAULT 0,
    is_synced INTEGER DEFAULT 1
);

CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    list_id TEXT NOT NULL,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    quantity REAL,
    unit TEXT,
    price REAL,
    notes TEXT,
    is_checked INTEGER DEFAULT 0,
    is_in_pantry INTEGER DEFAULT 0,
    added_by TEXT,
    checked_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    sync_version INTEGER DEFAULT 0,
    is_synced INTEGER DEFAULT 1,
    FOREIGN KEY (list_id) REFERENCES lists(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_items_list_id ON items(list_id);

CREATE TABLE IF NOT EXISTS sync_queue (
    sequence_id INTEGER PRIMARY KEY AUTOINCREMENT,
    operation TEXT NOT NULL,
    entity_kind TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    enqueued_at TEXT NOT NULL,
    retry_count INTEGER DEFAULT 0,
    last_error TEXT,
    abandoned INTEGER DEFAULT 0
);
"""


class Database:
    """Thread-safe wrapper around one SQLite connection."""

    MEMORY = ":memory:"

    def __init__(self, path: Union[str, Path] = MEMORY):
        """Open (and create if needed) the database.

        Args:
            path: Database file path, or ":memory:" for an in-memory database
                (useful for testing)

        Raises:
            LocalStorageError: If the database cannot be opened
        """
        self.path = str(path)
        self._lock = threading.RLock()
        self._depth = 0

        try:
            if self.path != self.MEMORY:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                self.path, check_same_thread=False
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self.path != self.MEMORY:
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise LocalStorageError(f"Cannot open database {self.path}: {e}") from e

        logger.debug(f"Opened local database at {self.path}")

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise LocalStorageError("Database is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements atomically.

        Nested transactions join the outermost one; only the outermost block
        commits or rolls back.

        Raises:
            LocalStorageError: If any statement in the block fails
        """
        with self._lock:
            conn = self.connection
            self._depth += 1
            try:
                yield conn
            except sqlite3.Error as e:
                if self._depth == 1:
                    conn.rollback()
                raise LocalStorageError(f"Local storage error: {e}") from e
            except BaseException:
                if self._depth == 1:
                    conn.rollback()
                raise
            else:
                if self._depth == 1:
                    try:
                        conn.commit()
                    except sqlite3.Error as e:
                        conn.rollback()
                        raise LocalStorageError(f"Commit failed: {e}") from e
            finally:
                self._depth -= 1

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute one statement in its own (or the enclosing) transaction."""
        with self.transaction() as conn:
            return conn.execute(sql, params)

    def fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self.transaction() as conn:
            return conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> list[Any]:
        with self.transaction() as conn:
            return conn.execute(sql, params).fetchall()

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
