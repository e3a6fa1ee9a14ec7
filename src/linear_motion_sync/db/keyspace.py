"""SQLite-backed keyspace of named partitions.

Every partition is a durable ``key -> JSON text`` map. All partitions live in
one SQLite file; each operation opens its own connection and runs in a worker
thread, so the partitions can be shared by concurrent source passes.
"""

import asyncio
import contextlib
import logging
import sqlite3
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, TypeVar

from linear_motion_sync.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    partition TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (partition, key)
)
"""


class Keyspace:
    """One SQLite database holding several named partitions."""

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000) -> None:
        """Open (and create if needed) the keyspace.

        Args:
            db_path: Path of the SQLite file. Parent directories are created.
            busy_timeout_ms: How long a writer waits for a competing lock.

        Raises:
            StorageError: If the database cannot be created.
        """
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute(SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Could not open database {db_path}: {e}", "open") from e

        logger.debug(f"Opened keyspace at {db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        return conn

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, committing on success and rolling back on error."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def partition(self, name: str) -> "Partition":
        """Get a handle on a named partition."""
        return Partition(self, name)

    def _flush(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute("PRAGMA wal_checkpoint(FULL)")
        except sqlite3.Error as e:
            raise StorageError(f"Flush failed: {e}", "flush") from e

    async def flush(self) -> None:
        """Checkpoint the write-ahead log into the main database file."""
        await asyncio.to_thread(self._flush)


class Partition:
    """A durable ``key -> JSON text`` map inside a keyspace."""

    def __init__(self, keyspace: Keyspace, name: str) -> None:
        self.keyspace = keyspace
        self.name = name

    def _run(
        self,
        operation: str,
        key: str | None,
        func: Callable[..., T],
        *args: Any,
    ) -> T:
        try:
            with self.keyspace._connect() as conn:
                return func(conn, *args)
        except sqlite3.Error as e:
            raise StorageError(
                f"{self.name}: {operation} failed: {e}", operation=operation, key=key
            ) from e

    def _get(self, conn: sqlite3.Connection, key: str) -> str | None:
        row = conn.execute(
            "SELECT value FROM records WHERE partition = ? AND key = ?", (self.name, key)
        ).fetchone()
        return row[0] if row else None

    def _insert(self, conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute(
            "INSERT INTO records (partition, key, value) VALUES (?, ?, ?) "
            "ON CONFLICT (partition, key) DO UPDATE SET value = excluded.value",
            (self.name, key, value),
        )

    def _remove(self, conn: sqlite3.Connection, key: str) -> str | None:
        previous = self._get(conn, key)
        if previous is not None:
            conn.execute(
                "DELETE FROM records WHERE partition = ? AND key = ?", (self.name, key)
            )
        return previous

    def _items(self, conn: sqlite3.Connection) -> list[tuple[str, str]]:
        rows = conn.execute(
            "SELECT key, value FROM records WHERE partition = ? ORDER BY rowid", (self.name,)
        ).fetchall()
        return [(row[0], row[1]) for row in rows]

    async def get(self, key: str) -> str | None:
        """Get the value stored under ``key``."""
        return await asyncio.to_thread(self._run, "get", key, self._get, key)

    async def insert(self, key: str, value: str) -> None:
        """Insert or replace the value stored under ``key``."""
        await asyncio.to_thread(self._run, "insert", key, self._insert, key, value)

    async def remove(self, key: str) -> str | None:
        """Delete ``key`` and return the value it held, if any."""
        return await asyncio.to_thread(self._run, "remove", key, self._remove, key)

    async def items(self) -> list[tuple[str, str]]:
        """All ``(key, value)`` pairs, oldest insertion first."""
        return await asyncio.to_thread(self._run, "scan", None, self._items)
