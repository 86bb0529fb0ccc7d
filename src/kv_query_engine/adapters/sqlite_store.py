"""SQLite-backed primitive store.

All keys live in a single ``WITHOUT ROWID`` table so prefix listings are range
scans over the primary key. Blocking sqlite3 calls run in worker threads via
``asyncio.to_thread``; a lock serializes access to the shared connection.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from pathlib import Path
import sqlite3
import threading
import time

from kv_query_engine.adapters.store import MAX_LIST_LIMIT, AbstractKeyValueStore, ListResult, clamp_list_limit


logger = logging.getLogger(__name__)


def apply_store_pragmas(
    conn: sqlite3.Connection,
    *,
    cache_size_kb: int = -65536,
    busy_timeout_ms: int = 30000,
    temp_store: str = "MEMORY",
) -> None:
    """Apply WAL pragmas tuned for many small point writes."""
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA cache_size = {cache_size_kb}")
    conn.execute(f"PRAGMA temp_store = {temp_store}")


def _prefix_upper_bound(prefix: str) -> str | None:
    """Smallest string greater than every string starting with ``prefix``."""
    if not prefix:
        return None
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class SqliteKeyValueStore(AbstractKeyValueStore):
    """Primitive store persisted to a single SQLite database file."""

    def __init__(self, db_path: str | Path, clock: Callable[[], float] = time.time) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            apply_store_pragmas(conn)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                ) WITHOUT ROWID
                """
            )
            conn.commit()
            self._conn = conn
            logger.debug("Opened SQLite store at %s", self.db_path)
        return self._conn

    def _get_sync(self, key: str) -> str | None:
        with self._lock:
            row = (
                self._connection()
                .execute(
                    "SELECT value FROM kv WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)",
                    (key, self._clock()),
                )
                .fetchone()
            )
        return row[0] if row else None

    def _put_sync(self, key: str, value: str, ttl: float | None) -> None:
        expires_at = None if ttl is None else self._clock() + ttl
        with self._lock:
            conn = self._connection()
            conn.execute(
                "INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at",
                (key, value, expires_at),
            )
            conn.commit()

    def _delete_sync(self, key: str) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()

    def _list_sync(self, prefix: str, limit: int, cursor: str | None) -> ListResult:
        page_size = clamp_list_limit(limit)
        clauses = ["key >= ?", "(expires_at IS NULL OR expires_at > ?)"]
        params: list[object] = [prefix, self._clock()]
        upper = _prefix_upper_bound(prefix)
        if upper is not None:
            clauses.append("key < ?")
            params.append(upper)
        if cursor is not None:
            clauses.append("key > ?")
            params.append(cursor)
        params.append(page_size + 1)

        sql = f"SELECT key FROM kv WHERE {' AND '.join(clauses)} ORDER BY key LIMIT ?"  # noqa: S608
        with self._lock:
            rows = self._connection().execute(sql, params).fetchall()

        keys = [row[0] for row in rows[:page_size]]
        is_complete = len(rows) <= page_size
        return ListResult(keys=keys, cursor=None if is_complete else keys[-1], is_complete=is_complete)

    async def get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        await asyncio.to_thread(self._put_sync, key, value, ttl)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    async def list(self, prefix: str, limit: int = MAX_LIST_LIMIT, cursor: str | None = None) -> ListResult:
        return await asyncio.to_thread(self._list_sync, prefix, limit, cursor)

    def purge_expired(self) -> int:
        """Physically remove expired rows; returns how many were deleted."""
        with self._lock:
            conn = self._connection()
            deleted = conn.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (self._clock(),)
            ).rowcount
            conn.commit()
        return deleted

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
