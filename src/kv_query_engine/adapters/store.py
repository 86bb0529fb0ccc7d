"""Primitive key-value store contract and the in-memory implementation.

The engine only relies on four primitives: point get, put (with optional TTL),
idempotent delete, and prefix listing in ascending key order with an opaque
continuation cursor. There are no multi-key transactions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from bisect import bisect_left, bisect_right, insort
from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import time


logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 1000


@dataclass(slots=True, frozen=True)
class ListResult:
    """One page of a prefix listing."""

    keys: list[str] = field(default_factory=list)
    cursor: str | None = None
    is_complete: bool = True


def clamp_list_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIST_LIMIT))


class AbstractKeyValueStore(ABC):
    """Abstract primitive store.

    Implementations may be eventually consistent across processes but must
    read their own writes locally.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored at ``key`` or None when absent or expired."""
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        """Store ``value`` at ``key``; ``ttl`` is a lifetime in seconds."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting a missing key is not an error."""
        raise NotImplementedError

    @abstractmethod
    async def list(self, prefix: str, limit: int = MAX_LIST_LIMIT, cursor: str | None = None) -> ListResult:
        """List keys starting with ``prefix`` in ascending order.

        Args:
            prefix: Key prefix to scan
            limit: Page size (clamped to ``MAX_LIST_LIMIT``)
            cursor: Continuation token from a previous page

        Returns:
            ListResult with the page of keys, the next cursor and completion flag
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the store."""
        return


class InMemoryKeyValueStore(AbstractKeyValueStore):
    """In-memory store with sorted keys, used by tests and single-process setups."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._values: dict[str, str] = {}
        self._expires_at: dict[str, float] = {}
        self._sorted_keys: list[str] = []
        self._clock = clock

    def _is_expired(self, key: str) -> bool:
        expires_at = self._expires_at.get(key)
        return expires_at is not None and expires_at <= self._clock()

    def _evict(self, key: str) -> None:
        if key not in self._values:
            return
        del self._values[key]
        self._expires_at.pop(key, None)
        index = bisect_left(self._sorted_keys, key)
        if index < len(self._sorted_keys) and self._sorted_keys[index] == key:
            del self._sorted_keys[index]

    async def get(self, key: str) -> str | None:
        if self._is_expired(key):
            self._evict(key)
            return None
        return self._values.get(key)

    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        if key not in self._values:
            insort(self._sorted_keys, key)
        self._values[key] = value
        if ttl is None:
            self._expires_at.pop(key, None)
        else:
            self._expires_at[key] = self._clock() + ttl

    async def delete(self, key: str) -> None:
        self._evict(key)

    async def list(self, prefix: str, limit: int = MAX_LIST_LIMIT, cursor: str | None = None) -> ListResult:
        page_size = clamp_list_limit(limit)
        if cursor is not None:
            index = bisect_right(self._sorted_keys, cursor)
        else:
            index = bisect_left(self._sorted_keys, prefix)

        keys: list[str] = []
        expired: list[str] = []
        is_complete = True
        while index < len(self._sorted_keys):
            key = self._sorted_keys[index]
            index += 1
            if not key.startswith(prefix):
                break
            if self._is_expired(key):
                expired.append(key)
                continue
            if len(keys) == page_size:
                is_complete = False
                break
            keys.append(key)

        for key in expired:
            self._evict(key)

        next_cursor = keys[-1] if keys and not is_complete else None
        return ListResult(keys=keys, cursor=next_cursor, is_complete=is_complete)

    def __len__(self) -> int:
        return len(self._values)

    def keys(self) -> list[str]:
        """Snapshot of all live keys in ascending order."""
        return [key for key in self._sorted_keys if not self._is_expired(key)]

    def clear(self) -> None:
        self._values.clear()
        self._expires_at.clear()
        self._sorted_keys.clear()
