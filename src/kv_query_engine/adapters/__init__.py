"""Primitive key-value store adapters."""

from kv_query_engine.adapters.sqlite_store import SqliteKeyValueStore
from kv_query_engine.adapters.store import AbstractKeyValueStore, InMemoryKeyValueStore, ListResult


__all__ = [
    "AbstractKeyValueStore",
    "InMemoryKeyValueStore",
    "ListResult",
    "SqliteKeyValueStore",
]
