"""Indexing and query engine for records kept in a primitive key-value store."""

from kv_query_engine.config import Settings
from kv_query_engine.domain import (
    KVEngineError,
    QueryFilter,
    QueryOptions,
    QueryResult,
    Record,
    SortSpec,
)
from kv_query_engine.registry import TypeConfig, TypeRegistry, default_registry, load_registry
from kv_query_engine.service_layer import RecordEngine, build_engine, init_observability


__all__ = [
    "KVEngineError",
    "QueryFilter",
    "QueryOptions",
    "QueryResult",
    "Record",
    "RecordEngine",
    "Settings",
    "SortSpec",
    "TypeConfig",
    "TypeRegistry",
    "build_engine",
    "default_registry",
    "init_observability",
    "load_registry",
]
