"""Service layer: record CRUD, query execution and bulk use cases."""

from kv_query_engine.service_layer.engine import RecordEngine, build_engine, build_store, init_observability


__all__ = ["RecordEngine", "build_engine", "build_store", "init_observability"]
