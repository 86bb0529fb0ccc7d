"""Engine facade binding a store, a registry and settings.

Outer layers (HTTP routes, CLIs, workers) hold one ``RecordEngine`` and call
its methods; the functions in ``records``, ``query`` and ``bulk`` remain usable
directly with explicit arguments.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from pathlib import Path
from typing import Any

from kv_query_engine.adapters.sqlite_store import SqliteKeyValueStore
from kv_query_engine.adapters.store import AbstractKeyValueStore, InMemoryKeyValueStore
from kv_query_engine.config import Settings
from kv_query_engine.domain.model import Record, generate_record_id, utc_now
from kv_query_engine.domain.query import BulkResult, QueryFilter, QueryOptions, QueryResult, UpsertResult
from kv_query_engine.observability import configure_logging, init_tracing
from kv_query_engine.registry import TypeConfig, TypeRegistry, load_registry
from kv_query_engine.service_layer import bulk, query, records
from kv_query_engine.service_layer.records import Clock, IdFactory


logger = logging.getLogger(__name__)


class RecordEngine:
    """Typed call surface over one primitive store."""

    def __init__(
        self,
        store: AbstractKeyValueStore,
        registry: TypeRegistry,
        settings: Settings | None = None,
        clock: Clock | None = None,
        id_factory: IdFactory | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.settings = settings or Settings()
        self._clock = clock or utc_now
        self._id_factory = id_factory or generate_record_id

    def list_types(self) -> dict[str, dict[str, Any]]:
        return self.registry.describe()

    def get_type_config(self, type_name: str) -> TypeConfig:
        return self.registry.get_type_config(type_name)

    async def get_record(self, type_name: str, record_id: str) -> Record | None:
        return await records.get_record(self.store, self.registry, type_name, record_id)

    async def create_record(self, type_name: str, data: Mapping[str, Any], record_id: str | None = None) -> Record:
        return await records.create_record(
            self.store,
            self.registry,
            type_name,
            data,
            record_id,
            clock=self._clock,
            id_factory=self._id_factory,
        )

    async def update_record(self, type_name: str, record_id: str, data: Mapping[str, Any]) -> Record:
        return await records.update_record(self.store, self.registry, type_name, record_id, data, clock=self._clock)

    async def patch_record(self, type_name: str, record_id: str, patch: Mapping[str, Any]) -> Record:
        return await records.patch_record(self.store, self.registry, type_name, record_id, patch, clock=self._clock)

    async def delete_record(self, type_name: str, record_id: str) -> bool:
        return await records.delete_record(self.store, self.registry, type_name, record_id)

    async def upsert_record(self, type_name: str, record_id: str, data: Mapping[str, Any]) -> UpsertResult:
        return await records.upsert_record(self.store, self.registry, type_name, record_id, data, clock=self._clock)

    async def execute_query(
        self,
        type_name: str,
        options: QueryOptions | Mapping[str, Any] | None = None,
    ) -> QueryResult:
        """Run a query; ``options`` may be a ``QueryOptions`` or its wire-form mapping."""
        if options is not None and not isinstance(options, QueryOptions):
            options = QueryOptions.model_validate(options)
        return await query.execute_query(self.store, self.registry, type_name, options, self.settings)

    async def bulk_upsert(self, type_name: str, items: Sequence[Mapping[str, Any]]) -> BulkResult:
        return await bulk.bulk_upsert(self.store, self.registry, type_name, items, self.settings, clock=self._clock)

    async def bulk_patch(self, type_name: str, ids: Sequence[str], patch: Mapping[str, Any]) -> BulkResult:
        return await bulk.bulk_patch(self.store, self.registry, type_name, ids, patch, self.settings, clock=self._clock)

    async def bulk_delete(self, type_name: str, ids: Sequence[str]) -> BulkResult:
        return await bulk.bulk_delete(self.store, self.registry, type_name, ids, self.settings)

    async def bulk_update_where(
        self,
        type_name: str,
        and_filters: Sequence[QueryFilter],
        patch: Mapping[str, Any],
        limit: int = bulk.DEFAULT_BULK_WHERE_LIMIT,
    ) -> BulkResult:
        return await bulk.bulk_update_where(
            self.store,
            self.registry,
            type_name,
            and_filters,
            patch,
            limit,
            self.settings,
            clock=self._clock,
        )

    async def bulk_delete_where(
        self,
        type_name: str,
        and_filters: Sequence[QueryFilter],
        limit: int = bulk.DEFAULT_BULK_WHERE_LIMIT,
    ) -> BulkResult:
        return await bulk.bulk_delete_where(self.store, self.registry, type_name, and_filters, limit, self.settings)

    async def close(self) -> None:
        await self.store.close()


def build_store(settings: Settings) -> AbstractKeyValueStore:
    if settings.store_backend == "sqlite":
        return SqliteKeyValueStore(settings.sqlite_path)
    return InMemoryKeyValueStore()


def build_engine(settings: Settings | None = None) -> RecordEngine:
    """Create an engine with the configured store backend and type registry."""
    settings = settings or Settings()
    registry_path = Path(settings.type_registry_path) if settings.type_registry_path else None
    registry = load_registry(registry_path)
    store = build_store(settings)
    logger.info(
        "Record engine ready: %s store, %d types",
        settings.store_backend,
        len(registry),
        extra={"types": sorted(registry)},
    )
    return RecordEngine(store, registry, settings)


def init_observability(settings: Settings, service_name: str = "kv-query-engine") -> None:
    """Configure logging and tracing from settings; call once at process start."""
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    init_tracing(service_name=service_name)
