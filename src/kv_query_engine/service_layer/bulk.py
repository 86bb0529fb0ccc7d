"""Bulk operations built on single-record CRUD.

Items run one after another, each in isolation: a failing item becomes a
failed ``BulkItemResult`` and the rest still run. Payload size and the type
are checked before any item is touched.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import Any

from kv_query_engine.adapters.store import AbstractKeyValueStore
from kv_query_engine.config import Settings
from kv_query_engine.domain.errors import InvalidQueryError, TooManyItemsError
from kv_query_engine.domain.model import utc_now
from kv_query_engine.domain.query import BulkItemResult, BulkResult, QueryFilter
from kv_query_engine.index import keys
from kv_query_engine.registry import TypeRegistry
from kv_query_engine.service_layer.query import resolve_and_ids
from kv_query_engine.service_layer.records import Clock, delete_record, patch_record, upsert_record


logger = logging.getLogger(__name__)

DEFAULT_BULK_WHERE_LIMIT = 100
UNKNOWN_ID = "unknown"


def _check_payload(registry: TypeRegistry, type_name: str, count: int, settings: Settings) -> None:
    keys.validate_type_name(type_name)
    registry.get_type_config(type_name)
    if count > settings.bulk_max_items:
        raise TooManyItemsError(count, settings.bulk_max_items)


def _failed(record_id: str, exc: Exception, type_name: str, operation: str) -> BulkItemResult:
    logger.warning("Bulk %s of %s:%s failed: %s", operation, type_name, record_id, exc)
    return BulkItemResult(ok=False, id=record_id, error=str(exc) or type(exc).__name__)


async def bulk_upsert(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    items: Sequence[Mapping[str, Any]],
    settings: Settings | None = None,
    *,
    clock: Clock = utc_now,
) -> BulkResult:
    """Upsert each item by its ``id``; items without one fail individually."""
    settings = settings or Settings()
    _check_payload(registry, type_name, len(items), settings)

    result = BulkResult()
    for item in items:
        record_id = None
        try:
            if not isinstance(item, Mapping):
                raise InvalidQueryError(f"Bulk item must be an object, got {type(item).__name__}")
            record_id = item.get("id")
            if not record_id:
                raise InvalidQueryError("Missing id field")
            upserted = await upsert_record(store, registry, type_name, str(record_id), item, clock=clock)
        except Exception as exc:
            result.results.append(_failed(str(record_id or UNKNOWN_ID), exc, type_name, "upsert"))
            continue
        result.results.append(BulkItemResult(ok=True, id=upserted.record.id, operation=upserted.operation))
    return result


async def bulk_patch(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    ids: Sequence[str],
    patch: Mapping[str, Any],
    settings: Settings | None = None,
    *,
    clock: Clock = utc_now,
) -> BulkResult:
    """Apply the same shallow patch to every id."""
    settings = settings or Settings()
    _check_payload(registry, type_name, len(ids), settings)

    result = BulkResult()
    for record_id in ids:
        try:
            await patch_record(store, registry, type_name, record_id, patch, clock=clock)
        except Exception as exc:
            result.results.append(_failed(record_id, exc, type_name, "patch"))
            continue
        result.results.append(BulkItemResult(ok=True, id=record_id, operation="updated"))
    return result


async def bulk_delete(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    ids: Sequence[str],
    settings: Settings | None = None,
) -> BulkResult:
    """Delete every id; ids that do not exist still count as deleted."""
    settings = settings or Settings()
    _check_payload(registry, type_name, len(ids), settings)

    result = BulkResult()
    for record_id in ids:
        try:
            await delete_record(store, registry, type_name, record_id)
        except Exception as exc:
            result.results.append(_failed(record_id, exc, type_name, "delete"))
            continue
        result.results.append(BulkItemResult(ok=True, id=record_id, operation="deleted"))
    return result


async def _ids_where(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    and_filters: Sequence[QueryFilter],
    limit: int,
    settings: Settings,
) -> list[str]:
    keys.validate_type_name(type_name)
    config = registry.get_type_config(type_name)
    if not and_filters:
        raise InvalidQueryError("Bulk operations by filter need at least one filter")
    if limit > settings.bulk_max_items:
        raise TooManyItemsError(limit, settings.bulk_max_items)
    ids = await resolve_and_ids(store, type_name, config, and_filters, settings)
    return sorted(ids)[: max(limit, 0)]


async def bulk_update_where(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    and_filters: Sequence[QueryFilter],
    patch: Mapping[str, Any],
    limit: int = DEFAULT_BULK_WHERE_LIMIT,
    settings: Settings | None = None,
    *,
    clock: Clock = utc_now,
) -> BulkResult:
    """Patch the first ``limit`` records (by id) matching every filter.

    Raises:
        InvalidQueryError: If ``and_filters`` is empty.
        TooManyItemsError: If ``limit`` exceeds the bulk item ceiling.
    """
    settings = settings or Settings()
    ids = await _ids_where(store, registry, type_name, and_filters, limit, settings)
    if not ids:
        return BulkResult()
    return await bulk_patch(store, registry, type_name, ids, patch, settings, clock=clock)


async def bulk_delete_where(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    and_filters: Sequence[QueryFilter],
    limit: int = DEFAULT_BULK_WHERE_LIMIT,
    settings: Settings | None = None,
) -> BulkResult:
    """Delete the first ``limit`` records (by id) matching every filter.

    Raises:
        InvalidQueryError: If ``and_filters`` is empty.
        TooManyItemsError: If ``limit`` exceeds the bulk item ceiling.
    """
    settings = settings or Settings()
    ids = await _ids_where(store, registry, type_name, and_filters, limit, settings)
    if not ids:
        return BulkResult()
    return await bulk_delete(store, registry, type_name, ids, settings)
