"""Single-record use cases: get, create, update, patch, delete, upsert.

Every write stores the primary record first and then runs one derived-index
batch. Nothing spans both steps: when the index batch fails the primary write
is already durable and the caller gets ``IndexMaintenanceError``.
"""

from __future__ import annotations

from collections.abc import Callable, Generator, Mapping
from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any

import orjson

from kv_query_engine.adapters.store import AbstractKeyValueStore
from kv_query_engine.domain.errors import AlreadyExistsError, NotFoundError, RecordTooLargeError
from kv_query_engine.domain.model import (
    Record,
    format_timestamp,
    generate_record_id,
    shallow_merge,
    strip_envelope,
    utc_now,
)
from kv_query_engine.domain.query import UpsertResult
from kv_query_engine.index import keys
from kv_query_engine.index.maintainer import (
    plan_create_indexes,
    plan_delete_indexes,
    plan_update_indexes,
)
from kv_query_engine.observability.context import bind_record_type
from kv_query_engine.observability.metrics import RECORD_OPERATIONS
from kv_query_engine.observability.tracing import create_span
from kv_query_engine.registry import TypeConfig, TypeRegistry


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
IdFactory = Callable[[datetime], str]


@contextmanager
def _record_operation(type_name: str, operation: str, record_id: str | None = None) -> Generator[None, None, None]:
    attributes = {"kv.type": type_name, "kv.operation": operation}
    if record_id:
        attributes["kv.id"] = record_id
    bind_record_type(type_name)
    with create_span(f"kv.record.{operation}", attributes=attributes):
        try:
            yield
        except Exception:
            RECORD_OPERATIONS.labels(type=type_name, operation=operation, status="error").inc()
            raise
        RECORD_OPERATIONS.labels(type=type_name, operation=operation, status="ok").inc()


def serialize_record(record: Record) -> bytes:
    return orjson.dumps(record.to_dict())


def deserialize_record(raw: str | bytes) -> Record:
    return Record.from_dict(orjson.loads(raw))


def _check_size(payload: bytes, config: TypeConfig) -> None:
    if config.max_record_size is not None and len(payload) > config.max_record_size:
        raise RecordTooLargeError(len(payload), config.max_record_size)


async def _load(store: AbstractKeyValueStore, type_name: str, record_id: str) -> Record | None:
    raw = await store.get(keys.object_key(type_name, record_id))
    if raw is None:
        return None
    return deserialize_record(raw)


async def get_record(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    record_id: str,
) -> Record | None:
    """Fetch one record.

    Raises:
        InvalidIdentifierError: If the type or id is unsafe for keys.
        UnknownTypeError: If the type is not registered.
    """
    keys.validate_identifiers(type_name, record_id)
    registry.get_type_config(type_name)
    return await _load(store, type_name, record_id)


async def create_record(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    data: Mapping[str, Any],
    record_id: str | None = None,
    *,
    clock: Clock = utc_now,
    id_factory: IdFactory = generate_record_id,
) -> Record:
    """Create a record and all of its derived indexes.

    Args:
        store: Primitive key-value store
        registry: Type registry
        type_name: Registered record type
        data: Caller fields; envelope keys are ignored
        record_id: Explicit id, generated as ``<epoch-millis>-<base36>`` when omitted
        clock: Source of the creation timestamp
        id_factory: Id generator used when ``record_id`` is omitted

    Returns:
        The stored record.

    Raises:
        AlreadyExistsError: If ``record_id`` is taken.
        RecordTooLargeError: If the serialized record exceeds the type's ceiling.
        IndexMaintenanceError: If index writes failed after the record was stored.
    """
    keys.validate_type_name(type_name)
    config = registry.get_type_config(type_name)
    now = clock()
    record_id = record_id or id_factory(now)
    keys.validate_record_id(record_id)

    with _record_operation(type_name, "create", record_id):
        if await store.get(keys.object_key(type_name, record_id)) is not None:
            raise AlreadyExistsError(type_name, record_id)

        timestamp = format_timestamp(now)
        record = Record(
            id=record_id,
            type=type_name,
            created_at=timestamp,
            updated_at=timestamp,
            fields=strip_envelope(data),
        )
        payload = serialize_record(record)
        _check_size(payload, config)
        batch = plan_create_indexes(record, config)

        await store.put(keys.object_key(type_name, record_id), payload.decode("utf-8"))
        logger.debug("Created %s:%s", type_name, record_id)
        await batch.execute(store, "create")
        return record


async def update_record(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    record_id: str,
    data: Mapping[str, Any],
    *,
    clock: Clock = utc_now,
) -> Record:
    """Replace all fields of an existing record.

    ``createdAt`` is preserved, ``updatedAt`` is refreshed and only the
    derived-index keys that changed are touched.

    Raises:
        NotFoundError: If the record does not exist.
        RecordTooLargeError: If the serialized record exceeds the type's ceiling.
        IndexMaintenanceError: If index writes failed after the record was stored.
    """
    keys.validate_identifiers(type_name, record_id)
    config = registry.get_type_config(type_name)

    with _record_operation(type_name, "update", record_id):
        existing = await _load(store, type_name, record_id)
        if existing is None:
            raise NotFoundError(type_name, record_id)
        return await _replace(store, config, existing, strip_envelope(data), clock)


async def _replace(
    store: AbstractKeyValueStore,
    config: TypeConfig,
    existing: Record,
    fields: dict[str, Any],
    clock: Clock,
) -> Record:
    record = Record(
        id=existing.id,
        type=existing.type,
        created_at=existing.created_at,
        updated_at=format_timestamp(clock()),
        fields=fields,
    )
    payload = serialize_record(record)
    _check_size(payload, config)
    batch = plan_update_indexes(existing, record, config)

    await store.put(keys.object_key(record.type, record.id), payload.decode("utf-8"))
    logger.debug("Updated %s:%s (%d index operations)", record.type, record.id, len(batch))
    await batch.execute(store, "update")
    return record


async def patch_record(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    record_id: str,
    patch: Mapping[str, Any],
    *,
    clock: Clock = utc_now,
) -> Record:
    """Shallow-merge ``patch`` into an existing record.

    Patch values replace whole top-level values; nested objects and arrays are
    never merged.

    Raises:
        NotFoundError: If the record does not exist.
    """
    keys.validate_identifiers(type_name, record_id)
    config = registry.get_type_config(type_name)

    with _record_operation(type_name, "patch", record_id):
        existing = await _load(store, type_name, record_id)
        if existing is None:
            raise NotFoundError(type_name, record_id)
        merged = shallow_merge(existing.fields, strip_envelope(patch))
        return await _replace(store, config, existing, merged, clock)


async def delete_record(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    record_id: str,
) -> bool:
    """Delete a record and every index key it implies.

    Returns:
        True when a record was removed, False when it did not exist.
    """
    keys.validate_identifiers(type_name, record_id)
    config = registry.get_type_config(type_name)

    with _record_operation(type_name, "delete", record_id):
        existing = await _load(store, type_name, record_id)
        if existing is None:
            return False

        batch = plan_delete_indexes(existing, config)
        await store.delete(keys.object_key(type_name, record_id))
        logger.debug("Deleted %s:%s", type_name, record_id)
        await batch.execute(store, "delete")
        return True


async def upsert_record(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    record_id: str,
    data: Mapping[str, Any],
    *,
    clock: Clock = utc_now,
) -> UpsertResult:
    """Create the record when absent, otherwise replace it.

    The existence check and the write are separate store calls, so two
    concurrent upserts of a new id can both take the create branch.
    """
    keys.validate_identifiers(type_name, record_id)
    registry.get_type_config(type_name)

    if await store.get(keys.object_key(type_name, record_id)) is not None:
        record = await update_record(store, registry, type_name, record_id, data, clock=clock)
        return UpsertResult(record=record, operation="updated")

    record = await create_record(store, registry, type_name, data, record_id, clock=clock)
    return UpsertResult(record=record, operation="created")
