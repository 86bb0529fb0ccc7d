"""Derived-index maintenance for record writes.

Every mutation plans an ``IndexBatch`` (a list of key puts and deletes) and
executes it as one concurrent wave against the store. Planning is pure and
validates time fields, so a record with an unparseable timestamp is rejected
before anything is written.

There are no multi-key transactions underneath. If some operations of a batch
fail, the others still complete, the failure surfaces as
``IndexMaintenanceError`` and the derived indexes for that record stay
inconsistent. Updates only touch keys whose field or tokens changed, so a lost
key is rewritten only by a later write that changes that field, or removed by
a delete of the record.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any

from kv_query_engine.adapters.store import AbstractKeyValueStore
from kv_query_engine.domain.errors import IndexMaintenanceError, InvalidTimestampError
from kv_query_engine.domain.model import Record
from kv_query_engine.index import keys
from kv_query_engine.index.tokenizer import diff_token_sets, tokenize_fields
from kv_query_engine.observability.metrics import INDEX_FAILURES, INDEX_OPERATIONS
from kv_query_engine.registry import TypeConfig


logger = logging.getLogger(__name__)

INDEX_MARKER = "1"


@dataclass(slots=True)
class IndexBatch:
    """Pending index writes and deletes for one record."""

    type_name: str
    record_key: str
    puts: list[str] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)

    def put(self, key: str) -> None:
        self.puts.append(key)

    def delete(self, key: str) -> None:
        self.deletes.append(key)

    def __len__(self) -> int:
        return len(self.puts) + len(self.deletes)

    async def execute(self, store: AbstractKeyValueStore, operation: str) -> None:
        """Run every put and delete concurrently and wait for all of them.

        Raises:
            IndexMaintenanceError: If any operation failed; raised only after
                every operation has settled.
        """
        if not self:
            return

        results = await asyncio.gather(
            *(store.put(key, INDEX_MARKER) for key in self.puts),
            *(store.delete(key) for key in self.deletes),
            return_exceptions=True,
        )
        failures = [result for result in results if isinstance(result, BaseException)]

        if self.puts:
            INDEX_OPERATIONS.labels(type=self.type_name, action="put").inc(len(self.puts))
        if self.deletes:
            INDEX_OPERATIONS.labels(type=self.type_name, action="delete").inc(len(self.deletes))

        if failures:
            INDEX_FAILURES.labels(type=self.type_name).inc()
            logger.error(
                "Index %s for %s failed: %d of %d operations",
                operation,
                self.record_key,
                len(failures),
                len(self),
                exc_info=failures[0],
            )
            raise IndexMaintenanceError(self.record_key, operation, len(failures), len(self)) from failures[0]

        logger.debug(
            "Index %s for %s: %d puts, %d deletes",
            operation,
            self.record_key,
            len(self.puts),
            len(self.deletes),
        )


def _is_present(value: Any) -> bool:
    return value is not None


def _time_value(record: Record, field_name: str) -> str | None:
    value = record.get(field_name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidTimestampError(f"Field {field_name} must be an ISO-8601 string, got {type(value).__name__}")
    return value


def _equality_key(record: Record, field_name: str, config: TypeConfig) -> str | None:
    value = record.get(field_name)
    if not _is_present(value):
        return None
    return keys.equality_index_key(record.type, field_name, value, record.id, config.max_value_length)


def _time_keys(record: Record, field_name: str) -> tuple[str, str] | None:
    timestamp = _time_value(record, field_name)
    if timestamp is None:
        return None
    return (
        keys.time_index_key(record.type, field_name, timestamp, record.id),
        keys.reverse_time_index_key(record.type, field_name, timestamp, record.id),
    )


def _search_tokens(record: Record, config: TypeConfig) -> dict[str, frozenset[str]]:
    return tokenize_fields(record.to_dict(), config.search_fields, config.effective_stopwords)


def _all_index_keys(record: Record, config: TypeConfig, *, strict: bool) -> list[str]:
    record_key = keys.object_key(record.type, record.id)
    result: list[str] = []

    for field_name in config.indexed_fields:
        key = _equality_key(record, field_name, config)
        if key is not None:
            result.append(key)

    for field_name in config.time_fields:
        try:
            pair = _time_keys(record, field_name)
        except InvalidTimestampError:
            if strict:
                raise
            # An unparseable timestamp never produced an index key.
            logger.warning("Skipping unparseable %s on %s", field_name, record_key)
            continue
        if pair is not None:
            result.extend(pair)

    for field_name, tokens in _search_tokens(record, config).items():
        result.extend(keys.inverted_index_key(record.type, field_name, token, record.id) for token in sorted(tokens))

    return result


def plan_create_indexes(record: Record, config: TypeConfig) -> IndexBatch:
    """Every index key implied by ``record``, as puts.

    Raises:
        InvalidTimestampError: If a time field holds something other than an
            ISO-8601 string.
    """
    return IndexBatch(
        type_name=record.type,
        record_key=keys.object_key(record.type, record.id),
        puts=_all_index_keys(record, config, strict=True),
    )


def plan_update_indexes(old: Record, new: Record, config: TypeConfig) -> IndexBatch:
    """Only the index changes between ``old`` and ``new``.

    A full rebuild touches every indexed field and every token twice. The diff
    touches only fields whose key changed and tokens that were added or
    removed, so an update of one field on a record with a long description
    costs a handful of operations instead of dozens.
    """
    batch = IndexBatch(type_name=new.type, record_key=keys.object_key(new.type, new.id))

    for field_name in config.indexed_fields:
        old_key = _equality_key(old, field_name, config)
        new_key = _equality_key(new, field_name, config)
        if old_key == new_key:
            continue
        if old_key is not None:
            batch.delete(old_key)
        if new_key is not None:
            batch.put(new_key)

    for field_name in config.time_fields:
        new_pair = _time_keys(new, field_name)
        try:
            old_pair = _time_keys(old, field_name)
        except InvalidTimestampError:
            # An unparseable stored timestamp was never indexed.
            old_pair = None
        if old_pair == new_pair:
            continue
        if old_pair is not None:
            batch.delete(old_pair[0])
            batch.delete(old_pair[1])
        if new_pair is not None:
            batch.put(new_pair[0])
            batch.put(new_pair[1])

    old_tokens = _search_tokens(old, config)
    new_tokens = _search_tokens(new, config)
    for field_name in config.search_fields:
        diff = diff_token_sets(old_tokens.get(field_name, frozenset()), new_tokens.get(field_name, frozenset()))
        if diff.is_empty:
            continue
        for token in sorted(diff.removed):
            batch.delete(keys.inverted_index_key(new.type, field_name, token, new.id))
        for token in sorted(diff.added):
            batch.put(keys.inverted_index_key(new.type, field_name, token, new.id))

    return batch


def plan_delete_indexes(record: Record, config: TypeConfig) -> IndexBatch:
    """Every index key implied by ``record``, as deletes."""
    return IndexBatch(
        type_name=record.type,
        record_key=keys.object_key(record.type, record.id),
        deletes=_all_index_keys(record, config, strict=False),
    )


async def create_indexes(store: AbstractKeyValueStore, record: Record, config: TypeConfig) -> None:
    await plan_create_indexes(record, config).execute(store, "create")


async def update_indexes(store: AbstractKeyValueStore, old: Record, new: Record, config: TypeConfig) -> None:
    await plan_update_indexes(old, new, config).execute(store, "update")


async def delete_indexes(store: AbstractKeyValueStore, record: Record, config: TypeConfig) -> None:
    await plan_delete_indexes(record, config).execute(store, "delete")
