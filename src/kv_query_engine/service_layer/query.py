"""Query execution over derived indexes.

Plain listings (no filters, search or sort) page straight through the primary
``obj:`` keys using the store's own cursor. Everything else resolves candidate
ids from index prefixes, orders them, and pages through the ordered list with
an offset cursor:

* AND filters scan one equality prefix each and intersect smallest-first.
* OR filters scan the same way and are unioned with the base set.
* Search tokenizes ``q`` and unions the ids found under any token.
* Sort walks the ascending or descending time index and keeps candidates in
  key order.

Every scan pages through the store to exhaustion, bounded by
``Settings.max_scan_keys``. Scans run concurrently with no snapshot isolation.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from collections.abc import Awaitable, Iterable, Sequence
import logging
from typing import Any

import orjson

from kv_query_engine.adapters.store import AbstractKeyValueStore
from kv_query_engine.config import Settings
from kv_query_engine.domain.errors import InvalidCursorError, InvalidSortError
from kv_query_engine.domain.model import Record
from kv_query_engine.domain.query import QueryFilter, QueryOptions, QueryResult, SortSpec
from kv_query_engine.index import keys
from kv_query_engine.index.ranking import SearchHit, rank_search_results
from kv_query_engine.index.tokenizer import tokenize
from kv_query_engine.observability.context import bind_record_type
from kv_query_engine.observability.metrics import QUERY_LATENCY, track_latency
from kv_query_engine.observability.tracing import create_span
from kv_query_engine.registry import TypeConfig, TypeRegistry
from kv_query_engine.service_layer.records import deserialize_record


logger = logging.getLogger(__name__)

_STORE_CURSOR = "store"
_OFFSET_CURSOR = "offset"


def encode_cursor(payload: dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(orjson.dumps(payload)).decode("ascii")


def decode_cursor(token: str, expected_mode: str) -> dict[str, Any]:
    """Decode an opaque cursor produced by ``encode_cursor``.

    Raises:
        InvalidCursorError: If the token is malformed or belongs to the other
            pagination path.
    """
    try:
        payload = orjson.loads(base64.urlsafe_b64decode(token.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise InvalidCursorError("Cursor is not a valid pagination token") from exc

    if not isinstance(payload, dict) or payload.get("m") not in (_STORE_CURSOR, _OFFSET_CURSOR):
        raise InvalidCursorError("Cursor is not a valid pagination token")
    if payload["m"] != expected_mode:
        raise InvalidCursorError("Cursor was issued for a different query")
    return payload


async def scan_keys(store: AbstractKeyValueStore, prefix: str, settings: Settings) -> list[str]:
    """Collect every key under ``prefix``, following store cursors.

    Stops at ``settings.max_scan_keys`` and logs a warning when that cap cuts
    the scan short.
    """
    collected: list[str] = []
    cursor: str | None = None
    while True:
        page = await store.list(prefix, settings.scan_page_size, cursor)
        collected.extend(page.keys)
        if len(collected) >= settings.max_scan_keys:
            if len(collected) > settings.max_scan_keys or not page.is_complete:
                logger.warning(
                    "Scan of %s truncated at %d keys",
                    prefix,
                    settings.max_scan_keys,
                    extra={"scan_prefix": prefix},
                )
            return collected[: settings.max_scan_keys]
        if page.is_complete or page.cursor is None:
            return collected
        cursor = page.cursor


async def scan_ids(store: AbstractKeyValueStore, prefix: str, settings: Settings) -> list[str]:
    return [keys.extract_id_from_key(key) for key in await scan_keys(store, prefix, settings)]


async def resolve_filter_ids(
    store: AbstractKeyValueStore,
    type_name: str,
    config: TypeConfig,
    query_filter: QueryFilter,
    settings: Settings,
) -> set[str]:
    """Ids whose ``query_filter.field`` equals ``query_filter.value``."""
    if query_filter.field not in config.indexed_fields:
        logger.warning("Filter on unindexed field %s.%s matches nothing", type_name, query_filter.field)
        return set()
    prefix = keys.equality_index_prefix(type_name, query_filter.field, query_filter.value, config.max_value_length)
    return set(await scan_ids(store, prefix, settings))


async def resolve_and_ids(
    store: AbstractKeyValueStore,
    type_name: str,
    config: TypeConfig,
    filters: Sequence[QueryFilter],
    settings: Settings,
) -> set[str]:
    """Intersect the id sets of every filter, smallest set first."""
    if not filters:
        return set()

    id_sets = await asyncio.gather(
        *(resolve_filter_ids(store, type_name, config, query_filter, settings) for query_filter in filters)
    )
    ordered = sorted(id_sets, key=len)
    result = set(ordered[0])
    for id_set in ordered[1:]:
        if not result:
            break
        result &= id_set
    return result


async def resolve_or_ids(
    store: AbstractKeyValueStore,
    type_name: str,
    config: TypeConfig,
    filters: Sequence[QueryFilter],
    settings: Settings,
) -> set[str]:
    id_sets = await asyncio.gather(
        *(resolve_filter_ids(store, type_name, config, query_filter, settings) for query_filter in filters)
    )
    result: set[str] = set()
    for id_set in id_sets:
        result |= id_set
    return result


async def resolve_search_ids(
    store: AbstractKeyValueStore,
    type_name: str,
    config: TypeConfig,
    text: str,
    fields: Sequence[str] | None,
    settings: Settings,
) -> tuple[set[str], list[SearchHit], frozenset[str]]:
    """Ids matching any token of ``text`` in any of the searched fields.

    Returns:
        The matching ids, per-field hits for ranking, and the query tokens.
    """
    tokens = tokenize(text, config.effective_stopwords)
    if not tokens:
        return set(), [], tokens

    searched: list[str] = []
    for field_name in fields if fields is not None else config.search_fields:
        if field_name in config.search_fields:
            searched.append(field_name)
        else:
            logger.warning("Search on unindexed field %s.%s matches nothing", type_name, field_name)

    pairs = [(token, field_name) for token in sorted(tokens) for field_name in searched]
    id_lists = await asyncio.gather(
        *(
            scan_ids(store, keys.inverted_index_prefix(type_name, field_name, token), settings)
            for token, field_name in pairs
        )
    )

    matched: dict[tuple[str, str], set[str]] = {}
    for (token, field_name), ids in zip(pairs, id_lists, strict=True):
        for record_id in ids:
            matched.setdefault((record_id, field_name), set()).add(token)

    hits = [
        SearchHit(id=record_id, field=field_name, tokens=frozenset(found))
        for (record_id, field_name), found in matched.items()
    ]
    return {hit.id for hit in hits}, hits, tokens


async def order_by_time(
    store: AbstractKeyValueStore,
    type_name: str,
    sort: SortSpec,
    candidates: set[str],
    settings: Settings,
) -> list[str]:
    """Candidates in time-index order; ones without a value for the field drop out."""
    if sort.direction == "asc":
        prefix = keys.time_index_prefix(type_name, sort.field)
    else:
        prefix = keys.reverse_time_index_prefix(type_name, sort.field)

    ordered: list[str] = []
    seen: set[str] = set()
    for record_id in await scan_ids(store, prefix, settings):
        if record_id in candidates and record_id not in seen:
            seen.add(record_id)
            ordered.append(record_id)
    return ordered


async def fetch_records(store: AbstractKeyValueStore, type_name: str, ids: Iterable[str]) -> list[Record]:
    """Fetch records concurrently, dropping ids whose record is gone."""
    raw_values = await asyncio.gather(*(store.get(keys.object_key(type_name, record_id)) for record_id in ids))
    return [deserialize_record(raw) for raw in raw_values if raw is not None]


def _page_start(ordered: Sequence[str], cursor: str | None) -> int:
    if cursor is None:
        return 0
    payload = decode_cursor(cursor, _OFFSET_CURSOR)
    offset = payload.get("o")
    next_id = payload.get("id")
    if not isinstance(offset, int) or offset < 0 or not isinstance(next_id, str):
        raise InvalidCursorError("Cursor is not a valid pagination token")

    # Ids may have shifted since the previous page; prefer re-finding the id.
    if offset < len(ordered) and ordered[offset] == next_id:
        return offset
    try:
        return ordered.index(next_id)
    except ValueError:
        return offset


async def _list_page(
    store: AbstractKeyValueStore,
    type_name: str,
    limit: int,
    cursor: str | None,
) -> QueryResult:
    native_cursor = None
    if cursor is not None:
        native_cursor = decode_cursor(cursor, _STORE_CURSOR).get("c")
        if not isinstance(native_cursor, str):
            raise InvalidCursorError("Cursor is not a valid pagination token")

    page = await store.list(keys.object_prefix(type_name), limit, native_cursor)
    records = await fetch_records(store, type_name, (keys.extract_id_from_key(key) for key in page.keys))
    has_more = not page.is_complete and page.cursor is not None
    next_cursor = encode_cursor({"m": _STORE_CURSOR, "c": page.cursor}) if has_more else None
    return QueryResult(records=records, cursor=next_cursor, has_more=has_more)


async def _resolve_candidates(
    store: AbstractKeyValueStore,
    type_name: str,
    config: TypeConfig,
    options: QueryOptions,
    settings: Settings,
) -> tuple[set[str], list[SearchHit], frozenset[str]]:
    and_filters = options.and_filters
    hits: list[SearchHit] = []
    tokens: frozenset[str] = frozenset()

    pending: list[Awaitable[Any]] = []
    if options.q:
        pending.append(resolve_search_ids(store, type_name, config, options.q, options.search_fields, settings))
    if and_filters:
        pending.append(resolve_and_ids(store, type_name, config, and_filters, settings))
    if options.or_:
        pending.append(resolve_or_ids(store, type_name, config, options.or_, settings))
    if not pending:
        # Sort without any filter ranges over the whole type.
        return set(await scan_ids(store, keys.object_prefix(type_name), settings)), hits, tokens

    results = list(await asyncio.gather(*pending))

    base: set[str] = set()
    if options.q:
        base, hits, tokens = results.pop(0)
        if and_filters:
            base &= results.pop(0)
    elif and_filters:
        base = results.pop(0)

    or_ids: set[str] = results.pop(0) if options.or_ else set()
    return base | or_ids, hits, tokens


async def _order_candidates(
    store: AbstractKeyValueStore,
    type_name: str,
    options: QueryOptions,
    candidates: set[str],
    hits: list[SearchHit],
    tokens: frozenset[str],
    settings: Settings,
) -> list[str]:
    if options.sort is not None:
        return await order_by_time(store, type_name, options.sort, candidates, settings)

    # Search hits the AND filters removed are not candidates and never rank.
    candidate_hits = [hit for hit in hits if hit.id in candidates]
    if options.rank and candidate_hits:
        records = await fetch_records(store, type_name, sorted(candidates))
        ranked = rank_search_results(
            candidate_hits,
            tokens,
            records,
            half_life_days=settings.ranking_half_life_days,
        )
        ordered = [hit.id for hit in ranked if hit.id in candidates]
        ranked_ids = set(ordered)
        # OR matches without a search hit score nothing and trail the ranked ones.
        ordered.extend(sorted(candidates - ranked_ids))
        return ordered

    return sorted(candidates)


async def execute_query(
    store: AbstractKeyValueStore,
    registry: TypeRegistry,
    type_name: str,
    options: QueryOptions | None = None,
    settings: Settings | None = None,
) -> QueryResult:
    """Run a query against one record type.

    Args:
        store: Primitive key-value store
        registry: Type registry
        type_name: Registered record type
        options: Filters, search, sort and pagination; None lists the type
        settings: Limits and scan bounds; defaults to ``Settings()``

    Returns:
        QueryResult with the page of records and the cursor for the next page.

    Raises:
        UnknownTypeError: If the type is not registered.
        InvalidSortError: If sorting on a field without a time index.
        InvalidCursorError: If the cursor is malformed or from another query path.
    """
    settings = settings or Settings()
    options = options or QueryOptions()
    keys.validate_type_name(type_name)
    config = registry.get_type_config(type_name)

    if options.sort is not None and options.sort.field not in config.time_fields:
        raise InvalidSortError(options.sort.field)

    limit = min(options.limit or settings.default_query_limit, settings.max_query_limit)
    path = "list" if options.is_plain_listing else "index"
    bind_record_type(type_name)

    with (
        create_span("kv.query", attributes={"kv.type": type_name, "kv.query.path": path}),
        track_latency(QUERY_LATENCY, type=type_name, path=path),
    ):
        if options.is_plain_listing:
            return await _list_page(store, type_name, limit, options.cursor)

        candidates, hits, tokens = await _resolve_candidates(store, type_name, config, options, settings)
        ordered = await _order_candidates(store, type_name, options, candidates, hits, tokens, settings)

        start = _page_start(ordered, options.cursor)
        page_ids = ordered[start : start + limit]
        records = await fetch_records(store, type_name, page_ids)

        end = start + limit
        has_more = end < len(ordered)
        next_cursor = encode_cursor({"m": _OFFSET_CURSOR, "o": end, "id": ordered[end]}) if has_more else None
        logger.debug(
            "Query on %s matched %d ids, returning %d",
            type_name,
            len(ordered),
            len(records),
            extra={"query_path": path},
        )
        return QueryResult(records=records, cursor=next_cursor, has_more=has_more)
