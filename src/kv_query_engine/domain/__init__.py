"""Domain layer: record entity, query value objects and the error taxonomy.

Nothing here touches the key-value store; adapters and the service layer
depend on this package, never the other way round.
"""

from kv_query_engine.domain.errors import (
    AlreadyExistsError,
    IndexMaintenanceError,
    InvalidCursorError,
    InvalidIdentifierError,
    InvalidQueryError,
    InvalidSortError,
    InvalidTimestampError,
    KVEngineError,
    NotFoundError,
    RecordTooLargeError,
    TooManyItemsError,
    UnknownTypeError,
)
from kv_query_engine.domain.model import (
    ENVELOPE_FIELDS,
    Record,
    epoch_millis,
    format_timestamp,
    generate_record_id,
    parse_timestamp,
    shallow_merge,
    strip_envelope,
    utc_now,
)
from kv_query_engine.domain.query import (
    BulkItemResult,
    BulkResult,
    QueryFilter,
    QueryOptions,
    QueryResult,
    SortSpec,
    UpsertResult,
)


__all__ = [
    "ENVELOPE_FIELDS",
    "AlreadyExistsError",
    "BulkItemResult",
    "BulkResult",
    "IndexMaintenanceError",
    "InvalidCursorError",
    "InvalidIdentifierError",
    "InvalidQueryError",
    "InvalidSortError",
    "InvalidTimestampError",
    "KVEngineError",
    "NotFoundError",
    "QueryFilter",
    "QueryOptions",
    "QueryResult",
    "Record",
    "RecordTooLargeError",
    "SortSpec",
    "TooManyItemsError",
    "UnknownTypeError",
    "UpsertResult",
    "epoch_millis",
    "format_timestamp",
    "generate_record_id",
    "parse_timestamp",
    "shallow_merge",
    "strip_envelope",
    "utc_now",
]
