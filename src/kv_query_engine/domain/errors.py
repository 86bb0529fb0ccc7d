"""Error taxonomy for the record engine.

Every error raised by the engine derives from ``KVEngineError`` and carries a
short machine-readable ``code`` so outer layers can map failures to responses
without string matching on messages.
"""

from __future__ import annotations


class KVEngineError(Exception):
    """Base error for the record engine."""

    code = "engine_error"


class UnknownTypeError(KVEngineError, LookupError):
    """Raised when a type name is not registered."""

    code = "unknown_type"

    def __init__(self, type_name: str, valid_types: list[str] | None = None) -> None:
        self.type_name = type_name
        self.valid_types = sorted(valid_types or [])
        message = f"Unknown type: {type_name}"
        if self.valid_types:
            message = f"{message}. Valid types: {', '.join(self.valid_types)}"
        super().__init__(message)


class InvalidIdentifierError(KVEngineError, ValueError):
    """Raised when a type name or record id is unsafe for use in keys."""

    code = "invalid_identifier"


class AlreadyExistsError(KVEngineError):
    """Raised when creating a record whose id is already taken."""

    code = "already_exists"

    def __init__(self, type_name: str, record_id: str) -> None:
        self.type_name = type_name
        self.record_id = record_id
        super().__init__(f"Record already exists: {type_name}:{record_id}")


class NotFoundError(KVEngineError, LookupError):
    """Raised when updating or patching a record that does not exist."""

    code = "not_found"

    def __init__(self, type_name: str, record_id: str) -> None:
        self.type_name = type_name
        self.record_id = record_id
        super().__init__(f"Record not found: {type_name}:{record_id}")


class RecordTooLargeError(KVEngineError, ValueError):
    """Raised when a serialized record exceeds the type's size ceiling."""

    code = "record_too_large"

    def __init__(self, size: int, max_size: int) -> None:
        self.size = size
        self.max_size = max_size
        super().__init__(f"Record too large: {size} bytes (max {max_size})")


class InvalidSortError(KVEngineError, ValueError):
    """Raised when sorting on a field that has no time index."""

    code = "invalid_sort"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Cannot sort by {field}: not a time-indexed field")


class TooManyItemsError(KVEngineError, ValueError):
    """Raised when a bulk payload exceeds the per-call item ceiling."""

    code = "too_many_items"

    def __init__(self, count: int, max_items: int) -> None:
        self.count = count
        self.max_items = max_items
        super().__init__(f"Too many items: {count} (max {max_items} per bulk operation)")


class InvalidCursorError(KVEngineError, ValueError):
    """Raised when a pagination cursor cannot be decoded or does not fit the query."""

    code = "invalid_cursor"


class InvalidTimestampError(KVEngineError, ValueError):
    """Raised when a time-indexed field does not hold an ISO-8601 timestamp."""

    code = "invalid_timestamp"


class InvalidQueryError(KVEngineError, ValueError):
    """Raised for query shapes the engine refuses to run."""

    code = "invalid_query"


class IndexMaintenanceError(KVEngineError):
    """Raised when a derived-index batch fails after the primary write.

    The primary record may already be durable when this is raised. Nothing is
    rolled back or retried. A missing index key comes back only when a later
    write changes that field; a delete of the record clears what remains.
    """

    code = "index_maintenance_failed"

    def __init__(self, record_key: str, operation: str, failed: int, total: int) -> None:
        self.record_key = record_key
        self.operation = operation
        self.failed = failed
        self.total = total
        super().__init__(
            f"Index {operation} for {record_key} failed: {failed} of {total} operations did not complete"
        )
