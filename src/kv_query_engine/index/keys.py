"""Deterministic key schema for primary records and derived indexes.

Key layout (all segments colon-delimited)::

    obj:<type>:<id>                          primary record
    idx:<type>:<field>:<value>:<id>          equality index
    ts:<type>:<field>:<timestamp>:<id>       ascending time index
    ts-desc:<type>:<field>:<reverse>:<id>    descending time index
    inv:<type>:<field>:<token>:<id>          inverted search index

Every builder is pure. Values embedded in equality keys are stringified,
truncated to the type's ``max_value_length`` and then escaped so that they can
never contain the delimiter; the same function runs at write time and when a
query builds its prefix, so both sides always agree.
"""

from __future__ import annotations

from datetime import datetime, timezone
import re
from typing import Any

import orjson

from kv_query_engine.domain.errors import InvalidIdentifierError, InvalidTimestampError
from kv_query_engine.domain.model import epoch_millis, parse_timestamp


OBJECT_NAMESPACE = "obj"
EQUALITY_NAMESPACE = "idx"
TIME_NAMESPACE = "ts"
REVERSE_TIME_NAMESPACE = "ts-desc"
INVERTED_NAMESPACE = "inv"

KEY_DELIMITER = ":"

MAX_TYPE_LENGTH = 50
MAX_ID_LENGTH = 200
_SAFE_IDENTIFIER = re.compile(r"^[A-Za-z0-9_-]+$")

# Descending time keys store PIVOT - t. Timestamps at or after the pivot give a
# zero or negative difference and do not sort correctly (known limitation).
REVERSE_PIVOT = datetime(2099, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc)
REVERSE_PIVOT_MS = epoch_millis(REVERSE_PIVOT)
REVERSE_TIMESTAMP_WIDTH = 20


def validate_type_name(type_name: str) -> None:
    if not isinstance(type_name, str) or not _SAFE_IDENTIFIER.match(type_name):
        raise InvalidIdentifierError(f"Invalid type: {type_name}. Must match [a-zA-Z0-9_-]+")
    if len(type_name) > MAX_TYPE_LENGTH:
        raise InvalidIdentifierError(f"Type too long: {len(type_name)} chars (max {MAX_TYPE_LENGTH})")


def validate_record_id(record_id: str) -> None:
    if not isinstance(record_id, str) or not _SAFE_IDENTIFIER.match(record_id):
        raise InvalidIdentifierError(f"Invalid id: {record_id}. Must match [a-zA-Z0-9_-]+")
    if len(record_id) > MAX_ID_LENGTH:
        raise InvalidIdentifierError(f"ID too long: {len(record_id)} chars (max {MAX_ID_LENGTH})")


def validate_identifiers(type_name: str, record_id: str) -> None:
    """Ensure both identifiers are safe to embed in keys.

    Raises:
        InvalidIdentifierError: If either identifier fails the charset or length bounds.
    """
    validate_type_name(type_name)
    validate_record_id(record_id)


def stringify_value(value: Any) -> str:
    """Render an indexed value the way it is embedded in keys.

    Booleans become ``true``/``false``, integral floats drop their fractional
    part, containers become compact JSON with sorted keys.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    return str(value)


def _escape_segment(segment: str) -> str:
    return segment.replace("%", "%25").replace(KEY_DELIMITER, "%3A")


def encode_index_value(value: Any, max_value_length: int) -> str:
    """Stringify, truncate and escape a value for an equality key."""
    return _escape_segment(stringify_value(value)[:max_value_length])


def reverse_timestamp(timestamp: str) -> str:
    """Encode ``timestamp`` so ascending key order is descending time order.

    Raises:
        InvalidTimestampError: If the value is not an ISO-8601 timestamp.
    """
    try:
        moment = parse_timestamp(timestamp)
    except (TypeError, ValueError) as exc:
        raise InvalidTimestampError(f"Invalid timestamp: {timestamp!r}") from exc
    reverse = REVERSE_PIVOT_MS - epoch_millis(moment)
    return str(reverse).rjust(REVERSE_TIMESTAMP_WIDTH, "0")


def object_key(type_name: str, record_id: str) -> str:
    return f"{OBJECT_NAMESPACE}:{type_name}:{record_id}"


def object_prefix(type_name: str) -> str:
    return f"{OBJECT_NAMESPACE}:{type_name}:"


def equality_index_prefix(type_name: str, field: str, value: Any, max_value_length: int) -> str:
    encoded = encode_index_value(value, max_value_length)
    return f"{EQUALITY_NAMESPACE}:{type_name}:{field}:{encoded}:"


def equality_index_key(type_name: str, field: str, value: Any, record_id: str, max_value_length: int) -> str:
    return equality_index_prefix(type_name, field, value, max_value_length) + record_id


def time_index_prefix(type_name: str, field: str) -> str:
    return f"{TIME_NAMESPACE}:{type_name}:{field}:"


def time_index_key(type_name: str, field: str, timestamp: str, record_id: str) -> str:
    # The timestamp is validated here too so that both index directions reject
    # the same values.
    reverse_timestamp(timestamp)
    return f"{time_index_prefix(type_name, field)}{timestamp}:{record_id}"


def reverse_time_index_prefix(type_name: str, field: str) -> str:
    return f"{REVERSE_TIME_NAMESPACE}:{type_name}:{field}:"


def reverse_time_index_key(type_name: str, field: str, timestamp: str, record_id: str) -> str:
    return f"{reverse_time_index_prefix(type_name, field)}{reverse_timestamp(timestamp)}:{record_id}"


def inverted_index_prefix(type_name: str, field: str, token: str) -> str:
    # Tokens come out of the tokenizer as [a-z0-9]+ and need no escaping.
    return f"{INVERTED_NAMESPACE}:{type_name}:{field}:{token}:"


def inverted_index_key(type_name: str, field: str, token: str, record_id: str) -> str:
    return inverted_index_prefix(type_name, field, token) + record_id


def extract_id_from_key(key: str) -> str:
    return key.rsplit(KEY_DELIMITER, 1)[-1]
