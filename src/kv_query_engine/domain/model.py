"""Record entity and timestamp helpers.

A record is a fixed envelope (``id``, ``type``, ``createdAt``, ``updatedAt``)
plus an open map of caller-defined fields. The wire shape flattens both into a
single JSON object, which is what ``to_dict``/``from_dict`` translate.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import secrets
from typing import Any


ENVELOPE_FIELDS = frozenset({"id", "type", "createdAt", "updatedAt"})

_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_ID_SUFFIX_LENGTH = 11
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Fixed width and UTC so that lexicographic order equals chronological order.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    rendered = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string, treating naive values as UTC.

    Raises:
        ValueError: If the value is not an ISO-8601 timestamp.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits: list[str] = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_record_id(moment: datetime | None = None) -> str:
    """Generate ``<epoch-millis>-<random base36 suffix>``."""
    moment = moment or utc_now()
    suffix = _to_base36(secrets.randbits(64)).rjust(_ID_SUFFIX_LENGTH, "0")[:_ID_SUFFIX_LENGTH]
    return f"{epoch_millis(moment)}-{suffix}"


def strip_envelope(data: Mapping[str, Any]) -> dict[str, Any]:
    """Drop envelope keys from caller-supplied data; the engine owns them."""
    return {key: value for key, value in data.items() if key not in ENVELOPE_FIELDS}


def shallow_merge(existing: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``patch`` over ``existing`` one level deep.

    Values in the patch replace whole values: nested objects and arrays are
    swapped wholesale, never merged key by key.
    """
    merged = dict(existing)
    merged.update(patch)
    return merged


@dataclass(slots=True, frozen=True)
class Record:
    """A stored record: envelope plus open field map."""

    id: str
    type: str
    created_at: str
    updated_at: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        """Look up a field by its wire name, envelope included."""
        if name == "id":
            return self.id
        if name == "type":
            return self.type
        if name == "createdAt":
            return self.created_at
        if name == "updatedAt":
            return self.updated_at
        return self.fields.get(name, default)

    def __getitem__(self, name: str) -> Any:
        if name not in ENVELOPE_FIELDS and name not in self.fields:
            raise KeyError(name)
        return self.get(name)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.fields)
        data["id"] = self.id
        data["type"] = self.type
        data["createdAt"] = self.created_at
        data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Record:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            created_at=str(data.get("createdAt", "")),
            updated_at=str(data.get("updatedAt", "")),
            fields=strip_envelope(data),
        )
