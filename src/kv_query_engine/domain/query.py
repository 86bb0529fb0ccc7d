"""Value objects for queries and bulk results.

Query inputs are Pydantic models so malformed options fail at the boundary;
results are plain dataclasses built by the service layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from kv_query_engine.domain.model import Record


FilterValue = bool | int | float | str


class QueryFilter(BaseModel):
    """Equality filter: ``field == value``."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(min_length=1)
    value: FilterValue


class SortSpec(BaseModel):
    """Chronological sort on a time-indexed field."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(min_length=1)
    direction: Literal["asc", "desc"] = "asc"


class QueryOptions(BaseModel):
    """Options accepted by the query executor.

    ``where`` and ``and`` are both implicit-AND filters; ``or`` filters are
    resolved separately and unioned with the AND (or search) result. This is a
    plain union of two sets, not nested boolean composition.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    where: list[QueryFilter] = Field(default_factory=list)
    and_: list[QueryFilter] = Field(default_factory=list, alias="and")
    or_: list[QueryFilter] = Field(default_factory=list, alias="or")
    q: str | None = None
    search_fields: list[str] | None = Field(default=None, alias="searchFields")
    sort: SortSpec | None = None
    limit: int | None = Field(default=None, ge=1)
    cursor: str | None = None
    rank: bool = False

    @property
    def and_filters(self) -> list[QueryFilter]:
        return [*self.where, *self.and_]

    @property
    def is_plain_listing(self) -> bool:
        """True when the query can be served by a direct scan of primary keys."""
        return not (self.where or self.and_ or self.or_ or self.q or self.sort)


@dataclass(slots=True)
class QueryResult:
    records: list[Record]
    cursor: str | None
    has_more: bool

    @property
    def count(self) -> int:
        return len(self.records)

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [record.to_dict() for record in self.records],
            "cursor": self.cursor,
            "hasMore": self.has_more,
            "count": self.count,
        }


@dataclass(slots=True, frozen=True)
class UpsertResult:
    record: Record
    operation: Literal["created", "updated"]


@dataclass(slots=True, frozen=True)
class BulkItemResult:
    ok: bool
    id: str
    operation: Literal["created", "updated", "deleted"] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": self.ok, "id": self.id}
        if self.operation is not None:
            data["operation"] = self.operation
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class BulkResult:
    results: list[BulkItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.results if item.ok)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.results if not item.ok)

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [item.to_dict() for item in self.results],
            "succeeded": self.succeeded,
            "failed": self.failed,
        }
