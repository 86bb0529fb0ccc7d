"""Type registry: the closed set of record types and their index configuration.

The registry is built once at start-up and passed explicitly into every engine
entry point. It never grows at runtime: an unregistered type name is rejected,
never auto-created.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kv_query_engine.domain.errors import UnknownTypeError
from kv_query_engine.index.keys import validate_type_name


logger = logging.getLogger(__name__)

DEFAULT_MAX_VALUE_LENGTH = 1000

DEFAULT_STOPWORDS: tuple[str, ...] = (
    "the",
    "a",
    "an",
    "and",
    "or",
    "but",
    "in",
    "on",
    "at",
    "to",
    "for",
    "of",
    "with",
    "by",
    "from",
    "as",
    "is",
    "was",
    "are",
    "were",
    "been",
    "be",
    "have",
    "has",
    "had",
    "do",
    "does",
    "did",
    "will",
    "would",
    "should",
    "could",
    "may",
    "might",
    "must",
    "can",
    "this",
    "that",
    "these",
    "those",
)


class TypeConfig(BaseModel):
    """Indexing rules for one record type.

    Field lists name the record fields that receive an equality index, a pair
    of time indexes, or an inverted search index respectively.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    indexed_fields: Annotated[
        tuple[str, ...],
        Field(alias="indexedFields", description="Fields with an equality index (WHERE field=value)"),
    ] = ()

    time_fields: Annotated[
        tuple[str, ...],
        Field(alias="timeFields", description="ISO-8601 fields with ascending and descending time indexes"),
    ] = ()

    search_fields: Annotated[
        tuple[str, ...],
        Field(alias="searchFields", description="Text fields with an inverted search index"),
    ] = ()

    stopwords: Annotated[
        tuple[str, ...] | None,
        Field(description="Tokens dropped from search indexing; None falls back to the default list"),
    ] = None

    max_value_length: Annotated[
        int,
        Field(alias="maxValueLength", ge=1, description="Truncation bound for equality-indexed values"),
    ] = DEFAULT_MAX_VALUE_LENGTH

    max_record_size: Annotated[
        int | None,
        Field(alias="maxRecordSize", ge=1, description="Ceiling in bytes for the serialized record"),
    ] = None

    @property
    def effective_stopwords(self) -> frozenset[str]:
        if self.stopwords is None:
            return frozenset(DEFAULT_STOPWORDS)
        return frozenset(self.stopwords)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class TypeRegistry(Mapping[str, TypeConfig]):
    """Immutable mapping of type name to ``TypeConfig``."""

    def __init__(self, configs: Mapping[str, TypeConfig]) -> None:
        self._configs = MappingProxyType(dict(configs))

    def __getitem__(self, type_name: str) -> TypeConfig:
        return self._configs[type_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._configs)

    def __len__(self) -> int:
        return len(self._configs)

    def __repr__(self) -> str:
        return f"TypeRegistry({sorted(self._configs)})"

    def get_type_config(self, type_name: str) -> TypeConfig:
        """Return the configuration for ``type_name``.

        Raises:
            UnknownTypeError: If the type is not registered.
        """
        config = self._configs.get(type_name)
        if config is None:
            raise UnknownTypeError(type_name, list(self._configs))
        return config

    def describe(self) -> dict[str, dict[str, Any]]:
        """Return every registered type with its configuration in wire form."""
        return {name: config.to_dict() for name, config in sorted(self._configs.items())}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TypeRegistry:
        return RegistryDocument.model_validate({"types": data}).to_registry()

    @classmethod
    def from_json_file(cls, path: Path) -> TypeRegistry:
        """Load the registry from a JSON document.

        The document is either ``{"types": {...}}`` or the bare mapping of type
        name to configuration.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the document is invalid.
        """
        if not path.exists():
            raise FileNotFoundError(f"Type registry not found: {path}")

        with path.open(encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, dict) and "types" not in data:
            data = {"types": data}
        registry = RegistryDocument.model_validate(data).to_registry()
        logger.info("Loaded %d record types from %s", len(registry), path)
        return registry


class RegistryDocument(BaseModel):
    """Schema of the registry JSON document."""

    model_config = ConfigDict(extra="forbid")

    types: Annotated[dict[str, TypeConfig], Field(min_length=1)]

    @model_validator(mode="after")
    def validate_type_names(self) -> RegistryDocument:
        for name in self.types:
            validate_type_name(name)
        return self

    def to_registry(self) -> TypeRegistry:
        return TypeRegistry(self.types)


DEFAULT_TYPE_CONFIGS: dict[str, TypeConfig] = {
    "prompt": TypeConfig(
        indexed_fields=("category", "isActive", "version"),
        time_fields=("createdAt", "updatedAt"),
        search_fields=("name", "description", "content"),
        stopwords=("the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for"),
        max_value_length=1000,
        max_record_size=100 * 1024,
    ),
    "config": TypeConfig(
        indexed_fields=("environment", "category", "isActive"),
        time_fields=("createdAt", "updatedAt"),
        search_fields=("key", "description"),
        max_value_length=500,
        max_record_size=50 * 1024,
    ),
    "user": TypeConfig(
        indexed_fields=("email", "role", "status", "department"),
        time_fields=("createdAt", "updatedAt", "lastLoginAt"),
        search_fields=("name", "email", "bio"),
        stopwords=("the", "a", "an"),
        max_value_length=500,
        max_record_size=50 * 1024,
    ),
    "task": TypeConfig(
        indexed_fields=("status", "priority", "assignee", "project"),
        time_fields=("createdAt", "updatedAt", "dueDate", "completedAt"),
        search_fields=("title", "description"),
        stopwords=("the", "a", "an", "to", "for"),
        max_value_length=1000,
        max_record_size=100 * 1024,
    ),
}


def default_registry() -> TypeRegistry:
    return TypeRegistry(DEFAULT_TYPE_CONFIGS)


def load_registry(path: Path | None) -> TypeRegistry:
    """Load the registry from ``path`` or fall back to the built-in types."""
    if path is None:
        return default_registry()
    return TypeRegistry.from_json_file(path)
