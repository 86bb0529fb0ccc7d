"""Shared test fixtures and configuration."""

from datetime import datetime, timedelta, timezone
import itertools
import os

import pytest


# Complete test environment that overrides every config value read from the environment
TEST_ENV = {
    "STORE_BACKEND": "memory",
    "SQLITE_PATH": "",
    "TYPE_REGISTRY_PATH": "",
    "DEFAULT_QUERY_LIMIT": "50",
    "MAX_QUERY_LIMIT": "200",
    "SCAN_PAGE_SIZE": "1000",
    "MAX_SCAN_KEYS": "10000",
    "BULK_MAX_ITEMS": "100",
    "RANKING_HALF_LIFE_DAYS": "30",
    "LOG_LEVEL": "INFO",
    "LOG_JSON": "true",
}


# Set environment variables immediately when conftest.py is loaded
for key, value in TEST_ENV.items():
    os.environ[key] = value

# Now we can safely import config-dependent modules
from kv_query_engine.adapters.store import InMemoryKeyValueStore
from kv_query_engine.config import Settings
from kv_query_engine.registry import TypeConfig, TypeRegistry, default_registry
from kv_query_engine.service_layer.engine import RecordEngine


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset environment variables to test defaults before each test."""
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)


class SteppingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = self.current + self.step
        return now


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda _moment: f"rec-{next(counter):04d}"


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def registry() -> TypeRegistry:
    return default_registry()


@pytest.fixture
def note_registry() -> TypeRegistry:
    """Small registry with one type that exercises every index kind."""
    return TypeRegistry(
        {
            "note": TypeConfig(
                indexed_fields=("status", "priority", "flag"),
                time_fields=("createdAt", "updatedAt", "dueDate"),
                search_fields=("title", "body"),
                stopwords=("the", "a"),
                max_value_length=20,
                max_record_size=2048,
            )
        }
    )


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def engine(store, registry, settings, clock, id_factory) -> RecordEngine:
    return RecordEngine(store, registry, settings, clock=clock, id_factory=id_factory)


@pytest.fixture
def note_engine(store, note_registry, settings, clock, id_factory) -> RecordEngine:
    return RecordEngine(store, note_registry, settings, clock=clock, id_factory=id_factory)


class FlakyStore(InMemoryKeyValueStore):
    """In-memory store whose puts and deletes fail for chosen key prefixes."""

    def __init__(self) -> None:
        super().__init__()
        self.failing_prefixes: tuple[str, ...] = ()
        self.attempted: list[str] = []

    def _maybe_fail(self, key: str) -> None:
        self.attempted.append(key)
        if self.failing_prefixes and key.startswith(self.failing_prefixes):
            raise OSError(f"simulated store failure for {key}")

    async def put(self, key: str, value: str, ttl: float | None = None) -> None:
        self._maybe_fail(key)
        await super().put(key, value, ttl)

    async def delete(self, key: str) -> None:
        self._maybe_fail(key)
        await super().delete(key)


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()
