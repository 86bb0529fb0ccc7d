"""Unit tests for environment-driven settings."""

import logging

from pydantic import ValidationError
import pytest

from kv_query_engine.adapters.sqlite_store import SqliteKeyValueStore
from kv_query_engine.adapters.store import InMemoryKeyValueStore
from kv_query_engine.config import Settings
from kv_query_engine.observability import JsonFormatter
from kv_query_engine.service_layer import engine as engine_module
from kv_query_engine.service_layer.engine import build_engine, build_store, init_observability


@pytest.mark.unit
class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.store_backend == "memory"
        assert settings.default_query_limit == 50
        assert settings.max_query_limit == 200
        assert settings.scan_page_size == 1000
        assert settings.max_scan_keys == 10000
        assert settings.bulk_max_items == 100
        assert settings.ranking_half_life_days == 30

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BULK_MAX_ITEMS", "25")
        monkeypatch.setenv("log_json", "false")
        settings = Settings()
        assert settings.bulk_max_items == 25
        assert settings.log_json is False

    def test_sqlite_requires_path(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "sqlite")
        with pytest.raises(ValidationError, match="SQLITE_PATH"):
            Settings()

    def test_default_limit_cannot_exceed_max(self):
        with pytest.raises(ValidationError):
            Settings(default_query_limit=300, max_query_limit=200)

    def test_scan_page_size_bounded_by_store_page(self):
        with pytest.raises(ValidationError):
            Settings(scan_page_size=5000)


@pytest.mark.unit
class TestBuildEngine:
    @pytest.mark.asyncio
    async def test_memory_backend_with_default_types(self):
        engine = build_engine(Settings())
        assert isinstance(engine.store, InMemoryKeyValueStore)
        assert sorted(engine.list_types()) == ["config", "prompt", "task", "user"]
        await engine.close()

    @pytest.mark.asyncio
    async def test_sqlite_backend_and_registry_file(self, tmp_path):
        registry_path = tmp_path / "types.json"
        registry_path.write_text('{"widget": {"indexedFields": ["color"]}}', encoding="utf-8")
        settings = Settings(
            store_backend="sqlite",
            sqlite_path=str(tmp_path / "kv.db"),
            type_registry_path=str(registry_path),
        )
        engine = build_engine(settings)
        assert isinstance(engine.store, SqliteKeyValueStore)
        assert engine.get_type_config("widget").indexed_fields == ("color",)

        created = await engine.create_record("widget", {"color": "red"})
        result = await engine.execute_query("widget", {"where": [{"field": "color", "value": "red"}]})
        assert [r.id for r in result.records] == [created.id]
        await engine.close()

    def test_build_store(self, tmp_path):
        assert isinstance(build_store(Settings()), InMemoryKeyValueStore)
        sqlite_settings = Settings(store_backend="sqlite", sqlite_path=str(tmp_path / "x.db"))
        assert isinstance(build_store(sqlite_settings), SqliteKeyValueStore)

    def test_init_observability_uses_log_settings(self, monkeypatch):
        services: list[str] = []
        monkeypatch.setattr(engine_module, "init_tracing", lambda service_name: services.append(service_name))
        root = logging.getLogger()
        saved = root.handlers[:]
        try:
            init_observability(Settings(log_level="WARNING", log_json=True))
            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert services == ["kv-query-engine"]
        finally:
            root.handlers[:] = saved
