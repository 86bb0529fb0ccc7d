"""Unit tests for the type registry."""

from pathlib import Path

from pydantic import ValidationError
import pytest

from kv_query_engine.domain.errors import UnknownTypeError
from kv_query_engine.registry import (
    DEFAULT_STOPWORDS,
    TypeConfig,
    TypeRegistry,
    default_registry,
    load_registry,
)


@pytest.mark.unit
class TestTypeConfig:
    def test_accepts_wire_aliases(self):
        config = TypeConfig.model_validate(
            {"indexedFields": ["status"], "timeFields": ["createdAt"], "searchFields": ["title"]}
        )
        assert config.indexed_fields == ("status",)
        assert config.time_fields == ("createdAt",)
        assert config.search_fields == ("title",)
        assert config.max_value_length == 1000
        assert config.max_record_size is None

    def test_rejects_unknown_keys(self):
        with pytest.raises(ValidationError):
            TypeConfig.model_validate({"indexedFields": [], "bogus": True})

    def test_is_frozen(self):
        config = TypeConfig()
        with pytest.raises(ValidationError):
            config.indexed_fields = ("x",)

    def test_effective_stopwords(self):
        assert TypeConfig().effective_stopwords == frozenset(DEFAULT_STOPWORDS)
        assert TypeConfig(stopwords=("foo",)).effective_stopwords == frozenset({"foo"})
        assert TypeConfig(stopwords=()).effective_stopwords == frozenset()

    def test_to_dict_uses_aliases(self):
        data = TypeConfig(indexed_fields=("status",)).to_dict()
        assert data["indexedFields"] == ["status"]
        assert "maxValueLength" in data


@pytest.mark.unit
class TestTypeRegistry:
    def test_default_types(self):
        registry = default_registry()
        assert sorted(registry) == ["config", "prompt", "task", "user"]
        assert registry.get_type_config("task").indexed_fields == ("status", "priority", "assignee", "project")

    def test_unknown_type_lists_valid_types(self):
        with pytest.raises(UnknownTypeError) as excinfo:
            default_registry().get_type_config("widget")
        assert excinfo.value.valid_types == ["config", "prompt", "task", "user"]
        assert excinfo.value.code == "unknown_type"

    def test_registry_is_read_only(self):
        registry = default_registry()
        with pytest.raises(TypeError):
            registry._configs["widget"] = TypeConfig()  # type: ignore[index]

    def test_from_dict(self):
        registry = TypeRegistry.from_dict({"widget": {"indexedFields": ["color"]}})
        assert list(registry) == ["widget"]
        assert registry["widget"].indexed_fields == ("color",)

    def test_rejects_unsafe_type_names(self):
        with pytest.raises(ValidationError):
            TypeRegistry.from_dict({"bad name": {}})

    def test_rejects_empty_document(self):
        with pytest.raises(ValidationError):
            TypeRegistry.from_dict({})

    def test_describe(self):
        described = default_registry().describe()
        assert list(described) == ["config", "prompt", "task", "user"]
        assert described["user"]["timeFields"] == ["createdAt", "updatedAt", "lastLoginAt"]


@pytest.mark.unit
class TestLoadRegistry:
    def test_none_uses_defaults(self):
        assert sorted(load_registry(None)) == ["config", "prompt", "task", "user"]

    def test_wrapped_document(self, tmp_path: Path):
        path = tmp_path / "types.json"
        path.write_text('{"types": {"widget": {"searchFields": ["name"]}}}', encoding="utf-8")
        assert load_registry(path)["widget"].search_fields == ("name",)

    def test_bare_mapping(self, tmp_path: Path):
        path = tmp_path / "types.json"
        path.write_text('{"widget": {"timeFields": ["createdAt"]}}', encoding="utf-8")
        assert load_registry(path)["widget"].time_fields == ("createdAt",)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_registry(tmp_path / "absent.json")
