"""Unit tests for single-record CRUD through the engine."""

import pytest

from kv_query_engine.domain.errors import (
    AlreadyExistsError,
    IndexMaintenanceError,
    InvalidIdentifierError,
    InvalidTimestampError,
    NotFoundError,
    RecordTooLargeError,
    UnknownTypeError,
)
from kv_query_engine.domain.query import QueryFilter, QueryOptions
from kv_query_engine.service_layer import records
from kv_query_engine.service_layer.engine import RecordEngine


T0 = "2024-01-01T00:00:00.000Z"
T1 = "2024-01-01T00:00:01.000Z"


@pytest.mark.unit
class TestCreateAndGet:
    @pytest.mark.asyncio
    async def test_create_then_get(self, note_engine: RecordEngine):
        created = await note_engine.create_record("note", {"title": "Fix login", "status": "open"})

        assert created.id == "rec-0001"
        assert created.created_at == created.updated_at == T0
        fetched = await note_engine.get_record("note", created.id)
        assert fetched == created
        assert fetched.to_dict() == {
            "title": "Fix login",
            "status": "open",
            "id": "rec-0001",
            "type": "note",
            "createdAt": T0,
            "updatedAt": T0,
        }

    @pytest.mark.asyncio
    async def test_envelope_keys_in_data_are_ignored(self, note_engine: RecordEngine):
        created = await note_engine.create_record(
            "note", {"id": "spoof", "type": "other", "createdAt": "1999", "title": "x"}
        )
        assert created.id == "rec-0001"
        assert created.type == "note"
        assert created.created_at == T0
        assert dict(created.fields) == {"title": "x"}

    @pytest.mark.asyncio
    async def test_explicit_id_and_collision(self, note_engine: RecordEngine):
        await note_engine.create_record("note", {"title": "a"}, record_id="custom-1")
        with pytest.raises(AlreadyExistsError):
            await note_engine.create_record("note", {"title": "b"}, record_id="custom-1")

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, note_engine: RecordEngine):
        assert await note_engine.get_record("note", "missing") is None

    @pytest.mark.asyncio
    async def test_rejects_bad_identifiers_and_types(self, note_engine: RecordEngine):
        with pytest.raises(InvalidIdentifierError):
            await note_engine.get_record("note", "bad id")
        with pytest.raises(InvalidIdentifierError):
            await note_engine.create_record("note", {}, record_id="a:b")
        with pytest.raises(UnknownTypeError):
            await note_engine.create_record("widget", {})

    @pytest.mark.asyncio
    async def test_too_large_record_writes_nothing(self, note_engine: RecordEngine, store):
        with pytest.raises(RecordTooLargeError) as excinfo:
            await note_engine.create_record("note", {"body": "x" * 3000})
        assert excinfo.value.max_size == 2048
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_invalid_time_field_writes_nothing(self, note_engine: RecordEngine, store):
        with pytest.raises(InvalidTimestampError):
            await note_engine.create_record("note", {"dueDate": "soon"})
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_generated_ids_have_millis_prefix(self, store, note_registry):
        record = await records.create_record(store, note_registry, "note", {"title": "x"})
        millis, suffix = record.id.split("-")
        assert millis.isdigit()
        assert len(suffix) == 11


@pytest.mark.unit
class TestUpdateAndPatch:
    @pytest.mark.asyncio
    async def test_update_replaces_fields_and_keeps_created_at(self, note_engine: RecordEngine):
        created = await note_engine.create_record("note", {"title": "a", "status": "open"})
        updated = await note_engine.update_record("note", created.id, {"title": "b"})

        assert updated.created_at == T0
        assert updated.updated_at == T1
        assert dict(updated.fields) == {"title": "b"}
        assert await note_engine.get_record("note", created.id) == updated

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, note_engine: RecordEngine):
        with pytest.raises(NotFoundError):
            await note_engine.update_record("note", "missing", {})

    @pytest.mark.asyncio
    async def test_patch_is_shallow(self, note_engine: RecordEngine):
        created = await note_engine.create_record(
            "note", {"status": "open", "meta": {"a": 1, "b": 2}, "tags": ["x", "y"]}
        )
        patched = await note_engine.patch_record("note", created.id, {"meta": {"c": 3}, "tags": ["z"]})

        assert patched["status"] == "open"
        assert patched["meta"] == {"c": 3}
        assert patched["tags"] == ["z"]

    @pytest.mark.asyncio
    async def test_patch_missing_raises(self, note_engine: RecordEngine):
        with pytest.raises(NotFoundError):
            await note_engine.patch_record("note", "missing", {"status": "x"})

    @pytest.mark.asyncio
    async def test_update_moves_equality_index(self, note_engine: RecordEngine):
        created = await note_engine.create_record("note", {"status": "open"})
        await note_engine.patch_record("note", created.id, {"status": "done"})

        old = await note_engine.execute_query("note", QueryOptions(where=[QueryFilter(field="status", value="open")]))
        new = await note_engine.execute_query("note", QueryOptions(where=[QueryFilter(field="status", value="done")]))
        assert old.records == []
        assert [r.id for r in new.records] == [created.id]


@pytest.mark.unit
class TestDeleteAndUpsert:
    @pytest.mark.asyncio
    async def test_delete_removes_record_and_every_index(self, note_engine: RecordEngine, store):
        created = await note_engine.create_record(
            "note", {"status": "open", "title": "Fix login", "dueDate": "2024-05-01T00:00:00.000Z"}
        )
        assert await note_engine.delete_record("note", created.id) is True
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, note_engine: RecordEngine):
        assert await note_engine.delete_record("note", "missing") is False
        assert await note_engine.delete_record("note", "missing") is False

    @pytest.mark.asyncio
    async def test_upsert(self, note_engine: RecordEngine):
        first = await note_engine.upsert_record("note", "u1", {"title": "a"})
        second = await note_engine.upsert_record("note", "u1", {"title": "b"})

        assert first.operation == "created"
        assert second.operation == "updated"
        assert second.record.created_at == first.record.created_at
        assert second.record["title"] == "b"


@pytest.mark.unit
class TestIndexFailure:
    @pytest.mark.asyncio
    async def test_primary_write_survives_and_changing_the_field_repairs(self, flaky_store, note_registry, clock):
        engine = RecordEngine(flaky_store, note_registry, clock=clock)
        flaky_store.failing_prefixes = ("idx:note:status:",)

        with pytest.raises(IndexMaintenanceError):
            await engine.create_record("note", {"status": "open", "title": "x"}, record_id="n1")

        assert (await engine.get_record("note", "n1"))["status"] == "open"
        by_status = QueryOptions(where=[QueryFilter(field="status", value="done")])
        assert (await engine.execute_query("note", by_status)).records == []

        flaky_store.failing_prefixes = ()
        await engine.patch_record("note", "n1", {"status": "done"})

        result = await engine.execute_query("note", by_status)
        assert [r.id for r in result.records] == ["n1"]

    @pytest.mark.asyncio
    async def test_write_to_other_fields_leaves_lost_key_missing(self, flaky_store, note_registry, clock):
        engine = RecordEngine(flaky_store, note_registry, clock=clock)
        flaky_store.failing_prefixes = ("idx:note:status:",)
        with pytest.raises(IndexMaintenanceError):
            await engine.create_record("note", {"status": "open", "title": "x"}, record_id="n1")

        flaky_store.failing_prefixes = ()
        await engine.patch_record("note", "n1", {"priority": "high"})

        by_status = QueryOptions(where=[QueryFilter(field="status", value="open")])
        by_priority = QueryOptions(where=[QueryFilter(field="priority", value="high")])
        assert (await engine.execute_query("note", by_status)).records == []
        assert [r.id for r in (await engine.execute_query("note", by_priority)).records] == ["n1"]

        assert await engine.delete_record("note", "n1") is True
        assert not [key for key in flaky_store.keys() if key.endswith(":n1")]
