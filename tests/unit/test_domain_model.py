"""Unit tests for the record entity, helpers and query value objects."""

from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
import pytest

from kv_query_engine.domain import (
    BulkItemResult,
    BulkResult,
    QueryOptions,
    QueryResult,
    Record,
    epoch_millis,
    format_timestamp,
    generate_record_id,
    parse_timestamp,
    shallow_merge,
    strip_envelope,
)
from kv_query_engine.domain.errors import IndexMaintenanceError, KVEngineError, NotFoundError


@pytest.mark.unit
class TestTimestamps:
    def test_format_is_fixed_width_utc(self):
        moment = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2024-01-02T03:04:05.678Z"

    def test_format_converts_offsets(self):
        moment = datetime(2024, 1, 2, 5, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(moment) == "2024-01-02T03:00:00.000Z"

    def test_parse_round_trips_and_assumes_utc(self):
        assert parse_timestamp("2024-01-02T03:04:05.678Z") == datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert parse_timestamp("2024-01-02T03:04:05").tzinfo == timezone.utc

    def test_epoch_millis(self):
        assert epoch_millis(datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=timezone.utc)) == 1500


@pytest.mark.unit
class TestRecordIds:
    def test_shape(self):
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
        record_id = generate_record_id(moment)
        millis, suffix = record_id.split("-")
        assert millis == str(epoch_millis(moment))
        assert len(suffix) == 11
        assert set(suffix) <= set("0123456789abcdefghijklmnopqrstuvwxyz")

    def test_unique(self):
        moment = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert len({generate_record_id(moment) for _ in range(200)}) == 200


@pytest.mark.unit
class TestRecord:
    def test_wire_round_trip(self):
        data = {"id": "r1", "type": "task", "createdAt": "a", "updatedAt": "b", "status": "open"}
        record = Record.from_dict(data)
        assert record.fields == {"status": "open"}
        assert record.to_dict() == data

    def test_envelope_aware_lookup(self):
        record = Record(id="r1", type="task", created_at="c", updated_at="u", fields={"status": "open"})
        assert record.get("createdAt") == "c"
        assert record["status"] == "open"
        assert record.get("missing", "dflt") == "dflt"
        with pytest.raises(KeyError):
            record["missing"]

    def test_strip_and_merge(self):
        assert strip_envelope({"id": "x", "updatedAt": "y", "a": 1}) == {"a": 1}
        merged = shallow_merge({"a": {"x": 1}, "b": 2}, {"a": {"y": 2}})
        assert merged == {"a": {"y": 2}, "b": 2}


@pytest.mark.unit
class TestQueryValueObjects:
    def test_aliases_and_and_filters(self):
        options = QueryOptions.model_validate(
            {
                "where": [{"field": "a", "value": 1}],
                "and": [{"field": "b", "value": "x"}],
                "or": [{"field": "c", "value": True}],
                "searchFields": ["title"],
            }
        )
        assert [f.field for f in options.and_filters] == ["a", "b"]
        assert options.or_[0].value is True
        assert options.search_fields == ["title"]
        assert not options.is_plain_listing

    def test_plain_listing(self):
        assert QueryOptions(limit=5, cursor="c").is_plain_listing

    @pytest.mark.parametrize("payload", [{"limit": 0}, {"sort": {"field": "createdAt", "direction": "sideways"}}])
    def test_rejects_bad_options(self, payload):
        with pytest.raises(ValidationError):
            QueryOptions.model_validate(payload)

    def test_results_to_dict(self):
        record = Record(id="r1", type="task", created_at="c", updated_at="u")
        assert QueryResult(records=[record], cursor=None, has_more=False).to_dict()["count"] == 1
        bulk = BulkResult([BulkItemResult(ok=True, id="a", operation="deleted"), BulkItemResult(ok=False, id="b", error="x")])
        assert (bulk.succeeded, bulk.failed) == (1, 1)


@pytest.mark.unit
class TestErrors:
    def test_codes_and_hierarchy(self):
        error = NotFoundError("task", "t1")
        assert isinstance(error, KVEngineError)
        assert isinstance(error, LookupError)
        assert error.code == "not_found"

    def test_index_maintenance_message(self):
        error = IndexMaintenanceError("obj:task:t1", "update", 2, 6)
        assert "2 of 6" in str(error)
        assert error.code == "index_maintenance_failed"
