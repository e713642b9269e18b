"""Tests for conflict detection and timestamp extraction."""

import copy
from datetime import datetime, timezone

import pytest
from hypothesis import given, settings, strategies as st

from crosssync.models.sync_models import PENDING_RESOLUTION, FieldMapping
from crosssync.sync.conflict_detector import detect_conflicts, extract_timestamp, values_differ

FIELDS = ["A", "B", "C", "D"]
MAPPINGS = [FieldMapping(f"src_{name}", name, required=(name == "A")) for name in FIELDS]

values = st.one_of(st.none(), st.integers(min_value=0, max_value=3), st.text(alphabet="ab", max_size=2))
records = st.dictionaries(st.sampled_from(FIELDS), values, max_size=len(FIELDS))


@pytest.mark.property
class TestConflictDefinition:
    """A conflict exists for F iff mapped[F] != existing[F] and existing[F] is not None."""

    @given(mapped=records, existing=records)
    @settings(max_examples=200)
    def test_conflicts_match_definition(self, mapped, existing):
        mapped_before = copy.deepcopy(mapped)
        existing_before = copy.deepcopy(existing)

        conflicts = detect_conflicts(mapped, existing, MAPPINGS)

        expected = [
            name for name in FIELDS
            if existing.get(name) is not None and mapped.get(name) != existing.get(name)
        ]
        assert [c.field for c in conflicts] == expected
        for conflict in conflicts:
            assert conflict.source_value == mapped.get(conflict.field)
            assert conflict.target_value == existing.get(conflict.field)
            assert conflict.resolution_strategy == PENDING_RESOLUTION
        assert mapped == mapped_before
        assert existing == existing_before


class TestConflictExamples:

    def setup_method(self):
        self.mappings = [FieldMapping("id", "No", required=True), FieldMapping("name", "Name")]

    def test_differing_value_is_a_conflict(self):
        conflicts = detect_conflicts({"No": "A1", "Name": "Acme"}, {"No": "A1", "Name": "ACME Corp"}, self.mappings)
        assert len(conflicts) == 1
        assert conflicts[0].field == "Name"
        assert conflicts[0].source_value == "Acme"
        assert conflicts[0].target_value == "ACME Corp"

    def test_missing_existing_value_is_not_a_conflict(self):
        assert detect_conflicts({"No": "A1", "Name": "Acme"}, {"No": "A1"}, self.mappings) == []
        assert detect_conflicts({"No": "A1", "Name": "Acme"}, {"No": "A1", "Name": None}, self.mappings) == []

    def test_conflict_carries_context(self):
        source_ts = datetime(2024, 1, 2, tzinfo=timezone.utc)
        target_ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        conflicts = detect_conflicts(
            {"No": "A1", "Name": "Acme"}, {"No": "A1", "Name": "Old"}, self.mappings,
            source_timestamp=source_ts, target_timestamp=target_ts,
            record_key="A1", target_system="ERP"
        )
        assert conflicts[0].source_timestamp == source_ts
        assert conflicts[0].target_timestamp == target_ts
        assert conflicts[0].record_key == "A1"
        assert conflicts[0].target_system == "ERP"

    def test_nested_target_fields_are_compared(self):
        mappings = [FieldMapping("city", "Address.City")]
        conflicts = detect_conflicts({"Address": {"City": "Oslo"}}, {"Address": {"City": "Bergen"}}, mappings)
        assert [c.field for c in conflicts] == ["Address.City"]

    def test_boolean_and_number_are_different_values(self):
        mappings = [FieldMapping("active", "Active"), FieldMapping("qty", "Qty")]

        conflicts = detect_conflicts({"Active": True, "Qty": 1}, {"Active": 1, "Qty": 1.0}, mappings)

        assert [c.field for c in conflicts] == ["Active"]

    def test_values_differ(self):
        assert values_differ(False, 0)
        assert values_differ({"flags": [True]}, {"flags": [1]})
        assert not values_differ({"qty": [1, 2]}, {"qty": [1.0, 2.0]})
        assert not values_differ(True, True)
        assert values_differ([1], [1, 2])


class TestExtractTimestamp:

    def test_explicit_field(self):
        record = {"meta": {"changed": "2024-03-01T12:00:00Z"}}
        assert extract_timestamp(record, "meta.changed") == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_common_fields_are_checked_in_order(self):
        record = {"updated_at": "2024-01-01T00:00:00+00:00", "modifiedon": "2024-02-01T00:00:00+00:00"}
        assert extract_timestamp(record) == datetime(2024, 2, 1, tzinfo=timezone.utc)

    def test_naive_timestamps_are_utc(self):
        assert extract_timestamp({"lastModified": "2024-01-01T08:30:00"}) == datetime(
            2024, 1, 1, 8, 30, tzinfo=timezone.utc
        )

    def test_epoch_seconds(self):
        assert extract_timestamp({"last_modified": 0}) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        assert extract_timestamp({"lastModified": 1705312800000}) == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_out_of_range_number_is_none(self):
        assert extract_timestamp({"lastModified": 10 ** 30}) is None
        assert extract_timestamp({"lastModified": float("nan")}) is None

    def test_missing_or_unparseable_is_none(self):
        assert extract_timestamp({"name": "x"}) is None
        assert extract_timestamp(None) is None
        assert extract_timestamp({"modifiedon": "yesterday"}) is None
