"""Tests for Snapshot values and the JSON interchange codec."""

import dataclasses
import json
from datetime import datetime, timezone

import pytest

from heapcensus.core import snapshot as codec
from heapcensus.core.snapshot import InstanceInfo, Position, Snapshot
from heapcensus.errors import CensusError, SnapshotUnusableError

STAMP = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)


def _record(**overrides):
    data = {
        "timestamp": STAMP.isoformat(),
        "totalManagedMemoryBytes": 2048,
        "objectCountsByType": {"pkg.Foo": 3},
        "estimatedBytesPerType": {"pkg.Foo": 40},
        "estimatedMemoryBytesPerType": {"pkg.Foo": 120},
    }
    data.update(overrides)
    return data


class TestSnapshotValue:
    def test_build_derives_memory_from_count_and_size(self):
        snap = Snapshot.build(
            timestamp=STAMP,
            total_managed_memory_bytes=10,
            counts={"a.A": 3, "b.B": 2},
            sizes={"a.A": 40, "b.B": 300},
        )
        assert dict(snap.estimated_memory_bytes_per_type) == {"a.A": 120, "b.B": 600}
        assert snap.total_instances == 5
        assert snap.total_estimated_bytes == 720
        assert snap.count("a.A") == 3
        assert snap.count("missing") == 0

    def test_snapshot_is_immutable(self):
        counts = {"a.A": 1}
        snap = Snapshot(timestamp=STAMP, total_managed_memory_bytes=0, object_counts_by_type=counts)
        counts["a.A"] = 99
        assert snap.count("a.A") == 1
        with pytest.raises(TypeError):
            snap.object_counts_by_type["a.A"] = 5
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.total_managed_memory_bytes = 5

    def test_naive_timestamp_is_treated_as_utc(self):
        snap = Snapshot(timestamp=datetime(2026, 1, 1), total_managed_memory_bytes=0, object_counts_by_type={})
        assert snap.timestamp.tzinfo is timezone.utc

    def test_instance_lists_become_tuples(self):
        snap = Snapshot(
            timestamp=STAMP,
            total_managed_memory_bytes=0,
            object_counts_by_type={"a.A": 1},
            tracked_instances_by_type={"a.A": [InstanceInfo("1")]},
        )
        assert snap.tracked_instances_by_type["a.A"] == (InstanceInfo("1"),)


class TestInterchange:
    def test_round_trip_preserves_everything(self):
        snap = Snapshot.build(
            timestamp=STAMP,
            total_managed_memory_bytes=4096,
            counts={"pkg.Foo": 2},
            sizes={"pkg.Foo": 16},
            instances={"pkg.Foo": [InstanceInfo("7", Position(1, 2, 3)), InstanceInfo("8")]},
        )
        restored = codec.decode(codec.encode(snap))
        assert restored == snap

    def test_field_names_are_camel_case(self):
        snap = Snapshot(timestamp=STAMP, total_managed_memory_bytes=1, object_counts_by_type={"a": 1})
        data = json.loads(codec.encode(snap))
        assert set(data) == {
            "timestamp",
            "totalManagedMemoryBytes",
            "objectCountsByType",
            "estimatedBytesPerType",
            "estimatedMemoryBytesPerType",
        }

    def test_instances_key_present_only_with_tracking(self):
        snap = Snapshot(
            timestamp=STAMP,
            total_managed_memory_bytes=0,
            object_counts_by_type={},
            tracked_instances_by_type={"a": [InstanceInfo("1", Position(4, 5, 6))]},
        )
        data = codec.to_dict(snap)
        assert data["trackedInstancesByType"] == {"a": [{"id": "1", "position": {"x": 4, "y": 5, "z": 6}}]}

    def test_missing_memory_map_decodes_empty(self):
        data = _record()
        del data["estimatedMemoryBytesPerType"]
        snap = codec.from_dict(data)
        assert dict(snap.estimated_memory_bytes_per_type) == {}
        assert snap.count("pkg.Foo") == 3


class TestUnusableInput:
    def test_invalid_json(self):
        with pytest.raises(SnapshotUnusableError):
            codec.decode("{not json")

    def test_not_an_object(self):
        with pytest.raises(SnapshotUnusableError):
            codec.decode("[1, 2, 3]")

    def test_missing_counts(self):
        data = _record()
        del data["objectCountsByType"]
        with pytest.raises(SnapshotUnusableError, match="objectCountsByType"):
            codec.from_dict(data)

    @pytest.mark.parametrize("timestamp", [None, "", "yesterday", 12])
    def test_bad_timestamp(self, timestamp):
        with pytest.raises(SnapshotUnusableError):
            codec.from_dict(_record(timestamp=timestamp))

    @pytest.mark.parametrize("value", ["3", True, None, [1], 1.5, float("nan"), float("inf")])
    def test_non_integer_count(self, value):
        with pytest.raises(SnapshotUnusableError):
            codec.from_dict(_record(objectCountsByType={"pkg.Foo": value}))

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity", "2.5"])
    def test_non_finite_or_fractional_json_numbers(self, literal):
        text = json.dumps(_record()).replace("\"totalManagedMemoryBytes\": 2048", f"\"totalManagedMemoryBytes\": {literal}")
        with pytest.raises(SnapshotUnusableError):
            codec.decode(text)

    def test_integral_float_count_is_accepted(self):
        snap = codec.from_dict(_record(objectCountsByType={"pkg.Foo": 3.0}))
        assert snap.count("pkg.Foo") == 3

    def test_invalid_utf8_bytes(self):
        with pytest.raises(SnapshotUnusableError):
            codec.decode(b'{"timestamp": "\xff"}')

    def test_memory_map_must_be_an_object(self):
        with pytest.raises(SnapshotUnusableError):
            codec.from_dict(_record(estimatedMemoryBytesPerType=[1, 2]))

    def test_unusable_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            codec.decode("")
        assert issubclass(SnapshotUnusableError, CensusError)
