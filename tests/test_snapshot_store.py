"""Tests for SnapshotStore file persistence and exports."""

import csv

import pytest

from heapcensus.core.snapshot import InstanceInfo
from heapcensus.core.tabular import Table
from heapcensus.errors import SnapshotNotFoundError, SnapshotUnusableError
from heapcensus.io.snapshot_store import SnapshotStore, default_snapshot_dir, safe_file_component


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "snaps")


class TestSaveLoad:
    def test_round_trip(self, store, make_snapshot):
        snap = make_snapshot({"a.A": 3}, total=99, instances={"a.A": [InstanceInfo("1")]})
        path = store.save(snap, "before")
        assert path.name == "before.json"
        assert store.load("before") == snap

    def test_default_name_from_timestamp(self, store, make_snapshot):
        snap = make_snapshot({"a.A": 1}, minute=5)
        path = store.save(snap)
        assert path.stem == "20260101_120500"

    @pytest.mark.parametrize("name", ["", "../escape", "a/b", ".hidden", "with space"])
    def test_invalid_names_rejected(self, store, name):
        with pytest.raises(ValueError):
            store.path_for(name)

    def test_missing_snapshot(self, store):
        with pytest.raises(SnapshotNotFoundError, match="ghost"):
            store.load("ghost")

    def test_unusable_snapshot(self, store):
        store.directory.mkdir(parents=True)
        (store.directory / "junk.json").write_text('{"timestamp": "2026-01-01T00:00:00"}')
        with pytest.raises(SnapshotUnusableError, match="junk"):
            store.load("junk")


class TestListing:
    def test_names_sorted_and_filtered(self, store, make_snapshot):
        store.save(make_snapshot({}), "b")
        store.save(make_snapshot({}), "a")
        (store.directory / "notes.txt").write_text("x")
        (store.directory / "bad name.json").write_text("{}")
        assert store.names() == ["a", "b"]

    def test_names_without_directory(self, tmp_path):
        assert SnapshotStore(tmp_path / "missing").names() == []

    def test_load_all_orders_by_timestamp_and_skips_unusable(self, store, make_snapshot):
        store.save(make_snapshot({"a.A": 2}, minute=2), "aaa")
        store.save(make_snapshot({"a.A": 1}, minute=1), "zzz")
        (store.directory / "broken.json").write_text("not json")

        snapshots = store.load_all()
        assert [s.count("a.A") for s in snapshots] == [1, 2]

    @pytest.mark.parametrize(
        "content",
        [
            b"\xff",
            b'{"timestamp": "\xff"}',
            b'{"timestamp": "2026-01-01T00:00:00+00:00", "objectCountsByType": {"a.A": Infinity}}',
            b'{"timestamp": "2026-01-01T00:00:00+00:00", "objectCountsByType": {"a.A": NaN}}',
        ],
    )
    def test_undecodable_files_are_unusable_and_skipped(self, store, make_snapshot, content):
        store.save(make_snapshot({"a.A": 1}), "good")
        (store.directory / "bad.json").write_bytes(content)

        with pytest.raises(SnapshotUnusableError, match="bad"):
            store.load("bad")
        assert [s.count("a.A") for s in store.load_all()] == [1]

    def test_latest(self, store, make_snapshot):
        for minute in range(5):
            store.save(make_snapshot({"a.A": minute}, minute=minute))
        assert [s.count("a.A") for s in store.latest(2)] == [3, 4]
        assert store.latest(0) == []


class TestExports:
    def test_export_table(self, store):
        path = store.export_table(Table(("TypeName", "Delta"), (("a.A", 3), ("b.B", -1))), "out.csv")
        with path.open(newline="") as f:
            assert list(csv.reader(f)) == [["TypeName", "Delta"], ["a.A", "3"], ["b.B", "-1"]]

    def test_export_lines(self, store):
        path = store.export_lines(["one", "two"], "diff.txt")
        assert path.read_text() == "one\ntwo\n"


def test_default_snapshot_dir_env(tmp_path, monkeypatch):
    monkeypatch.setenv("HEAPCENSUS_SNAPSHOT_DIR", str(tmp_path / "here"))
    assert default_snapshot_dir() == tmp_path / "here"
    assert SnapshotStore().directory == tmp_path / "here"


@pytest.mark.parametrize(
    "value,expected",
    [("pkg.Foo:bar", "pkg.Foo_bar"), ("a b/c", "a_b_c"), ("...", "unnamed")],
)
def test_safe_file_component(value, expected):
    assert safe_file_component(value) == expected
