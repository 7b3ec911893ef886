"""Shared fixtures for heapcensus tests."""

import time
from datetime import datetime, timedelta, timezone

import pytest

from heapcensus.core.snapshot import Snapshot

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Smart wait helper: replaces fixed time.sleep() in threaded tests
# ---------------------------------------------------------------------------

def _wait_until(predicate, timeout=3.0, interval=0.01):
    """Poll ``predicate`` until it is truthy or ``timeout`` elapses. Returns the final result."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def make_snapshot():
    """Factory for Snapshot values at minute offsets from a fixed base time."""

    def _make(counts, minute=0, total=0, sizes=None, memory=None, instances=None):
        return Snapshot(
            timestamp=BASE_TIME + timedelta(minutes=minute),
            total_managed_memory_bytes=total,
            object_counts_by_type=counts,
            estimated_bytes_per_type=sizes or {},
            estimated_memory_bytes_per_type=memory or {},
            tracked_instances_by_type=instances,
        )

    return _make


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    """Keep config, snapshot and log locations inside the test's temp dir."""
    monkeypatch.setenv("HEAPCENSUS_CONFIG", str(tmp_path / "config" / "config.json"))
    monkeypatch.setenv("HEAPCENSUS_SNAPSHOT_DIR", str(tmp_path / "snapshots"))
    monkeypatch.setenv("HEAPCENSUS_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("HEAPCENSUS_LOG_FILE", raising=False)
    monkeypatch.delenv("HEAPCENSUS_LOG_LEVEL", raising=False)
