"""Tests for CensusContext lifecycle and wiring."""

import threading
import tracemalloc

import pytest

from heapcensus.app.context import CensusContext
from heapcensus.core.type_keys import qualified_type_name
from heapcensus.errors import SnapshotNotFoundError
from heapcensus.io.settings import CensusConfig
from heapcensus.io.snapshot_store import SnapshotStore

LONG = 3600


class Drone:
    def __init__(self, entity_id):
        self.entity_id = entity_id
        self.position = (entity_id, 0, 0)


DRONE = qualified_type_name(Drone)


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "snaps")


def _context(store, **config):
    return CensusContext(CensusConfig(**config), store=store, memory_provider=lambda: 42)


def test_snapshot_is_captured_and_stored(store):
    with _context(store, track_individual_instances=True) as ctx:
        drones = [Drone(i) for i in range(3)]
        for drone in drones:
            assert ctx.register(drone)
        snap = ctx.snapshot("first")

    assert snap.total_managed_memory_bytes == 42
    assert snap.count(DRONE) == 3
    assert sorted(info.id for info in snap.tracked_instances_by_type[DRONE]) == ["0", "1", "2"]
    assert store.load("first") == snap


def test_load_snapshot_seeds_size_estimates(store, make_snapshot):
    store.save(make_snapshot({"gone.Type": 2}, sizes={"gone.Type": 64}), "old")
    ctx = _context(store)
    snap = ctx.load_snapshot("old")
    assert snap.count("gone.Type") == 2
    assert ctx.estimator.estimate_size("gone.Type") == 64


def test_load_snapshot_without_store():
    ctx = CensusContext()
    with pytest.raises(SnapshotNotFoundError):
        ctx.load_snapshot("anything")


def test_close_stops_monitors_and_clears_registry(store):
    ctx = _context(store, heat_check_interval_sec=LONG, alert_check_interval_sec=LONG).open()
    drone = Drone(1)
    ctx.register(drone)
    ctx.watches.start_watch(DRONE, LONG)
    ctx.alerts.start()
    assert ctx.heat.start()
    ctx.auto_snapshots.start(LONG)

    ctx.close()

    assert ctx.opened is False
    assert ctx.watches.watched() == []
    assert not ctx.alerts.running
    assert not ctx.heat.running
    assert not ctx.auto_snapshots.running
    assert ctx.registry.live_counts() == {}


def test_close_waits_for_in_flight_cycle(store, wait_until):
    entered = threading.Event()
    release = threading.Event()
    finished = []

    def slow_memory():
        entered.set()
        release.wait(5)
        finished.append(True)
        return 42

    ctx = CensusContext(CensusConfig(), store=store, memory_provider=slow_memory).open()
    ctx.auto_snapshots.start(0.01)
    assert wait_until(entered.is_set)
    task = ctx.auto_snapshots._task

    threading.Timer(0.05, release.set).start()
    ctx.close()

    assert finished
    assert not task._thread.is_alive()


def test_heat_check_saves_filtered_snapshots_for_watched_types(store):
    ctx = _context(store, heat_check_interval_sec=LONG)
    drones = [Drone(i) for i in range(2)]
    for drone in drones:
        ctx.register(drone)
    ctx.watches.start_watch(DRONE, LONG)
    try:
        ctx.heat.check()
    finally:
        ctx.watches.stop_all()

    filtered = SnapshotStore(store.directory / "filtered")
    names = filtered.names()
    assert len(names) == 1
    assert names[0].endswith(DRONE)
    assert filtered.load(names[0]).count(DRONE) == 2


def test_alert_cycle_persists_snapshot(store):
    ctx = _context(store, alert_check_interval_sec=LONG)
    ctx.alerts.run_cycle()
    assert len(store.names()) == 1


def test_tracemalloc_started_and_stopped(store):
    if tracemalloc.is_tracing():
        pytest.skip("tracemalloc already active in this process")
    ctx = _context(store, start_tracemalloc=True)
    with ctx:
        assert tracemalloc.is_tracing()
    assert not tracemalloc.is_tracing()
