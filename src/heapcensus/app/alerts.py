"""Background monitors: spike alerting, registry heat checks, and timed snapshots.

// [LAW:single-enforcer] Each monitor owns exactly one PeriodicTask; start/stop go through it.

All three monitors swallow per-cycle failures (logged by PeriodicTask) so a
failed capture never takes down the host; the previous baseline is kept.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping

from heapcensus.app.periodic import PeriodicTask
from heapcensus.core.diff import (
    BYTES_PER_MB,
    IgnorePredicate,
    InstanceSpike,
    SpikeReport,
    count_spikes,
    detect_spikes,
    ignore_predicate,
    never_ignored,
)
from heapcensus.core.registry import WeakRegistry
from heapcensus.core.snapshot import Snapshot
from heapcensus.errors import AlertWatcherError
from heapcensus.io.settings import CensusConfig

logger = logging.getLogger(__name__)

CaptureFn = Callable[[], Snapshot]
SnapshotSink = Callable[[Snapshot], object]
AlertSink = Callable[[SpikeReport], None]
HeatSink = Callable[[list[InstanceSpike]], None]


def log_spike_report(report: SpikeReport) -> None:
    if report.memory_spike:
        logger.warning("MEMORY SPIKE: %+d MB", report.memory_delta_bytes // BYTES_PER_MB)
    for spike in report.instance_spikes:
        logger.warning("INSTANCE SPIKE: %s grew by %d (%d -> %d)", spike.type_key, spike.delta, spike.old, spike.new)


def log_heat(spikes: list[InstanceSpike]) -> None:
    for spike in spikes:
        logger.warning("LEAK ALERT: %s increased by %d (%d -> %d)", spike.type_key, spike.delta, spike.old, spike.new)


class AlertWatcher:
    """Captures on an interval and alerts on memory/instance growth since the previous capture."""

    def __init__(
        self,
        capture: CaptureFn,
        *,
        instance_threshold: int = 500,
        memory_threshold_mb: float = 100.0,
        interval_sec: float = 30,
        is_ignored: IgnorePredicate = never_ignored,
        store: SnapshotSink | None = None,
        sink: AlertSink = log_spike_report,
    ) -> None:
        self._capture = capture
        self.instance_threshold = int(instance_threshold)
        self.memory_threshold_bytes = float(memory_threshold_mb) * BYTES_PER_MB
        self.interval_sec = interval_sec
        self._is_ignored = is_ignored
        self._store = store
        self._sink = sink
        self._lock = threading.Lock()
        self._task: PeriodicTask | None = None
        self._baseline: Snapshot | None = None

    @classmethod
    def from_config(
        cls,
        capture: CaptureFn,
        config: CensusConfig,
        *,
        store: SnapshotSink | None = None,
        sink: AlertSink = log_spike_report,
    ) -> "AlertWatcher":
        return cls(
            capture,
            instance_threshold=config.alert_instance_spike,
            memory_threshold_mb=config.alert_memory_spike_mb,
            interval_sec=config.alert_check_interval_sec,
            is_ignored=ignore_predicate(config.ignore_spike_type_fragments),
            store=store,
            sink=sink,
        )

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def baseline(self) -> Snapshot | None:
        return self._baseline

    def start(self) -> None:
        """Capture a baseline and begin the alert loop.

        Raises:
            AlertWatcherError: already running.
            CaptureError: the baseline capture failed; the watcher stays stopped.
        """
        with self._lock:
            if self._task is not None:
                raise AlertWatcherError("Alert watcher is already running")
            task = PeriodicTask("alerts", self.interval_sec, self.run_cycle)
            self._baseline = self._capture()
            self._task = task
        task.start()
        logger.info("alert watcher started (every %ss)", self.interval_sec)

    def stop(self, timeout: float | None = None) -> bool:
        """Stop the loop. Returns False when it was not running."""
        with self._lock:
            task, self._task = self._task, None
        if task is None:
            return False
        task.stop(timeout)
        logger.info("alert watcher stopped")
        return True

    def run_cycle(self) -> SpikeReport | None:
        """One capture-store-compare pass. Returns None when there was no baseline yet."""
        current = self._capture()
        if self._store is not None:
            self._store(current)
        previous, self._baseline = self._baseline, current
        if previous is None:
            return None
        report = detect_spikes(
            previous,
            current,
            instance_threshold=self.instance_threshold,
            memory_threshold_bytes=self.memory_threshold_bytes,
            is_ignored=self._is_ignored,
        )
        if report.has_alerts:
            self._sink(report)
        return report


class HeatWatcher:
    """Compares raw registry counts on an interval; no snapshot capture involved."""

    def __init__(
        self,
        registry: WeakRegistry,
        *,
        threshold: int = 100,
        interval_sec: float = 10,
        is_ignored: IgnorePredicate = never_ignored,
        sink: HeatSink = log_heat,
        after_check: Callable[[], object] | None = None,
    ) -> None:
        self._registry = registry
        self.threshold = int(threshold)
        self.interval_sec = interval_sec
        self._is_ignored = is_ignored
        self._sink = sink
        self._after_check = after_check
        self._lock = threading.Lock()
        self._task: PeriodicTask | None = None
        self._last_counts: Mapping[str, int] = {}

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> bool:
        """(Re)start the heat loop. Returns False, without starting, if nothing is tracked."""
        self.stop()
        initial = self._registry.live_counts()
        if not initial:
            logger.warning("no tracked objects found; heat watcher not started")
            return False
        task = PeriodicTask("heat", self.interval_sec, self.check)
        with self._lock:
            self._last_counts = initial
            self._task = task
        task.start()
        logger.info("heat watcher started (%d tracked types)", len(initial))
        return True

    def stop(self, timeout: float | None = None) -> bool:
        with self._lock:
            task, self._task = self._task, None
        if task is None:
            return False
        task.stop(timeout)
        return True

    def check(self) -> list[InstanceSpike]:
        current = self._registry.live_counts()
        spikes = count_spikes(self._last_counts, current, self.threshold, self._is_ignored)
        self._last_counts = current
        if spikes:
            self._sink(spikes)
        if self._after_check is not None:
            self._after_check()
        return spikes


class AutoSnapshotter:
    """Captures and stores a snapshot on a fixed interval."""

    def __init__(self, capture: CaptureFn, store: SnapshotSink) -> None:
        self._capture = capture
        self._store = store
        self._lock = threading.Lock()
        self._task: PeriodicTask | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self, interval_sec: float) -> None:
        """Start, replacing any existing schedule."""
        task = PeriodicTask("auto-snapshot", interval_sec, self.run_cycle)
        with self._lock:
            previous, self._task = self._task, task
        if previous is not None:
            previous.stop()
        task.start()
        logger.info("auto snapshot every %ss", task.interval_sec)

    def stop(self, timeout: float | None = None) -> bool:
        with self._lock:
            task, self._task = self._task, None
        if task is None:
            return False
        task.stop(timeout)
        return True

    def run_cycle(self) -> Snapshot:
        snapshot = self._capture()
        self._store(snapshot)
        return snapshot
