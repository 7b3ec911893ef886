"""Named per-type watches that poll the registry on their own interval.

// [LAW:one-source-of-truth] The active-watch table is the only record of what is watched.

Each watch is Active until stopped; stopping removes it for good. Polls read
the registry directly, without building a snapshot, and emit a WatchStatus
to the configured sink.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

from heapcensus.app.periodic import PeriodicTask
from heapcensus.core.capture import Clock, utcnow
from heapcensus.core.diff import SpikeStatus, SpikeThresholds, classify_spike
from heapcensus.core.registry import WeakRegistry
from heapcensus.errors import AlreadyWatchingError, NotWatchedError

logger = logging.getLogger(__name__)


@dataclass
class WatchedType:
    type_key: str
    interval_sec: float
    last_count: int = 0


@dataclass(frozen=True)
class WatchStatus:
    type_key: str
    count: int
    delta: int
    status: SpikeStatus
    timestamp: datetime


WatchSink = Callable[[WatchStatus], None]


def log_watch_status(event: WatchStatus) -> None:
    level = logging.WARNING if event.status is SpikeStatus.LEAKING else logging.INFO
    logger.log(level, "%s: %s = %d (%+d)", event.status.value.upper(), event.type_key, event.count, event.delta)


class WatchHandle:
    """Returned by start_watch(); stopping through it is the same as stop_watch()."""

    def __init__(self, scheduler: "WatchScheduler", type_key: str) -> None:
        self._scheduler = scheduler
        self.type_key = type_key

    @property
    def active(self) -> bool:
        return self._scheduler.is_watching(self.type_key)

    def stop(self) -> None:
        self._scheduler.stop_watch(self.type_key)


class WatchScheduler:
    def __init__(
        self,
        registry: WeakRegistry,
        *,
        thresholds: SpikeThresholds = SpikeThresholds(),
        sink: WatchSink = log_watch_status,
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self.thresholds = thresholds
        self._sink = sink
        self._clock = clock
        self._lock = threading.Lock()
        self._watches: dict[str, WatchedType] = {}
        self._tasks: dict[str, PeriodicTask] = {}

    def start_watch(self, type_key: str, interval_sec: float) -> WatchHandle:
        """Begin polling ``type_key`` every ``interval_sec`` seconds.

        Raises:
            AlreadyWatchingError: the key already has an active watch.
            ValueError: the interval is not positive.
        """
        task = PeriodicTask(f"watch:{type_key}", interval_sec, lambda: self.poll(type_key))
        with self._lock:
            if type_key in self._watches:
                raise AlreadyWatchingError(type_key)
            self._watches[type_key] = WatchedType(type_key=type_key, interval_sec=task.interval_sec)
            self._tasks[type_key] = task
        task.start()
        logger.info("now watching %s every %ss", type_key, task.interval_sec)
        return WatchHandle(self, type_key)

    def stop_watch(self, type_key: str, timeout: float | None = None) -> None:
        """Raises NotWatchedError when ``type_key`` has no active watch."""
        with self._lock:
            if type_key not in self._watches:
                raise NotWatchedError(type_key)
            del self._watches[type_key]
            task = self._tasks.pop(type_key)
        task.stop(timeout)
        logger.info("stopped watching %s", type_key)

    def stop_all(self, timeout: float | None = None) -> int:
        with self._lock:
            tasks = list(self._tasks.values())
            self._watches.clear()
            self._tasks.clear()
        for task in tasks:
            task.stop(timeout)
        return len(tasks)

    def is_watching(self, type_key: str) -> bool:
        with self._lock:
            return type_key in self._watches

    def watched(self) -> list[WatchedType]:
        """Copies of the active watch records, ordered by key."""
        with self._lock:
            return [replace(self._watches[key]) for key in sorted(self._watches)]

    def poll(self, type_key: str) -> WatchStatus | None:
        """Sample ``type_key`` once and emit its status. None if it is not watched."""
        count = self._registry.count(type_key)
        with self._lock:
            watch = self._watches.get(type_key)
            if watch is None:
                return None
            delta = count - watch.last_count
            watch.last_count = count
        event = WatchStatus(
            type_key=type_key,
            count=count,
            delta=delta,
            status=classify_spike(delta, self.thresholds),
            timestamp=self._clock(),
        )
        self._sink(event)
        return event
