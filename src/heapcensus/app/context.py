"""Explicit process-wide census context.

// [LAW:one-source-of-truth] One registry, one size cache and one config per context.
// [LAW:single-enforcer] open()/close() are the only lifecycle transitions.

Hosts create one CensusContext at startup, call open(), hand it (or its
registry) to whatever needs it, and close() it at shutdown. There is no
implicit module-level instance.
"""

from __future__ import annotations

import logging
import tracemalloc

from heapcensus.app.alerts import AlertWatcher, AutoSnapshotter, HeatWatcher
from heapcensus.app.watch import WatchScheduler
from heapcensus.core.capture import MemoryProvider, capture, capture_filtered, tracemalloc_memory_provider
from heapcensus.core.diff import ignore_predicate
from heapcensus.core.registry import WeakRegistry
from heapcensus.core.snapshot import Snapshot
from heapcensus.core.type_keys import VariantResolver
from heapcensus.core.type_sizes import TypeSizeEstimator, resolve_loaded_type
from heapcensus.errors import SnapshotNotFoundError
from heapcensus.io.settings import CensusConfig
from heapcensus.io.snapshot_store import SnapshotStore, safe_file_component

logger = logging.getLogger(__name__)

_TRACEMALLOC_FRAMES = 25
# Upper bound per monitor on waiting for an in-flight cycle during close().
_STOP_TIMEOUT_SEC = 1.0


class CensusContext:
    def __init__(
        self,
        config: CensusConfig | None = None,
        *,
        store: SnapshotStore | None = None,
        memory_provider: MemoryProvider = tracemalloc_memory_provider,
        variant_resolver: VariantResolver | None = None,
    ) -> None:
        self.config = config or CensusConfig()
        self.store = store
        self._memory_provider = memory_provider
        self.registry = WeakRegistry(variant_resolver)
        self.estimator = TypeSizeEstimator(resolvers=(self.registry.resolve_type, resolve_loaded_type))
        self.is_ignored = ignore_predicate(self.config.ignore_spike_type_fragments)
        self.watches = WatchScheduler(self.registry, thresholds=self.config.watch_thresholds)
        self.alerts = AlertWatcher.from_config(
            self.capture,
            self.config,
            store=store.save if store is not None else None,
        )
        self.heat = HeatWatcher(
            self.registry,
            threshold=self.config.heat_threshold,
            interval_sec=self.config.heat_check_interval_sec,
            is_ignored=self.is_ignored,
            after_check=self._save_watched_filtered,
        )
        self.auto_snapshots = AutoSnapshotter(self.capture, self._store_or_drop)
        self._opened = False
        self._started_tracemalloc = False

    @property
    def opened(self) -> bool:
        return self._opened

    def open(self) -> "CensusContext":
        if self._opened:
            return self
        if self.config.start_tracemalloc and not tracemalloc.is_tracing():
            tracemalloc.start(_TRACEMALLOC_FRAMES)
            self._started_tracemalloc = True
        self._opened = True
        logger.info("census context opened")
        return self

    def close(self) -> None:
        """Stop every background task and forget all tracked objects."""
        if not self._opened:
            return
        self.alerts.stop(_STOP_TIMEOUT_SEC)
        self.heat.stop(_STOP_TIMEOUT_SEC)
        self.auto_snapshots.stop(_STOP_TIMEOUT_SEC)
        self.watches.stop_all(_STOP_TIMEOUT_SEC)
        self.registry.clear()
        if self._started_tracemalloc:
            tracemalloc.stop()
            self._started_tracemalloc = False
        self._opened = False
        logger.info("census context closed")

    def __enter__(self) -> "CensusContext":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def register(self, obj: object) -> bool:
        return self.registry.register(obj)

    def capture(self) -> Snapshot:
        return capture(
            self.registry,
            self.estimator,
            individual_tracking=self.config.track_individual_instances,
            memory_provider=self._memory_provider,
        )

    def snapshot(self, name: str | None = None) -> Snapshot:
        """Capture and, when a store is configured, persist under ``name``."""
        snap = self.capture()
        if self.store is not None:
            self.store.save(snap, name)
        return snap

    def _store_or_drop(self, snap: Snapshot) -> None:
        if self.store is not None:
            self.store.save(snap)

    def _save_watched_filtered(self) -> None:
        if self.store is None:
            return
        filtered = SnapshotStore(self.store.directory / "filtered")
        for watched in self.watches.watched():
            snap = capture_filtered(self.registry, watched.type_key)
            stamp = snap.timestamp.strftime("%Y%m%d_%H%M%S")
            filtered.save(snap, f"{stamp}_{safe_file_component(watched.type_key)}")

    def load_snapshot(self, name: str) -> Snapshot:
        """Load a stored snapshot, adopting its recorded per-instance sizes for keys not yet estimated."""
        if self.store is None:
            raise SnapshotNotFoundError(f"Snapshot '{name}' not found: no store configured")
        snap = self.store.load(name)
        self.estimator.seed(snap.estimated_bytes_per_type)
        return snap
