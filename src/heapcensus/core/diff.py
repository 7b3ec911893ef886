"""Pure comparison functions over snapshots: diffs, heatmaps, summaries, growth series.

// [LAW:dataflow-not-control-flow] Nothing here reads the live registry; inputs are Snapshot values.
// [LAW:one-source-of-truth] Every count comparison goes through count_deltas().

Ignore lists only ever suppress alerting (spikes, heat, highlights). Raw
diffs and counts stay complete.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import NamedTuple

from heapcensus.core.snapshot import Position, Snapshot
from heapcensus.core.type_keys import matches_fragment
from heapcensus.errors import SnapshotUnusableError

BYTES_PER_MB = 1024 * 1024

IgnorePredicate = Callable[[str], bool]


def never_ignored(type_key: str) -> bool:
    return False


def ignore_predicate(fragments: Iterable[str]) -> IgnorePredicate:
    """Predicate matching keys that contain any fragment, case-insensitively."""
    cleaned = tuple(f for f in (str(x).strip() for x in fragments) if f)
    if not cleaned:
        return never_ignored

    def _is_ignored(type_key: str) -> bool:
        return any(matches_fragment(type_key, fragment) for fragment in cleaned)

    return _is_ignored


# ---------------------------------------------------------------------------
# Diff / heatmap
# ---------------------------------------------------------------------------


class TypeDelta(NamedTuple):
    type_key: str
    delta: int


class DiffOrder(str, enum.Enum):
    ALPHABETICAL = "alphabetical"
    MAGNITUDE = "magnitude"


def count_deltas(old: Mapping[str, int], new: Mapping[str, int]) -> dict[str, int]:
    """Non-zero ``new - old`` for every key in either mapping."""
    deltas: dict[str, int] = {}
    for key in old.keys() | new.keys():
        delta = new.get(key, 0) - old.get(key, 0)
        if delta != 0:
            deltas[key] = delta
    return deltas


def _by_magnitude(item: tuple[str, int]) -> tuple[int, str]:
    return (-abs(item[1]), item[0])


def diff(a: Snapshot, b: Snapshot, *, order: DiffOrder = DiffOrder.ALPHABETICAL) -> list[TypeDelta]:
    """Per-type count changes from ``a`` to ``b``; unchanged types are omitted."""
    deltas = count_deltas(a.object_counts_by_type, b.object_counts_by_type)
    if DiffOrder(order) is DiffOrder.MAGNITUDE:
        items = sorted(deltas.items(), key=_by_magnitude)
    else:
        items = sorted(deltas.items())
    return [TypeDelta(key, delta) for key, delta in items]


def heatmap(a: Snapshot, b: Snapshot, top_n: int = 10) -> list[TypeDelta]:
    """Largest-magnitude changes first, at most ``top_n`` of them."""
    return diff(a, b, order=DiffOrder.MAGNITUDE)[: max(0, top_n)]


@dataclass(frozen=True)
class InstanceChange:
    type_key: str
    added: tuple[str, ...]
    removed: tuple[str, ...]


def instance_diff(a: Snapshot, b: Snapshot) -> list[InstanceChange]:
    """Instance ids that appeared/disappeared, for types with detail in both snapshots."""
    old_map = a.tracked_instances_by_type
    new_map = b.tracked_instances_by_type
    if old_map is None or new_map is None:
        return []
    changes: list[InstanceChange] = []
    for key in sorted(old_map.keys() & new_map.keys()):
        old_ids = {info.id for info in old_map[key]}
        new_ids = {info.id for info in new_map[key]}
        added = tuple(sorted(new_ids - old_ids))
        removed = tuple(sorted(old_ids - new_ids))
        if added or removed:
            changes.append(InstanceChange(key, added, removed))
    return changes


# ---------------------------------------------------------------------------
# Reports over one snapshot
# ---------------------------------------------------------------------------


def top_types(snapshot: Snapshot, n: int = 10) -> list[tuple[str, int]]:
    items = sorted(snapshot.object_counts_by_type.items(), key=lambda kv: (-kv[1], kv[0]))
    return items[: max(0, n)]


def memory_report(snapshot: Snapshot, floor_mb: float = 0.0) -> list[tuple[str, int]]:
    """Estimated bytes per type, largest first, dropping types below ``floor_mb``.

    Raises:
        SnapshotUnusableError: the snapshot carries no memory estimates.
    """
    memory = snapshot.estimated_memory_bytes_per_type
    if not memory:
        raise SnapshotUnusableError("snapshot is missing memory data")
    floor_bytes = float(floor_mb) * BYTES_PER_MB
    items = sorted(memory.items(), key=lambda kv: (-kv[1], kv[0]))
    return [(key, value) for key, value in items if value >= floor_bytes]


# ---------------------------------------------------------------------------
# Summary across many snapshots
# ---------------------------------------------------------------------------


class SummaryEntry(NamedTuple):
    type_key: str
    average_count: int
    estimated_bytes: int


@dataclass(frozen=True)
class SummaryResult:
    snapshot_count: int
    entries: tuple[SummaryEntry, ...] = ()

    @property
    def max_average(self) -> int:
        return max((entry.average_count for entry in self.entries), default=0)


def summary(snapshots: Sequence[Snapshot], top_n: int = 10) -> SummaryResult:
    """Average count per type across ``snapshots`` (truncating division), top ``top_n``.

    The memory figure is the per-type estimated bytes summed over all snapshots.
    """
    if not snapshots:
        return SummaryResult(snapshot_count=0)
    totals: dict[str, int] = {}
    memory: dict[str, int] = {}
    for snap in snapshots:
        for key, count in snap.object_counts_by_type.items():
            totals[key] = totals.get(key, 0) + count
        for key, value in snap.estimated_memory_bytes_per_type.items():
            memory[key] = memory.get(key, 0) + value

    n = len(snapshots)
    averages = sorted(((key, total // n) for key, total in totals.items()), key=lambda kv: (-kv[1], kv[0]))
    entries = tuple(
        SummaryEntry(key, average, memory.get(key, 0)) for key, average in averages[: max(0, top_n)]
    )
    return SummaryResult(snapshot_count=n, entries=entries)


# ---------------------------------------------------------------------------
# Growth series
# ---------------------------------------------------------------------------


class GraphPoint(NamedTuple):
    timestamp: datetime
    count: int


class GraphSeries:
    """Restartable, lazy ``(timestamp, count)`` series for keys matching a filter.

    Uses the most recent ``limit`` snapshots in chronological order. Each
    iteration recomputes from the captured input; the live registry is never
    consulted.
    """

    def __init__(self, snapshots: Iterable[Snapshot], type_filter: str, limit: int = 20) -> None:
        ordered = sorted(snapshots, key=lambda snap: snap.timestamp)
        self._snapshots: tuple[Snapshot, ...] = tuple(ordered[-limit:]) if limit > 0 else ()
        self.type_filter = type_filter

    def __iter__(self) -> Iterator[GraphPoint]:
        for snap in self._snapshots:
            count = sum(
                value
                for key, value in snap.object_counts_by_type.items()
                if matches_fragment(key, self.type_filter)
            )
            yield GraphPoint(snap.timestamp, count)

    def __len__(self) -> int:
        return len(self._snapshots)


def graph_series(snapshots: Iterable[Snapshot], type_filter: str, limit: int = 20) -> GraphSeries:
    return GraphSeries(snapshots, type_filter, limit)


def with_deltas(points: Iterable[GraphPoint]) -> list[tuple[GraphPoint, int | None]]:
    """Pair each point with its change from the previous one (None for the first)."""
    result: list[tuple[GraphPoint, int | None]] = []
    previous: int | None = None
    for point in points:
        result.append((point, None if previous is None else point.count - previous))
        previous = point.count
    return result


# ---------------------------------------------------------------------------
# Spike classification and alerting
# ---------------------------------------------------------------------------


class SpikeStatus(str, enum.Enum):
    LEAKING = "leaking"
    GROWING = "growing"
    SHRINKING = "shrinking"
    STABLE = "stable"


@dataclass(frozen=True)
class SpikeThresholds:
    leak: int = 50
    grow: int = 5
    shrink: int = -5


def classify_spike(delta: int, thresholds: SpikeThresholds = SpikeThresholds()) -> SpikeStatus:
    if delta >= thresholds.leak:
        return SpikeStatus.LEAKING
    if delta >= thresholds.grow:
        return SpikeStatus.GROWING
    if delta <= thresholds.shrink:
        return SpikeStatus.SHRINKING
    return SpikeStatus.STABLE


@dataclass(frozen=True)
class InstanceSpike:
    type_key: str
    old: int
    new: int

    @property
    def delta(self) -> int:
        return self.new - self.old


def count_spikes(
    old: Mapping[str, int],
    new: Mapping[str, int],
    threshold: int,
    is_ignored: IgnorePredicate = never_ignored,
) -> list[InstanceSpike]:
    """Keys of ``new`` that grew by at least ``threshold``, largest growth first."""
    spikes = [
        InstanceSpike(key, old.get(key, 0), count)
        for key, count in new.items()
        if not is_ignored(key) and count - old.get(key, 0) >= threshold
    ]
    spikes.sort(key=lambda spike: (-spike.delta, spike.type_key))
    return spikes


@dataclass(frozen=True)
class SpikeReport:
    memory_delta_bytes: int
    memory_spike: bool
    instance_spikes: tuple[InstanceSpike, ...] = field(default_factory=tuple)

    @property
    def has_alerts(self) -> bool:
        return self.memory_spike or bool(self.instance_spikes)


def detect_spikes(
    old: Snapshot,
    new: Snapshot,
    *,
    instance_threshold: int,
    memory_threshold_bytes: float,
    is_ignored: IgnorePredicate = never_ignored,
) -> SpikeReport:
    memory_delta = new.total_managed_memory_bytes - old.total_managed_memory_bytes
    return SpikeReport(
        memory_delta_bytes=memory_delta,
        memory_spike=memory_delta >= memory_threshold_bytes,
        instance_spikes=tuple(
            count_spikes(old.object_counts_by_type, new.object_counts_by_type, instance_threshold, is_ignored)
        ),
    )


@dataclass(frozen=True)
class HighlightGroup:
    type_key: str
    positions: tuple[Position, ...]


def highlight_groups(
    previous: Snapshot,
    current: Snapshot,
    threshold: int,
    is_ignored: IgnorePredicate = never_ignored,
) -> list[HighlightGroup]:
    """Known positions of instances of fast-growing types in ``current``."""
    instances = current.tracked_instances_by_type
    if instances is None:
        return []
    groups: list[HighlightGroup] = []
    for spike in count_spikes(
        previous.object_counts_by_type, current.object_counts_by_type, threshold, is_ignored
    ):
        infos = instances.get(spike.type_key)
        if infos is None:
            continue
        positions = tuple(info.position for info in infos if info.position is not None)
        groups.append(HighlightGroup(spike.type_key, positions))
    return groups
