"""Two-column rows for spreadsheet-style export. File mechanics live in io.snapshot_store."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from heapcensus.core.diff import GraphPoint, TypeDelta
from heapcensus.core.snapshot import Snapshot

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class Table:
    header: tuple[str, str]
    rows: tuple[tuple[str, object], ...]


def count_rows(snapshot: Snapshot) -> Table:
    items = sorted(
        (kv for kv in snapshot.object_counts_by_type.items() if kv[1] != 0),
        key=lambda kv: (-kv[1], kv[0]),
    )
    return Table(("TypeName", "InstanceCount"), tuple(items))


def delta_rows(deltas: Iterable[TypeDelta]) -> Table:
    return Table(("TypeName", "Delta"), tuple((d.type_key, d.delta) for d in deltas if d.delta != 0))


def graph_rows(points: Iterable[GraphPoint]) -> Table:
    return Table(
        ("Timestamp", "InstanceCount"),
        tuple((p.timestamp.strftime(TIMESTAMP_FORMAT), p.count) for p in points),
    )
