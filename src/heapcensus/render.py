"""Report rendering - pure functions building display text from engine results.

Every renderer returns a rich Text; ``.plain`` is the export form.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from rich.text import Text

from heapcensus.core.diff import (
    BYTES_PER_MB,
    GraphPoint,
    SummaryResult,
    TypeDelta,
    diff,
    instance_diff,
    with_deltas,
)
from heapcensus.core.snapshot import Snapshot
from heapcensus.core.type_keys import format_type_name


def ascii_bar(value: int, max_value: int, width: int = 20) -> str:
    """Proportional bar like ``[####      ]``."""
    if max_value <= 0:
        filled = 0
    else:
        filled = max(0, min(width, int(value / max_value * width)))
    return "[" + ("#" * filled).ljust(width) + "]"


def _mb(value: int) -> int:
    return value // BYTES_PER_MB


def _delta_style(delta: int) -> str:
    # [LAW:dataflow-not-control-flow] Growth is red, shrinkage green.
    return "red" if delta > 0 else "green"


def _append_delta_line(text: Text, delta: TypeDelta, width: int) -> None:
    text.append(f"{delta.delta:+{width}d}", style=_delta_style(delta.delta))
    text.append(f"  {delta.type_key}\n")


def render_diff(name_a: str, name_b: str, a: Snapshot, b: Snapshot, *, verbose: bool = False) -> Text:
    text = Text()
    text.append(f"Snapshot diff: {name_a} -> {name_b}\n", style="bold")
    text.append(f"Memory: {_mb(a.total_managed_memory_bytes)} MB -> {_mb(b.total_managed_memory_bytes)} MB\n")
    text.append("Changed types:\n")
    deltas = diff(a, b)
    for delta in deltas:
        _append_delta_line(text, delta, 4)

    changes = instance_diff(a, b)
    if changes:
        text.append("Changed instances:\n")
        for change in changes:
            text.append(f"* {format_type_name(change.type_key)} -> +{len(change.added)}, -{len(change.removed)}\n")
            if verbose:
                for instance_id in change.added:
                    text.append(f"    + ID: {instance_id}\n", style="red")
                for instance_id in change.removed:
                    text.append(f"    - ID: {instance_id}\n", style="green")

    if not deltas and not changes:
        text.append("No differences detected.\n", style="dim")
    return text


def render_heatmap(name_a: str, name_b: str, deltas: Sequence[TypeDelta]) -> Text:
    text = Text()
    if not deltas:
        text.append("No changes detected.\n", style="dim")
        return text
    text.append(f"Heatmap: {name_a} -> {name_b}\n", style="bold")
    for delta in deltas:
        text.append("  ")
        _append_delta_line(text, delta, 5)
    return text


def render_top_types(name: str, snapshot: Snapshot, top: Sequence[tuple[str, int]]) -> Text:
    text = Text()
    text.append(f"Snapshot report: '{name}'\n", style="bold")
    text.append(f"Total heap: {_mb(snapshot.total_managed_memory_bytes)} MB\n")
    text.append(f"Top {len(top)} types by instance count:\n")
    for type_key, count in top:
        text.append(f"{count:6d} x {type_key}\n")
    return text


def render_memory_report(name: str, rows: Iterable[tuple[str, int]]) -> Text:
    text = Text()
    text.append(f"Estimated memory usage in '{name}':\n", style="bold")
    for type_key, value in rows:
        text.append(f"    {type_key} = {value / BYTES_PER_MB:.1f} MB\n")
    return text


def render_summary(result: SummaryResult) -> Text:
    text = Text()
    if not result.entries:
        text.append("Summary found no tracked types.\n", style="dim")
        return text
    text.append(f"Summary across {result.snapshot_count} snapshots:\n", style="bold")
    peak = result.max_average
    for entry in result.entries:
        text.append(ascii_bar(entry.average_count, peak), style="cyan")
        text.append(
            f"  {entry.average_count:5d} x {entry.type_key:<60} ~ {entry.estimated_bytes / BYTES_PER_MB:6.1f} MB\n"
        )
    return text


def render_graph(type_filter: str, points: Iterable[GraphPoint]) -> Text:
    rows = with_deltas(points)
    text = Text()
    text.append(f"Instance history for '{type_filter}':\n", style="bold")
    if not rows:
        text.append("No snapshots.\n", style="dim")
        return text
    peak = max(point.count for point, _ in rows)
    for point, delta in rows:
        text.append(f"{point.timestamp:%H:%M:%S} ")
        text.append(ascii_bar(point.count, peak), style="cyan")
        text.append(f" {point.count}")
        if delta is not None:
            text.append(f" ({delta:+d})", style=_delta_style(delta) if delta else "")
        text.append("\n")
    return text
