"""CLI entry point for heapcensus: offline analysis of stored snapshots."""

from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console

import heapcensus.io.logging_setup
from heapcensus.core import tabular
from heapcensus.core.diff import GraphSeries, diff, heatmap, memory_report, summary, top_types
from heapcensus.errors import CensusError
from heapcensus.io.settings import CensusConfig, load_config
from heapcensus.io.snapshot_store import SnapshotStore, default_snapshot_dir, safe_file_component
from heapcensus.render import (
    render_diff,
    render_graph,
    render_heatmap,
    render_memory_report,
    render_summary,
    render_top_types,
)

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="heapcensus", description="Inspect stored object-population snapshots")
    parser.add_argument(
        "--dir",
        type=str,
        default=None,
        help=f"Snapshot directory (default: {default_snapshot_dir()})",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List stored snapshots")

    report = sub.add_parser("report", help="Top types by instance count")
    report.add_argument("name")
    report.add_argument("--top", type=int, default=10)

    memory = sub.add_parser("memory", help="Estimated memory per type")
    memory.add_argument("name")
    memory.add_argument("--floor-mb", type=float, default=None, help="Hide types below this size")

    diff_cmd = sub.add_parser("diff", help="Count changes between two snapshots")
    diff_cmd.add_argument("old")
    diff_cmd.add_argument("new")
    diff_cmd.add_argument("--verbose", action="store_true", default=None, help="List changed instance ids")
    diff_cmd.add_argument("--export", action="store_true", help="Also write the diff to a text file")

    heat = sub.add_parser("heatmap", help="Largest changes between two snapshots")
    heat.add_argument("old")
    heat.add_argument("new")
    heat.add_argument("--top", type=int, default=10)
    heat.add_argument("--csv", action="store_true", help="Export all deltas to CSV")

    summ = sub.add_parser("summary", help="Average counts across recent snapshots")
    summ.add_argument("--count", type=int, default=10, help="Number of recent snapshots")
    summ.add_argument("--top", type=int, default=10)

    graph = sub.add_parser("graph", help="Count history of matching types")
    graph.add_argument("type_filter")
    graph.add_argument("--limit", type=int, default=20)
    graph.add_argument("--csv", action="store_true", help="Export the series to CSV")

    export = sub.add_parser("export", help="Export a snapshot's counts to CSV")
    export.add_argument("name")
    return parser


def _run(args: argparse.Namespace, store: SnapshotStore, config: CensusConfig, console: Console) -> None:
    if args.command == "list":
        names = store.names()
        if not names:
            console.print("No snapshots found.")
        for name in names:
            console.print(name, highlight=False)

    elif args.command == "report":
        snap = store.load(args.name)
        console.print(render_top_types(args.name, snap, top_types(snap, args.top)))

    elif args.command == "memory":
        snap = store.load(args.name)
        floor = config.report_filter_mb if args.floor_mb is None else args.floor_mb
        console.print(render_memory_report(args.name, memory_report(snap, floor)))

    elif args.command == "diff":
        old, new = store.load(args.old), store.load(args.new)
        verbose = config.verbose_instance_diff if args.verbose is None else args.verbose
        text = render_diff(args.old, args.new, old, new, verbose=verbose)
        console.print(text)
        if args.export:
            path = store.export_lines(text.plain.splitlines(), f"diff_{args.old}_to_{args.new}.txt")
            console.print(f"Diff exported to: {path.name}")

    elif args.command == "heatmap":
        old, new = store.load(args.old), store.load(args.new)
        console.print(render_heatmap(args.old, args.new, heatmap(old, new, args.top)))
        if args.csv:
            table = tabular.delta_rows(diff(old, new, order="magnitude"))
            path = store.export_table(table, f"heatmap_{args.old}_to_{args.new}.csv")
            console.print(f"Heatmap exported to: {path.name}")

    elif args.command == "summary":
        snapshots = store.latest(args.count)
        if not snapshots:
            raise CensusError("No snapshots available.")
        console.print(render_summary(summary(snapshots, args.top)))

    elif args.command == "graph":
        snapshots = store.load_all()
        if not snapshots:
            raise CensusError("No snapshot files found.")
        series = GraphSeries(snapshots, args.type_filter, args.limit)
        console.print(render_graph(args.type_filter, series))
        if args.csv:
            path = store.export_table(
                tabular.graph_rows(series), f"graph_{safe_file_component(args.type_filter)}.csv"
            )
            console.print(f"Graph exported to: {path.name}")

    elif args.command == "export":
        snap = store.load(args.name)
        path = store.export_table(tabular.count_rows(snap), f"{args.name}.csv")
        console.print(f"Snapshot '{args.name}' exported to {path.name}")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    heapcensus.io.logging_setup.configure("cli")
    console = Console(no_color=args.no_color, highlight=False)
    store = SnapshotStore(args.dir)
    config = load_config()
    try:
        _run(args, store, config, console)
    except (CensusError, ValueError) as exc:
        logger.debug("command %s failed", args.command, exc_info=True)
        print(f"heapcensus: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
