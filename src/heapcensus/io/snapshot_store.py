"""Snapshot persistence: one JSON file per snapshot in a directory, plus CSV/text exports.

This module is the storage collaborator for the pure diff engine: it turns
names into Snapshot values and tables/lines into files.
"""

from __future__ import annotations

import csv
import logging
import os
import re
from collections.abc import Iterable
from pathlib import Path

from heapcensus.core import snapshot as snapshot_codec
from heapcensus.core.snapshot import Snapshot
from heapcensus.core.tabular import Table
from heapcensus.errors import SnapshotNotFoundError, SnapshotUnusableError
from heapcensus.io.files import atomic_write_text

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".json"
DEFAULT_NAME_FORMAT = "%Y%m%d_%H%M%S"
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-]*$")


def default_snapshot_dir() -> Path:
    return Path(
        os.environ.get(
            "HEAPCENSUS_SNAPSHOT_DIR", os.path.expanduser("~/.local/share/heapcensus/snapshots")
        )
    )


def safe_file_component(value: str) -> str:
    """Make ``value`` usable inside a filename (``pkg.Foo:bar`` -> ``pkg.Foo_bar``)."""
    candidate = "".join(ch if (ch.isalnum() or ch in {"-", "_", "."}) else "_" for ch in value)
    return candidate.strip("._") or "unnamed"


class SnapshotStore:
    def __init__(self, directory: Path | str | None = None) -> None:
        self.directory = Path(directory) if directory is not None else default_snapshot_dir()

    def path_for(self, name: str) -> Path:
        if not _NAME_RE.match(name or ""):
            raise ValueError(f"invalid snapshot name {name!r}")
        return self.directory / f"{name}{SNAPSHOT_SUFFIX}"

    def save(self, snapshot: Snapshot, name: str | None = None) -> Path:
        """Write ``snapshot``; defaults to a name derived from its timestamp."""
        name = name or snapshot.timestamp.strftime(DEFAULT_NAME_FORMAT)
        path = self.path_for(name)
        atomic_write_text(path, snapshot_codec.encode(snapshot) + "\n")
        logger.info("snapshot saved: %s (%d MB)", path.name, snapshot.total_managed_memory_bytes // (1024 * 1024))
        return path

    def load(self, name: str) -> Snapshot:
        """Raises SnapshotNotFoundError or SnapshotUnusableError."""
        path = self.path_for(name)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise SnapshotNotFoundError(f"Snapshot '{name}' not found") from None
        try:
            return snapshot_codec.decode(raw)
        except SnapshotUnusableError as exc:
            raise SnapshotUnusableError(f"Snapshot '{name}' unusable: {exc}") from exc

    def names(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(
            p.stem
            for p in self.directory.glob(f"*{SNAPSHOT_SUFFIX}")
            if p.is_file() and _NAME_RE.match(p.stem)
        )

    def load_all(self) -> list[Snapshot]:
        """Every readable snapshot, oldest first. Unusable files are skipped with a warning."""
        snapshots: list[Snapshot] = []
        for name in self.names():
            try:
                snapshots.append(self.load(name))
            except SnapshotUnusableError as exc:
                logger.warning("skipping %s", exc)
        snapshots.sort(key=lambda snap: snap.timestamp)
        return snapshots

    def latest(self, count: int) -> list[Snapshot]:
        """The ``count`` most recent snapshots by timestamp, oldest first."""
        if count <= 0:
            return []
        return self.load_all()[-count:]

    def export_table(self, table: Table, filename: str) -> Path:
        path = self.directory / filename
        lines: list[list[str]] = [list(table.header)]
        lines.extend([str(cell) for cell in row] for row in table.rows)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as f:
            csv.writer(f).writerows(lines)
        return path

    def export_lines(self, lines: Iterable[str], filename: str) -> Path:
        path = self.directory / filename
        atomic_write_text(path, "".join(f"{line}\n" for line in lines))
        return path
