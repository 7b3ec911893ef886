"""Configuration file I/O for heapcensus.

Manages a JSON config file at $XDG_CONFIG_HOME/heapcensus/config.json
(overridable with HEAPCENSUS_CONFIG). Unknown keys are dropped; malformed
values fall back to their defaults.

// [LAW:one-source-of-truth] All known settings and their defaults live on CensusConfig.
// [LAW:dataflow-not-control-flow] One normalization pipeline for every field, driven by the default's type.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
import os
from collections.abc import Iterable, Mapping
from pathlib import Path

from heapcensus.core.diff import BYTES_PER_MB, SpikeThresholds, ignore_predicate
from heapcensus.io.files import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_FRAGMENTS: tuple[str, ...] = ("butterfly", "transient", "smoke", "sparks", "pollen")


@dataclasses.dataclass(frozen=True)
class CensusConfig:
    # Total memory growth (MB) between alert cycles that counts as a spike.
    alert_memory_spike_mb: float = 100.0
    # Per-type instance growth between alert cycles that counts as a spike.
    alert_instance_spike: int = 500
    alert_check_interval_sec: int = 30
    # Types below this many MB are left out of memory reports.
    report_filter_mb: float = 0.0
    ignore_spike_type_fragments: tuple[str, ...] = DEFAULT_IGNORE_FRAGMENTS
    track_individual_instances: bool = False
    verbose_instance_diff: bool = False
    watch_leak_threshold: int = 50
    watch_grow_threshold: int = 5
    watch_shrink_threshold: int = -5
    heat_threshold: int = 100
    heat_check_interval_sec: int = 10
    start_tracemalloc: bool = False

    @property
    def memory_threshold_bytes(self) -> float:
        return self.alert_memory_spike_mb * BYTES_PER_MB

    @property
    def watch_thresholds(self) -> SpikeThresholds:
        return SpikeThresholds(
            leak=self.watch_leak_threshold,
            grow=self.watch_grow_threshold,
            shrink=self.watch_shrink_threshold,
        )

    def is_ignored(self, type_key: str) -> bool:
        return ignore_predicate(self.ignore_spike_type_fragments)(type_key)

    def to_dict(self) -> dict[str, object]:
        data = dataclasses.asdict(self)
        data["ignore_spike_type_fragments"] = list(self.ignore_spike_type_fragments)
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "CensusConfig":
        values: dict[str, object] = {}
        for f in dataclasses.fields(cls):
            if f.name not in data:
                continue
            default = f.default
            values[f.name] = _normalize(f.name, data[f.name], default)
        return cls(**values)


def _normalize_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def dedupe_fragments(fragments: Iterable[object]) -> tuple[str, ...]:
    """Drop blanks and case-insensitive duplicates, keeping the first spelling."""
    seen: set[str] = set()
    result: list[str] = []
    for fragment in fragments:
        text = str(fragment).strip()
        folded = text.casefold()
        if not text or folded in seen:
            continue
        seen.add(folded)
        result.append(text)
    return tuple(result)


def _normalize(name: str, value: object, default: object) -> object:
    if value is None:
        return default
    if isinstance(default, bool):
        return _normalize_bool(value, default)
    if isinstance(default, tuple):
        if isinstance(value, str) or not isinstance(value, Iterable):
            logger.warning("config %s: expected a list, keeping default", name)
            return default
        return dedupe_fragments(value)
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            number = float(value)
            if not math.isfinite(number):
                raise ValueError(f"non-finite {number}")
            return number
    except (TypeError, ValueError, OverflowError):
        logger.warning("config %s: invalid value %r, keeping default", name, value)
        return default
    return value


def get_config_path() -> Path:
    """Return path to the config file.

    HEAPCENSUS_CONFIG wins; otherwise XDG_CONFIG_HOME (default ~/.config) / heapcensus / config.json.
    """
    explicit = os.environ.get("HEAPCENSUS_CONFIG")
    if explicit:
        return Path(explicit)
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "heapcensus" / "config.json"


def load_config(path: Path | None = None) -> CensusConfig:
    """Load config from JSON. Returns defaults on missing/corrupt file."""
    path = path or get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; defaults are the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return CensusConfig()
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
        logger.warning("config %s unreadable (%s); using defaults", path, exc)
        return CensusConfig()
    if not isinstance(data, Mapping):
        logger.warning("config %s is not a JSON object; using defaults", path)
        return CensusConfig()
    return CensusConfig.from_mapping(data)


def save_config(config: CensusConfig, path: Path | None = None) -> Path:
    """Atomic write of the config to JSON. Returns the path written."""
    path = path or get_config_path()
    atomic_write_text(path, json.dumps(config.to_dict(), indent=2) + "\n")
    return path
