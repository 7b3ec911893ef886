"""Immutable point-in-time population snapshot and its JSON interchange form.

// [LAW:one-source-of-truth] Interchange field names are defined once, in the _FIELD_* constants.

Interchange record::

    {
      "timestamp": "2026-01-01T12:00:00+00:00",
      "totalManagedMemoryBytes": 123,
      "objectCountsByType": {"pkg.Foo": 3},
      "estimatedBytesPerType": {"pkg.Foo": 40},
      "estimatedMemoryBytesPerType": {"pkg.Foo": 120},
      "trackedInstancesByType": {"pkg.Foo": [{"id": "7", "position": {"x": 1, "y": 2, "z": 3}}]}
    }

``trackedInstancesByType`` is present only when individual tracking was on.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType

from heapcensus.errors import SnapshotUnusableError

_FIELD_TIMESTAMP = "timestamp"
_FIELD_TOTAL_MEMORY = "totalManagedMemoryBytes"
_FIELD_COUNTS = "objectCountsByType"
_FIELD_SIZES = "estimatedBytesPerType"
_FIELD_MEMORY = "estimatedMemoryBytesPerType"
_FIELD_INSTANCES = "trackedInstancesByType"

_EMPTY: Mapping[str, int] = MappingProxyType({})


@dataclass(frozen=True)
class Position:
    x: int
    y: int
    z: int

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass(frozen=True)
class InstanceInfo:
    """Debugging metadata for one live instance. ``id`` is not a stable key."""

    id: str
    position: Position | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "position": self.position.to_dict() if self.position is not None else None,
        }


def _frozen_counts(values: Mapping[str, int] | None) -> Mapping[str, int]:
    if not values:
        return _EMPTY
    return MappingProxyType({str(k): int(v) for k, v in values.items()})


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time record of counts, size estimates and optional instance detail.

    All mappings are read-only views; a Snapshot is safe to share across threads.
    """

    timestamp: datetime
    total_managed_memory_bytes: int
    object_counts_by_type: Mapping[str, int]
    estimated_bytes_per_type: Mapping[str, int] = field(default_factory=dict)
    estimated_memory_bytes_per_type: Mapping[str, int] = field(default_factory=dict)
    tracked_instances_by_type: Mapping[str, tuple[InstanceInfo, ...]] | None = None

    def __post_init__(self) -> None:
        stamp = self.timestamp
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "timestamp", stamp)
        object.__setattr__(self, "total_managed_memory_bytes", int(self.total_managed_memory_bytes))
        object.__setattr__(self, "object_counts_by_type", _frozen_counts(self.object_counts_by_type))
        object.__setattr__(self, "estimated_bytes_per_type", _frozen_counts(self.estimated_bytes_per_type))
        object.__setattr__(
            self, "estimated_memory_bytes_per_type", _frozen_counts(self.estimated_memory_bytes_per_type)
        )
        if self.tracked_instances_by_type is not None:
            object.__setattr__(
                self,
                "tracked_instances_by_type",
                MappingProxyType(
                    {str(k): tuple(v) for k, v in self.tracked_instances_by_type.items()}
                ),
            )

    @classmethod
    def build(
        cls,
        *,
        timestamp: datetime,
        total_managed_memory_bytes: int,
        counts: Mapping[str, int],
        sizes: Mapping[str, int],
        instances: Mapping[str, list[InstanceInfo]] | None = None,
    ) -> "Snapshot":
        """Construct a snapshot, deriving per-type totals as count x per-instance size."""
        memory = {key: int(count) * int(sizes.get(key, 0)) for key, count in counts.items()}
        return cls(
            timestamp=timestamp,
            total_managed_memory_bytes=total_managed_memory_bytes,
            object_counts_by_type=counts,
            estimated_bytes_per_type=sizes,
            estimated_memory_bytes_per_type=memory,
            tracked_instances_by_type=instances,
        )

    @property
    def total_instances(self) -> int:
        return sum(self.object_counts_by_type.values())

    @property
    def total_estimated_bytes(self) -> int:
        return sum(self.estimated_memory_bytes_per_type.values())

    def count(self, type_key: str) -> int:
        return self.object_counts_by_type.get(type_key, 0)


# ---------------------------------------------------------------------------
# Interchange
# ---------------------------------------------------------------------------


def to_dict(snapshot: Snapshot) -> dict[str, object]:
    data: dict[str, object] = {
        _FIELD_TIMESTAMP: snapshot.timestamp.isoformat(),
        _FIELD_TOTAL_MEMORY: snapshot.total_managed_memory_bytes,
        _FIELD_COUNTS: dict(snapshot.object_counts_by_type),
        _FIELD_SIZES: dict(snapshot.estimated_bytes_per_type),
        _FIELD_MEMORY: dict(snapshot.estimated_memory_bytes_per_type),
    }
    if snapshot.tracked_instances_by_type is not None:
        data[_FIELD_INSTANCES] = {
            key: [info.to_dict() for info in infos]
            for key, infos in snapshot.tracked_instances_by_type.items()
        }
    return data


def _require_int(value: object, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SnapshotUnusableError(f"{where}: expected integer, got {type(value).__name__}")
    # JSON admits NaN, Infinity and fractions; none of them is a count.
    if isinstance(value, float) and not (math.isfinite(value) and value.is_integer()):
        raise SnapshotUnusableError(f"{where}: expected integer, got {value!r}")
    return int(value)


def _int_map(data: Mapping[str, object], name: str, *, required: bool) -> dict[str, int]:
    if name not in data:
        if required:
            raise SnapshotUnusableError(f"snapshot is missing '{name}'")
        return {}
    raw = data[name]
    if not isinstance(raw, Mapping):
        raise SnapshotUnusableError(f"'{name}' must be an object, got {type(raw).__name__}")
    return {str(key): _require_int(value, f"{name}[{key!r}]") for key, value in raw.items()}


def _parse_timestamp(raw: object) -> datetime:
    if not isinstance(raw, str) or not raw:
        raise SnapshotUnusableError(f"'{_FIELD_TIMESTAMP}' must be an ISO-8601 string")
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise SnapshotUnusableError(f"unparseable timestamp {raw!r}") from exc


def _parse_position(raw: object) -> Position | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise SnapshotUnusableError("instance position must be an object or null")
    return Position(
        x=_require_int(raw.get("x"), "position.x"),
        y=_require_int(raw.get("y"), "position.y"),
        z=_require_int(raw.get("z"), "position.z"),
    )


def _parse_instances(raw: object) -> dict[str, list[InstanceInfo]] | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise SnapshotUnusableError(f"'{_FIELD_INSTANCES}' must be an object")
    result: dict[str, list[InstanceInfo]] = {}
    for key, entries in raw.items():
        if not isinstance(entries, list):
            raise SnapshotUnusableError(f"'{_FIELD_INSTANCES}[{key!r}]' must be a list")
        infos = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                raise SnapshotUnusableError("instance entries must be objects")
            infos.append(
                InstanceInfo(id=str(entry.get("id", "")), position=_parse_position(entry.get("position")))
            )
        result[str(key)] = infos
    return result


def from_dict(data: object) -> Snapshot:
    """Decode an interchange record. Raises SnapshotUnusableError on malformed input."""
    if not isinstance(data, Mapping):
        raise SnapshotUnusableError("snapshot record must be a JSON object")
    total_raw = data.get(_FIELD_TOTAL_MEMORY, 0)
    return Snapshot(
        timestamp=_parse_timestamp(data.get(_FIELD_TIMESTAMP)),
        total_managed_memory_bytes=_require_int(total_raw if total_raw is not None else 0, _FIELD_TOTAL_MEMORY),
        object_counts_by_type=_int_map(data, _FIELD_COUNTS, required=True),
        estimated_bytes_per_type=(
            _int_map(data, _FIELD_SIZES, required=False) if data.get(_FIELD_SIZES) is not None else {}
        ),
        estimated_memory_bytes_per_type=_int_map(data, _FIELD_MEMORY, required=False),
        tracked_instances_by_type=_parse_instances(data.get(_FIELD_INSTANCES)),
    )


def encode(snapshot: Snapshot, *, indent: int | None = 2) -> str:
    return json.dumps(to_dict(snapshot), indent=indent)


def decode(text: str | bytes) -> Snapshot:
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SnapshotUnusableError(f"snapshot is not valid JSON: {exc}") from exc
    return from_dict(data)
