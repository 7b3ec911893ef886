"""Snapshot capture from the live registry.

// [LAW:single-enforcer] Snapshots of live state are built only by capture()/capture_filtered().

Capture is read-only with respect to the registry apart from the dead-handle
pruning its reads perform. Persisting the result is the caller's business.
"""

from __future__ import annotations

import gc
import logging
import tracemalloc
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone

from heapcensus.core.registry import WeakRegistry
from heapcensus.core.snapshot import InstanceInfo, Position, Snapshot
from heapcensus.core.type_keys import default_variant, matches_fragment
from heapcensus.core.type_sizes import TypeSizeEstimator
from heapcensus.errors import CaptureError

logger = logging.getLogger(__name__)

MemoryProvider = Callable[[], int]
InstanceDescriber = Callable[[object], InstanceInfo]
Clock = Callable[[], datetime]

# Attribute names probed, in order, when projecting an object to InstanceInfo.
ID_ATTRIBUTES: tuple[str, ...] = ("census_id", "entity_id", "id")
POSITION_ATTRIBUTES: tuple[str, ...] = ("census_position", "position", "pos")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tracemalloc_memory_provider(*, collect: bool = True) -> int:
    """Bytes currently traced by tracemalloc after a full collection; 0 when not tracing."""
    if collect:
        gc.collect()
    if not tracemalloc.is_tracing():
        return 0
    current_bytes, _peak_bytes = tracemalloc.get_traced_memory()
    return int(current_bytes)


# ---------------------------------------------------------------------------
# Instance projection
# ---------------------------------------------------------------------------


def _coerce_position(value: object) -> Position | None:
    if value is None:
        return None
    if isinstance(value, Position):
        return value
    try:
        if all(hasattr(value, axis) for axis in ("x", "y", "z")):
            return Position(int(value.x), int(value.y), int(value.z))
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)) and len(value) == 3:
            x, y, z = value
            return Position(int(x), int(y), int(z))
    except (TypeError, ValueError):
        return None
    return None


def _probe(obj: object, names: tuple[str, ...]) -> object:
    for name in names:
        try:
            value = getattr(obj, name, None)
        except Exception:
            continue
        if value is not None and not callable(value):
            return value
    return None


def describe_instance(obj: object) -> InstanceInfo:
    """Heuristic InstanceInfo for a live object.

    Identifier preference: an exposed numeric/string id (suffixed with the
    variant code in brackets), then the position rendered as ``x,y,z``, then
    the identity of the object.
    """
    position = _coerce_position(_probe(obj, POSITION_ATTRIBUTES))
    identifier = _probe(obj, ID_ATTRIBUTES)

    if isinstance(identifier, (int, str)) and not isinstance(identifier, bool) and str(identifier):
        text = str(identifier)
        code = default_variant(obj)
        if code:
            text += f" [{code}]"
    elif position is not None:
        text = f"{position.x},{position.y},{position.z}"
    else:
        text = str(id(obj))
    return InstanceInfo(id=text, position=position)


def project_instances(
    objects_by_type: Mapping[str, list[object]],
    describe: InstanceDescriber = describe_instance,
) -> dict[str, list[InstanceInfo]]:
    return {key: [describe(obj) for obj in objects] for key, objects in objects_by_type.items()}


def find_position(
    instances_by_type: Mapping[str, Sequence[InstanceInfo]],
    id_prefix: str,
) -> Position | None:
    """Position of the first instance whose id equals or starts with ``id_prefix``."""
    for infos in instances_by_type.values():
        for info in infos:
            if info.id == id_prefix or info.id.startswith(id_prefix):
                return info.position
    return None


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def capture(
    registry: WeakRegistry,
    estimator: TypeSizeEstimator,
    *,
    individual_tracking: bool = False,
    memory_provider: MemoryProvider = tracemalloc_memory_provider,
    describe: InstanceDescriber = describe_instance,
    clock: Clock = utcnow,
) -> Snapshot:
    """Build a Snapshot of the registry.

    The memory provider runs first and may perform a full collection pass, so
    counts read afterwards reflect post-collection liveness. Counts and
    instance detail come from a single registry read.

    Raises:
        CaptureError: memory accounting or live-object enumeration failed.
    """
    try:
        total_bytes = int(memory_provider())
    except Exception as exc:
        raise CaptureError(f"memory accounting failed: {exc}") from exc

    instances: dict[str, list[InstanceInfo]] | None = None
    try:
        if individual_tracking:
            objects_by_type = registry.live_objects_by_type()
            counts = {key: len(objects) for key, objects in objects_by_type.items()}
            instances = project_instances(objects_by_type, describe)
            del objects_by_type
        else:
            counts = registry.live_counts()
    except Exception as exc:
        raise CaptureError(f"live-object enumeration failed: {exc}") from exc

    snapshot = Snapshot.build(
        timestamp=clock(),
        total_managed_memory_bytes=total_bytes,
        counts=counts,
        sizes=estimator.sizes_for(counts),
        instances=instances,
    )
    logger.debug("snapshot captured: %d tracked types", len(counts))
    return snapshot


def capture_filtered(
    registry: WeakRegistry,
    type_filter: str,
    *,
    clock: Clock = utcnow,
) -> Snapshot:
    """Counts-only snapshot restricted to keys containing ``type_filter``."""
    counts = {
        key: count
        for key, count in registry.live_counts().items()
        if matches_fragment(key, type_filter)
    }
    return Snapshot(timestamp=clock(), total_managed_memory_bytes=0, object_counts_by_type=counts)
