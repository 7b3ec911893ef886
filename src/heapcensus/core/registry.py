"""Weak instance registry: live population per TypeKey without extending lifetimes.

// [LAW:single-enforcer] Dead-handle pruning happens only in live_counts()/live_objects_by_type().
// [LAW:locality-or-seam] Writes are serialized per TypeKey bucket; unrelated types never contend.

Registration is idempotent by object identity. The identity table maps
``id(obj)`` to the object's weak handle; the handle's callback drops the entry
when the referent dies, so the table never keeps anything alive and an id can
not be confused with a later object reusing the same address.
"""

from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass, field
from functools import partial

from heapcensus.core.type_keys import VariantResolver, qualified_type_name, type_key_for

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    """Append-only list of weak handles for one TypeKey, guarded by its own lock."""

    type_ref: weakref.ref | None
    # RLock: a GC pass triggered while the lock is held may run handle callbacks on this thread.
    lock: threading.RLock = field(default_factory=threading.RLock)
    handles: list[weakref.ref] = field(default_factory=list)

    def prune(self) -> list[object]:
        """Drop dead handles and return strong refs to the survivors. Caller holds lock."""
        survivors: list[weakref.ref] = []
        objects: list[object] = []
        for handle in self.handles:
            obj = handle()
            if obj is None:
                continue
            survivors.append(handle)
            objects.append(obj)
        self.handles = survivors
        return objects


class WeakRegistry:
    """Process-wide table of TypeKey -> weak handles to live instances."""

    def __init__(self, variant_resolver: VariantResolver | None = None) -> None:
        self._variant_resolver = variant_resolver
        self._buckets: dict[str, _Bucket] = {}
        # Guards bucket creation and clear() only; registration into an existing bucket never takes it.
        self._buckets_lock = threading.Lock()
        self._seen: dict[int, weakref.ref] = {}
        self._unsupported: set[str] = set()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(self, obj: object) -> bool:
        """Start tracking ``obj``. Returns True only when a new handle was added.

        No-op for None, for objects already tracked, and for objects that do
        not support weak references.
        """
        if obj is None:
            return False
        oid = id(obj)
        seen = self._seen
        known = seen.get(oid)
        if known is not None and known() is obj:
            return False

        try:
            handle = weakref.ref(obj, partial(self._forget, seen, oid))
        except TypeError:
            self._note_unsupported(type(obj))
            return False

        # setdefault is atomic for int keys, so two racing registrations of one object elect one winner.
        winner = seen.setdefault(oid, handle)
        if winner is not handle:
            if winner() is obj:
                return False
            seen[oid] = handle

        key = type_key_for(obj, self._variant_resolver)
        bucket = self._bucket_for(key, type(obj))
        with bucket.lock:
            # clear() swapped the tables mid-registration; the identity entry went
            # to the discarded table, so drop this handle rather than count it twice later.
            if seen is not self._seen:
                return False
            bucket.handles.append(handle)
        return True

    def clear(self) -> None:
        """Forget every tracked object.

        Registrations racing with clear() may land in the discarded table and
        be lost; this is a shutdown/reset operation.
        """
        with self._buckets_lock:
            self._buckets = {}
            self._seen = {}
        logger.debug("registry cleared")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def live_counts(self) -> dict[str, int]:
        """Prune dead handles and return live counts; empty types are omitted."""
        counts: dict[str, int] = {}
        for key, bucket in self._bucket_items():
            with bucket.lock:
                live = len(bucket.prune())
            if live > 0:
                counts[key] = live
        return counts

    def live_objects_by_type(self) -> dict[str, list[object]]:
        """Prune dead handles and return strong references to live objects per type.

        The returned lists keep their objects alive; callers should drop them
        as soon as they are done.
        """
        result: dict[str, list[object]] = {}
        for key, bucket in self._bucket_items():
            with bucket.lock:
                objects = bucket.prune()
            if objects:
                result[key] = objects
        return result

    def count(self, type_key: str) -> int:
        """Live count for a single key, pruning only that bucket."""
        bucket = self._buckets.get(type_key)
        if bucket is None:
            return 0
        with bucket.lock:
            return len(bucket.prune())

    def is_tracked(self, obj: object) -> bool:
        known = self._seen.get(id(obj))
        return known is not None and known() is obj

    def tracked_types(self) -> list[str]:
        """Keys that have ever held a handle since the last clear (dead or alive)."""
        return [key for key, _ in self._bucket_items()]

    def resolve_type(self, type_key: str) -> type | None:
        """Return the class behind a TypeKey if it is still loaded."""
        bucket = self._buckets.get(type_key)
        if bucket is None or bucket.type_ref is None:
            return None
        return bucket.type_ref()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bucket_items(self) -> list[tuple[str, _Bucket]]:
        return list(self._buckets.items())

    def _bucket_for(self, key: str, tp: type) -> _Bucket:
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        with self._buckets_lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                try:
                    type_ref = weakref.ref(tp)
                except TypeError:
                    type_ref = None
                bucket = _Bucket(type_ref=type_ref)
                self._buckets[key] = bucket
            return bucket

    @staticmethod
    def _forget(seen: dict[int, weakref.ref], oid: int, handle: weakref.ref) -> None:
        if seen.get(oid) is handle:
            seen.pop(oid, None)

    def _note_unsupported(self, tp: type) -> None:
        name = qualified_type_name(tp)
        if name in self._unsupported:
            return
        self._unsupported.add(name)
        logger.debug("type %s does not support weak references; instances are not tracked", name)
