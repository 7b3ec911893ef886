"""Best-effort per-instance byte size estimates derived from declared field layout.

// [LAW:one-source-of-truth] Field byte costs live in KIND_SIZES; nothing else prices fields.
// [LAW:locality-or-seam] How a type's fields are discovered is a pluggable FieldLayoutOracle.

Estimates are deliberately coarse: a fixed cost per declared field, summed.
A TypeKey's estimate is computed once and cached for the life of the process.
"""

from __future__ import annotations

import builtins
import ctypes
import dataclasses
import decimal
import logging
import sys
import typing
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Protocol

from heapcensus.core.type_keys import split_type_key

logger = logging.getLogger(__name__)

# Flat cost assumed for types that cannot be resolved or declare no fields.
UNKNOWN_TYPE_SIZE = 300

# Per-field byte cost by field kind. "text" covers object header plus buffer overhead.
KIND_SIZES: dict[str, int] = {
    "bool": 1,
    "byte": 1,
    "short": 2,
    "char": 2,
    "int": 4,
    "float": 4,
    "long": 8,
    "double": 8,
    "decimal": 16,
    "text": 24,
    "reference": 8,
}

REFERENCE_KIND = "reference"

_KIND_BY_TYPE: dict[object, str] = {
    bool: "bool",
    int: "long",
    float: "double",
    decimal.Decimal: "decimal",
    str: "text",
    ctypes.c_bool: "bool",
    ctypes.c_byte: "byte",
    ctypes.c_ubyte: "byte",
    ctypes.c_char: "byte",
    ctypes.c_short: "short",
    ctypes.c_ushort: "short",
    ctypes.c_wchar: "char",
    ctypes.c_int: "int",
    ctypes.c_uint: "int",
    ctypes.c_float: "float",
    ctypes.c_long: "long",
    ctypes.c_ulong: "long",
    ctypes.c_longlong: "long",
    ctypes.c_ulonglong: "long",
    ctypes.c_double: "double",
}

# Annotations left as strings (PEP 563) are matched by name.
_KIND_BY_NAME: dict[str, str] = {
    "bool": "bool",
    "int": "long",
    "float": "double",
    "Decimal": "decimal",
    "decimal.Decimal": "decimal",
    "str": "text",
}

_SKIPPED_SLOTS = frozenset({"__dict__", "__weakref__"})


@dataclasses.dataclass(frozen=True)
class FieldSpec:
    name: str
    kind: str = REFERENCE_KIND

    @property
    def size(self) -> int:
        return KIND_SIZES.get(self.kind, KIND_SIZES[REFERENCE_KIND])


class FieldLayoutOracle(Protocol):
    """Anything that can list a type's per-instance fields with a kind for each."""

    def fields(self, tp: type) -> list[FieldSpec]: ...


TypeResolver = Callable[[str], "type | None"]


def kind_for_annotation(annotation: object) -> str:
    if isinstance(annotation, str):
        return _KIND_BY_NAME.get(annotation.strip(), REFERENCE_KIND)
    try:
        return _KIND_BY_TYPE.get(annotation, REFERENCE_KIND)
    except TypeError:
        # Unhashable annotation objects are never primitives.
        return REFERENCE_KIND


def _is_classvar(annotation: object) -> bool:
    if isinstance(annotation, str):
        text = annotation.strip()
        return text.startswith("ClassVar") or text.startswith("typing.ClassVar")
    return typing.get_origin(annotation) is typing.ClassVar


def _annotations(tp: type) -> dict[str, object]:
    try:
        return dict(typing.get_type_hints(tp))
    except Exception:
        merged: dict[str, object] = {}
        for klass in reversed(tp.__mro__):
            merged.update(getattr(klass, "__annotations__", {}) or {})
        return merged


class ReflectionOracle:
    """Discovers fields from ctypes ``_fields_``, dataclass fields, ``__slots__`` and annotations."""

    def fields(self, tp: type) -> list[FieldSpec]:
        if isinstance(tp, type) and issubclass(tp, (ctypes.Structure, ctypes.Union)):
            return [
                FieldSpec(entry[0], kind_for_annotation(entry[1]))
                for entry in getattr(tp, "_fields_", ())
            ]

        hints = _annotations(tp)
        found: dict[str, FieldSpec] = {}

        if dataclasses.is_dataclass(tp):
            for f in dataclasses.fields(tp):
                found[f.name] = FieldSpec(f.name, kind_for_annotation(hints.get(f.name, f.type)))
            return list(found.values())

        for klass in reversed(tp.__mro__):
            slots = klass.__dict__.get("__slots__", ())
            if isinstance(slots, str):
                slots = (slots,)
            for name in slots:
                if name in _SKIPPED_SLOTS:
                    continue
                found[name] = FieldSpec(name, kind_for_annotation(hints.get(name, object)))

        for name, annotation in hints.items():
            if name in found or _is_classvar(annotation):
                continue
            found[name] = FieldSpec(name, kind_for_annotation(annotation))
        return list(found.values())


def resolve_loaded_type(type_key: str) -> type | None:
    """Map a TypeKey back to a class among already-imported modules. Never imports."""
    base, _variant = split_type_key(type_key)
    parts = base.split(".")
    if len(parts) == 1:
        candidate = getattr(builtins, base, None)
        return candidate if isinstance(candidate, type) else None
    for split in range(len(parts) - 1, 0, -1):
        module = sys.modules.get(".".join(parts[:split]))
        if module is None:
            continue
        target: object = module
        for attr in parts[split:]:
            target = getattr(target, attr, None)
            if target is None:
                break
        if isinstance(target, type):
            return target
    return None


class TypeSizeEstimator:
    """Memoizing per-TypeKey size estimator.

    Concurrent first estimates of one key may both compute; they store equal
    values, so the cache needs no lock.
    """

    def __init__(
        self,
        resolvers: Sequence[TypeResolver] = (resolve_loaded_type,),
        oracle: FieldLayoutOracle | None = None,
        fallback_size: int = UNKNOWN_TYPE_SIZE,
    ) -> None:
        self._resolvers = tuple(resolvers)
        self._oracle = oracle or ReflectionOracle()
        self._fallback_size = int(fallback_size)
        self._cache: dict[str, int] = {}

    @property
    def fallback_size(self) -> int:
        return self._fallback_size

    def estimate_size(self, type_key: str) -> int:
        """Bytes per instance for ``type_key``. Never raises."""
        cached = self._cache.get(type_key)
        if cached is not None:
            return cached
        size = self._compute(type_key)
        self._cache[type_key] = size
        return size

    def estimate_total(self, type_key: str, instance_count: int) -> int:
        return self.estimate_size(type_key) * int(instance_count)

    def estimate_totals(self, counts: Mapping[str, int]) -> dict[str, int]:
        return {key: self.estimate_total(key, count) for key, count in counts.items()}

    def sizes_for(self, type_keys: Iterable[str]) -> dict[str, int]:
        return {key: self.estimate_size(key) for key in type_keys}

    def cached_sizes(self) -> dict[str, int]:
        return dict(self._cache)

    def seed(self, sizes: Mapping[str, int]) -> int:
        """Adopt sizes from a stored snapshot for keys not yet cached.

        Already-cached keys are left alone. Returns how many keys were added.
        """
        added = 0
        for key, value in sizes.items():
            try:
                size = int(value)
            except (TypeError, ValueError):
                continue
            if size <= 0 or key in self._cache:
                continue
            self._cache[key] = size
            added += 1
        return added

    def _resolve(self, type_key: str) -> type | None:
        for resolver in self._resolvers:
            tp = resolver(type_key)
            if tp is not None:
                return tp
        return None

    def _compute(self, type_key: str) -> int:
        try:
            tp = self._resolve(type_key)
            if tp is None:
                logger.debug("size estimate for %s: type not resolvable, using fallback", type_key)
                return self._fallback_size
            size = sum(spec.size for spec in self._oracle.fields(tp))
        except Exception:
            logger.debug("size estimate for %s failed, using fallback", type_key, exc_info=True)
            return self._fallback_size
        if size <= 0:
            return self._fallback_size
        return size
