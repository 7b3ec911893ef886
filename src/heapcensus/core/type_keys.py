"""TypeKey derivation and formatting.

A TypeKey is ``"<module>.<qualname>"`` of an object's type, optionally
suffixed with ``":<variant>"`` so distinct kinds sharing one class are
counted separately.

// [LAW:one-source-of-truth] Key syntax is defined here; every other module splits keys via split_type_key().
"""

from __future__ import annotations

from collections.abc import Callable

VARIANT_SEPARATOR = ":"
UNNAMED_TYPE = "(unnamed type)"

# Hosts opt objects into variant suffixes by exposing this attribute.
VARIANT_ATTRIBUTE = "census_variant"

VariantResolver = Callable[[object], "str | None"]


def qualified_type_name(tp: type) -> str:
    module = getattr(tp, "__module__", None)
    qualname = getattr(tp, "__qualname__", None) or getattr(tp, "__name__", None)
    if not qualname:
        return UNNAMED_TYPE
    if not module or module == "builtins":
        return str(qualname)
    return f"{module}.{qualname}"


def default_variant(obj: object) -> str | None:
    """Read the object's variant code, if it exposes one.

    The attribute may be a plain value or a zero-argument callable. Any error
    while reading it means "no variant".
    """
    try:
        value = getattr(obj, VARIANT_ATTRIBUTE, None)
        if callable(value):
            value = value()
    except Exception:
        return None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def type_key_for(obj: object, variant_resolver: VariantResolver | None = None) -> str:
    base = qualified_type_name(type(obj))
    resolver = variant_resolver or default_variant
    variant = resolver(obj)
    if variant:
        return f"{base}{VARIANT_SEPARATOR}{variant}"
    return base


def split_type_key(type_key: str) -> tuple[str, str | None]:
    """Split a TypeKey into ``(base type name, variant or None)``."""
    base, sep, variant = type_key.partition(VARIANT_SEPARATOR)
    return base, (variant if sep and variant else None)


def format_type_name(type_key: str) -> str:
    """Collapse namespaced keys into a readable label.

    ``"game.entities.Drifter:game:drifter-normal"`` becomes
    ``"Drifter (game:drifter-normal)"``. Keys of any other shape are returned
    unchanged.
    """
    parts = type_key.split(VARIANT_SEPARATOR)
    if len(parts) == 3:
        name = parts[0].rsplit(".", 1)[-1]
        return f"{name} ({parts[1]}:{parts[2]})"
    return type_key


def matches_fragment(type_key: str, fragment: str) -> bool:
    """Case-insensitive substring match used by filters and ignore lists."""
    return fragment.casefold() in type_key.casefold()
