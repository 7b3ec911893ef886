"""Optional registration glue for hosts that want instances tracked automatically."""

from __future__ import annotations

import functools
from collections.abc import Iterable
from typing import TypeVar

from heapcensus.core.registry import WeakRegistry

T = TypeVar("T", bound=type)


def track_instances(registry: WeakRegistry):
    """Class decorator: register every instance once its ``__init__`` returns.

    Usage:
        @track_instances(context.registry)
        class Session: ...
    """

    def decorate(cls: T) -> T:
        original_init = cls.__init__

        @functools.wraps(original_init)
        def __init__(self, *args, **kwargs):
            original_init(self, *args, **kwargs)
            registry.register(self)

        cls.__init__ = __init__
        return cls

    return decorate


def register_all(registry: WeakRegistry, objects: Iterable[object]) -> int:
    """Register a batch of objects (e.g. a periodic sweep of loaded entities). Returns how many were new."""
    return sum(1 for obj in objects if registry.register(obj))
