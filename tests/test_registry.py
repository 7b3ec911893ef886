"""Tests for WeakRegistry: identity dedupe, pruning, variants and concurrency."""

import gc
import threading

from heapcensus.core.registry import WeakRegistry
from heapcensus.core.type_keys import qualified_type_name


class Foo:
    pass


class Bar:
    pass


class Tinted:
    def __init__(self, tint):
        self.census_variant = tint


FOO = qualified_type_name(Foo)
BAR = qualified_type_name(Bar)


class TestRegister:
    def test_first_registration_is_new(self):
        reg = WeakRegistry()
        obj = Foo()
        assert reg.register(obj) is True
        assert reg.live_counts() == {FOO: 1}

    def test_registration_is_idempotent(self):
        reg = WeakRegistry()
        obj = Foo()
        reg.register(obj)
        assert reg.register(obj) is False
        assert reg.register(obj) is False
        assert reg.count(FOO) == 1

    def test_none_is_ignored(self):
        reg = WeakRegistry()
        assert reg.register(None) is False
        assert reg.live_counts() == {}

    def test_non_weakrefable_objects_are_not_tracked(self):
        reg = WeakRegistry()
        assert reg.register(12345) is False
        assert reg.register([1, 2, 3]) is False
        assert reg.register("text") is False
        assert reg.live_counts() == {}

    def test_types_are_counted_separately(self):
        reg = WeakRegistry()
        foos = [Foo() for _ in range(3)]
        bars = [Bar() for _ in range(2)]
        for obj in foos + bars:
            reg.register(obj)
        assert reg.live_counts() == {FOO: 3, BAR: 2}

    def test_is_tracked(self):
        reg = WeakRegistry()
        tracked, untracked = Foo(), Foo()
        reg.register(tracked)
        assert reg.is_tracked(tracked)
        assert not reg.is_tracked(untracked)


class TestLiveness:
    def test_registry_does_not_keep_objects_alive(self):
        reg = WeakRegistry()
        obj = Foo()
        reg.register(obj)
        del obj
        gc.collect()
        assert reg.live_counts() == {}
        assert reg.count(FOO) == 0

    def test_dead_types_are_omitted_but_still_listed(self):
        reg = WeakRegistry()
        keep = Bar()
        reg.register(keep)
        reg.register(Foo())
        gc.collect()
        assert reg.live_counts() == {BAR: 1}
        assert set(reg.tracked_types()) == {FOO, BAR}

    def test_new_object_after_death_counts_once(self):
        reg = WeakRegistry()
        first = Foo()
        reg.register(first)
        del first
        gc.collect()
        second = Foo()
        assert reg.register(second) is True
        assert reg.count(FOO) == 1

    def test_live_objects_by_type_returns_survivors(self):
        reg = WeakRegistry()
        keep = [Foo(), Foo()]
        for obj in keep:
            reg.register(obj)
        reg.register(Foo())
        gc.collect()
        objects = reg.live_objects_by_type()
        assert set(objects) == {FOO}
        assert sorted(map(id, objects[FOO])) == sorted(map(id, keep))


class TestTypeKeys:
    def test_variant_attribute_splits_keys(self):
        reg = WeakRegistry()
        objs = [Tinted("red"), Tinted("red"), Tinted("blue"), Tinted(None)]
        for obj in objs:
            reg.register(obj)
        base = qualified_type_name(Tinted)
        assert reg.live_counts() == {f"{base}:red": 2, f"{base}:blue": 1, base: 1}

    def test_custom_variant_resolver(self):
        reg = WeakRegistry(variant_resolver=lambda obj: "custom")
        obj = Foo()
        reg.register(obj)
        assert reg.live_counts() == {f"{FOO}:custom": 1}

    def test_resolve_type_returns_class(self):
        reg = WeakRegistry()
        obj = Foo()
        reg.register(obj)
        assert reg.resolve_type(FOO) is Foo
        assert reg.resolve_type("nowhere.Missing") is None


class TestClear:
    def test_clear_forgets_everything(self):
        reg = WeakRegistry()
        obj = Foo()
        reg.register(obj)
        reg.clear()
        assert reg.live_counts() == {}
        assert reg.tracked_types() == []
        assert not reg.is_tracked(obj)
        # Re-registration after clear starts fresh.
        assert reg.register(obj) is True

    def test_registration_racing_clear_is_not_counted_twice(self):
        reg = WeakRegistry()
        obj = Foo()
        real_bucket_for = reg._bucket_for

        def bucket_after_clear(key, cls):
            # clear() lands between the identity check and the bucket append.
            reg.clear()
            return real_bucket_for(key, cls)

        reg._bucket_for = bucket_after_clear
        assert reg.register(obj) is False
        del reg._bucket_for

        assert reg.register(obj) is True
        assert reg.register(obj) is False
        assert reg.live_counts() == {FOO: 1}


class TestConcurrency:
    def test_concurrent_registration_of_shared_objects(self):
        reg = WeakRegistry()
        objs = [Foo() for _ in range(200)]
        results = []
        results_lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            added = sum(1 for obj in objs if reg.register(obj))
            with results_lock:
                results.append(added)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(results) == 200
        assert reg.count(FOO) == 200

    def test_concurrent_reads_during_writes(self):
        reg = WeakRegistry()
        keep = []
        stop = threading.Event()
        errors = []

        def reader():
            while not stop.is_set():
                try:
                    reg.live_counts()
                    reg.live_objects_by_type()
                except Exception as exc:  # pragma: no cover - failure path
                    errors.append(exc)

        t = threading.Thread(target=reader)
        t.start()
        for _ in range(500):
            obj = Bar()
            keep.append(obj)
            reg.register(obj)
            reg.register(Foo())
        stop.set()
        t.join()

        assert errors == []
        assert reg.count(BAR) == 500
