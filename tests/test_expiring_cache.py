"""
Tests for the TTL cache and the per-key lock.

A fake clock drives expiry so nothing sleeps.
"""
import asyncio
import time

from shopsync.utils.cache import ExpiringCache
from shopsync.utils.keyed_lock import KeyedLock


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ────────────────────────────────────────────
# EXPIRY
# ────────────────────────────────────────────


class TestExpiry:

    def test_hit_before_ttl(self):
        clock = FakeClock()
        cache = ExpiringCache(default_ttl=60, clock=clock)
        cache.set("a", 1)
        clock.advance(59)
        assert cache.lookup("a") == (1, True)

    def test_miss_after_ttl_without_sweep(self):
        clock = FakeClock()
        cache = ExpiringCache(default_ttl=60, clock=clock)
        cache.set("a", 1)
        clock.advance(60)
        assert cache.lookup("a") == (None, False)
        assert len(cache) == 0

    def test_per_entry_ttl_overrides_default(self):
        clock = FakeClock()
        cache = ExpiringCache(default_ttl=60, clock=clock)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2)
        clock.advance(10)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_cached_none_is_a_hit(self):
        cache = ExpiringCache(default_ttl=60)
        cache.set("nothing", None)
        assert cache.lookup("nothing") == (None, True)

    def test_set_refreshes_expiry(self):
        clock = FakeClock()
        cache = ExpiringCache(default_ttl=60, clock=clock)
        cache.set("a", 1)
        clock.advance(50)
        cache.set("a", 2)
        clock.advance(50)
        assert cache.get("a") == 2


class TestSweep:

    def test_sweep_removes_only_expired(self):
        clock = FakeClock()
        cache = ExpiringCache(default_ttl=60, clock=clock)
        cache.set("old", 1, ttl=10)
        cache.set("fresh", 2, ttl=100)
        clock.advance(30)
        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("fresh") == 2

    def test_sweeper_thread_lifecycle(self):
        cache = ExpiringCache(default_ttl=0.01, name="test")
        cache.set("a", 1)
        cache.start_sweeper(interval=0.01)
        try:
            assert cache.sweeper_running
            deadline = time.monotonic() + 2
            while len(cache) and time.monotonic() < deadline:
                time.sleep(0.01)
            assert len(cache) == 0
        finally:
            cache.stop_sweeper()
        assert not cache.sweeper_running

    def test_stop_without_start_is_noop(self):
        ExpiringCache().stop_sweeper()

    def test_delete_and_clear(self):
        cache = ExpiringCache(default_ttl=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.delete("a")
        cache.delete("missing")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0


# ────────────────────────────────────────────
# KEYED LOCK
# ────────────────────────────────────────────


class TestKeyedLock:

    def test_same_key_is_serialized(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold("sale:1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        async def main():
            await asyncio.gather(worker("a"), worker("b"))

        asyncio.run(main())
        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        inside = []
        peak = []

        async def worker(key):
            async with locks.hold(key):
                inside.append(key)
                peak.append(len(inside))
                await asyncio.sleep(0.01)
                inside.remove(key)

        async def main():
            await asyncio.gather(worker(1), worker(2))

        asyncio.run(main())
        assert max(peak) == 2

    def test_lock_table_empties_after_use(self):
        locks = KeyedLock()

        async def main():
            async with locks.hold("k"):
                assert locks.locked("k")
            assert not locks.locked("k")

        asyncio.run(main())
        assert len(locks) == 0
