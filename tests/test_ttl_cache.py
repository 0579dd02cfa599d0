"""
Tests for the time-boxed cache shared by the caches and rate limiters.
"""

from power_watch.ttl_cache import TTLCache


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_fresh_and_expired(self):
        clock = Clock()
        cache = TTLCache(10, clock=clock)
        cache.set("k", "v")
        clock.now = 9.9
        assert cache.get("k") == "v"
        clock.now = 10
        assert cache.get("k") is None

    def test_get_entry_survives_expiry(self):
        clock = Clock()
        cache = TTLCache(10, clock=clock)
        cache.set("k", "v")
        clock.now = 25
        assert cache.get_entry("k") == ("v", 25)
        assert cache.get_entry("missing") is None

    def test_check_and_mark(self):
        clock = Clock()
        cache = TTLCache(2, clock=clock)
        assert cache.check_and_mark("k") is True
        clock.now = 1
        assert cache.check_and_mark("k") is False
        clock.now = 2
        assert cache.check_and_mark("k") is True

    def test_invalidate_and_clear(self):
        cache = TTLCache(10)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate("a")
        assert cache.get("a") is None
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0

    def test_bounded_size(self):
        clock = Clock()
        cache = TTLCache(100, clock=clock, max_entries=4)
        for i in range(10):
            clock.now = i
            cache.set(i, i)
        assert len(cache) <= 4
        assert cache.get(9) == 9
