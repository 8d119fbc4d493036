"""
Tests for the TTL cache helper.
"""

from folio.utils.cache import TTLStore


class FakeTimer:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTTLStore:

    def test_get_set(self):
        cache = TTLStore(ttl=60)
        cache.set("a", 1)

        assert cache.get("a") == 1
        assert "a" in cache
        assert len(cache) == 1

    def test_default_for_missing(self):
        assert TTLStore().get("missing", "fallback") == "fallback"

    def test_entries_expire(self):
        timer = FakeTimer()
        cache = TTLStore(ttl=10, timer=timer)
        cache.set("a", 1)

        timer.now = 9
        assert cache.get("a") == 1

        timer.now = 11
        assert cache.get("a") is None

    def test_clear_single_key(self):
        cache = TTLStore()
        cache.set("a", 1)
        cache.set("b", 2)

        cache.clear("a")
        cache.clear("never-set")

        assert "a" not in cache
        assert cache.get("b") == 2

    def test_clear_all(self):
        cache = TTLStore()
        cache.set("a", 1)
        cache.set("b", 2)

        cache.clear()

        assert len(cache) == 0

    def test_bounded_size(self):
        cache = TTLStore(maxsize=2)
        for key in "abc":
            cache.set(key, key)

        assert len(cache) == 2
