"""Tests for the in-process response cache."""

from servers.event_discovery.cache import TTLCache


class TestTTLCache:
    """Tests for TTL expiry and bounded size."""

    def test_set_and_get(self, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("k", {"events": []})
        assert cache.get("k") == {"events": []}
        assert cache.hits == 1

    def test_miss(self, clock):
        cache = TTLCache(clock=clock)
        assert cache.get("missing") is None
        assert cache.misses == 1

    def test_entries_expire(self, clock):
        """Entries vanish once their TTL has passed."""
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("k", 1)

        clock.advance(59)
        assert cache.get("k") == 1
        clock.advance(1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self, clock):
        """A per-call TTL overrides the default."""
        cache = TTLCache(ttl_seconds=300, clock=clock)
        cache.set("short", 1, ttl=5)
        clock.advance(6)
        assert cache.get("short") is None

    def test_oldest_evicted_when_full(self, clock):
        """The oldest entry goes first once max_entries is reached."""
        cache = TTLCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_reset_refreshes_position(self, clock):
        """Setting an existing key makes it the newest."""
        cache = TTLCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)

        assert cache.get("a") == 10
        assert cache.get("b") is None

    def test_invalidate_and_clear(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

    def test_stats(self, clock):
        cache = TTLCache(ttl_seconds=30, max_entries=10, clock=clock)
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        assert cache.stats() == {
            "entries": 1,
            "max_entries": 10,
            "ttl_seconds": 30,
            "hits": 1,
            "misses": 1,
        }
