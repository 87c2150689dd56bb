"""Tests for the in-memory TTL cache."""

from verumindex.cache import TTLCache, cache_key


class TestTTLCache:
    """Tests for TTLCache."""

    def test_hit_within_ttl(self, clock):
        """Should return the value before the TTL elapses."""
        cache = TTLCache(30, now_fn=clock)
        cache.set("k", [1])
        clock.advance(29)
        assert cache.get("k") == [1]

    def test_expires_lazily(self, clock):
        """Should drop the entry on read once the TTL elapses."""
        cache = TTLCache(30, now_fn=clock)
        cache.set("k", "v")
        clock.advance(30)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_per_read_ttl_override(self, clock):
        """Should honour a shorter TTL passed to get()."""
        cache = TTLCache(30, now_fn=clock)
        cache.set("k", "v")
        clock.advance(11)
        assert cache.get("k", ttl_seconds=10) is None

    def test_set_replaces_and_restamps(self, clock):
        """Should replace the whole entry and reset its age."""
        cache = TTLCache(30, now_fn=clock)
        cache.set("k", "old")
        clock.advance(20)
        cache.set("k", "new")
        clock.advance(20)
        assert cache.get("k") == "new"

    def test_sweep_removes_only_expired(self, clock):
        """Should reclaim expired entries and keep fresh ones."""
        cache = TTLCache(30, now_fn=clock)
        cache.set("old", 1)
        clock.advance(25)
        cache.set("fresh", 2)
        clock.advance(10)
        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("fresh") == 2

    def test_clear(self, clock):
        """Should report how many entries were cleared."""
        cache = TTLCache(30, now_fn=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert cache.get("a") is None


class TestCacheKey:
    """Tests for cache_key()."""

    def test_anonymous(self):
        """Should mark requests without an actor as anonymous."""
        assert cache_key("likes", "abc") == "likes:abc:anon"

    def test_actor_case_insensitive(self):
        """Should key actors case-insensitively."""
        assert cache_key("engagement", "abc", "KASPA:QXYZ") == cache_key("engagement", "abc", "kaspa:qxyz")
