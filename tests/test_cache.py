"""Tests for the time-boxed resource cache."""

from mssql_mcp.cache import ResourceCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestResourceCache:
    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = ResourceCache(ttl=300, timer=clock)
        cache.set("maindb", ["Orders"])

        clock.now += 299
        assert cache.get("maindb") == ["Orders"]

        clock.now += 2
        assert cache.get("maindb") is None
        assert "maindb" not in cache

    def test_reads_do_not_refresh(self):
        clock = FakeClock()
        cache = ResourceCache(ttl=10, timer=clock)
        cache.set("maindb", ["Orders"])

        clock.now += 8
        assert cache.get("maindb") == ["Orders"]
        clock.now += 3
        assert cache.get("maindb") is None

    def test_keys_are_independent(self):
        cache = ResourceCache()
        cache.set("maindb", ["Orders"])

        assert cache.get("reportingdb") is None
        cache.invalidate("maindb")
        assert cache.get("maindb") is None

    def test_invalidate_all(self):
        cache = ResourceCache()
        cache.set("maindb", [])
        cache.set("reportingdb", [])
        cache.invalidate()

        assert "maindb" not in cache
        assert "reportingdb" not in cache

    def test_oldest_entry_evicted_at_capacity(self):
        cache = ResourceCache(maxsize=2)
        cache.set("a", [1])
        cache.set("b", [2])
        cache.set("c", [3])

        assert "a" not in cache
        assert cache.get("b") == [2]
        assert cache.get("c") == [3]

    def test_empty_listing_is_a_hit(self):
        cache = ResourceCache()
        cache.set("maindb", [])

        assert cache.get("maindb") == []
        assert "maindb" in cache
