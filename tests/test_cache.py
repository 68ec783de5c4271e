"""Tests for the GitHub response cache."""

from changereel.github.cache import CacheConfig, CacheKeys, MemoryCache, estimate_size


class TestMemoryCache:
    def test_get_within_ttl(self, timer):
        cache = MemoryCache(CacheConfig(default_ttl=60), clock=timer)
        cache.set("k", {"a": 1})
        timer.advance(59)

        assert cache.get("k") == {"a": 1}

    def test_expired_entry_is_a_miss(self, timer):
        cache = MemoryCache(clock=timer)
        cache.set("k", "v", ttl=10)
        timer.advance(11)

        assert cache.get("k") is None
        assert not cache.has("k")
        stats = cache.get_stats()
        assert stats.misses == 1
        assert stats.evictions == 1
        assert stats.entries == 0

    def test_hit_rate(self, timer):
        cache = MemoryCache(clock=timer)
        cache.set("k", "v")
        cache.get("k")
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats.hits == 3
        assert stats.misses == 1
        assert stats.hit_rate == 75.0

    def test_entry_limit_evicts_oldest(self, timer):
        cache = MemoryCache(CacheConfig(max_entries=2), clock=timer)
        cache.set("a", 1)
        timer.advance(1)
        cache.set("b", 2)
        timer.advance(1)
        cache.set("c", 3)

        assert sorted(cache.keys()) == ["b", "c"]
        assert cache.get_stats().evictions == 1

    def test_memory_limit_evicts_oldest(self, timer):
        value = "x" * 100
        size = estimate_size(value)
        cache = MemoryCache(CacheConfig(max_memory=size * 2), clock=timer)
        cache.set("a", value)
        timer.advance(1)
        cache.set("b", value)
        timer.advance(1)
        cache.set("c", value)

        assert sorted(cache.keys()) == ["b", "c"]
        assert cache.get_stats().memory_usage == size * 2

    def test_overwrite_does_not_double_count_memory(self, timer):
        cache = MemoryCache(clock=timer)
        cache.set("k", "value")
        cache.set("k", "value")

        assert cache.get_stats().memory_usage == estimate_size("value")

    def test_cleanup_removes_only_expired(self, timer):
        cache = MemoryCache(clock=timer)
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=50)
        timer.advance(10)

        assert cache.cleanup() == 1
        assert cache.keys() == ["long"]

    def test_delete_and_clear(self, timer):
        cache = MemoryCache(clock=timer)
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a")
        assert not cache.delete("a")
        cache.clear()
        assert cache.keys() == []
        assert cache.get_stats().memory_usage == 0

    def test_reset_stats(self, timer):
        cache = MemoryCache(clock=timer)
        cache.get("missing")
        cache.reset_stats()

        assert cache.get_stats().misses == 0

    def test_unserialisable_value_uses_fallback_size(self):
        assert estimate_size(object()) == 1024

    async def test_cleanup_timer_starts_and_stops(self):
        cache = MemoryCache(CacheConfig(cleanup_interval=0.01))
        cache.start_cleanup_timer()
        await cache.stop_cleanup_timer()

        assert cache._cleanup_task is None


class TestCacheKeys:
    def test_diff_key_variants(self):
        assert CacheKeys.diff("o", "r", "b", "h") == "diff:o:r:b:h"
        assert CacheKeys.diff("o", "r", "b", "h", max_files=5) == "diff:o:r:b:h:maxFiles:5"
        assert CacheKeys.diff("o", "r", "b", "h", include_patches=False) == "diff:o:r:b:h:noPatches"
