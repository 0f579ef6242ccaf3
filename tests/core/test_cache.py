"""
Tests for flowspine.core.cache module.

Covers:
- ResultCache: get/set/delete/exists/clear, LRU eviction, TTL expiry
- Recency protection on get, counters and stats
- make_cache_key: deterministic, order-insensitive keys
"""

import threading

import pytest

from flowspine.core.cache import ResultCache, make_cache_key


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestResultCacheBasics:
    """Test basic storage operations."""

    def test_basic_get_set(self):
        """Cache should store and retrieve values."""
        cache = ResultCache(max_size=10)
        cache.set("key1", {"data": [1, 2, 3]})
        assert cache.get("key1") == {"data": [1, 2, 3]}

    def test_get_missing_key(self):
        """Getting a missing key should return None."""
        cache = ResultCache()
        assert cache.get("missing") is None

    def test_set_replaces_existing_value(self):
        cache = ResultCache(max_size=2)
        cache.set("k", 1)
        cache.set("k", 2)
        assert cache.get("k") == 2
        assert cache.size() == 1

    def test_delete(self):
        """Delete should remove a key and report whether it existed."""
        cache = ResultCache()
        cache.set("key1", "value1")
        assert cache.delete("key1") is True
        assert cache.delete("key1") is False
        assert not cache.exists("key1")

    def test_clear_resets_entries_and_counters(self):
        cache = ResultCache()
        cache.set("k1", 1)
        cache.get("k1")
        cache.get("nope")
        cache.clear()
        stats = cache.stats()
        assert stats.size == 0
        assert stats.hits == 0
        assert stats.misses == 0

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            ResultCache(max_size=0)


class TestResultCacheEviction:
    """Test LRU eviction."""

    def test_lru_eviction(self):
        """Oldest key should be evicted when max_size reached."""
        cache = ResultCache(max_size=3)
        cache.set("k1", 1)
        cache.set("k2", 2)
        cache.set("k3", 3)

        cache.set("k4", 4)
        assert cache.size() == 3
        assert not cache.exists("k1")
        assert cache.keys() == ["k2", "k3", "k4"]
        assert cache.stats().evictions == 1

    def test_get_protects_key_from_eviction(self):
        """A get hit makes the key most recently used."""
        cache = ResultCache(max_size=2)
        cache.set("A", 1)
        cache.set("B", 2)
        assert cache.get("A") == 1

        cache.set("C", 3)
        assert cache.exists("A")
        assert not cache.exists("B")
        assert cache.exists("C")

    def test_exists_does_not_touch_recency(self):
        cache = ResultCache(max_size=2)
        cache.set("A", 1)
        cache.set("B", 2)
        assert cache.exists("A")

        cache.set("C", 3)
        assert not cache.exists("A")

    def test_replacing_key_does_not_evict(self):
        cache = ResultCache(max_size=2)
        cache.set("A", 1)
        cache.set("B", 2)
        cache.set("A", 10)
        assert cache.size() == 2
        assert cache.stats().evictions == 0
        assert cache.keys() == ["B", "A"]


class TestResultCacheTTL:
    """Test expiry measured from insertion."""

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=10, clock=clock)
        cache.set("temp", "value")

        clock.advance(9.9)
        assert cache.get("temp") == "value"

        clock.advance(0.1)
        assert cache.get("temp") is None
        assert cache.size() == 0
        assert cache.stats().expired == 1

    def test_access_does_not_extend_ttl(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=10, clock=clock)
        cache.set("k", 1)
        clock.advance(8)
        cache.get("k")
        clock.advance(3)
        assert cache.get("k") is None

    def test_purge_expired(self):
        clock = FakeClock()
        cache = ResultCache(ttl_seconds=5, clock=clock)
        cache.set("old", 1)
        clock.advance(3)
        cache.set("new", 2)
        clock.advance(3)

        assert cache.purge_expired() == 1
        assert cache.keys() == ["new"]


class TestResultCacheStats:
    def test_hit_rate(self):
        cache = ResultCache()
        cache.set("k", 1)
        cache.get("k")
        cache.get("k")
        cache.get("missing")
        stats = cache.stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_memory_usage_estimate(self):
        cache = ResultCache(bytes_per_char=2)
        cache.set("k", {"a": 1})
        # canonical JSON: {"a":1} → 7 chars
        assert cache.stats().memory_usage == 14

    def test_empty_stats(self):
        stats = ResultCache(max_size=5).stats()
        assert stats.to_dict() == {
            "size": 0,
            "capacity": 5,
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expired": 0,
            "hit_rate": 0.0,
            "memory_usage": 0,
        }

    def test_concurrent_sets_respect_capacity(self):
        cache = ResultCache(max_size=20)

        def writer(offset: int) -> None:
            for i in range(200):
                cache.set(f"{offset}-{i}", i)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.size() == 20


class TestMakeCacheKey:
    def test_key_is_prefixed_by_flow_id(self):
        key = make_cache_key("checkout", {"amount": 10})
        flow_id, digest = key.split(":", 1)
        assert flow_id == "checkout"
        assert len(digest) == 64

    def test_key_ignores_mapping_order(self):
        assert make_cache_key("f", {"a": 1, "b": 2}) == make_cache_key("f", {"b": 2, "a": 1})

    def test_key_differs_by_input_and_flow(self):
        base = make_cache_key("f", {"a": 1})
        assert make_cache_key("f", {"a": 2}) != base
        assert make_cache_key("g", {"a": 1}) != base
