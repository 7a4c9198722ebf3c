"""
Tests for cache.py
Covers the TTL MemoryCache and the Redis-backed document store
"""

import json
import time
from unittest.mock import MagicMock

import pytest
import redis

from cache import CacheEntry, MemoryCache, RedisCache

UNREACHABLE_REDIS = "redis://127.0.0.1:1/0"


class TestMemoryCache:
    """Tests for in-memory TTL cache"""

    def test_basic_operations(self):
        """Test set, get, delete operations"""
        cache = MemoryCache(max_size=10)

        cache.set("key1", "value1", ttl=60)
        assert cache.get("key1") == "value1"
        assert cache.get("nonexistent") is None

        cache.delete("key1")
        assert cache.get("key1") is None

    def test_ttl_expiration(self):
        """Entries expire after their TTL"""
        cache = MemoryCache(max_size=10)
        cache.set("key1", "value1", ttl=0.05)

        assert cache.get("key1") == "value1"
        time.sleep(0.1)
        assert cache.get("key1") is None

    def test_default_ttl_applies(self):
        cache = MemoryCache(default_ttl=0.05)
        cache.set("key1", "value1")
        time.sleep(0.1)
        assert cache.get("key1") is None

    def test_no_expiry_when_ttl_none(self):
        """A None TTL keeps the entry until cleared"""
        entry = CacheEntry(key="k", value=1, timestamp=0, ttl=None)
        assert entry.expired(time.time()) is False

    def test_lru_eviction(self):
        """Least recently used entry is evicted at capacity"""
        cache = MemoryCache(max_size=3)

        cache.set("key1", "value1")
        cache.set("key2", "value2")
        cache.set("key3", "value3")
        cache.get("key1")
        cache.set("key4", "value4")

        assert cache.get("key1") == "value1"
        assert cache.get("key2") is None
        assert cache.get("key3") == "value3"
        assert cache.get("key4") == "value4"

    def test_clear_all_and_single_key(self):
        cache = MemoryCache(max_size=10)
        cache.set("key1", "value1")
        cache.set("key2", "value2")

        cache.clear("key1")
        assert cache.get("key1") is None
        assert cache.get("key2") == "value2"

        cache.clear()
        assert cache.get("key2") is None

    def test_get_or_set_fetches_once(self):
        """A cached value short-circuits the fetcher"""
        cache = MemoryCache()
        fetcher = MagicMock(return_value={"id": 30587})

        assert cache.get_or_set("block:30587", fetcher) == {"id": 30587}
        assert cache.get_or_set("block:30587", fetcher) == {"id": 30587}
        assert fetcher.call_count == 1

    def test_get_or_set_does_not_cache_none(self):
        cache = MemoryCache()
        fetcher = MagicMock(return_value=None)

        assert cache.get_or_set("missing", fetcher) is None
        assert cache.get_or_set("missing", fetcher) is None
        assert fetcher.call_count == 2

    def test_keys_are_independent(self):
        """Adjacent keys never share an entry"""
        cache = MemoryCache()
        cache.get_or_set("block:30587", lambda: {"id": 30587})
        assert cache.get_or_set("block:30588", lambda: {"id": 30588}) == {"id": 30588}

    def test_stats(self):
        cache = MemoryCache(max_size=10, default_ttl=5)
        cache.set("key1", "value1")
        cache.get("key1")
        cache.get("key1")

        stats = cache.get_stats()
        assert stats["size"] == 1
        assert stats["max_size"] == 10
        assert stats["default_ttl"] == 5
        assert stats["total_hits"] == 2
        assert stats["keys"] == ["key1"]


class TestRedisCache:
    """Tests for the Redis document store with fallback"""

    def test_fallback_when_redis_unavailable(self):
        """Falls back to MemoryCache when Redis is unreachable"""
        cache = RedisCache(redis_url=UNREACHABLE_REDIS, connect_timeout=0.2)

        assert cache.fallback_mode is True
        assert cache.enabled is False

        cache.set("doc", {"a": 1})
        assert cache.get("doc") == {"a": 1}

        cache.delete("doc")
        assert cache.get("doc") is None

    def test_fallback_documents_do_not_expire(self):
        cache = RedisCache(redis_url=UNREACHABLE_REDIS, connect_timeout=0.2)
        assert cache.fallback_cache.default_ttl is None

    def test_key_prefix(self):
        cache = RedisCache(redis_url=UNREACHABLE_REDIS, key_prefix="test:", connect_timeout=0.2)
        assert cache._key("mykey") == "test:mykey"

    def _connected(self) -> RedisCache:
        cache = RedisCache(redis_url=UNREACHABLE_REDIS, connect_timeout=0.2)
        cache.enabled = True
        cache.fallback_mode = False
        cache.client = MagicMock()
        return cache

    def test_set_serializes_json_without_expiry(self):
        cache = self._connected()
        cache.set("doc", {"hash": "ABC"})
        cache.client.set.assert_called_once_with("yaci:doc", json.dumps({"hash": "ABC"}))
        cache.client.setex.assert_not_called()

    def test_set_with_ttl_uses_setex(self):
        cache = self._connected()
        cache.set("doc", [1, 2], ttl=30)
        cache.client.setex.assert_called_once_with("yaci:doc", 30, "[1, 2]")

    def test_corrupt_document_is_discarded(self):
        """Unparseable JSON is deleted and reported as missing"""
        cache = self._connected()
        cache.client.get.return_value = "{not json"

        assert cache.get("doc") is None
        cache.client.delete.assert_called_once_with("yaci:doc")

    def test_json_serialization_error_handling(self):
        """Non-serializable values are logged and skipped"""
        cache = self._connected()

        class NonSerializable:
            pass

        cache.set("key1", NonSerializable())
        cache.client.set.assert_not_called()
        cache.client.setex.assert_not_called()
        assert cache.fallback_mode is False

    def test_redis_error_switches_to_fallback(self):
        cache = self._connected()
        cache.client.get.side_effect = redis.ConnectionError("gone")
        cache.fallback_cache.set("doc", {"cached": True})

        assert cache.get("doc") == {"cached": True}
        assert cache.fallback_mode is True

    def test_stats_in_fallback_mode(self):
        cache = RedisCache(redis_url=UNREACHABLE_REDIS, connect_timeout=0.2)
        cache.fallback_cache.set("key1", "value1")

        stats = cache.get_stats()
        assert stats["mode"] == "fallback"
        assert stats["size"] == 1

    def test_redis_operations_with_server(self):
        """Round trip against a live server when one is reachable"""
        cache = RedisCache(redis_url="redis://localhost:6379/15", connect_timeout=0.5)
        if not cache.enabled:
            pytest.skip("Redis server not available")

        try:
            cache.set("test_doc", {"data": "test_value"})
            assert cache.get("test_doc") == {"data": "test_value"}
            cache.delete("test_doc")
            assert cache.get("test_doc") is None
            assert cache.get_stats()["mode"] == "redis"
        finally:
            cache.close()
