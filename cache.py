"""
Caching layer for the explorer core
Short-TTL in-memory cache for single-entity lookups and a Redis-backed
document store for persisted resolver caches
"""

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

import redis

logger = logging.getLogger(__name__)

# Sentinel for "use the cache's default TTL"
DEFAULT_TTL = -1


@dataclass
class CacheEntry:
    """Stored value with its write time and lifetime"""

    key: str
    value: Any
    timestamp: float
    ttl: Optional[float]
    hit_count: int = 0

    def expired(self, now: float) -> bool:
        return self.ttl is not None and now - self.timestamp > self.ttl


class MemoryCache:
    """In-memory TTL cache with LRU eviction

    A ``default_ttl`` of ``None`` keeps entries until they are evicted or
    explicitly cleared.
    """

    def __init__(self, default_ttl: Optional[float] = 10, max_size: int = 1000):
        self.default_ttl = default_ttl
        self.max_size = max_size
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self.lock:
            entry = self.entries.get(key)
            if entry is None:
                return None
            if entry.expired(time.time()):
                del self.entries[key]
                return None
            self.entries.move_to_end(key)
            entry.hit_count += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = DEFAULT_TTL) -> None:
        """Store a value; ``ttl=None`` never expires"""
        if ttl == DEFAULT_TTL:
            ttl = self.default_ttl

        with self.lock:
            self.entries[key] = CacheEntry(key=key, value=value, timestamp=time.time(), ttl=ttl)
            self.entries.move_to_end(key)
            while len(self.entries) > self.max_size:
                self.entries.popitem(last=False)

    def get_or_set(self, key: str, fetcher: Callable[[], Any]) -> Any:
        """Read-through lookup. The fetcher runs outside the lock."""
        cached = self.get(key)
        if cached is not None:
            return cached

        value = fetcher()
        if value is not None:
            self.set(key, value)
        return value

    def delete(self, key: str) -> None:
        with self.lock:
            self.entries.pop(key, None)

    def clear(self, key: Optional[str] = None) -> None:
        """Clear one key, or everything when no key is given"""
        with self.lock:
            if key is None:
                self.entries.clear()
            else:
                self.entries.pop(key, None)

    def get_stats(self) -> dict:
        with self.lock:
            return {
                "size": len(self.entries),
                "max_size": self.max_size,
                "default_ttl": self.default_ttl,
                "total_hits": sum(e.hit_count for e in self.entries.values()),
                "keys": list(self.entries),
            }


class RedisCache:
    """Redis-backed JSON document store with automatic fallback to MemoryCache

    Values are stored as whole JSON documents without expiry unless a TTL is
    given. A document that fails to parse is deleted and reported as missing.
    Once Redis errors, every later call goes to the fallback.
    """

    def __init__(
        self,
        redis_url: str,
        fallback_cache: Optional[MemoryCache] = None,
        key_prefix: str = "yaci:",
        connect_timeout: float = 2,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.fallback_cache = fallback_cache or MemoryCache(default_ttl=None)
        self.enabled = False
        self.fallback_mode = False
        self.client = None

        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=connect_timeout,
                socket_timeout=connect_timeout,
            )
            client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable at {redis_url} ({e}), documents kept in memory")
            self.fallback_mode = True
        else:
            self.client = client
            self.enabled = True
            logger.info(f"Redis document store initialized: {redis_url}")

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _degrade(self, operation: str, key: str, error: Exception) -> None:
        logger.error(f"Redis {operation} failed for {key} ({error}), switching to memory")
        self.fallback_mode = True

    def get(self, key: str) -> Optional[Any]:
        if self.fallback_mode:
            return self.fallback_cache.get(key)

        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as e:
            self._degrade("get", key, e)
            return self.fallback_cache.get(key)
        if not raw:
            return None

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding corrupt document for key {key}: {e}")
            self.delete(key)
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if self.fallback_mode:
            self.fallback_cache.set(key, value, ttl)
            return

        try:
            document = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Document for key {key} is not JSON serializable: {e}")
            return

        try:
            if ttl:
                self.client.setex(self._key(key), ttl, document)
            else:
                self.client.set(self._key(key), document)
        except redis.RedisError as e:
            self._degrade("set", key, e)
            self.fallback_cache.set(key, value, ttl)

    def delete(self, key: str) -> None:
        if self.fallback_mode:
            self.fallback_cache.delete(key)
            return

        try:
            self.client.delete(self._key(key))
        except redis.RedisError as e:
            self._degrade("delete", key, e)
            self.fallback_cache.delete(key)

    def get_stats(self) -> dict:
        if self.fallback_mode:
            return {**self.fallback_cache.get_stats(), "mode": "fallback"}
        return {
            "enabled": self.enabled,
            "mode": "redis",
            "url": self.redis_url,
            "key_prefix": self.key_prefix,
        }

    def close(self) -> None:
        if self.client is None:
            return
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")
