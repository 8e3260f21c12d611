"""
Caching layer fronting durable storage.

Provides a small key-value cache interface with in-process and Redis
backends, and a read-through wrapper that never lets a cache failure
block an operation.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import redis

from .errors import TransientDependencyError
from .types import MemoryRecord


logger = logging.getLogger(__name__)


# Key prefix for projections of freshly stored memories
RECENT_MEMORY_PREFIX = "recent_memory:"

# Key prefix for read-through memory lookups
MEMORY_PREFIX = "memory:"

DEFAULT_TTL = 3600


def recent_memory_key(memory_id: str) -> str:
    return f"{RECENT_MEMORY_PREFIX}{memory_id}"


def memory_key(memory_id: str) -> str:
    return f"{MEMORY_PREFIX}{memory_id}"


class KeyValueCache(ABC):
    """Abstract base class for ephemeral TTL caches."""
    
    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """
        Get a cached value.
        
        Args:
            key: Cache key
            
        Returns:
            The value if present and unexpired, None otherwise
        """
        pass
    
    @abstractmethod
    def put(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None:
        """
        Cache a JSON-serializable value.
        
        Args:
            key: Cache key
            value: Value to store
            ttl: Time-to-live in seconds
        """
        pass
    
    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        pass
    
    @abstractmethod
    def list_by_prefix(self, prefix: str) -> List[str]:
        """List live keys starting with ``prefix``."""
        pass


@dataclass
class CacheEntry:
    """A cached value with its absolute expiry time."""
    
    value: Any
    expires_at: float
    hits: int = 0
    
    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if the cache entry has expired."""
        return (now if now is not None else time.time()) >= self.expires_at


class InMemoryCache(KeyValueCache):
    """
    In-process LRU cache with per-entry TTL.
    
    Features:
    - LRU eviction when max size is reached
    - TTL-based expiration
    - Thread-safe operations
    - Cache statistics
    
    Values are stored as JSON text so callers always receive a copy,
    as they would from a remote cache.
    
    Example:
        >>> cache = InMemoryCache(max_size=1000)
        >>> cache.put("recent_memory:mem_1", {"id": "mem_1"}, ttl=3600)
        >>> cache.get("recent_memory:mem_1")
        {'id': 'mem_1'}
    """
    
    def __init__(self, max_size: int = 1000):
        """
        Initialize the cache.
        
        Args:
            max_size: Maximum number of cached entries.
        """
        self.max_size = max_size
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        
        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0
    
    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            
            if entry is None:
                self._misses += 1
                return None
            
            if entry.is_expired():
                del self._cache[key]
                self._misses += 1
                return None
            
            entry.hits += 1
            self._cache.move_to_end(key)
            self._hits += 1
            
            logger.debug(f"Cache hit for key {key}")
            return json.loads(entry.value)
    
    def put(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None:
        encoded = json.dumps(value)
        
        with self._lock:
            if key in self._cache:
                del self._cache[key]
            
            # Remove oldest if at capacity
            while len(self._cache) >= self.max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]
                self._evictions += 1
            
            self._cache[key] = CacheEntry(
                value=encoded,
                expires_at=time.time() + ttl,
            )
    
    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False
    
    def list_by_prefix(self, prefix: str) -> List[str]:
        now = time.time()
        with self._lock:
            return [
                key for key, entry in self._cache.items()
                if key.startswith(prefix) and not entry.is_expired(now)
            ]
    
    def prune_expired(self) -> int:
        """
        Remove all expired entries.
        
        Returns:
            Number of entries removed.
        """
        now = time.time()
        
        with self._lock:
            expired_keys = [
                key for key, entry in self._cache.items()
                if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._cache[key]
        
        if expired_keys:
            logger.debug(f"Pruned {len(expired_keys)} expired cache entries")
        
        return len(expired_keys)
    
    def get_stats(self) -> dict:
        """
        Get cache statistics.
        
        Returns:
            Dictionary with cache statistics.
        """
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0
            
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 2),
                "evictions": self._evictions,
            }
    
    def clear(self) -> int:
        """Drop every entry. Returns the number removed."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count


class RedisCache(KeyValueCache):
    """
    Redis-backed cache.
    
    Values are JSON-encoded and expire through Redis' own TTL. Keys are
    namespaced with ``prefix`` so several engines can share a server.
    Connection and protocol errors surface as TransientDependencyError.
    """
    
    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "zeo",
        client: Optional[redis.Redis] = None,
    ):
        self.r = client or redis.Redis.from_url(url, decode_responses=True)
        self.prefix = prefix
    
    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"
    
    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.r.get(self._key(key))
        except redis.RedisError as e:
            raise TransientDependencyError(f"Redis get failed: {e}") from e
        if raw is None:
            return None
        return json.loads(raw)
    
    def put(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> None:
        try:
            self.r.set(self._key(key), json.dumps(value), ex=int(ttl))
        except redis.RedisError as e:
            raise TransientDependencyError(f"Redis set failed: {e}") from e
    
    def delete(self, key: str) -> bool:
        try:
            return bool(self.r.delete(self._key(key)))
        except redis.RedisError as e:
            raise TransientDependencyError(f"Redis delete failed: {e}") from e
    
    def list_by_prefix(self, prefix: str) -> List[str]:
        namespace = f"{self.prefix}:"
        try:
            keys = self.r.scan_iter(match=f"{self._key(prefix)}*")
            return [key[len(namespace):] for key in keys]
        except redis.RedisError as e:
            raise TransientDependencyError(f"Redis scan failed: {e}") from e


class ReadThroughCache:
    """
    Read-through cache over a ``KeyValueCache``.
    
    Cache-layer failures are logged and absorbed: reads degrade to the
    loader, writes and evictions are skipped. Errors raised by a loader
    are not cache failures and propagate unchanged.
    
    Example:
        >>> cache = ReadThroughCache(InMemoryCache())
        >>> cache.get("memory:mem_1", lambda: store.get_by_id("mem_1").to_dict())
    """
    
    def __init__(self, backend: KeyValueCache, default_ttl: int = DEFAULT_TTL):
        self.backend = backend
        self.default_ttl = default_ttl
        self.hits = 0
        self.misses = 0
        self.failures = 0
    
    def get(
        self,
        key: str,
        loader: Callable[[], Any],
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Return the cached value for ``key``, loading it on a miss.
        
        Args:
            key: Cache key
            loader: Called on a miss; its result is cached and returned
            ttl: Time-to-live for a freshly loaded value
        """
        try:
            cached = self.backend.get(key)
        except Exception as e:
            self._absorb("read", key, e)
            cached = None
        
        if cached is not None:
            self.hits += 1
            return cached
        
        self.misses += 1
        value = loader()
        if value is not None:
            self.put(key, value, ttl)
        return value
    
    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Write a value, returning False if the cache rejected it."""
        try:
            self.backend.put(key, value, ttl or self.default_ttl)
            return True
        except Exception as e:
            self._absorb("write", key, e)
            return False
    
    def cache_recent_memory(self, record: MemoryRecord) -> bool:
        """Cache the lightweight projection of a freshly stored memory."""
        return self.put(recent_memory_key(record.id), record.to_projection())
    
    def get_recent_memory(self, memory_id: str) -> Optional[Any]:
        try:
            return self.backend.get(recent_memory_key(memory_id))
        except Exception as e:
            self._absorb("read", recent_memory_key(memory_id), e)
            return None
    
    def evict(self, key: str) -> bool:
        try:
            return self.backend.delete(key)
        except Exception as e:
            self._absorb("evict", key, e)
            return False
    
    def evict_memory(self, memory_id: str) -> None:
        """Drop every cached view of a memory."""
        self.evict(recent_memory_key(memory_id))
        self.evict(memory_key(memory_id))
    
    def evict_prefix(self, prefix: str) -> int:
        """
        Evict every key starting with ``prefix``.
        
        Returns:
            Number of keys actually evicted.
        """
        try:
            keys = self.backend.list_by_prefix(prefix)
        except Exception as e:
            self._absorb("scan", prefix, e)
            return 0
        
        evicted = 0
        for key in keys:
            if self.evict(key):
                evicted += 1
        
        if evicted:
            logger.debug(f"Evicted {evicted} cache entries with prefix {prefix}")
        return evicted
    
    def _absorb(self, operation: str, key: str, error: Exception) -> None:
        self.failures += 1
        logger.warning(f"Cache {operation} failed for {key}: {error}")
