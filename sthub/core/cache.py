#!/usr/bin/env python3
"""LRU cache with TTL support for STHub.

Two cache levels are kept:
- PROBE: filesystem probe results (is-file, is-dir, size) keyed by real path
- PAYLOAD: rendered configuration-endpoint payloads keyed by provider prefix

Both are thread-safe since request handlers run on a thread per connection.

Example:
    >>> cache = CacheManager()
    >>> cache.set("stat", "/var/www/html/app.js", probe_result, level=CacheLevel.PROBE)
    >>> cache.get("stat", "/var/www/html/app.js", level=CacheLevel.PROBE)
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from sthub.core.constants import Limits


class CacheLevel(Enum):
    """Cache levels with different characteristics."""

    PROBE = "probe"  # stat() results - many small entries, short TTL
    PAYLOAD = "payload"  # endpoint payloads - few entries, configured TTL


@dataclass
class CacheEntry:
    """Single cache entry with metadata."""

    key: str
    value: Any
    size: int
    timestamp: float = field(default_factory=time.monotonic)
    access_count: int = 0

    def is_expired(self, ttl: float) -> bool:
        """Check if entry is older than ``ttl`` seconds."""
        return time.monotonic() - self.timestamp > ttl

    def touch(self) -> None:
        self.access_count += 1


@dataclass
class CacheConfig:
    """Configuration for a cache level."""

    max_entries: int
    max_size_bytes: int
    ttl_seconds: float
    enabled: bool = True

    def validate(self) -> None:
        """Validate cache configuration."""
        if self.max_entries <= 0:
            raise ValueError(f"max_entries must be positive: {self.max_entries}")
        if self.max_size_bytes <= 0:
            raise ValueError(f"max_size_bytes must be positive: {self.max_size_bytes}")
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive: {self.ttl_seconds}")


class LRUCache:
    """Thread-safe LRU cache with TTL and size limits."""

    def __init__(self, config: CacheConfig):
        """Initialize LRU cache.

        Args:
            config: Cache configuration
        """
        self.config = config
        self.config.validate()
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._current_size = 0

        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache.

        Returns:
            Cached value or None if not found/expired
        """
        with self._lock:
            if not self.config.enabled or key not in self._cache:
                self._misses += 1
                return None

            entry = self._cache[key]
            if entry.is_expired(self.config.ttl_seconds):
                self._remove_entry(key)
                self._expirations += 1
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            entry.touch()
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, size: int) -> None:
        """Store ``value`` under ``key``, evicting least recently used entries."""
        if not self.config.enabled:
            return

        with self._lock:
            if key in self._cache:
                self._remove_entry(key)

            if size > self.config.max_size_bytes:
                return

            while self._cache and (
                len(self._cache) >= self.config.max_entries
                or self._current_size + size > self.config.max_size_bytes
            ):
                self._evict_lru()

            self._cache[key] = CacheEntry(key=key, value=value, size=size)
            self._current_size += size

    def invalidate(self, key: str) -> bool:
        """Remove entry from cache.

        Returns:
            True if entry was removed
        """
        with self._lock:
            if key in self._cache:
                self._remove_entry(key)
                return True
            return False

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            self._current_size = 0

    def _remove_entry(self, key: str) -> None:
        entry = self._cache.pop(key, None)
        if entry is not None:
            self._current_size -= entry.size

    def _evict_lru(self) -> None:
        key = next(iter(self._cache))
        self._remove_entry(key)
        self._evictions += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total_requests = self._hits + self._misses
            return {
                "entries": len(self._cache),
                "size_bytes": self._current_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total_requests if total_requests else 0,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class CacheManager:
    """Cache manager holding one LRUCache per level."""

    DEFAULT_CONFIGS = {
        CacheLevel.PROBE: CacheConfig(
            max_entries=Limits.CACHE_MAX_ENTRIES,
            max_size_bytes=Limits.CACHE_MAX_SIZE_BYTES,
            ttl_seconds=1.0,
        ),
        CacheLevel.PAYLOAD: CacheConfig(
            max_entries=64,
            max_size_bytes=Limits.CACHE_MAX_SIZE_BYTES,
            ttl_seconds=float(Limits.DEFAULT_CACHE_TTL_SECONDS),
        ),
    }

    def __init__(self, configs: Optional[Dict[CacheLevel, CacheConfig]] = None):
        """Initialize cache manager.

        Args:
            configs: Cache configurations per level (uses defaults if None)
        """
        self.configs = dict(self.DEFAULT_CONFIGS)
        if configs:
            self.configs.update(configs)
        self.caches: Dict[CacheLevel, LRUCache] = {
            level: LRUCache(config) for level, config in self.configs.items()
        }

    @classmethod
    def from_config(cls, cache_config: Dict[str, Any]) -> "CacheManager":
        """Build a manager from the ``cache`` section of the hub configuration."""
        enabled = bool(cache_config.get("enabled", True))
        ttl = float(cache_config.get("ttl_seconds", Limits.DEFAULT_CACHE_TTL_SECONDS))
        return cls(
            {
                CacheLevel.PROBE: CacheConfig(
                    max_entries=Limits.CACHE_MAX_ENTRIES,
                    max_size_bytes=Limits.CACHE_MAX_SIZE_BYTES,
                    ttl_seconds=min(ttl, 1.0),
                    enabled=enabled,
                ),
                CacheLevel.PAYLOAD: CacheConfig(
                    max_entries=64,
                    max_size_bytes=Limits.CACHE_MAX_SIZE_BYTES,
                    ttl_seconds=ttl,
                    enabled=enabled,
                ),
            }
        )

    def get(
        self, namespace: str, key: str, level: CacheLevel = CacheLevel.PAYLOAD
    ) -> Optional[Any]:
        """Get value from cache.

        Args:
            namespace: Cache namespace (e.g., "stat", "env_tree")
            key: Cache key (e.g., file path)
            level: Cache level

        Returns:
            Cached value or None
        """
        return self.caches[level].get(f"{namespace}:{key}")

    def set(
        self,
        namespace: str,
        key: str,
        value: Any,
        size: Optional[int] = None,
        level: CacheLevel = CacheLevel.PAYLOAD,
    ) -> None:
        """Set value in cache.

        Args:
            namespace: Cache namespace
            key: Cache key
            value: Value to cache
            size: Size in bytes (estimated if None)
            level: Cache level
        """
        if size is None:
            size = self._estimate_size(value)
        self.caches[level].set(f"{namespace}:{key}", value, size)

    def invalidate(self, namespace: str, key: str, level: Optional[CacheLevel] = None) -> bool:
        """Invalidate an entry on one level or on every level."""
        full_key = f"{namespace}:{key}"
        levels = [level] if level else list(self.caches)
        invalidated = False
        for lvl in levels:
            if self.caches[lvl].invalidate(full_key):
                invalidated = True
        return invalidated

    def clear(self, level: Optional[CacheLevel] = None) -> None:
        """Clear one level or all of them."""
        if level:
            self.caches[level].clear()
            return
        for cache in self.caches.values():
            cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics per level."""
        return {level.value: cache.get_stats() for level, cache in self.caches.items()}

    def _estimate_size(self, value: Any) -> int:
        if isinstance(value, (str, bytes)):
            return len(value)
        if isinstance(value, (bool, int, float)):
            return 8
        if isinstance(value, (list, tuple)):
            return sum(self._estimate_size(item) for item in value) + 8
        if isinstance(value, dict):
            return 8 + sum(
                self._estimate_size(k) + self._estimate_size(v) for k, v in value.items()
            )
        return 256
