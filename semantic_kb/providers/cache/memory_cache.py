"""In-memory cache provider using cachetools.TTLCache.

Simple, fast cache suitable for single-process deployments.  Can be swapped
for Redis or another backend via the ICacheProvider interface.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import structlog
from cachetools import TTLCache

from semantic_kb.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class MemoryCacheProvider(ICacheProvider):
    """In-memory TTL cache backed by ``cachetools.TTLCache``.

    Expired entries are evicted on the next access; there is no background
    sweep.

    Parameters
    ----------
    max_size:
        Maximum number of entries before the least-recently-used entry
        is evicted.
    ttl:
        Time-to-live in seconds for every entry.
    timer:
        Monotonic clock used for expiry.  Tests inject a fake clock.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 60.0,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_size = max_size
        self._ttl = ttl
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=max_size, ttl=ttl, timer=timer)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Retrieve the cached value for *key*, or ``None`` if missing/expired."""
        with self._lock:
            self._cache.expire()
            value = self._cache.get(key)
            if value is not None:
                self._hits += 1
            else:
                self._misses += 1
        if value is not None:
            logger.debug("cache_hit", key=key)
        else:
            logger.debug("cache_miss", key=key)
        return value

    async def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value
        logger.debug("cache_set", key=key)

    async def delete(self, key: str) -> None:
        """Remove *key* from the cache (no-op if absent)."""
        with self._lock:
            self._cache.pop(key, None)
        logger.debug("cache_delete", key=key)

    async def exists(self, key: str) -> bool:
        with self._lock:
            self._cache.expire()
            return key in self._cache

    async def keys(self) -> list[str]:
        with self._lock:
            self._cache.expire()
            return list(self._cache.keys())

    async def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
        logger.debug("cache_cleared")

    def stats(self) -> dict[str, Any]:
        with self._lock:
            self._cache.expire()
            return {
                "size": len(self._cache),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
            }
