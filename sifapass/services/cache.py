"""Read-through cache service.

The verification endpoint is public and may be hit far more often than
credentials change, so the sanitized verification view is cached:

  GET /credentials/verify -> cache hit  -> return
                          -> cache miss -> credential store -> populate -> return

Two invalidation strategies cover each other:

  1. TTL: every entry expires on its own (300 s for verification views).
  2. Explicit: every credential state transition deletes the entry, so
     a revoked credential stops verifying as valid immediately.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable

from sifapass.core.metrics import CACHE_OPERATIONS
from sifapass.db.redis import redis_pool


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def delete(self, key: str) -> None:
        """Explicitly invalidate a cached entry."""
        ...


class InMemoryCacheService:
    """In-memory cache for dev and tests, with lazy TTL expiry."""

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is not None and entry[1] <= time.monotonic():
                del self._store[key]
                entry = None
        CACHE_OPERATIONS.labels(operation="hit" if entry else "miss").inc()
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._store[key] = (value, time.monotonic() + ttl_seconds)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


class RedisCacheService:
    """Redis-backed cache shared across all API instances."""

    # Keeps cache keys apart from rate-limit buckets and task lists.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(f"{self._PREFIX}{key}")
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
