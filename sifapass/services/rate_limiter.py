"""Rate limiting using the token bucket algorithm.

Each client key owns a bucket of ``capacity`` tokens that refills at
``refill_rate`` tokens per second; each request costs one token.  Short
bursts (a dashboard loading a page of credentials) pass, while the
long-term average is held to the refill rate.  Only two numbers are kept
per key: the token count and the last refill time.

Issuance endpoints render and upload on every call, so they get a much
smaller bucket than the public verification endpoint.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    """The outcome of a rate limit check.

    retry_after: seconds until the next token is available (0 if allowed)
    """

    allowed: bool
    remaining: int
    limit: int
    retry_after: float


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """capacity: burst size.  refill_rate: tokens added per second."""

    capacity: int = 60
    refill_rate: float = 1.0


ISSUE_LIMIT = RateLimitConfig(capacity=30, refill_rate=0.5)
BATCH_LIMIT = RateLimitConfig(capacity=5, refill_rate=0.05)
VERIFY_LIMIT = RateLimitConfig(capacity=120, refill_rate=2.0)
WEBHOOK_TEST_LIMIT = RateLimitConfig(capacity=10, refill_rate=0.1)


@runtime_checkable
class RateLimiter(Protocol):
    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult: ...
    async def reset(self, key: str) -> None: ...


class InMemoryRateLimiter:
    """Per-process token buckets for dev and tests.

    Each API process keeps its own buckets, so behind a load balancer the
    effective limit is multiplied by the number of processes.
    """

    def __init__(self) -> None:
        # key -> (tokens_remaining, last_refill_timestamp)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._lock = threading.Lock()

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        now = time.monotonic()
        with self._lock:
            if key not in self._buckets:
                self._buckets[key] = (config.capacity - 1, now)
                return RateLimitResult(
                    allowed=True,
                    remaining=config.capacity - 1,
                    limit=config.capacity,
                    retry_after=0,
                )

            tokens, last_refill = self._buckets[key]
            tokens = min(config.capacity, tokens + (now - last_refill) * config.refill_rate)

            if tokens >= 1:
                tokens -= 1
                self._buckets[key] = (tokens, now)
                return RateLimitResult(
                    allowed=True,
                    remaining=int(tokens),
                    limit=config.capacity,
                    retry_after=0,
                )

            self._buckets[key] = (tokens, now)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=config.capacity,
                retry_after=(1 - tokens) / config.refill_rate,
            )

    async def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


class RedisRateLimiter:
    """Redis-backed token bucket shared by all API instances.

    The refill-then-consume step is a read-modify-write, so it runs as
    a Lua script, which Redis executes atomically.
    """

    # KEYS[1] = bucket key
    # ARGV[1] = capacity, ARGV[2] = refill_rate, ARGV[3] = current time
    # Returns {allowed (0/1), remaining, retry_after_ms}
    _LUA_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local refill_rate = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])

    local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
    local tokens = tonumber(bucket[1])
    local last_refill = tonumber(bucket[2])
    local ttl = math.ceil(capacity / refill_rate) + 60

    if tokens == nil then
        tokens = capacity - 1
        redis.call('HSET', key, 'tokens', tokens, 'last_refill', now)
        redis.call('EXPIRE', key, ttl)
        return {1, tokens, 0}
    end

    tokens = math.min(capacity, tokens + (now - last_refill) * refill_rate)

    if tokens >= 1 then
        tokens = tokens - 1
        redis.call('HSET', key, 'tokens', tokens, 'last_refill', now)
        redis.call('EXPIRE', key, ttl)
        return {1, math.floor(tokens), 0}
    end

    local retry_after_ms = math.ceil((1 - tokens) / refill_rate * 1000)
    redis.call('HSET', key, 'tokens', tokens, 'last_refill', now)
    return {0, 0, retry_after_ms}
    """

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = None

    async def _get_script(self):
        if self._script is None:
            self._script = self._redis.register_script(self._LUA_SCRIPT)
        return self._script

    async def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        script = await self._get_script()
        allowed, remaining, retry_after_ms = await script(
            keys=[f"ratelimit:{key}"],
            args=[config.capacity, config.refill_rate, time.time()],
        )
        return RateLimitResult(
            allowed=bool(allowed),
            remaining=int(remaining),
            limit=config.capacity,
            retry_after=retry_after_ms / 1000,
        )

    async def reset(self, key: str) -> None:
        await self._redis.delete(f"ratelimit:{key}")
