from __future__ import annotations

import asyncio
import time

from sifapass.services.rate_limiter import InMemoryRateLimiter, RateLimitConfig


def _drain(limiter: InMemoryRateLimiter, key: str, config: RateLimitConfig, n: int):
    async def _go():
        return [await limiter.check(key, config) for _ in range(n)]

    return asyncio.run(_go())

# ---- token bucket ----

def test_bucket_allows_burst_then_refuses() -> None:
    config = RateLimitConfig(capacity=3, refill_rate=0.001)
    results = _drain(InMemoryRateLimiter(), "k", config, 4)
    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results[:3]] == [2, 1, 0]
    assert results[3].retry_after > 0
    assert results[3].limit == 3

def test_bucket_refills_over_time() -> None:
    limiter = InMemoryRateLimiter()
    config = RateLimitConfig(capacity=1, refill_rate=20.0)
    assert [r.allowed for r in _drain(limiter, "k", config, 2)] == [True, False]
    time.sleep(0.1)
    assert _drain(limiter, "k", config, 1)[0].allowed

def test_keys_are_independent_and_resettable() -> None:
    limiter = InMemoryRateLimiter()
    config = RateLimitConfig(capacity=1, refill_rate=0.001)
    _drain(limiter, "a", config, 1)
    assert not _drain(limiter, "a", config, 1)[0].allowed
    assert _drain(limiter, "b", config, 1)[0].allowed
    asyncio.run(limiter.reset("a"))
    assert _drain(limiter, "a", config, 1)[0].allowed

