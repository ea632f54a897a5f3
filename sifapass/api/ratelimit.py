"""Rate limiting dependency for FastAPI routes.

A dependency rather than middleware, so each route picks its own limit:

  POST /credentials/design   ISSUE_LIMIT   (30 burst, 0.5/s)
  POST /credentials/batch    BATCH_LIMIT   (5 burst, 1 per 20 s)
  GET  /credentials/verify   VERIFY_LIMIT  (120 burst, 2/s), public
  GET  /health, /metrics     no limit

KEYS
----
Authenticated requests are keyed by tenant, so all admins of one
organization share one bucket and one tenant cannot starve the renderer
for everybody else.  Anonymous requests (verification) are keyed by
client IP.

The token is decoded without signature verification here, only to pick
a bucket.  A forged token just gets its own bucket; the real check
happens in require_principal.
"""

from __future__ import annotations

import logging

import jwt as pyjwt
from fastapi import Request

from sifapass.api.dependencies import client_ip
from sifapass.core.errors import RateLimited
from sifapass.core.metrics import RATE_LIMIT_HITS
from sifapass.db.redis import redis_pool
from sifapass.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

if redis_pool is not None:
    rate_limiter: RateLimiter = RedisRateLimiter(redis_pool)
else:
    rate_limiter = InMemoryRateLimiter()


_DEFAULT_CONFIG = RateLimitConfig()


def require_rate_limit(config: RateLimitConfig = _DEFAULT_CONFIG, scope: str = "api"):
    """Dependency factory: enforce a token bucket on a route.

    Usage: dependencies=[Depends(require_rate_limit(ISSUE_LIMIT, "issue"))]
    """

    async def _check(request: Request) -> None:
        key = f"{scope}:{_build_key(request)}"
        result: RateLimitResult = await rate_limiter.check(key, config)

        request.state.rate_limit_headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }

        if not result.allowed:
            RATE_LIMIT_HITS.labels(
                key_type="tenant" if ":tenant:" in key else "ip"
            ).inc()
            logger.warning("Rate limit exceeded key=%s", key)
            raise RateLimited(
                "Rate limit exceeded",
                retryAfter=int(result.retry_after) + 1,
            )

    return _check


def _build_key(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = pyjwt.decode(auth_header[7:], options={"verify_signature": False})
        except pyjwt.InvalidTokenError:
            claims = {}
        tenant = claims.get("tenant_id")
        if tenant:
            return f"tenant:{tenant}"
    return f"ip:{client_ip(request)}"
