"""Liveness and readiness.

  /health  always 200 while the process can answer; ``status`` is
           ``degraded`` when a configured dependency is unreachable
  /ready   503 when PostgreSQL is configured and unreachable, so the load
           balancer stops routing here without restarting the process

Redis is not critical for readiness: losing it delays webhooks and
disables shared rate limits, but issuance and verification still work.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from sifapass.db.engine import engine
from sifapass.db.redis import redis_pool
from sifapass.services.container import object_store
from sifapass.services.task_queue import WEBHOOK_QUEUE, task_queue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Database health check failed")
        return "degraded"


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
        return "ok"
    except Exception:
        logger.exception("Redis health check failed")
        return "degraded"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
        "objectStore": type(object_store).__name__,
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    try:
        queued = await task_queue.queue_length(WEBHOOK_QUEUE)
    except Exception:
        queued = None
    return {"status": overall, "checks": checks, "webhookQueueDepth": queued}


@router.get("/ready")
async def ready() -> Response:
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
