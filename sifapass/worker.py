"""Background worker process.

RUN:  python -m sifapass.worker

Same image as the API, different command:
  api:    uvicorn sifapass.main:app --host 0.0.0.0 --port 8000
  worker: python -m sifapass.worker

The worker runs two loops until SIGINT/SIGTERM:

  webhook pool   WEBHOOK_WORKERS consumers of the ``webhook_delivery``
                 queue, at most WEBHOOK_TENANT_CONCURRENCY per tenant
  janitor        every 30 s: requeue due webhook retries, fail records
                 stuck in ``generating``, reap old activity and deliveries

A separate worker only makes sense with REDIS_URL set; the in-memory
queue is private to one process.  Without Redis, run the API with
INLINE_WORKER=true instead.
"""

from __future__ import annotations

import asyncio
import logging
import signal

from sifapass.core.config import SETTINGS
from sifapass.core.logging import setup_logging
from sifapass.middleware import request_context  # noqa: F401  installs the log filter
from sifapass.services.container import activity_log, janitor, webhook_pool

setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
logger = logging.getLogger("sifapass.worker")


async def run_worker() -> None:
    if SETTINGS.redis_url is None:
        logger.warning(
            "No REDIS_URL configured; this worker cannot see the API's queue"
        )
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(
        "Worker started workers=%d per_tenant=%d",
        SETTINGS.webhook_workers,
        SETTINGS.webhook_tenant_concurrency,
    )
    await asyncio.gather(webhook_pool.run(stop), janitor.run(stop))
    await activity_log.flush()
    logger.info("Worker stopped")


if __name__ == "__main__":
    asyncio.run(run_worker())
