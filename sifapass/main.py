from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sifapass.api.activity import router as activity_router
from sifapass.api.billing import router as billing_router
from sifapass.api.credentials import router as credentials_router
from sifapass.api.errors import install_error_handlers
from sifapass.api.events import router as events_router
from sifapass.api.health import router as health_router
from sifapass.api.metrics_endpoint import router as metrics_router
from sifapass.api.templates import router as templates_router
from sifapass.api.webhooks import router as webhooks_router
from sifapass.core.config import SETTINGS
from sifapass.core.logging import setup_logging
from sifapass.db.engine import lifespan_db
from sifapass.db.redis import lifespan_redis
from sifapass.middleware.metrics import MetricsMiddleware
from sifapass.middleware.request_context import RequestContextMiddleware
from sifapass.services.container import activity_log, janitor, webhook_pool

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def inline_worker() -> AsyncGenerator[None, None]:
    """Run webhook delivery and the janitor inside the API process.

    Used when no separate worker is deployed (INLINE_WORKER=true, the
    default without Redis, where a worker process could not see the
    in-memory queue anyway).
    """
    if not SETTINGS.inline_worker:
        yield
        return
    stop = asyncio.Event()
    tasks = [
        asyncio.create_task(webhook_pool.run(stop), name="webhook-pool"),
        asyncio.create_task(janitor.run(stop), name="janitor"),
    ]
    logger.info("Inline worker started")
    try:
        yield
    finally:
        stop.set()
        for task in tasks:
            with suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(task, timeout=5)
        logger.info("Inline worker stopped")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order: worker, then Redis, then the DB.
    async with lifespan_db():
        async with lifespan_redis():
            try:
                async with inline_worker():
                    yield
            finally:
                await activity_log.flush()


app = FastAPI(
    title="sifapass",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.public_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: RequestContext -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

install_error_handlers(app)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(credentials_router)
app.include_router(templates_router)
app.include_router(events_router)
app.include_router(webhooks_router)
app.include_router(activity_router)
app.include_router(billing_router)

logger.info(
    "sifapass started  env=%s log_level=%s port=%d inline_worker=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.inline_worker,
)
