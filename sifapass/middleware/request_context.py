"""Request context middleware: request IDs, tenant tagging and timing.

REQUEST IDs
-----------
Issuance requests render, upload and publish webhooks concurrently, so
their log lines interleave.  Every request gets an ID (from the client's
X-Request-ID header or a fresh UUID) stored in a ContextVar, and a
logging filter stamps it onto every record emitted while the request is
being handled.

TENANT TAGGING
--------------
The auth dependency sets ``tenant_id_var`` once the bearer token has
been decoded.  The same filter copies it onto each LogRecord, so the
JSON formatter can emit ``tenant_id`` as a top-level key and an operator
can pull one tenant's failed renders out of the log stream.

ContextVars (not thread-locals) are used because many requests share
the event loop thread.  Code that runs in ``asyncio.to_thread`` inherits
a copy of the context, so renderer warnings are tagged too.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="-")


class _RequestContextFilter(logging.Filter):
    """Copy the current request and tenant IDs onto every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if not hasattr(record, "tenant_id"):
            record.tenant_id = tenant_id_var.get("-")  # type: ignore[attr-defined]
        return True


# setup_logging() copies the root logger's filters onto its handler, so
# this module must be imported before logging is configured.
root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request and log one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        tenant_id_var.set("-")

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
