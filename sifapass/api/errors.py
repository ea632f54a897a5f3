"""Error kind -> HTTP response, in one place.

  CredentialServiceError  -> its status_code, body from to_dict()
  RequestValidationError  -> 400 ValidationFailed
  HTTPException           -> its status, code derived from the status
  anything else           -> 500 Unknown (logged with traceback)

RateLimited carries ``retryAfter`` and gets a Retry-After header.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sifapass.core.errors import CredentialServiceError, RateLimited

logger = logging.getLogger(__name__)

_CODE_FOR_STATUS = {
    400: "ValidationFailed",
    401: "Unauthenticated",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    413: "ValidationFailed",
    415: "ValidationFailed",
    422: "ValidationFailed",
    429: "RateLimited",
}


def _error_body(code: str, message: str, **extras) -> dict:
    return {"success": False, "code": code, "message": message, **extras}


async def _service_error(request: Request, exc: CredentialServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.extras.get("retryAfter", 1))}
        headers.update(getattr(request.state, "rate_limit_headers", {}) or {})
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg')}" if where else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        _error_body(
            "ValidationFailed",
            message,
            errors=[
                {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")}
                for e in errors
            ],
        ),
        status_code=400,
    )


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _CODE_FOR_STATUS.get(exc.status_code, "Unknown")
    return JSONResponse(
        _error_body(code, str(exc.detail)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(_error_body("Unknown", "Internal server error"), status_code=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CredentialServiceError, _service_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _unhandled)
