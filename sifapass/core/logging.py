"""Logging configuration for the credential service.

Two output shapes are supported:

  _ContainerFormatter: one human-readable line per record, for a
    terminal during local development.

  _JsonFormatter: one JSON object per line (JSON Lines), for log
    shippers.  Request-scoped fields such as request_id and tenant_id
    become top-level keys, so an aggregator can filter on
    ``tenant_id == "..." AND level == "ERROR"`` without regex parsing.

Set LOG_JSON=true to switch to JSON output.
"""

from __future__ import annotations

import json
import logging
import sys


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    WARNING and above get a ``[filename:lineno]`` suffix so a failed
    render or rejected webhook can be traced back to its guard clause.
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON Lines formatter.

    Context fields are attached by RequestContextMiddleware (per request)
    or passed explicitly through ``extra=`` by the issuance pipeline and
    the webhook worker.
    """

    _CONTEXT_FIELDS = (
        "request_id",
        "tenant_id",
        "credential_id",
        "delivery_id",
        "method",
        "path",
        "status_code",
        "duration_ms",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None and value != "-":
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure the root logger to write to stdout.

    Args:
        level_name: debug/info/warning/error. Unknown values fall back to info.
        json_format: emit JSON lines instead of the human-readable format.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    # Logger filters only see records logged on that logger, so the
    # request-context filter has to ride on the handler as well.
    for existing in root.filters:
        handler.addFilter(existing)
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # PIL logs every PNG chunk at DEBUG; cloudinary and httpx log each request.
    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpcore",
        "httpx",
        "PIL",
        "cloudinary",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
