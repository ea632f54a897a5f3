from __future__ import annotations

import json
import logging
import sys

from sifapass.core.logging import _ContainerFormatter, _JsonFormatter, setup_logging
from sifapass.middleware.request_context import tenant_id_var


def _record(level: int = logging.INFO, msg: str = "hello", args: tuple = ()) -> logging.LogRecord:
    return logging.LogRecord(
        name="sifapass.test",
        level=level,
        pathname="issuance.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=None,
    )


def test_setup_logging_sets_root_level() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG

    setup_logging("warning")
    assert logging.getLogger().level == logging.WARNING


def test_setup_logging_defaults_to_info_for_unknown_level() -> None:
    setup_logging("nonexistent")
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_quiets_noisy_libraries_at_debug() -> None:
    setup_logging("debug")
    for name in ("uvicorn", "httpx", "PIL", "cloudinary"):
        assert logging.getLogger(name).level == logging.WARNING


def test_setup_logging_allows_uvicorn_at_error() -> None:
    setup_logging("error")
    assert logging.getLogger("uvicorn").level == logging.ERROR


def test_setup_logging_json_handler() -> None:
    setup_logging("info", json_format=True)
    handler = logging.getLogger().handlers[0]
    assert isinstance(handler.formatter, _JsonFormatter)
    setup_logging("info")


def test_handler_carries_request_context_filter() -> None:
    setup_logging("info")
    handler = logging.getLogger().handlers[0]
    assert handler.filters, "request-context filter should be copied onto the handler"


def test_formatter_excludes_location_for_info() -> None:
    output = _ContainerFormatter().format(_record())
    assert "hello" in output
    assert "[issuance.py:" not in output


def test_formatter_includes_location_for_warning() -> None:
    output = _ContainerFormatter().format(_record(logging.WARNING, "render failed"))
    assert "render failed" in output
    assert "[issuance.py:42]" in output


def test_json_formatter_produces_valid_json() -> None:
    output = _JsonFormatter().format(_record(msg="Issued %s", args=("cred-1",)))
    parsed = json.loads(output)
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "sifapass.test"
    assert parsed["message"] == "Issued cred-1"
    assert "timestamp" in parsed


def test_json_formatter_includes_context_fields() -> None:
    record = _record()
    record.request_id = "abc-123"  # type: ignore[attr-defined]
    record.tenant_id = "t-1"  # type: ignore[attr-defined]
    record.credential_id = "c-1"  # type: ignore[attr-defined]
    record.delivery_id = "d-1"  # type: ignore[attr-defined]
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "abc-123"
    assert parsed["tenant_id"] == "t-1"
    assert parsed["credential_id"] == "c-1"
    assert parsed["delivery_id"] == "d-1"


def test_json_formatter_omits_placeholder_context() -> None:
    record = _record()
    record.request_id = "-"  # type: ignore[attr-defined]
    parsed = json.loads(_JsonFormatter().format(record))
    assert "request_id" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("test error")
    except ValueError:
        record = logging.LogRecord(
            name="test",
            level=logging.ERROR,
            pathname="test.py",
            lineno=1,
            msg="Something failed",
            args=(),
            exc_info=sys.exc_info(),
        )
        output = _JsonFormatter().format(record)
    parsed = json.loads(output)
    assert "ValueError: test error" in parsed["exception"]


def test_context_filter_stamps_tenant_id() -> None:
    setup_logging("info")
    handler = logging.getLogger().handlers[0]
    token = tenant_id_var.set("tenant-xyz")
    try:
        record = _record()
        for f in handler.filters:
            f.filter(record)  # type: ignore[union-attr]
    finally:
        tenant_id_var.reset(token)
    assert record.tenant_id == "tenant-xyz"  # type: ignore[attr-defined]


def test_explicit_tenant_id_is_not_overwritten() -> None:
    setup_logging("info")
    handler = logging.getLogger().handlers[0]
    record = _record()
    record.tenant_id = "explicit"  # type: ignore[attr-defined]
    for f in handler.filters:
        f.filter(record)  # type: ignore[union-attr]
    assert record.tenant_id == "explicit"  # type: ignore[attr-defined]
