from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    public_base_url: str
    cloudinary_url: str | None
    storage_folder: str
    activity_retention_days: int = 90
    webhook_retention_days: int = 30
    stuck_generating_minutes: int = 15
    batch_concurrency: int = 4
    webhook_workers: int = 4
    webhook_tenant_concurrency: int = 2
    issue_deadline_seconds: int = 90
    inline_worker: bool = False
    activity_deferred: bool = True

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    public_base_url = _getenv("PUBLIC_BASE_URL", "http://localhost:5173").rstrip("/")
    if not public_base_url.startswith(("http://", "https://")):
        raise ValueError(
            f"PUBLIC_BASE_URL must be an http(s) URL (got {public_base_url!r})"
        )

    redis_url = _getenv("REDIS_URL", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=redis_url,
        public_base_url=public_base_url,
        cloudinary_url=_getenv("CLOUDINARY_URL", "") or None,
        storage_folder=_getenv("STORAGE_FOLDER", "credentials").strip("/"),
        activity_retention_days=_getint("ACTIVITY_RETENTION_DAYS", 90, minimum=1),
        webhook_retention_days=_getint("WEBHOOK_RETENTION_DAYS", 30, minimum=1),
        stuck_generating_minutes=_getint("STUCK_GENERATING_MINUTES", 15, minimum=1),
        batch_concurrency=_getint("BATCH_CONCURRENCY", 4, minimum=1),
        webhook_workers=_getint("WEBHOOK_WORKERS", 4, minimum=1),
        webhook_tenant_concurrency=_getint("WEBHOOK_TENANT_CONCURRENCY", 2, minimum=1),
        issue_deadline_seconds=_getint("ISSUE_DEADLINE_SECONDS", 90, minimum=1),
        # Without Redis a separate worker process cannot see the queue,
        # so deliveries are drained inside the API process by default.
        inline_worker=_getbool("INLINE_WORKER", redis_url is None),
        activity_deferred=_getbool("ACTIVITY_DEFERRED", True),
    )


SETTINGS = load_settings()
