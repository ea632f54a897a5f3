from __future__ import annotations

import pytest

from sifapass.core.config import load_settings

# ---- valid values ----


def test_load_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("APP_ENV", "LOG_LEVEL", "PUBLIC_BASE_URL", "STORAGE_FOLDER"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.public_base_url == "http://localhost:5173"
    assert settings.storage_folder == "credentials"
    assert settings.activity_retention_days == 90
    assert settings.webhook_retention_days == 30
    assert settings.stuck_generating_minutes == 15


def test_load_settings_respects_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("LOG_LEVEL", "error")
    monkeypatch.setenv("BATCH_CONCURRENCY", "8")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "error"
    assert settings.batch_concurrency == 8
    assert settings.is_prod


def test_load_settings_normalizes_case(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "PROD")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "debug"


def test_load_settings_strips_whitespace(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "  test  ")
    monkeypatch.setenv("LOG_LEVEL", "  warning  ")
    settings = load_settings()
    assert settings.app_env == "test"
    assert settings.log_level == "warning"


def test_public_base_url_trailing_slash_removed(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://verify.example.org/")
    assert load_settings().public_base_url == "https://verify.example.org"


def test_inline_worker_defaults_on_without_redis(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("INLINE_WORKER", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    assert load_settings().inline_worker is True


def test_inline_worker_defaults_off_with_redis(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("INLINE_WORKER", raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    assert load_settings().inline_worker is False


def test_empty_urls_mean_not_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "")
    monkeypatch.setenv("CLOUDINARY_URL", "  ")
    settings = load_settings()
    assert settings.database_url is None
    assert settings.cloudinary_url is None


# ---- invalid values ----


def test_load_settings_rejects_invalid_app_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "staging")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


def test_load_settings_rejects_invalid_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(ValueError, match="LOG_LEVEL must be"):
        load_settings()


def test_load_settings_rejects_non_http_base_url(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PUBLIC_BASE_URL", "ftp://example.test")
    with pytest.raises(ValueError, match="PUBLIC_BASE_URL"):
        load_settings()


def test_load_settings_rejects_bad_integer(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ACTIVITY_RETENTION_DAYS", "ninety")
    with pytest.raises(ValueError, match="ACTIVITY_RETENTION_DAYS must be an integer"):
        load_settings()


def test_load_settings_rejects_integer_below_minimum(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("WEBHOOK_WORKERS", "0")
    with pytest.raises(ValueError, match="WEBHOOK_WORKERS must be >= 1"):
        load_settings()


def test_load_settings_rejects_bad_boolean(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_JSON", "maybe")
    with pytest.raises(ValueError, match="LOG_JSON must be a boolean"):
        load_settings()
