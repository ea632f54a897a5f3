"""Error kinds raised by the credential pipeline.

Every error carries a stable machine-readable ``code`` and a human
``message``.  The HTTP layer (sifapass/api/errors.py) renders them as
``{"success": false, "code": ..., "message": ..., **extras}`` with the
class's ``status_code``.  Services never build HTTP responses themselves.

Groups:
  input       ValidationFailed, InvalidReference, NotFound, InvalidStateTransition
  policy      Unauthenticated, Forbidden, InsufficientCredits, LimitReached,
              BillingNotConfigured, SubscriptionInactive, RateLimited
  dependency  StorageUnavailable, AssetUnavailable, RenderFailed,
              WebhookDeliveryFailed
  internal    Conflict, QuotaExhausted, DeadlineExceeded, Unknown
"""

from __future__ import annotations

from typing import Any


class CredentialServiceError(Exception):
    code = "Unknown"
    status_code = 500
    retriable = False

    def __init__(self, message: str = "", **extras: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extras = extras

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "code": self.code,
            "message": self.message,
        }
        body.update(self.extras)
        return body


# --- input ---


class ValidationFailed(CredentialServiceError):
    code = "ValidationFailed"
    status_code = 400


class InvalidReference(CredentialServiceError):
    code = "InvalidReference"
    status_code = 404


class NotFound(CredentialServiceError):
    code = "NotFound"
    status_code = 404


class InvalidStateTransition(CredentialServiceError):
    code = "InvalidStateTransition"
    status_code = 409


# --- policy ---


class Unauthenticated(CredentialServiceError):
    code = "Unauthenticated"
    status_code = 401


class Forbidden(CredentialServiceError):
    code = "Forbidden"
    status_code = 403


class BillingError(CredentialServiceError):
    status_code = 402


class InsufficientCredits(BillingError):
    code = "InsufficientCredits"

    def __init__(self, message: str = "", **extras: Any) -> None:
        extras.setdefault("requiresPayment", True)
        super().__init__(
            message
            or "Insufficient credits. Please purchase more credits to continue.",
            **extras,
        )


class LimitReached(BillingError):
    code = "LimitReached"

    def __init__(self, message: str = "", **extras: Any) -> None:
        extras.setdefault("requiresUpgrade", True)
        super().__init__(
            message
            or "You have reached your plan limit. Please upgrade your plan to continue.",
            **extras,
        )


class BillingNotConfigured(BillingError):
    code = "BillingNotConfigured"

    def __init__(self, message: str = "", **extras: Any) -> None:
        extras.setdefault("requiresSetup", True)
        super().__init__(
            message or "Please set up billing to use this feature.", **extras
        )


class SubscriptionInactive(BillingError):
    code = "SubscriptionInactive"

    def __init__(self, message: str = "", **extras: Any) -> None:
        extras.setdefault("requiresRenewal", True)
        super().__init__(
            message or "No active subscription. Please renew to continue.", **extras
        )


class RateLimited(CredentialServiceError):
    code = "RateLimited"
    status_code = 429
    retriable = True


# --- dependency ---


class DependencyError(CredentialServiceError):
    status_code = 502
    retriable = True


class StorageUnavailable(DependencyError):
    code = "StorageUnavailable"
    status_code = 503


class RenderFailed(DependencyError):
    """Renderer failure.  ``sub_kind`` is AssetUnavailable|InvalidTemplate|Internal."""

    code = "RenderFailed"

    def __init__(self, message: str = "", sub_kind: str = "Internal", **extras: Any):
        extras.setdefault("reason", sub_kind)
        super().__init__(message or "Credential rendering failed", **extras)
        self.sub_kind = sub_kind
        # A broken template renders the same way on every retry.
        self.retriable = sub_kind != "InvalidTemplate"


class AssetUnavailable(RenderFailed):
    def __init__(self, message: str = "", **extras: Any) -> None:
        super().__init__(
            message or "A design asset could not be fetched",
            sub_kind="AssetUnavailable",
            **extras,
        )


class WebhookDeliveryFailed(DependencyError):
    code = "WebhookDeliveryFailed"


# --- internal ---


class Conflict(CredentialServiceError):
    code = "Conflict"
    status_code = 409


class QuotaExhausted(CredentialServiceError):
    code = "QuotaExhausted"
    status_code = 402


class DeadlineExceeded(CredentialServiceError):
    code = "DeadlineExceeded"
    status_code = 504
    retriable = True


_BY_CODE: dict[str, type[CredentialServiceError]] = {
    cls.code: cls
    for cls in (
        ValidationFailed,
        InvalidReference,
        NotFound,
        InvalidStateTransition,
        Unauthenticated,
        Forbidden,
        InsufficientCredits,
        LimitReached,
        BillingNotConfigured,
        SubscriptionInactive,
        RateLimited,
        StorageUnavailable,
        RenderFailed,
        WebhookDeliveryFailed,
        Conflict,
        QuotaExhausted,
        DeadlineExceeded,
        CredentialServiceError,
    )
}


def error_for_code(code: str, message: str = "") -> CredentialServiceError:
    """Rebuild an error from a stored code (quota admission reasons)."""
    return _BY_CODE.get(code, CredentialServiceError)(message)
