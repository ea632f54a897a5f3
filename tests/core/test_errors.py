from __future__ import annotations

from sifapass.core.errors import (
    AssetUnavailable,
    CredentialServiceError,
    InsufficientCredits,
    LimitReached,
    RenderFailed,
    SubscriptionInactive,
    ValidationFailed,
    error_for_code,
)


def test_to_dict_carries_code_message_and_extras() -> None:
    exc = ValidationFailed("title is required", field="title")
    assert exc.status_code == 400
    assert exc.to_dict() == {
        "success": False,
        "code": "ValidationFailed",
        "message": "title is required",
        "field": "title",
    }


def test_billing_errors_carry_action_flags() -> None:
    assert InsufficientCredits().to_dict()["requiresPayment"] is True
    assert LimitReached().to_dict()["requiresUpgrade"] is True
    assert SubscriptionInactive().to_dict()["requiresRenewal"] is True
    assert InsufficientCredits().status_code == 402


def test_render_failed_retriable_depends_on_sub_kind() -> None:
    assert RenderFailed("boom").retriable is True
    assert RenderFailed("bad", sub_kind="InvalidTemplate").retriable is False
    exc = AssetUnavailable()
    assert exc.code == "RenderFailed"
    assert exc.sub_kind == "AssetUnavailable"
    assert exc.to_dict()["reason"] == "AssetUnavailable"


def test_error_for_code_rebuilds_known_kind() -> None:
    exc = error_for_code("InsufficientCredits")
    assert isinstance(exc, InsufficientCredits)
    assert exc.status_code == 402


def test_error_for_code_unknown_is_generic() -> None:
    exc = error_for_code("SomethingElse", "nope")
    assert type(exc) is CredentialServiceError
    assert exc.status_code == 500
    assert exc.message == "nope"
