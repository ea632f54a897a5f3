"""Bearer token handling.

Verifies:
1. No token, a malformed token or an expired token is 401
2. A valid token without a tenant is 403
3. Admin-only routes refuse other roles with 403
"""

from __future__ import annotations

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient

from sifapass.services import token_service
from tests.conftest import auth, mint_token


def test_missing_token_is_401(client: TestClient) -> None:
    resp = client.get("/credentials")
    assert resp.status_code == 401
    assert resp.json() == {
        "success": False,
        "code": "Unauthenticated",
        "message": "Missing bearer token",
    }


def test_garbage_token_is_401(client: TestClient) -> None:
    resp = client.get("/credentials", headers=auth("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.json()["code"] == "Unauthenticated"


def test_expired_token_is_401(client: TestClient, tenant) -> None:
    expired = token_service.create_access_token(
        sub="admin@example.test", tenant_id=str(tenant.id), ttl_minutes=-1
    )
    resp = client.get("/credentials", headers=auth(expired))
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token expired"


def test_token_signed_by_another_key_is_401(client: TestClient, tenant) -> None:
    other_key = ec.generate_private_key(ec.SECP256R1())
    forged = jwt.encode(
        {
            "sub": "mallory",
            "tenant_id": str(tenant.id),
            "iss": token_service.ISSUER,
            "aud": token_service.AUDIENCE,
            "exp": 4102444800,
            "iat": 1700000000,
            "jti": "x",
        },
        other_key,
        algorithm="ES256",
    )
    resp = client.get("/credentials", headers=auth(forged))
    assert resp.status_code == 401


def test_token_without_tenant_is_403(client: TestClient) -> None:
    resp = client.get("/credentials", headers=auth(mint_token()))
    assert resp.status_code == 403
    assert resp.json()["code"] == "Forbidden"


def test_non_admin_cannot_register_webhook(client: TestClient, tenant) -> None:
    viewer = mint_token(tenant.id, username="viewer@example.test", roles=["viewer"])
    resp = client.post(
        "/webhooks",
        json={"url": "https://hooks.example.test", "events": ["credential.issued"]},
        headers=auth(viewer),
    )
    assert resp.status_code == 403
    assert resp.json()["message"] == "Insufficient permissions"


def test_non_admin_can_read(client: TestClient, tenant) -> None:
    viewer = mint_token(tenant.id, username="viewer@example.test", roles=["viewer"])
    assert client.get("/credentials", headers=auth(viewer)).status_code == 200


def test_invalid_token_on_public_verify_is_401(client: TestClient) -> None:
    resp = client.get("/credentials/verify", params={"hash": "a" * 64}, headers=auth("garbage"))
    assert resp.status_code == 401
