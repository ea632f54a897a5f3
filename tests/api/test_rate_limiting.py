"""Rate limiting tests.

Verifies the token bucket rate limiter:
1. The batch endpoint allows a burst of 5, then answers 429
2. The 429 response includes Retry-After and rate limit headers
3. Tenants have separate buckets
4. Public verification is limited per client IP
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth, create_test_tenant, mint_token


def _batch(client: TestClient, token: str):
    # An empty body fails validation, but only after the bucket is charged.
    return client.post("/credentials/batch", json={}, headers=auth(token))


def test_batch_burst_then_429(client: TestClient, token) -> None:
    statuses = [_batch(client, token).status_code for _ in range(6)]
    assert statuses[:5] == [400] * 5
    assert statuses[5] == 429


def test_429_includes_retry_after_header(client: TestClient, token) -> None:
    last = None
    for _ in range(6):
        last = _batch(client, token)
    assert last is not None and last.status_code == 429
    body = last.json()
    assert body["code"] == "RateLimited"
    assert int(last.headers["retry-after"]) > 0
    assert last.headers["x-ratelimit-limit"] == "5"
    assert last.headers["x-ratelimit-remaining"] == "0"


def test_tenants_have_separate_buckets(client: TestClient, token) -> None:
    for _ in range(6):
        _batch(client, token)
    other = mint_token(create_test_tenant("Other").id)
    assert _batch(client, other).status_code == 400


def test_verify_is_limited_per_ip(client: TestClient) -> None:
    statuses = [
        client.get("/credentials/verify", params={"hash": "f" * 64}).status_code
        for _ in range(200)
    ]
    # The bucket refills at 2/s, so a slow run may squeeze in a few more.
    assert 429 in statuses
    assert statuses.index(429) >= 120
    assert set(statuses[: statuses.index(429)]) == {404}

    elsewhere = client.get(
        "/credentials/verify", params={"hash": "f" * 64}, headers={"X-Forwarded-For": "192.0.2.44"}
    )
    assert elsewhere.status_code == 404


def test_health_is_not_limited(client: TestClient) -> None:
    assert all(client.get("/health").status_code == 200 for _ in range(150))
