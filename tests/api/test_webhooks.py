"""Webhook subscription endpoint tests.

Verifies:
1. The create call returns the signing secret; listings never do
2. Unknown events and non-http URLs are rejected
3. Issuing a credential produces a delivery that shows up in the log
   once the worker pool has run
4. DELETE removes the subscription
5. A test event is sent signed and leaves no delivery behind
"""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from sifapass.services import container
from sifapass.services.task_queue import task_queue
from sifapass.services.webhook_fanout import WebhookWorkerPool
from tests.conftest import auth, create_test_tenant, design_payload, mint_token

HOOK = {"url": "https://hooks.example.test/sifapass", "events": ["credential.issued", "credential.revoked"]}


def _register(client: TestClient, token: str, **body) -> dict:
    resp = client.post("/webhooks", json={**HOOK, **body}, headers=auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()["webhook"]


def _drain() -> int:
    pool = WebhookWorkerPool(container.webhook_dispatcher, task_queue, workers=2)
    return asyncio.run(pool.drain())


def test_event_catalogue_is_public(client: TestClient) -> None:
    body = client.get("/webhooks/events").json()
    assert "credential.issued" in body["events"]
    assert body["signatureHeader"] == "X-Signature"


def test_secret_only_on_create(client: TestClient, token) -> None:
    created = _register(client, token, description="CRM sync")
    assert created["secret"].startswith("whsec_")
    listed = client.get("/webhooks", headers=auth(token)).json()
    assert listed["total"] == 1
    assert "secret" not in listed["items"][0]
    assert listed["items"][0]["description"] == "CRM sync"


def test_rejects_unknown_event(client: TestClient, token) -> None:
    resp = client.post(
        "/webhooks", json={"url": HOOK["url"], "events": ["credential.melted"]}, headers=auth(token)
    )
    assert resp.status_code == 400
    assert "credential.issued" in resp.json()["allowed"]


def test_rejects_non_http_url(client: TestClient, token) -> None:
    resp = client.post(
        "/webhooks", json={"url": "ftp://hooks.example.test", "events": ["credential.issued"]}, headers=auth(token)
    )
    assert resp.status_code == 400


def test_issue_then_deliver_shows_in_log(client: TestClient, token, participant, event) -> None:
    hook = _register(client, token)
    client.post("/credentials/design", json=design_payload(participant, event), headers=auth(token))
    assert _drain() == 1

    log = client.get(f"/webhooks/{hook['id']}/deliveries", headers=auth(token)).json()
    assert log["total"] == 1
    [delivery] = log["items"]
    assert delivery["event"] == "credential.issued"
    assert delivery["outcome"] == "success"
    assert delivery["httpStatus"] == 200

    listed = client.get("/webhooks", headers=auth(token)).json()["items"][0]
    assert listed["successCount"] == 1


def test_unsubscribed_events_are_not_sent(client: TestClient, token, participant, event) -> None:
    _register(client, token, events=["credential.revoked"])
    client.post("/credentials/design", json=design_payload(participant, event), headers=auth(token))
    assert _drain() == 0


def test_delete_webhook(client: TestClient, token) -> None:
    hook = _register(client, token)
    assert client.delete(f"/webhooks/{hook['id']}", headers=auth(token)).status_code == 204
    assert client.get("/webhooks", headers=auth(token)).json()["total"] == 0
    assert client.delete(f"/webhooks/{hook['id']}", headers=auth(token)).status_code == 404


def test_send_test_event_reports_result_without_logging_delivery(client: TestClient, token, tenant) -> None:
    hook = _register(client, token)
    resp = client.post(f"/webhooks/{hook['id']}/test", headers=auth(token))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["delivered"] is True
    assert body["httpStatus"] == 200
    assert body["responsePreview"] == "ok"
    assert isinstance(body["elapsedMs"], int)

    assert client.get(f"/webhooks/{hook['id']}/deliveries", headers=auth(token)).json()["total"] == 0
    listed = client.get("/webhooks", headers=auth(token)).json()["items"][0]
    assert listed["successCount"] == 0

    viewer = mint_token(tenant.id, username="viewer@example.test", roles=["viewer"])
    assert client.post(f"/webhooks/{hook['id']}/test", headers=auth(viewer)).status_code == 403


def test_send_test_event_is_tenant_scoped(client: TestClient, token) -> None:
    hook = _register(client, token)
    outsider = mint_token(create_test_tenant(name="Other Org").id, username="admin@other.test")
    assert client.post(f"/webhooks/{hook['id']}/test", headers=auth(outsider)).status_code == 404
