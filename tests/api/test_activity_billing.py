from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from tests.conftest import (
    auth,
    create_test_event,
    create_test_participant,
    create_test_tenant,
    design_payload,
    mint_token,
)


def test_activity_lists_newest_first(client: TestClient, token, participant, event) -> None:
    cred = client.post(
        "/credentials/design", json=design_payload(participant, event), headers=auth(token)
    ).json()["credential"]
    client.get("/credentials/verify", params={"hash": cred["fingerprint"]})

    body = client.get("/activity", headers=auth(token)).json()
    assert body["total"] == 2
    assert [a["kind"] for a in body["items"]] == ["credential_verified", "credential_issued"]


def test_activity_filter_by_credential(client: TestClient, token, participant, event) -> None:
    a = client.post("/credentials/design", json=design_payload(participant, event), headers=auth(token)).json()
    client.post("/credentials/design", json=design_payload(participant, event), headers=auth(token))
    body = client.get(
        "/activity", params={"credentialId": a["credential"]["id"]}, headers=auth(token)
    ).json()
    assert body["total"] == 1


def test_activity_rejects_unknown_kind(client: TestClient, token) -> None:
    resp = client.get("/activity", params={"kind": "credential_exploded"}, headers=auth(token))
    assert resp.status_code == 400


def test_usage_for_subscription_tenant(client: TestClient, token, participant, event) -> None:
    client.post("/credentials/design", json=design_payload(participant, event), headers=auth(token))
    usage = client.get("/billing/usage", headers=auth(token)).json()["usage"]
    assert usage["billingMode"] == "subscription"
    assert usage["subscriptionStatus"] == "active"
    assert usage["limits"] == {"maxParticipants": -1, "maxEvents": -1}
    assert usage["usage"]["credentialsIssued"] == 1
    assert usage["lifetimeUsage"]["credentialsIssued"] == 1


def test_usage_for_prepaid_tenant(client: TestClient) -> None:
    tenant = create_test_tenant("Prepaid", billing_mode="prepaid-credits", credits=7)
    usage = client.get("/billing/usage", headers=auth(mint_token(tenant.id))).json()["usage"]
    assert usage["billingMode"] == "prepaid-credits"
    assert usage["credits"] == 7


def test_usage_for_unknown_tenant_is_404(client: TestClient) -> None:
    resp = client.get("/billing/usage", headers=auth(mint_token(uuid.uuid4())))
    assert resp.status_code == 404


def test_unconfigured_billing_refuses_issue(client: TestClient) -> None:
    tenant = create_test_tenant("Fresh", billing_mode=None)
    participant = create_test_participant(tenant)
    event = create_test_event(tenant, participants=[participant])
    resp = client.post(
        "/credentials/design", json=design_payload(participant, event), headers=auth(mint_token(tenant.id))
    )
    assert resp.status_code == 402
    assert resp.json()["code"] == "BillingNotConfigured"
    assert resp.json()["requiresSetup"] is True
