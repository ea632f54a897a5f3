from __future__ import annotations

import asyncio
from uuid import UUID

from fastapi.testclient import TestClient

from sifapass.services import container
from tests.conftest import auth, design_payload, mint_token

GOLD = {
    "canvas": {"width": 800, "height": 600},
    "background": {"type": "solid", "primaryColor": "#f5e6b8"},
    "elements": [
        {"type": "text", "x": 100, "y": 250, "properties": {"content": "{{participantName}}", "fontSize": 40}}
    ],
}


def _create(client: TestClient, token: str, **body) -> dict:
    body.setdefault("name", "Gold")
    body.setdefault("design", GOLD)
    resp = client.post("/templates", json=body, headers=auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()["template"]


def test_create_and_get_template(client: TestClient, token) -> None:
    t = _create(client, token)
    assert t["version"] == 1
    assert t["usageCount"] == 0
    resp = client.get(f"/templates/{t['id']}", headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["template"]["history"] == []


def test_create_rejects_invalid_design(client: TestClient, token) -> None:
    resp = client.post(
        "/templates",
        json={"name": "Broken", "design": {"elements": [{"type": "hologram"}]}},
        headers=auth(token),
    )
    assert resp.status_code == 400
    assert resp.json()["field"] == "design"


def test_create_requires_admin(client: TestClient, tenant) -> None:
    viewer = mint_token(tenant.id, roles=["viewer"])
    resp = client.post("/templates", json={"name": "G", "design": {}}, headers=auth(viewer))
    assert resp.status_code == 403


def test_update_bumps_version_and_keeps_history(client: TestClient, token) -> None:
    t = _create(client, token)
    resp = client.put(
        f"/templates/{t['id']}",
        json={"design": {}, "version": 1, "name": "Gold v2"},
        headers=auth(token),
    )
    assert resp.status_code == 200
    updated = resp.json()["template"]
    assert updated["version"] == 2
    assert updated["name"] == "Gold v2"
    assert updated["history"][0]["version"] == 1
    assert updated["history"][0]["design"] == GOLD


def test_stale_update_is_409(client: TestClient, token) -> None:
    t = _create(client, token)
    assert client.put(
        f"/templates/{t['id']}", json={"design": {}, "version": 1}, headers=auth(token)
    ).status_code == 200
    stale = client.put(f"/templates/{t['id']}", json={"design": GOLD, "version": 1}, headers=auth(token))
    assert stale.status_code == 409
    assert stale.json()["code"] == "Conflict"


def test_list_templates(client: TestClient, token) -> None:
    _create(client, token, name="A")
    _create(client, token, name="B")
    body = client.get("/templates", headers=auth(token)).json()
    assert body["total"] == 2
    assert {t["name"] for t in body["items"]} == {"A", "B"}


def test_issue_from_template_counts_usage(client: TestClient, token, participant, event) -> None:
    t = _create(client, token)
    resp = client.post(
        "/credentials/design",
        json=design_payload(participant, event, templateId=t["id"]),
        headers=auth(token),
    )
    assert resp.status_code == 201
    cred = resp.json()["credential"]
    assert cred["templateId"] == t["id"]
    assert client.get(f"/templates/{t['id']}", headers=auth(token)).json()["template"]["usageCount"] == 1


def test_editing_template_does_not_change_issued_snapshot(
    client: TestClient, token, participant, event
) -> None:
    t = _create(client, token)
    cred = client.post(
        "/credentials/design",
        json=design_payload(participant, event, templateId=t["id"]),
        headers=auth(token),
    ).json()["credential"]
    client.put(f"/templates/{t['id']}", json={"design": {}, "version": 1}, headers=auth(token))
    stored = asyncio.run(container.credential_repo.get(UUID(cred["id"])))
    assert stored is not None and stored.design == GOLD
