from __future__ import annotations

import re
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from tests.conftest import auth, create_test_participant, create_test_tenant, mint_token


def _event(client: TestClient, token: str, **body) -> dict:
    body.setdefault("title", "Data Science Bootcamp")
    resp = client.post("/events", json=body, headers=auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()["event"]


def test_create_event_assigns_code(client: TestClient, token) -> None:
    e = _event(client, token, category="workshop", capacity=10)
    year = datetime.now(timezone.utc).year
    assert re.fullmatch(rf"EVT-{year}-[A-Z0-9]{{3}}", e["eventCode"])
    assert e["participantCount"] == 0
    assert client.get(f"/events/{e['id']}", headers=auth(token)).json()["event"]["id"] == e["id"]


def test_event_status_follows_dates(client: TestClient, token) -> None:
    upcoming = _event(client, token, startDate="2999-01-01T00:00:00Z")
    finished = _event(client, token, startDate="2000-01-01T00:00:00Z", endDate="2000-01-02T00:00:00Z")
    assert upcoming["status"] == "upcoming"
    assert finished["status"] == "completed"


def test_end_before_start_is_400(client: TestClient, token) -> None:
    resp = client.post(
        "/events",
        json={"title": "Bad", "startDate": "2030-01-02T00:00:00Z", "endDate": "2030-01-01T00:00:00Z"},
        headers=auth(token),
    )
    assert resp.status_code == 400


def test_event_limit_on_subscription(client: TestClient) -> None:
    tenant = create_test_tenant("Small", max_events=1)
    token = mint_token(tenant.id)
    _event(client, token)
    resp = client.post("/events", json={"title": "Second"}, headers=auth(token))
    assert resp.status_code == 402
    assert resp.json()["code"] == "LimitReached"
    assert resp.json()["requiresUpgrade"] is True


def test_register_new_participant_by_identity(client: TestClient, token) -> None:
    e = _event(client, token)
    resp = client.post(
        f"/events/{e['id']}/participants",
        json={"name": "Grace Hopper", "email": "Grace@Example.test", "skills": ["COBOL", " "]},
        headers=auth(token),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["participant"]["email"] == "grace@example.test"
    assert body["participant"]["skills"] == ["COBOL"]
    assert body["event"]["participantCount"] == 1


def test_register_twice_is_idempotent(client: TestClient, token, tenant) -> None:
    p = create_test_participant(tenant)
    e = _event(client, token)
    url = f"/events/{e['id']}/participants"
    assert client.post(url, json={"participantId": str(p.id)}, headers=auth(token)).status_code == 201
    again = client.post(url, json={"participantId": str(p.id)}, headers=auth(token))
    assert again.status_code == 200
    assert again.json()["event"]["participantCount"] == 1

    usage = client.get("/billing/usage", headers=auth(token)).json()["usage"]["usage"]
    assert usage["participantsAdded"] == 1


def test_register_over_capacity_is_400(client: TestClient, token, tenant) -> None:
    e = _event(client, token, capacity=1)
    url = f"/events/{e['id']}/participants"
    first = create_test_participant(tenant, name="One")
    second = create_test_participant(tenant, name="Two")
    assert client.post(url, json={"participantId": str(first.id)}, headers=auth(token)).status_code == 201
    resp = client.post(url, json={"participantId": str(second.id)}, headers=auth(token))
    assert resp.status_code == 400
    assert resp.json()["capacity"] == 1


def test_register_requires_id_or_identity(client: TestClient, token) -> None:
    e = _event(client, token)
    resp = client.post(f"/events/{e['id']}/participants", json={"name": "No Email"}, headers=auth(token))
    assert resp.status_code == 400


def test_register_foreign_participant_by_id_is_404(client: TestClient, token) -> None:
    foreign = create_test_participant(create_test_tenant("Other"))
    e = _event(client, token)
    resp = client.post(
        f"/events/{e['id']}/participants",
        json={"participantId": str(foreign.id)},
        headers=auth(token),
    )
    assert resp.status_code == 404
