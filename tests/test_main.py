from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from sifapass.main import app, inline_worker

client = TestClient(app)


def test_routes_are_mounted() -> None:
    paths = {route.path for route in app.routes}
    for expected in (
        "/health",
        "/ready",
        "/metrics",
        "/credentials",
        "/credentials/design",
        "/credentials/batch",
        "/credentials/verify",
        "/credentials/{credential_id}/download",
        "/templates",
        "/events",
        "/webhooks",
        "/activity",
        "/billing/usage",
    ):
        assert expected in paths


def test_unknown_route_uses_error_body() -> None:
    resp = client.get("/no-such-route")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "code": "NotFound", "message": "Not Found"}


def test_wrong_method_is_405() -> None:
    resp = client.delete("/health")
    assert resp.status_code == 405
    assert resp.json()["code"] == "MethodNotAllowed"


def test_lifespan_runs_without_worker() -> None:
    with TestClient(app) as c:
        assert c.get("/health").status_code == 200


def test_inline_worker_is_noop_when_disabled() -> None:
    async def _enter_and_exit():
        async with inline_worker():
            pass

    asyncio.run(_enter_and_exit())
