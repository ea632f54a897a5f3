from __future__ import annotations

import asyncio
import os
import sys
from io import BytesIO
from pathlib import Path

# Settings are read at import time, so the environment must be fixed
# before anything from sifapass is imported.
os.environ["APP_ENV"] = "test"
os.environ["PUBLIC_BASE_URL"] = "https://example.test"
os.environ["INLINE_WORKER"] = "false"
os.environ["ACTIVITY_DEFERRED"] = "false"
for _name in ("DATABASE_URL", "REDIS_URL", "CLOUDINARY_URL"):
    os.environ.pop(_name, None)

# Ensure repo root is on sys.path so `import sifapass` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402

from sifapass.api.ratelimit import rate_limiter  # noqa: E402
from sifapass.main import app  # noqa: E402
from sifapass.models.event import Event  # noqa: E402
from sifapass.models.participant import Participant  # noqa: E402
from sifapass.models.tenant import Tenant  # noqa: E402
from sifapass.services import container, token_service  # noqa: E402
from sifapass.services.cache import cache_service  # noqa: E402
from sifapass.services.task_queue import task_queue  # noqa: E402


def _png_bytes(size: tuple[int, int] = (4, 4), color: str = "navy") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


# A small PNG served as a fetchable design asset.
TINY_PNG = _png_bytes()


def _asset_handler(request: httpx.Request) -> httpx.Response:
    """Design assets: anything under assets.example.test exists, the rest 404s."""
    if request.url.host == "assets.example.test":
        return httpx.Response(200, content=TINY_PNG, headers={"Content-Type": "image/png"})
    return httpx.Response(404)


def _webhook_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="ok")


@pytest.fixture(autouse=True)
def reset_state() -> None:
    """Clear every in-memory store between tests so state doesn't bleed."""
    for repo in (
        container.tenant_repo,
        container.participant_repo,
        container.event_repo,
        container.template_repo,
        container.credential_repo,
        container.activity_repo,
        container.webhook_repo,
    ):
        repo.clear()  # type: ignore[union-attr]
    container.object_store.clear()  # type: ignore[union-attr]
    task_queue.clear()  # type: ignore[union-attr]
    cache_service.clear()  # type: ignore[union-attr]
    rate_limiter.clear()  # type: ignore[union-attr]
    container.asset_fetcher._transport = httpx.MockTransport(_asset_handler)
    container.webhook_dispatcher._transport = httpx.MockTransport(_webhook_handler)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    tenant_id=None,
    username: str = "admin@example.test",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=username,
        tenant_id=str(tenant_id) if tenant_id is not None else None,
        roles=roles,
    )


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def create_test_tenant(
    name: str = "Acme Academy",
    billing_mode: str | None = "subscription",
    **kwargs,
) -> Tenant:
    """Create a tenant; defaults to an active, unlimited subscription."""
    if billing_mode == "subscription":
        kwargs.setdefault("subscription_status", "active")
    tenant = Tenant.new(name=name, billing_mode=billing_mode, **kwargs)
    asyncio.run(container.tenant_repo.add(tenant))
    return tenant


def create_test_participant(
    tenant: Tenant,
    name: str = "Ada Lovelace",
    email: str | None = None,
    skills: tuple[str, ...] = ("Python",),
) -> Participant:
    p = Participant.new(
        tenant_id=tenant.id,
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}.{tenant.id.hex[:6]}@example.test",
        skills=skills,
    )
    asyncio.run(container.participant_repo.add(p))
    return p


def create_test_event(
    tenant: Tenant,
    title: str = "E1",
    participants: list[Participant] | None = None,
) -> Event:
    event = Event.new(tenant_id=tenant.id, title=title)
    asyncio.run(container.event_repo.add(event))
    for p in participants or []:
        event = asyncio.run(container.event_repo.add_participant(event.id, p.id))
    return event


def design_payload(participant: Participant, event: Event, **overrides) -> dict:
    body = {
        "participantId": str(participant.id),
        "eventId": str(event.id),
        "title": "Certificate of Completion",
        "type": "certificate",
    }
    body.update(overrides)
    return body


@pytest.fixture
def tenant() -> Tenant:
    return create_test_tenant()


@pytest.fixture
def token(tenant: Tenant) -> str:
    """Admin token acting for ``tenant``."""
    return mint_token(tenant.id)


@pytest.fixture
def participant(tenant: Tenant) -> Participant:
    return create_test_participant(tenant)


@pytest.fixture
def event(tenant: Tenant, participant: Participant) -> Event:
    return create_test_event(tenant, participants=[participant])
