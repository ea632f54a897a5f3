"""Webhook subscription management.

- POST   /webhooks                      register (returns the secret once)
- GET    /webhooks                      list, secrets omitted
- GET    /webhooks/events               the event kinds one can subscribe to
- DELETE /webhooks/{id}
- GET    /webhooks/{id}/deliveries      delivery log, newest first
- POST   /webhooks/{id}/test            send one signed webhook.test event
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from sifapass.api.dependencies import require_principal, require_role
from sifapass.api.ratelimit import require_rate_limit
from sifapass.api.views import page_view
from sifapass.core.errors import NotFound
from sifapass.models.principal import Principal
from sifapass.models.webhook import WEBHOOK_EVENTS, WebhookSubscription
from sifapass.services.container import webhook_dispatcher, webhook_repo
from sifapass.services.rate_limiter import WEBHOOK_TEST_LIMIT
from sifapass.services.webhook_fanout import (
    SIGNATURE_HEADER,
    delivery_view,
    subscription_view,
    validate_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookCreateIn(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    events: list[str] = Field(min_length=1)
    description: str = Field(default="", max_length=500)


async def _owned_subscription(sub_id: UUID, principal: Principal) -> WebhookSubscription:
    sub = await webhook_repo.get_subscription(sub_id)
    if sub is None or sub.tenant_id != principal.tenant_id:
        raise NotFound("Webhook not found")
    return sub


@router.get("/events")
async def list_webhook_events() -> dict:
    return {
        "events": list(WEBHOOK_EVENTS),
        "signatureHeader": SIGNATURE_HEADER,
        "signatureAlgorithm": "HMAC-SHA256",
    }


@router.post("")
async def create_webhook(
    body: WebhookCreateIn,
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> JSONResponse:
    url, events = validate_subscription(body.url, body.events)
    sub = WebhookSubscription.new(
        tenant_id=principal.tenant_id,
        url=url,
        events=events,
        description=body.description,
    )
    await webhook_repo.add_subscription(sub)
    logger.info("Webhook registered id=%s events=%s", sub.id, ",".join(events))
    return JSONResponse(
        {"success": True, "webhook": subscription_view(sub, include_secret=True)},
        status_code=201,
    )


@router.get("")
async def list_webhooks(
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    subs = await webhook_repo.list_subscriptions(principal.tenant_id)
    return {"items": [subscription_view(s) for s in subs], "total": len(subs)}


@router.delete("/{webhook_id}", status_code=204)
async def delete_webhook(
    webhook_id: UUID,
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> Response:
    if not await webhook_repo.delete_subscription(principal.tenant_id, webhook_id):
        raise NotFound("Webhook not found")
    logger.info("Webhook deleted id=%s", webhook_id)
    return Response(status_code=204)


@router.get("/{webhook_id}/deliveries")
async def list_deliveries(
    webhook_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    sub = await _owned_subscription(webhook_id, principal)
    page = await webhook_repo.list_deliveries(sub.id, limit, offset)
    return page_view(page, [delivery_view(d) for d in page.items])


@router.post(
    "/{webhook_id}/test",
    dependencies=[Depends(require_rate_limit(WEBHOOK_TEST_LIMIT, "webhook_test"))],
)
async def send_test_event(
    webhook_id: UUID,
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> dict:
    sub = await _owned_subscription(webhook_id, principal)
    result = await webhook_dispatcher.send_test(sub)
    return {"success": True, **result}
