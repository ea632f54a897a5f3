from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

WEBHOOK_EVENTS = (
    "credential.issued",
    "credential.verified",
    "credential.revoked",
    "credential.failed",
    "credential.downloaded",
    "credential.shared",
)

DELIVERY_OUTCOMES = ("pending", "success", "failed", "retry")

RESPONSE_PREVIEW_CHARS = 500


@dataclass(frozen=True, slots=True)
class WebhookSubscription:
    """A tenant endpoint that receives signed lifecycle events.

    ``secret`` is handed back only by the create call.  Views built for
    listing never include it.
    """

    id: UUID
    tenant_id: UUID
    url: str
    events: tuple[str, ...]
    secret: str
    enabled: bool
    created_at: datetime
    description: str = ""
    success_count: int = 0
    failure_count: int = 0
    last_error: str | None = None
    last_triggered_at: datetime | None = None

    def wants(self, event: str) -> bool:
        return self.enabled and event in self.events

    @staticmethod
    def new(
        *,
        tenant_id: UUID,
        url: str,
        events: tuple[str, ...],
        description: str = "",
    ) -> WebhookSubscription:
        return WebhookSubscription(
            id=uuid4(),
            tenant_id=tenant_id,
            url=url,
            events=tuple(events),
            secret="whsec_" + secrets.token_hex(32),
            enabled=True,
            created_at=datetime.now(timezone.utc),
            description=description,
        )


@dataclass(frozen=True, slots=True)
class WebhookDelivery:
    """One event sent (or to be sent) to one subscription."""

    id: UUID
    subscription_id: UUID
    tenant_id: UUID
    event: str
    payload: dict[str, Any]
    url: str
    outcome: str
    created_at: datetime
    http_status: int | None = None
    response_preview: str | None = None
    elapsed_ms: int | None = None
    retry_count: int = 0
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None

    @staticmethod
    def new(
        *,
        subscription: WebhookSubscription,
        event: str,
        payload: dict[str, Any],
    ) -> WebhookDelivery:
        return WebhookDelivery(
            id=uuid4(),
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            event=event,
            payload=payload,
            url=subscription.url,
            outcome="pending",
            created_at=datetime.now(timezone.utc),
        )
