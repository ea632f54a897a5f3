from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sifapass.models.page import Page
from sifapass.models.webhook import WebhookDelivery, WebhookSubscription


class WebhookRepo(Protocol):
    async def add_subscription(self, sub: WebhookSubscription) -> None: ...
    async def get_subscription(self, sub_id: UUID) -> WebhookSubscription | None: ...
    async def list_subscriptions(self, tenant_id: UUID) -> list[WebhookSubscription]: ...
    async def delete_subscription(self, tenant_id: UUID, sub_id: UUID) -> bool: ...
    async def record_result(
        self,
        sub_id: UUID,
        *,
        success: bool,
        at: datetime,
        error: str | None = None,
    ) -> None: ...
    async def add_delivery(self, delivery: WebhookDelivery) -> None: ...
    async def get_delivery(self, delivery_id: UUID) -> WebhookDelivery | None: ...
    async def save_delivery(self, delivery: WebhookDelivery) -> None: ...
    async def list_deliveries(
        self, sub_id: UUID, limit: int, offset: int
    ) -> Page[WebhookDelivery]: ...
    async def list_due(self, now: datetime) -> list[WebhookDelivery]: ...
    async def delete_deliveries_older_than(self, cutoff: datetime) -> int: ...


class InMemoryWebhookRepo:
    def __init__(self) -> None:
        self._subs: dict[UUID, WebhookSubscription] = {}
        self._deliveries: dict[UUID, WebhookDelivery] = {}
        self._lock = threading.Lock()

    async def add_subscription(self, sub: WebhookSubscription) -> None:
        with self._lock:
            self._subs[sub.id] = sub

    async def get_subscription(self, sub_id: UUID) -> WebhookSubscription | None:
        return self._subs.get(sub_id)

    async def list_subscriptions(self, tenant_id: UUID) -> list[WebhookSubscription]:
        return sorted(
            (s for s in self._subs.values() if s.tenant_id == tenant_id),
            key=lambda s: s.created_at,
        )

    async def delete_subscription(self, tenant_id: UUID, sub_id: UUID) -> bool:
        with self._lock:
            sub = self._subs.get(sub_id)
            if sub is None or sub.tenant_id != tenant_id:
                return False
            del self._subs[sub_id]
            self._deliveries = {
                k: d for k, d in self._deliveries.items() if d.subscription_id != sub_id
            }
            return True

    async def record_result(
        self,
        sub_id: UUID,
        *,
        success: bool,
        at: datetime,
        error: str | None = None,
    ) -> None:
        with self._lock:
            sub = self._subs.get(sub_id)
            if sub is None:
                return
            if success:
                sub = replace(
                    sub, success_count=sub.success_count + 1, last_triggered_at=at
                )
            else:
                sub = replace(
                    sub,
                    failure_count=sub.failure_count + 1,
                    last_error=error,
                    last_triggered_at=at,
                )
            self._subs[sub_id] = sub

    async def add_delivery(self, delivery: WebhookDelivery) -> None:
        with self._lock:
            self._deliveries[delivery.id] = delivery

    async def get_delivery(self, delivery_id: UUID) -> WebhookDelivery | None:
        return self._deliveries.get(delivery_id)

    async def save_delivery(self, delivery: WebhookDelivery) -> None:
        with self._lock:
            self._deliveries[delivery.id] = delivery

    async def list_deliveries(
        self, sub_id: UUID, limit: int, offset: int
    ) -> Page[WebhookDelivery]:
        matching = sorted(
            (d for d in self._deliveries.values() if d.subscription_id == sub_id),
            key=lambda d: d.created_at,
            reverse=True,
        )
        return Page(
            items=matching[offset : offset + limit],
            total=len(matching),
            limit=limit,
            offset=offset,
        )

    async def list_due(self, now: datetime) -> list[WebhookDelivery]:
        return [
            d
            for d in self._deliveries.values()
            if d.outcome in ("retry", "pending")
            and d.next_retry_at is not None
            and d.next_retry_at <= now
        ]

    async def delete_deliveries_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            before = len(self._deliveries)
            self._deliveries = {
                k: d for k, d in self._deliveries.items() if d.created_at >= cutoff
            }
            return before - len(self._deliveries)

    def all_deliveries(self) -> list[WebhookDelivery]:
        """Test helper: every stored delivery, oldest first."""
        return sorted(self._deliveries.values(), key=lambda d: d.created_at)

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()
            self._deliveries.clear()
