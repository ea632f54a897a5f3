"""PostgreSQL implementation of WebhookRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sifapass.db.tables import WebhookDeliveryRow, WebhookSubscriptionRow
from sifapass.models.page import Page
from sifapass.models.webhook import WebhookDelivery, WebhookSubscription


class PgWebhookRepo:
    """Satisfies the WebhookRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    # --- subscriptions ---

    async def add_subscription(self, sub: WebhookSubscription) -> None:
        async with self._sessions.begin() as session:
            session.add(
                WebhookSubscriptionRow(
                    id=sub.id,
                    tenant_id=sub.tenant_id,
                    url=sub.url,
                    events=list(sub.events),
                    secret=sub.secret,
                    enabled=sub.enabled,
                    description=sub.description,
                    success_count=sub.success_count,
                    failure_count=sub.failure_count,
                    last_error=sub.last_error,
                    last_triggered_at=sub.last_triggered_at,
                    created_at=sub.created_at,
                )
            )

    async def get_subscription(self, sub_id: UUID) -> WebhookSubscription | None:
        async with self._sessions() as session:
            row = await session.get(WebhookSubscriptionRow, sub_id)
            return _row_to_subscription(row) if row is not None else None

    async def list_subscriptions(self, tenant_id: UUID) -> list[WebhookSubscription]:
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(WebhookSubscriptionRow)
                    .where(WebhookSubscriptionRow.tenant_id == tenant_id)
                    .order_by(WebhookSubscriptionRow.created_at)
                )
            ).scalars()
            return [_row_to_subscription(r) for r in rows]

    async def delete_subscription(self, tenant_id: UUID, sub_id: UUID) -> bool:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(WebhookSubscriptionRow).where(
                    WebhookSubscriptionRow.id == sub_id,
                    WebhookSubscriptionRow.tenant_id == tenant_id,
                )
            )
            return (result.rowcount or 0) > 0

    async def record_result(
        self,
        sub_id: UUID,
        *,
        success: bool,
        at: datetime,
        error: str | None = None,
    ) -> None:
        if success:
            values = {
                "success_count": WebhookSubscriptionRow.success_count + 1,
                "last_triggered_at": at,
            }
        else:
            values = {
                "failure_count": WebhookSubscriptionRow.failure_count + 1,
                "last_error": error,
                "last_triggered_at": at,
            }
        async with self._sessions.begin() as session:
            await session.execute(
                update(WebhookSubscriptionRow)
                .where(WebhookSubscriptionRow.id == sub_id)
                .values(**values)
            )

    # --- deliveries ---

    async def add_delivery(self, delivery: WebhookDelivery) -> None:
        async with self._sessions.begin() as session:
            session.add(_delivery_to_row(delivery))

    async def get_delivery(self, delivery_id: UUID) -> WebhookDelivery | None:
        async with self._sessions() as session:
            row = await session.get(WebhookDeliveryRow, delivery_id)
            return _row_to_delivery(row) if row is not None else None

    async def save_delivery(self, delivery: WebhookDelivery) -> None:
        async with self._sessions.begin() as session:
            await session.merge(_delivery_to_row(delivery))

    async def list_deliveries(
        self, sub_id: UUID, limit: int, offset: int
    ) -> Page[WebhookDelivery]:
        cond = WebhookDeliveryRow.subscription_id == sub_id
        async with self._sessions() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(WebhookDeliveryRow).where(cond)
                )
            ).scalar_one()
            rows = (
                await session.execute(
                    select(WebhookDeliveryRow)
                    .where(cond)
                    .order_by(WebhookDeliveryRow.created_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).scalars()
            return Page(
                items=[_row_to_delivery(r) for r in rows],
                total=total,
                limit=limit,
                offset=offset,
            )

    async def list_due(self, now: datetime) -> list[WebhookDelivery]:
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(WebhookDeliveryRow).where(
                        WebhookDeliveryRow.outcome.in_(("retry", "pending")),
                        WebhookDeliveryRow.next_retry_at <= now,
                    )
                )
            ).scalars()
            return [_row_to_delivery(r) for r in rows]

    async def delete_deliveries_older_than(self, cutoff: datetime) -> int:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(WebhookDeliveryRow).where(WebhookDeliveryRow.created_at < cutoff)
            )
            return result.rowcount or 0


def _row_to_subscription(row: WebhookSubscriptionRow) -> WebhookSubscription:
    return WebhookSubscription(
        id=row.id,
        tenant_id=row.tenant_id,
        url=row.url,
        events=tuple(row.events or ()),
        secret=row.secret,
        enabled=row.enabled,
        created_at=row.created_at,
        description=row.description or "",
        success_count=row.success_count,
        failure_count=row.failure_count,
        last_error=row.last_error,
        last_triggered_at=row.last_triggered_at,
    )


def _delivery_to_row(d: WebhookDelivery) -> WebhookDeliveryRow:
    return WebhookDeliveryRow(
        id=d.id,
        subscription_id=d.subscription_id,
        tenant_id=d.tenant_id,
        event=d.event,
        payload=d.payload,
        url=d.url,
        outcome=d.outcome,
        http_status=d.http_status,
        response_preview=d.response_preview,
        elapsed_ms=d.elapsed_ms,
        retry_count=d.retry_count,
        next_retry_at=d.next_retry_at,
        delivered_at=d.delivered_at,
        created_at=d.created_at,
    )


def _row_to_delivery(row: WebhookDeliveryRow) -> WebhookDelivery:
    return WebhookDelivery(
        id=row.id,
        subscription_id=row.subscription_id,
        tenant_id=row.tenant_id,
        event=row.event,
        payload=dict(row.payload or {}),
        url=row.url,
        outcome=row.outcome,
        created_at=row.created_at,
        http_status=row.http_status,
        response_preview=row.response_preview,
        elapsed_ms=row.elapsed_ms,
        retry_count=row.retry_count,
        next_retry_at=row.next_retry_at,
        delivered_at=row.delivered_at,
    )
