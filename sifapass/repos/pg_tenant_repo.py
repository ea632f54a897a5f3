"""PostgreSQL implementation of TenantRepo.

Credit deduction and usage increments are single conditional UPDATE
statements, so two concurrent admissions can never both take the last
credit or the last slot under a plan ceiling.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sifapass.db.tables import TenantRow
from sifapass.models.tenant import BILLING_PERIOD, UNLIMITED, Tenant, Usage

_COUNTERS = ("credentials_issued", "events_created", "participants_added")


class PgTenantRepo:
    """Satisfies the TenantRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get(self, tenant_id: UUID) -> Tenant | None:
        async with self._sessions() as session:
            row = await session.get(TenantRow, tenant_id)
            return _row_to_tenant(row) if row is not None else None

    async def add(self, tenant: Tenant) -> None:
        async with self._sessions.begin() as session:
            session.add(_tenant_to_row(tenant))

    async def save(self, tenant: Tenant) -> None:
        async with self._sessions.begin() as session:
            await session.merge(_tenant_to_row(tenant))

    async def roll_period(self, tenant_id: UUID, now: datetime) -> Tenant | None:
        async with self._sessions.begin() as session:
            stmt = (
                update(TenantRow)
                .where(TenantRow.id == tenant_id, TenantRow.period_end <= now)
                .values(
                    period_start=now,
                    period_end=now + BILLING_PERIOD,
                    credentials_issued=0,
                    events_created=0,
                    participants_added=0,
                )
            )
            await session.execute(stmt)
            row = (
                await session.execute(select(TenantRow).where(TenantRow.id == tenant_id))
            ).scalar_one_or_none()
            return _row_to_tenant(row) if row is not None else None

    async def deduct_credit(self, tenant_id: UUID) -> int | None:
        async with self._sessions.begin() as session:
            stmt = (
                update(TenantRow)
                .where(TenantRow.id == tenant_id, TenantRow.credits >= 1)
                .values(
                    credits=TenantRow.credits - 1,
                    credentials_issued=TenantRow.credentials_issued + 1,
                    lifetime_credentials_issued=TenantRow.lifetime_credentials_issued
                    + 1,
                )
                .returning(TenantRow.credits)
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def increment_usage(
        self, tenant_id: UUID, counter: str, limit: int
    ) -> int | None:
        if counter not in _COUNTERS:
            raise ValueError(f"unknown usage counter: {counter}")
        column = getattr(TenantRow, counter)
        lifetime = getattr(TenantRow, "lifetime_" + counter)
        stmt = update(TenantRow).where(TenantRow.id == tenant_id)
        if limit != UNLIMITED:
            stmt = stmt.where(column < limit)
        stmt = stmt.values({column: column + 1, lifetime: lifetime + 1}).returning(
            column
        )
        async with self._sessions.begin() as session:
            return (await session.execute(stmt)).scalar_one_or_none()


def _tenant_to_row(t: Tenant) -> TenantRow:
    return TenantRow(
        id=t.id,
        name=t.name,
        billing_mode=t.billing_mode,
        max_participants=t.max_participants,
        max_events=t.max_events,
        credits=t.credits,
        subscription_status=t.subscription_status,
        period_start=t.period_start,
        period_end=t.period_end,
        credentials_issued=t.usage.credentials_issued,
        events_created=t.usage.events_created,
        participants_added=t.usage.participants_added,
        lifetime_credentials_issued=t.lifetime_usage.credentials_issued,
        lifetime_events_created=t.lifetime_usage.events_created,
        lifetime_participants_added=t.lifetime_usage.participants_added,
    )


def _row_to_tenant(row: TenantRow) -> Tenant:
    return Tenant(
        id=row.id,
        name=row.name,
        billing_mode=row.billing_mode,
        max_participants=row.max_participants,
        max_events=row.max_events,
        credits=row.credits,
        subscription_status=row.subscription_status,
        period_start=row.period_start,
        period_end=row.period_end,
        usage=Usage(
            credentials_issued=row.credentials_issued,
            events_created=row.events_created,
            participants_added=row.participants_added,
        ),
        lifetime_usage=Usage(
            credentials_issued=row.lifetime_credentials_issued,
            events_created=row.lifetime_events_created,
            participants_added=row.lifetime_participants_added,
        ),
    )
