"""PostgreSQL implementation of ActivityRepo."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sifapass.db.tables import ActivityRow
from sifapass.models.activity import ActivityEntry, ActivityFilter
from sifapass.models.page import Page


class PgActivityRepo:
    """Satisfies the ActivityRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, entry: ActivityEntry) -> None:
        async with self._sessions.begin() as session:
            session.add(
                ActivityRow(
                    id=entry.id,
                    tenant_id=entry.tenant_id,
                    kind=entry.kind,
                    actor=entry.actor,
                    credential_id=entry.credential_id,
                    details=entry.details,
                    created_at=entry.created_at,
                )
            )

    async def query(
        self, flt: ActivityFilter, limit: int, offset: int
    ) -> Page[ActivityEntry]:
        conditions = []
        if flt.tenant_id is not None:
            conditions.append(ActivityRow.tenant_id == flt.tenant_id)
        if flt.kind is not None:
            conditions.append(ActivityRow.kind == flt.kind)
        if flt.credential_id is not None:
            conditions.append(ActivityRow.credential_id == flt.credential_id)

        async with self._sessions() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(ActivityRow).where(*conditions)
                )
            ).scalar_one()
            rows = (
                await session.execute(
                    select(ActivityRow)
                    .where(*conditions)
                    .order_by(ActivityRow.created_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).scalars()
            return Page(
                items=[_row_to_entry(r) for r in rows],
                total=total,
                limit=limit,
                offset=offset,
            )

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self._sessions.begin() as session:
            result = await session.execute(
                delete(ActivityRow).where(ActivityRow.created_at < cutoff)
            )
            return result.rowcount or 0


def _row_to_entry(row: ActivityRow) -> ActivityEntry:
    return ActivityEntry(
        id=row.id,
        kind=row.kind,
        actor=row.actor,
        created_at=row.created_at,
        tenant_id=row.tenant_id,
        credential_id=row.credential_id,
        details=dict(row.details or {}),
    )
