"""PostgreSQL implementation of EventRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sifapass.core.errors import Conflict, NotFound
from sifapass.db.tables import EventParticipantRow, EventRow
from sifapass.models.event import Event


class PgEventRepo:
    """Satisfies the EventRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, event: Event) -> None:
        try:
            async with self._sessions.begin() as session:
                session.add(
                    EventRow(
                        id=event.id,
                        tenant_id=event.tenant_id,
                        title=event.title,
                        description=event.description,
                        start_date=event.start_date,
                        end_date=event.end_date,
                        capacity=event.capacity,
                        category=event.category,
                        event_code=event.event_code,
                        created_at=event.created_at,
                    )
                )
        except IntegrityError:
            raise Conflict(f"Event code {event.event_code} is already in use") from None

    async def get(self, event_id: UUID) -> Event | None:
        async with self._sessions() as session:
            return await _load(session, event_id)

    async def code_exists(self, tenant_id: UUID, event_code: str) -> bool:
        async with self._sessions() as session:
            stmt = select(func.count()).where(
                EventRow.tenant_id == tenant_id, EventRow.event_code == event_code
            )
            return (await session.execute(stmt)).scalar_one() > 0

    async def add_participant(self, event_id: UUID, participant_id: UUID) -> Event:
        async with self._sessions.begin() as session:
            if await session.get(EventRow, event_id) is None:
                raise NotFound("Event not found")
            position = (
                await session.execute(
                    select(func.count()).where(EventParticipantRow.event_id == event_id)
                )
            ).scalar_one()
            stmt = (
                insert(EventParticipantRow)
                .values(event_id=event_id, participant_id=participant_id, position=position)
                .on_conflict_do_nothing()
            )
            await session.execute(stmt)
            event = await _load(session, event_id)
            assert event is not None
            return event


async def _load(session: AsyncSession, event_id: UUID) -> Event | None:
    row = await session.get(EventRow, event_id)
    if row is None:
        return None
    participant_ids = (
        await session.execute(
            select(EventParticipantRow.participant_id)
            .where(EventParticipantRow.event_id == event_id)
            .order_by(EventParticipantRow.position)
        )
    ).scalars()
    return Event(
        id=row.id,
        tenant_id=row.tenant_id,
        title=row.title,
        description=row.description or "",
        start_date=row.start_date,
        end_date=row.end_date,
        capacity=row.capacity,
        category=row.category,
        event_code=row.event_code,
        participant_ids=tuple(participant_ids),
        created_at=row.created_at,
    )
