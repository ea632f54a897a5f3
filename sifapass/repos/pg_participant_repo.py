"""PostgreSQL implementation of ParticipantRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sifapass.core.errors import Conflict
from sifapass.db.tables import ParticipantRow
from sifapass.models.participant import Participant


class PgParticipantRepo:
    """Satisfies the ParticipantRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, participant: Participant) -> None:
        try:
            async with self._sessions.begin() as session:
                session.add(
                    ParticipantRow(
                        id=participant.id,
                        tenant_id=participant.tenant_id,
                        name=participant.name,
                        email=participant.email,
                        skills=list(participant.skills),
                        created_at=participant.created_at,
                    )
                )
        except IntegrityError:
            raise Conflict("A participant with this email already exists") from None

    async def get(self, participant_id: UUID) -> Participant | None:
        async with self._sessions() as session:
            row = await session.get(ParticipantRow, participant_id)
            return _row_to_participant(row) if row is not None else None

    async def get_by_email(self, email: str) -> Participant | None:
        async with self._sessions() as session:
            stmt = select(ParticipantRow).where(
                ParticipantRow.email == email.strip().lower()
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_participant(row) if row is not None else None


def _row_to_participant(row: ParticipantRow) -> Participant:
    return Participant(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        email=row.email,
        skills=tuple(row.skills or ()),
        created_at=row.created_at,
    )
