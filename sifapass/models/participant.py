from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Participant:
    """A person who can hold credentials.  Email is unique across tenants."""

    id: UUID
    tenant_id: UUID
    name: str
    email: str
    skills: tuple[str, ...]
    created_at: datetime

    @staticmethod
    def new(
        *,
        tenant_id: UUID,
        name: str,
        email: str,
        skills: tuple[str, ...] = (),
    ) -> Participant:
        return Participant(
            id=uuid4(),
            tenant_id=tenant_id,
            name=name,
            email=email.strip().lower(),
            skills=tuple(skills),
            created_at=datetime.now(timezone.utc),
        )
