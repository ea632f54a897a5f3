from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Event:
    """An issuance campaign that groups participants.

    participant_ids keeps registration order; a participant appears once.
    """

    id: UUID
    tenant_id: UUID
    title: str
    description: str
    start_date: datetime | None
    end_date: datetime | None
    capacity: int | None
    category: str | None
    event_code: str | None
    participant_ids: tuple[UUID, ...]
    created_at: datetime

    def status(self, now: datetime | None = None) -> str:
        """upcoming|active|completed, derived from the event dates."""
        now = now or datetime.now(timezone.utc)
        if self.start_date is not None and now < self.start_date:
            return "upcoming"
        if self.end_date is not None and now > self.end_date:
            return "completed"
        return "active"

    @staticmethod
    def new(
        *,
        tenant_id: UUID,
        title: str,
        description: str = "",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        capacity: int | None = None,
        category: str | None = None,
        event_code: str | None = None,
    ) -> Event:
        if start_date is not None and end_date is not None and end_date < start_date:
            raise ValueError("end_date must not be before start_date")
        return Event(
            id=uuid4(),
            tenant_id=tenant_id,
            title=title,
            description=description,
            start_date=start_date,
            end_date=end_date,
            capacity=capacity,
            category=category,
            event_code=event_code,
            participant_ids=(),
            created_at=datetime.now(timezone.utc),
        )
