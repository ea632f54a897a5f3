from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

BILLING_MODES = ("subscription", "prepaid-credits")
SUBSCRIPTION_STATUSES = ("active", "inactive", "past_due", "trialing", "cancelled")

# Admission kind -> usage counter it advances.
COUNTER_FOR_KIND = {
    "credential-issue": "credentials_issued",
    "event-create": "events_created",
    "participant-add": "participants_added",
}

# Admission kind -> plan ceiling that gates it on subscription billing.
LIMIT_FOR_KIND = {
    "credential-issue": "max_participants",
    "participant-add": "max_participants",
    "event-create": "max_events",
}

UNLIMITED = -1

BILLING_PERIOD = timedelta(days=30)


@dataclass(frozen=True, slots=True)
class Usage:
    credentials_issued: int = 0
    events_created: int = 0
    participants_added: int = 0

    def get(self, counter: str) -> int:
        return getattr(self, counter)


@dataclass(frozen=True, slots=True)
class Tenant:
    """An issuing organization and its billing state.

    ``credits`` is never negative.  ``usage`` counts the current period
    and is reset when the period rolls over; ``lifetime_usage`` only
    ever grows.
    """

    id: UUID
    name: str
    billing_mode: str | None = None
    max_participants: int = UNLIMITED
    max_events: int = UNLIMITED
    credits: int = 0
    subscription_status: str = "inactive"
    period_start: datetime | None = None
    period_end: datetime | None = None
    usage: Usage = field(default_factory=Usage)
    lifetime_usage: Usage = field(default_factory=Usage)

    def limit_for(self, kind: str) -> int:
        return getattr(self, LIMIT_FOR_KIND[kind])

    @staticmethod
    def new(
        *,
        name: str,
        billing_mode: str | None = None,
        max_participants: int = UNLIMITED,
        max_events: int = UNLIMITED,
        credits: int = 0,
        subscription_status: str = "inactive",
    ) -> Tenant:
        now = datetime.now(timezone.utc)
        return Tenant(
            id=uuid4(),
            name=name,
            billing_mode=billing_mode,
            max_participants=max_participants,
            max_events=max_events,
            credits=credits,
            subscription_status=subscription_status,
            period_start=now,
            period_end=now + BILLING_PERIOD,
        )
