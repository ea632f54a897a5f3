from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

ACTIVITY_KINDS = (
    "credential_issued",
    "credential_verified",
    "credential_downloaded",
    "credential_delivered",
)

ANONYMOUS = "anonymous"


@dataclass(frozen=True, slots=True)
class ActivityEntry:
    """One append-only audit record.  ``details`` is free-form JSON."""

    id: UUID
    kind: str
    actor: str
    created_at: datetime
    tenant_id: UUID | None = None
    credential_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def new(
        *,
        kind: str,
        actor: str | None,
        tenant_id: UUID | None = None,
        credential_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> ActivityEntry:
        return ActivityEntry(
            id=uuid4(),
            kind=kind,
            actor=actor or ANONYMOUS,
            created_at=datetime.now(timezone.utc),
            tenant_id=tenant_id,
            credential_id=credential_id,
            details=dict(details or {}),
        )


@dataclass(frozen=True, slots=True)
class ActivityFilter:
    tenant_id: UUID | None = None
    kind: str | None = None
    credential_id: UUID | None = None
