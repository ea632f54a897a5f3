from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

MAX_HISTORY = 10


@dataclass(frozen=True, slots=True)
class TemplateVersion:
    version: int
    design: dict[str, Any]
    saved_at: datetime


@dataclass(frozen=True, slots=True)
class DesignTemplate:
    """A reusable, versioned render description.

    ``design`` is stored as opaque JSON and validated by the renderer when
    it is saved or used.  ``history`` keeps the previous MAX_HISTORY
    versions, oldest first.
    """

    id: UUID
    tenant_id: UUID
    name: str
    type: str
    design: dict[str, Any]
    version: int
    history: tuple[TemplateVersion, ...]
    usage_count: int
    created_at: datetime
    updated_at: datetime

    def with_design(self, design: dict[str, Any], name: str | None = None) -> DesignTemplate:
        """Return the next version, pushing the current design into history."""
        now = datetime.now(timezone.utc)
        previous = TemplateVersion(
            version=self.version, design=self.design, saved_at=self.updated_at
        )
        history = (self.history + (previous,))[-MAX_HISTORY:]
        return replace(
            self,
            name=name if name is not None else self.name,
            design=design,
            version=self.version + 1,
            history=history,
            updated_at=now,
        )

    @staticmethod
    def new(
        *, tenant_id: UUID, name: str, type: str, design: dict[str, Any]
    ) -> DesignTemplate:
        now = datetime.now(timezone.utc)
        return DesignTemplate(
            id=uuid4(),
            tenant_id=tenant_id,
            name=name,
            type=type,
            design=design,
            version=1,
            history=(),
            usage_count=0,
            created_at=now,
            updated_at=now,
        )
