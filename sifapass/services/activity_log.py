"""Append-only audit trail of credential activity.

``record`` is called on the issuance, verification and download paths.
It must never turn a successful operation into a failed one, so its
errors are logged and swallowed.

With ``deferred`` set (ACTIVITY_DEFERRED, on by default) the write runs
as a background task and ``record`` returns as soon as the entry is
built.  ``flush`` waits for outstanding writes; the API lifespan and the
worker call it on shutdown.  ``reap`` is run by the janitor and deletes
entries older than the retention window.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sifapass.core.errors import ValidationFailed
from sifapass.core.metrics import JANITOR_REAPED
from sifapass.models.activity import ACTIVITY_KINDS, ActivityEntry, ActivityFilter
from sifapass.models.page import Page
from sifapass.repos.activity_repo import ActivityRepo

logger = logging.getLogger(__name__)


class ActivityLog:
    def __init__(self, repo: ActivityRepo, *, deferred: bool = False) -> None:
        self._repo = repo
        self._deferred = deferred
        self._pending: set[asyncio.Task] = set()

    async def record(
        self,
        kind: str,
        actor: str | None,
        details: dict[str, Any] | None = None,
        *,
        tenant_id: UUID | None = None,
        credential_id: UUID | None = None,
    ) -> None:
        try:
            entry = ActivityEntry.new(
                kind=kind,
                actor=actor,
                tenant_id=tenant_id,
                credential_id=credential_id,
                details=details,
            )
        except Exception:
            logger.exception(
                "Failed to record activity kind=%s credential=%s", kind, credential_id
            )
            return
        if not self._deferred:
            await self._write(entry)
            return
        task = asyncio.create_task(self._write(entry), name=f"activity-{kind}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entry: ActivityEntry) -> None:
        try:
            await self._repo.add(entry)
        except Exception:
            logger.exception(
                "Failed to record activity kind=%s credential=%s",
                entry.kind,
                entry.credential_id,
            )

    async def flush(self) -> int:
        """Wait for background writes started on this loop."""
        if not self._pending:
            return 0
        pending = list(self._pending)
        await asyncio.gather(*pending)
        return len(pending)

    async def query(
        self, flt: ActivityFilter, limit: int = 50, offset: int = 0
    ) -> Page[ActivityEntry]:
        if flt.kind is not None and flt.kind not in ACTIVITY_KINDS:
            raise ValidationFailed(
                f"kind must be one of {', '.join(ACTIVITY_KINDS)}"
            )
        return await self._repo.query(flt, limit, offset)

    async def reap(self, retention_days: int, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        removed = await self._repo.delete_older_than(cutoff)
        if removed:
            JANITOR_REAPED.labels(job="activity").inc(removed)
            logger.info("Reaped %d activity entries older than %s", removed, cutoff)
        return removed
