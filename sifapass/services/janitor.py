"""Periodic housekeeping run by the worker process.

  sweep_stuck      generating for longer than STUCK_GENERATING_MINUTES
                   -> failed with code DeadlineExceeded
  activity         entries older than ACTIVITY_RETENTION_DAYS are deleted
  deliveries       webhook deliveries older than WEBHOOK_RETENTION_DAYS
                   are deleted
  retries          due webhook retries go back on the queue

Each job is independent; one failing is logged and the others still run.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sifapass.core.errors import Conflict, DeadlineExceeded
from sifapass.core.metrics import JANITOR_REAPED
from sifapass.repos.credential_repo import CredentialRepo
from sifapass.repos.webhook_repo import WebhookRepo
from sifapass.services.activity_log import ActivityLog
from sifapass.services.task_queue import TaskQueue
from sifapass.services.webhook_fanout import WebhookFanout, reap_deliveries, requeue_due

logger = logging.getLogger(__name__)


class Janitor:
    def __init__(
        self,
        *,
        credentials: CredentialRepo,
        activity: ActivityLog,
        webhooks: WebhookRepo,
        queue: TaskQueue,
        fanout: WebhookFanout,
        stuck_after: timedelta = timedelta(minutes=15),
        activity_retention_days: int = 90,
        webhook_retention_days: int = 30,
    ) -> None:
        self._credentials = credentials
        self._activity = activity
        self._webhooks = webhooks
        self._queue = queue
        self._fanout = fanout
        self._stuck_after = stuck_after
        self._activity_retention_days = activity_retention_days
        self._webhook_retention_days = webhook_retention_days

    async def sweep_stuck(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        stuck = await self._credentials.list_stuck_generating(now - self._stuck_after)
        swept = 0
        for c in stuck:
            try:
                await self._credentials.transition(c.id, "generating", "failed")
            except Conflict:
                # Finished (or was retried) between listing and sweeping.
                continue
            c = await self._credentials.record_failure(
                c.id,
                DeadlineExceeded.code,
                "Generation did not complete in time",
                {"retriable": True, "stuckSince": c.updated_at.isoformat()},
            )
            swept += 1
            await self._fanout.publish(
                c.tenant_id,
                "credential.failed",
                {
                    "credentialId": str(c.id),
                    "fingerprint": c.fingerprint,
                    "code": DeadlineExceeded.code,
                    "message": "Generation did not complete in time",
                },
            )
        if swept:
            JANITOR_REAPED.labels(job="stuck_generating").inc(swept)
            logger.warning("Marked %d stuck credentials as failed", swept)
        return swept

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)
        jobs = {
            "stuck_generating": lambda: self.sweep_stuck(now),
            "activity": lambda: self._activity.reap(self._activity_retention_days, now),
            "webhook_deliveries": lambda: reap_deliveries(
                self._webhooks, self._webhook_retention_days, now
            ),
            "webhook_retries": lambda: requeue_due(self._webhooks, self._queue, now),
        }
        results: dict[str, int] = {}
        for name, job in jobs.items():
            try:
                results[name] = await job()
            except Exception:
                logger.exception("Janitor job %s failed", name)
                results[name] = 0
        return results

    async def run(self, stop: asyncio.Event, interval: float = 30.0) -> None:
        logger.info("Janitor started interval=%.0fs", interval)
        while not stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Janitor stopped")
