"""Signed webhook delivery to tenant endpoints.

PUBLISH (request path, never blocks on delivery)
  For each enabled subscription of the tenant that wants the event:
  persist a ``pending`` delivery carrying the payload
  ``{event, timestamp, data}`` and enqueue its ID on ``webhook_delivery``.

DELIVER (worker pool)
  body      = canonical JSON of the payload (sorted keys, no spaces)
  header    X-Signature: sha256=<hex HMAC-SHA256(secret, body)>
  POST with a 10 s timeout.
    2xx           -> success; subscription success counter +1
    anything else -> retry after 30 s, 2 m, 10 m, 1 h
    5th attempt fails -> failed; subscription failure counter +1, last error

  Receivers verify by recomputing the HMAC over the raw request body.

RETRY SWEEP
  ``requeue_due`` puts deliveries whose retry time has come back on the
  queue.  A pending delivery carries a recheck time as well, so one whose
  queue entry was lost (enqueue failed, worker stopped mid-backlog) is
  picked up by the same sweep.  Delivery is at-least-once.

FAIRNESS
  WebhookWorkerPool runs N consumers, and each tenant may hold at most
  ``per_tenant`` of them at once.  A consumer that dequeues work for a
  tenant already at its cap parks the task behind that tenant and goes
  back to the queue, so one tenant's slow endpoint cannot occupy the
  whole pool.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import time
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

import httpx

from sifapass.core.errors import ValidationFailed
from sifapass.core.metrics import JANITOR_REAPED, WEBHOOK_DELIVERIES
from sifapass.models.webhook import (
    RESPONSE_PREVIEW_CHARS,
    WEBHOOK_EVENTS,
    WebhookDelivery,
    WebhookSubscription,
)
from sifapass.repos.webhook_repo import WebhookRepo
from sifapass.services.task_queue import WEBHOOK_QUEUE, TaskQueue

logger = logging.getLogger(__name__)

DELIVERY_TIMEOUT_SECONDS = 10.0

MAX_ATTEMPTS = 5

# Wait before attempts 2..MAX_ATTEMPTS.
RETRY_DELAYS = (
    timedelta(seconds=30),
    timedelta(minutes=2),
    timedelta(minutes=10),
    timedelta(hours=1),
)

# A pending delivery not picked up by then is put back on the queue.
PENDING_RECHECK = timedelta(minutes=10)

SIGNATURE_HEADER = "X-Signature"
USER_AGENT = "SifaPass-Webhooks/1.0"
TEST_EVENT = "webhook.test"


def canonical_body(payload: dict[str, Any]) -> bytes:
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), default=str
    ).encode("utf-8")


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, header: str) -> bool:
    """Check an ``X-Signature`` header value against ``body``."""
    scheme, _, digest = header.partition("=")
    if scheme != "sha256" or not digest:
        return False
    return hmac.compare_digest(sign(secret, body), digest)


def validate_subscription(url: str, events: list[str]) -> tuple[str, tuple[str, ...]]:
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationFailed("Webhook URL must be an absolute http(s) URL")
    if not events:
        raise ValidationFailed("At least one event must be selected")
    unknown = [e for e in events if e not in WEBHOOK_EVENTS]
    if unknown:
        raise ValidationFailed(
            f"Unknown webhook events: {', '.join(unknown)}",
            allowed=list(WEBHOOK_EVENTS),
        )
    return url.strip(), tuple(dict.fromkeys(events))


class WebhookFanout:
    def __init__(self, repo: WebhookRepo, queue: TaskQueue) -> None:
        self._repo = repo
        self._queue = queue

    async def publish(
        self, tenant_id: UUID, event: str, data: dict[str, Any]
    ) -> list[UUID]:
        """Queue ``event`` for every matching subscription.

        Failures are logged and swallowed; the caller's operation has
        already succeeded and must not be undone by a webhook problem.
        """
        try:
            subs = await self._repo.list_subscriptions(tenant_id)
            now = datetime.now(timezone.utc)
            payload = {
                "event": event,
                "timestamp": now.isoformat(),
                "data": data,
            }
            queued: list[UUID] = []
            for sub in subs:
                if not sub.wants(event):
                    continue
                delivery = replace(
                    WebhookDelivery.new(subscription=sub, event=event, payload=payload),
                    next_retry_at=now + PENDING_RECHECK,
                )
                await self._repo.add_delivery(delivery)
                await self._queue.enqueue(
                    WEBHOOK_QUEUE,
                    {"delivery_id": str(delivery.id), "tenant_id": str(tenant_id)},
                )
                queued.append(delivery.id)
            return queued
        except Exception:
            logger.exception("Failed to publish webhook event=%s", event)
            return []


class WebhookDispatcher:
    """Sends one delivery and records the outcome.

    ``_transport`` can be replaced with an ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self, repo: WebhookRepo, timeout: float = DELIVERY_TIMEOUT_SECONDS
    ) -> None:
        self._repo = repo
        self._timeout = timeout
        self._transport: httpx.AsyncBaseTransport | None = None

    async def deliver(self, delivery_id: UUID) -> WebhookDelivery | None:
        delivery = await self._repo.get_delivery(delivery_id)
        if delivery is None or delivery.outcome in ("success", "failed"):
            return delivery

        sub = await self._repo.get_subscription(delivery.subscription_id)
        now = datetime.now(timezone.utc)
        if sub is None or not sub.enabled:
            done = replace(
                delivery,
                outcome="failed",
                response_preview="Subscription removed or disabled",
                next_retry_at=None,
            )
            await self._repo.save_delivery(done)
            return done

        status, preview, elapsed_ms = await self._post(
            delivery.url, sub.secret, delivery.payload, str(delivery.id)
        )
        log_extra = {"delivery_id": str(delivery.id), "tenant_id": str(delivery.tenant_id)}

        if status is not None and 200 <= status < 300:
            done = replace(
                delivery,
                outcome="success",
                http_status=status,
                response_preview=preview,
                elapsed_ms=elapsed_ms,
                next_retry_at=None,
                delivered_at=now,
            )
            await self._repo.save_delivery(done)
            await self._repo.record_result(sub.id, success=True, at=now)
            WEBHOOK_DELIVERIES.labels(outcome="success").inc()
            logger.info(
                "Webhook delivered event=%s status=%d", delivery.event, status, extra=log_extra
            )
            return done

        error = f"HTTP {status}" if status is not None else preview
        attempt = delivery.retry_count + 1
        if attempt < MAX_ATTEMPTS:
            delay = RETRY_DELAYS[delivery.retry_count]
            done = replace(
                delivery,
                outcome="retry",
                http_status=status,
                response_preview=preview,
                elapsed_ms=elapsed_ms,
                retry_count=delivery.retry_count + 1,
                next_retry_at=now + delay,
            )
            await self._repo.save_delivery(done)
            WEBHOOK_DELIVERIES.labels(outcome="retry").inc()
            logger.warning(
                "Webhook attempt failed (%s), retry %d in %s",
                error,
                done.retry_count,
                delay,
                extra=log_extra,
            )
            return done

        done = replace(
            delivery,
            outcome="failed",
            http_status=status,
            response_preview=preview,
            elapsed_ms=elapsed_ms,
            next_retry_at=None,
        )
        await self._repo.save_delivery(done)
        await self._repo.record_result(sub.id, success=False, at=now, error=error)
        WEBHOOK_DELIVERIES.labels(outcome="failed").inc()
        logger.error(
            "Webhook delivery failed permanently after %d attempts (%s)",
            attempt,
            error,
            extra=log_extra,
        )
        return done

    async def _post(
        self, url: str, secret: str, payload: dict, delivery_id: str
    ) -> tuple[int | None, str, int]:
        body = canonical_body(payload)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            SIGNATURE_HEADER: f"sha256={sign(secret, body)}",
            "X-Webhook-Event": payload["event"],
            "X-Webhook-Delivery": delivery_id,
        }
        start = time.monotonic()
        status: int | None = None
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(url, content=body, headers=headers)
            status = resp.status_code
            preview = resp.text[:RESPONSE_PREVIEW_CHARS]
        except httpx.HTTPError as exc:
            preview = f"{type(exc).__name__}: {exc}"[:RESPONSE_PREVIEW_CHARS]
        return status, preview, int((time.monotonic() - start) * 1000)

    async def send_test(self, sub: WebhookSubscription) -> dict[str, Any]:
        """POST a signed ``webhook.test`` event once.

        Nothing is stored and the subscription counters are left alone.
        """
        payload = {
            "event": TEST_EVENT,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": {
                "subscriptionId": str(sub.id),
                "tenantId": str(sub.tenant_id),
                "message": "This is a test webhook from SifaPass",
            },
        }
        status, preview, elapsed_ms = await self._post(
            sub.url, sub.secret, payload, f"test-{sub.id}"
        )
        delivered = status is not None and 200 <= status < 300
        logger.info(
            "Webhook test sent subscription=%s status=%s", sub.id, status
        )
        return {
            "delivered": delivered,
            "httpStatus": status,
            "responsePreview": preview,
            "elapsedMs": elapsed_ms,
        }


async def requeue_due(
    repo: WebhookRepo, queue: TaskQueue, now: datetime | None = None
) -> int:
    """Put due retries and overdue pending deliveries back on the queue."""
    now = now or datetime.now(timezone.utc)
    due = await repo.list_due(now)
    for delivery in due:
        await repo.save_delivery(
            replace(delivery, outcome="pending", next_retry_at=now + PENDING_RECHECK)
        )
        await queue.enqueue(
            WEBHOOK_QUEUE,
            {"delivery_id": str(delivery.id), "tenant_id": str(delivery.tenant_id)},
        )
    if due:
        logger.info("Requeued %d webhook deliveries", len(due))
    return len(due)


async def reap_deliveries(
    repo: WebhookRepo, retention_days: int, now: datetime | None = None
) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
    removed = await repo.delete_deliveries_older_than(cutoff)
    if removed:
        JANITOR_REAPED.labels(job="webhook_deliveries").inc(removed)
        logger.info("Reaped %d webhook deliveries older than %s", removed, cutoff)
    return removed


class WebhookWorkerPool:
    """N consumers of the delivery queue with a per-tenant concurrency cap."""

    def __init__(
        self,
        dispatcher: WebhookDispatcher,
        queue: TaskQueue,
        *,
        workers: int = 4,
        per_tenant: int = 2,
        poll_timeout: float = 1.0,
    ) -> None:
        self._dispatcher = dispatcher
        self._queue = queue
        self._workers = workers
        self._per_tenant = per_tenant
        self._poll_timeout = poll_timeout
        self._active: dict[str, int] = {}
        self._backlog: dict[str, deque[dict]] = {}

    def _admit(self, payload: dict) -> bool:
        tenant_id = payload.get("tenant_id", "-")
        if self._active.get(tenant_id, 0) >= self._per_tenant:
            self._backlog.setdefault(tenant_id, deque()).append(payload)
            return False
        self._active[tenant_id] = self._active.get(tenant_id, 0) + 1
        return True

    async def _deliver(self, payload: dict) -> None:
        try:
            await self._dispatcher.deliver(UUID(payload["delivery_id"]))
        except Exception:
            logger.exception(
                "Webhook worker failed on delivery=%s", payload.get("delivery_id")
            )

    async def _serve(self, payload: dict) -> None:
        # Holds one of the tenant's slots until its parked work runs out.
        tenant_id = payload.get("tenant_id", "-")
        try:
            while True:
                await self._deliver(payload)
                parked = self._backlog.get(tenant_id)
                if not parked:
                    break
                payload = parked.popleft()
        finally:
            self._active[tenant_id] -= 1
            if not self._active[tenant_id]:
                del self._active[tenant_id]
            if not self._backlog.get(tenant_id):
                self._backlog.pop(tenant_id, None)

    async def _consume(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            task = await self._queue.dequeue(WEBHOOK_QUEUE, timeout=self._poll_timeout)
            if task is not None and self._admit(task.payload):
                await self._serve(task.payload)

    async def run(self, stop: asyncio.Event) -> None:
        """Consume until ``stop`` is set."""
        logger.info(
            "Webhook worker pool started workers=%d per_tenant=%d",
            self._workers,
            self._per_tenant,
        )
        await asyncio.gather(*(self._consume(stop) for _ in range(self._workers)))
        parked = sum(len(q) for q in self._backlog.values())
        if parked:
            logger.warning("Webhook worker pool stopped with %d parked deliveries", parked)
        logger.info("Webhook worker pool stopped")

    async def drain(self) -> int:
        """Deliver everything currently queued, then return the count."""
        handled = 0
        serving: list[asyncio.Task] = []
        while True:
            task = await self._queue.dequeue(WEBHOOK_QUEUE, timeout=0)
            if task is None:
                break
            if self._admit(task.payload):
                serving.append(asyncio.create_task(self._serve(task.payload)))
            handled += 1
        if serving:
            await asyncio.gather(*serving)
        return handled


def subscription_view(sub: WebhookSubscription, *, include_secret: bool = False) -> dict:
    view = {
        "id": str(sub.id),
        "url": sub.url,
        "events": list(sub.events),
        "enabled": sub.enabled,
        "description": sub.description,
        "successCount": sub.success_count,
        "failureCount": sub.failure_count,
        "lastError": sub.last_error,
        "lastTriggeredAt": sub.last_triggered_at.isoformat() if sub.last_triggered_at else None,
        "createdAt": sub.created_at.isoformat(),
    }
    if include_secret:
        view["secret"] = sub.secret
    return view


def delivery_view(d: WebhookDelivery) -> dict:
    return {
        "id": str(d.id),
        "subscriptionId": str(d.subscription_id),
        "event": d.event,
        "url": d.url,
        "outcome": d.outcome,
        "httpStatus": d.http_status,
        "responsePreview": d.response_preview,
        "elapsedMs": d.elapsed_ms,
        "retryCount": d.retry_count,
        "nextRetryAt": d.next_retry_at.isoformat() if d.next_retry_at else None,
        "deliveredAt": d.delivered_at.isoformat() if d.delivered_at else None,
        "createdAt": d.created_at.isoformat(),
        "payload": d.payload,
    }
