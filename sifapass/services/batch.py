"""Batch issuance under one (event, template, type).

Items are validated and admitted one at a time, in request order, so
the quota gate sees them in the order the caller listed them.  When the
gate refuses an item, that item and every item after it are reported as
QuotaExhausted and never attempted.

Admitted items are then rendered and uploaded concurrently, at most
``concurrency`` at once.  One item failing does not affect the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sifapass.core.errors import (
    BillingError,
    CredentialServiceError,
    InvalidReference,
    ValidationFailed,
)
from sifapass.models.credential import Credential
from sifapass.models.principal import Principal
from sifapass.repos.event_repo import EventRepo
from sifapass.services.issuance import IssuanceCoordinator, IssueRequest

logger = logging.getLogger(__name__)

MAX_BATCH_ITEMS = 100


@dataclass(frozen=True, slots=True)
class BatchItem:
    participant_id: UUID
    participant_data: dict[str, str] = field(default_factory=dict)
    item_ref: str | None = None

    @property
    def ref(self) -> str:
        return self.item_ref or str(self.participant_id)


@dataclass(frozen=True, slots=True)
class BatchRequest:
    event_id: UUID
    title: str
    type: str
    items: tuple[BatchItem, ...]
    template_id: UUID | None = None
    design: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class BatchFailure:
    item_ref: str
    reason: str
    message: str
    credential_id: UUID | None = None


@dataclass
class BatchResult:
    successes: list[Credential] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)


class BatchIssuer:
    def __init__(
        self,
        coordinator: IssuanceCoordinator,
        events: EventRepo,
        concurrency: int = 4,
    ) -> None:
        self._coordinator = coordinator
        self._events = events
        self._concurrency = concurrency

    async def issue(self, batch: BatchRequest, principal: Principal) -> BatchResult:
        if not batch.items:
            raise ValidationFailed("items must not be empty")
        if len(batch.items) > MAX_BATCH_ITEMS:
            raise ValidationFailed(f"At most {MAX_BATCH_ITEMS} items per batch")
        event = await self._events.get(batch.event_id)
        if event is None or event.tenant_id != principal.tenant_id:
            raise InvalidReference("Event not found", field="eventId")

        result = BatchResult()
        admitted: list[tuple[BatchItem, Credential]] = []

        for index, item in enumerate(batch.items):
            req = IssueRequest(
                participant_id=item.participant_id,
                event_id=batch.event_id,
                title=batch.title,
                type=batch.type,
                template_id=batch.template_id,
                design=batch.design,
                participant_data=item.participant_data,
            )
            try:
                participant, ev, design, template_id = await self._coordinator.resolve(
                    req, principal
                )
            except CredentialServiceError as exc:
                result.failures.append(BatchFailure(item.ref, exc.code, exc.message))
                continue

            try:
                await self._coordinator.admit(principal.tenant_id)
            except BillingError as exc:
                for rest in batch.items[index:]:
                    result.failures.append(
                        BatchFailure(
                            rest.ref,
                            "QuotaExhausted",
                            f"Not attempted: {exc.message}",
                        )
                    )
                logger.info(
                    "Batch stopped at item %d/%d: %s",
                    index + 1,
                    len(batch.items),
                    exc.code,
                )
                break

            try:
                draft = await self._coordinator.create_draft(
                    req, principal, participant, ev, design, template_id
                )
            except CredentialServiceError as exc:
                result.failures.append(BatchFailure(item.ref, exc.code, exc.message))
                continue
            admitted.append((item, draft))

        slots = asyncio.Semaphore(self._concurrency)

        async def _run(item: BatchItem, draft: Credential) -> tuple[BatchItem, Credential | BatchFailure]:
            async with slots:
                try:
                    c = await self._coordinator.generate_from_draft(draft, principal.user_id)
                except CredentialServiceError as exc:
                    return item, BatchFailure(item.ref, exc.code, exc.message, draft.id)
                except Exception as exc:
                    logger.exception("Batch item %s failed", item.ref)
                    return item, BatchFailure(item.ref, "Unknown", str(exc), draft.id)
                return item, c

        outcomes = await asyncio.gather(*(_run(i, d) for i, d in admitted))
        for item, outcome in outcomes:
            if isinstance(outcome, BatchFailure):
                result.failures.append(outcome)
            elif outcome.status == "issued":
                result.successes.append(outcome)
            else:
                result.failures.append(
                    BatchFailure(
                        item.ref,
                        outcome.error_code or "Unknown",
                        outcome.error_message or f"Credential is {outcome.status}",
                        outcome.id,
                    )
                )

        logger.info(
            "Batch finished: %d issued, %d failed",
            len(result.successes),
            len(result.failures),
        )
        return result
