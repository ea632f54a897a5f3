"""Event and participant registration endpoints.

- POST /events                        create (admitted as event-create)
- GET  /events/{id}
- POST /events/{id}/participants      register an existing participant by
                                      id, or create one by name + email
                                      (admitted as participant-add)

Event codes look like ``EVT-2026-K7Q`` and are unique per tenant.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator

from sifapass.api.dependencies import require_principal
from sifapass.api.views import event_view, participant_view
from sifapass.core.errors import Conflict, NotFound, ValidationFailed, error_for_code
from sifapass.models.event import Event
from sifapass.models.participant import Participant
from sifapass.models.principal import Principal
from sifapass.services.container import event_repo, participant_repo, quota_gate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_ATTEMPTS = 5


class EventCreateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    capacity: int | None = Field(default=None, ge=1)
    category: str | None = Field(default=None, max_length=80)


class ParticipantIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    participant_id: UUID | None = Field(default=None, alias="participantId")
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    skills: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _id_or_identity(self) -> ParticipantIn:
        if self.participant_id is None and not (self.name and self.email):
            raise ValueError("participantId, or name and email, is required")
        return self


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def _admit(principal: Principal, kind: str) -> None:
    admission = await quota_gate.admit(principal.tenant_id, kind)
    if not admission.ok:
        raise error_for_code(admission.reason or "Unknown")


async def _new_event_code(tenant_id: UUID) -> str:
    year = datetime.now(timezone.utc).year
    for _ in range(_CODE_ATTEMPTS):
        suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(3))
        code = f"EVT-{year}-{suffix}"
        if not await event_repo.code_exists(tenant_id, code):
            return code
    raise Conflict("Could not allocate a unique event code; retry")


async def _owned_event(event_id: UUID, principal: Principal) -> Event:
    e = await event_repo.get(event_id)
    if e is None or e.tenant_id != principal.tenant_id:
        raise NotFound("Event not found")
    return e


@router.post("")
async def create_event(
    body: EventCreateIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> JSONResponse:
    start, end = _aware(body.start_date), _aware(body.end_date)
    if start is not None and end is not None and end < start:
        raise ValidationFailed("endDate must not be before startDate")
    await _admit(principal, "event-create")
    event = Event.new(
        tenant_id=principal.tenant_id,
        title=body.title.strip(),
        description=body.description,
        start_date=start,
        end_date=end,
        capacity=body.capacity,
        category=body.category,
        event_code=await _new_event_code(principal.tenant_id),
    )
    await event_repo.add(event)
    logger.info("Event created id=%s code=%s", event.id, event.event_code)
    return JSONResponse({"success": True, "event": event_view(event)}, status_code=201)


@router.get("/{event_id}")
async def get_event(
    event_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    return {"success": True, "event": event_view(await _owned_event(event_id, principal))}


@router.post("/{event_id}/participants")
async def register_participant(
    event_id: UUID,
    body: ParticipantIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> JSONResponse:
    event = await _owned_event(event_id, principal)

    if body.participant_id is not None:
        participant = await participant_repo.get(body.participant_id)
        if participant is None or participant.tenant_id != principal.tenant_id:
            raise NotFound("Participant not found")
    else:
        email = (body.email or "").strip().lower()
        if "@" not in email:
            raise ValidationFailed("email is invalid")
        participant = await participant_repo.get_by_email(email)

    if participant is not None and participant.id in event.participant_ids:
        return JSONResponse(
            {
                "success": True,
                "participant": participant_view(participant),
                "event": event_view(event),
            },
            status_code=200,
        )

    if event.capacity is not None and len(event.participant_ids) >= event.capacity:
        raise ValidationFailed("Event is at capacity", capacity=event.capacity)

    await _admit(principal, "participant-add")
    if participant is None:
        participant = Participant.new(
            tenant_id=principal.tenant_id,
            name=(body.name or "").strip(),
            email=body.email or "",
            skills=tuple(s.strip() for s in body.skills if s.strip()),
        )
        await participant_repo.add(participant)
    event = await event_repo.add_participant(event.id, participant.id)
    logger.info("Participant %s registered for event %s", participant.id, event.id)
    return JSONResponse(
        {
            "success": True,
            "participant": participant_view(participant),
            "event": event_view(event),
        },
        status_code=201,
    )
