from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

CREDENTIAL_TYPES = ("certificate", "badge", "diploma", "award")
CREDENTIAL_STATUSES = ("draft", "generating", "issued", "failed", "revoked")
ARTIFACT_FORMATS = ("png", "jpeg", "pdf")

# from-state -> states it may move to.  Everything else is rejected.
LEGAL_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"generating"}),
    "generating": frozenset({"issued", "failed"}),
    "failed": frozenset({"generating"}),
    "issued": frozenset({"revoked"}),
    "revoked": frozenset(),
}

# States in which artifact URLs may be attached.
ATTACHABLE_STATES = frozenset({"generating", "issued"})

# States visible to the public verifier.
VERIFIABLE_STATES = frozenset({"issued", "revoked"})


def is_legal_transition(from_status: str, to_status: str) -> bool:
    return to_status in LEGAL_TRANSITIONS.get(from_status, frozenset())


@dataclass(frozen=True, slots=True)
class Credential:
    """An issued (or in-flight) credential.

    ``fingerprint`` is assigned when the draft is created and never
    changes.  ``artifact_urls`` maps format -> object-store URL and is the
    only place artifact locations are kept.  ``design`` and
    ``participant_data`` are snapshots taken at issue time, so editing a
    template or a participant later does not change an issued credential.
    """

    id: UUID
    tenant_id: UUID
    participant_id: UUID
    event_id: UUID
    title: str
    type: str
    fingerprint: str
    verification_url: str
    qr_code: str
    status: str
    created_at: datetime
    updated_at: datetime
    design: dict[str, Any] | None = None
    participant_data: dict[str, str] = field(default_factory=dict)
    artifact_urls: dict[str, str] = field(default_factory=dict)
    template_id: UUID | None = None
    issued_by: str | None = None
    issued_at: datetime | None = None
    revoked_at: datetime | None = None
    last_downloaded_at: datetime | None = None
    download_count: int = 0
    shared_with: tuple[str, ...] = ()
    error_code: str | None = None
    error_message: str | None = None
    error_detail: dict[str, Any] | None = None

    @property
    def has_generated_image(self) -> bool:
        return bool(self.artifact_urls)

    @staticmethod
    def new_draft(
        *,
        tenant_id: UUID,
        participant_id: UUID,
        event_id: UUID,
        title: str,
        type: str,
        fingerprint: str,
        verification_url: str,
        qr_code: str,
        design: dict[str, Any] | None,
        participant_data: dict[str, str],
        template_id: UUID | None = None,
        issued_by: str | None = None,
    ) -> Credential:
        now = datetime.now(timezone.utc)
        return Credential(
            id=uuid4(),
            tenant_id=tenant_id,
            participant_id=participant_id,
            event_id=event_id,
            title=title,
            type=type,
            fingerprint=fingerprint,
            verification_url=verification_url,
            qr_code=qr_code,
            status="draft",
            created_at=now,
            updated_at=now,
            design=design,
            participant_data=dict(participant_data),
            template_id=template_id,
            issued_by=issued_by,
        )


@dataclass(frozen=True, slots=True)
class CredentialFilter:
    type: str | None = None
    status: str | None = None
    event_id: UUID | None = None
    participant_id: UUID | None = None
