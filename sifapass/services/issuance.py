"""Issuance coordinator: one "issue this credential" operation.

ISSUE FLOW
----------
   1. resolve participant, event and template; all must belong to the
      acting tenant (participants may also be registered in the event)
   2. quota gate: admit(tenant, credential-issue); refusals raise the
      gate's reason (402)
   3. participant-data bundle: overrides merged over the participant,
      event and date fields
   4. fingerprint + verification URL
   5. inline QR data URI
   6. store draft, then draft -> generating
   7. render PNG (retried once on AssetUnavailable)
   8. upload, attach artifact URL, generating -> issued
   9. activity ``credential_issued`` + webhook ``credential.issued``
  10. on render/upload failure: generating -> failed with the error code
      stored on the record; the caller still gets the record back

Steps 7 and 8 run under one deadline (``asyncio.timeout``).  When it
expires the record stays in ``generating`` and the janitor fails it
later; ``regenerate`` can pick it up again.

A credit or plan slot taken in step 2 is not returned when rendering
fails.  ``regenerate`` re-runs steps 7-9 with the same fingerprint and
does not go through the gate again.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sifapass.core.errors import (
    AssetUnavailable,
    Conflict,
    CredentialServiceError,
    DeadlineExceeded,
    DependencyError,
    InvalidReference,
    InvalidStateTransition,
    NotFound,
    RenderFailed,
    ValidationFailed,
    error_for_code,
)
from sifapass.core.metrics import CREDENTIALS_ISSUED
from sifapass.models.credential import (
    ARTIFACT_FORMATS,
    CREDENTIAL_STATUSES,
    CREDENTIAL_TYPES,
    Credential,
    CredentialFilter,
)
from sifapass.models.event import Event
from sifapass.models.page import Page
from sifapass.models.participant import Participant
from sifapass.models.principal import Principal
from sifapass.repos.credential_repo import CredentialRepo
from sifapass.repos.event_repo import EventRepo
from sifapass.repos.participant_repo import ParticipantRepo
from sifapass.repos.template_repo import TemplateRepo
from sifapass.services import qr_encoder
from sifapass.services.activity_log import ActivityLog
from sifapass.services.fingerprint import new_fingerprint, verification_url
from sifapass.services.object_store import ObjectStore
from sifapass.services.quota_gate import QuotaGate
from sifapass.services.renderer import (
    RenderedArtifact,
    Renderer,
    parse_design,
    today_label,
)
from sifapass.services.verification import VerificationService
from sifapass.services.webhook_fanout import WebhookFanout

logger = logging.getLogger(__name__)

UPLOAD_CONTENT_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "application/pdf": "pdf",
}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_TITLE_LENGTH = 200
MAX_SHARE_RECIPIENTS = 50

# Stand-ins for participant data when previewing a design.
PREVIEW_SAMPLE_DATA = {
    "participantName": "Jane Doe",
    "participantEmail": "jane.doe@example.com",
    "eventTitle": "Sample Event",
    "eventDate": "",
    "skills": "",
    "credentialTitle": "Certificate of Completion",
}
PREVIEW_FINGERPRINT = "0" * 64

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True, slots=True)
class IssueRequest:
    participant_id: UUID
    event_id: UUID
    title: str
    type: str
    template_id: UUID | None = None
    design: dict[str, Any] | None = None
    participant_data: dict[str, str] = field(default_factory=dict)


def build_participant_data(
    participant: Participant,
    event: Event,
    title: str,
    overrides: dict[str, Any] | None = None,
) -> dict[str, str]:
    """The values substituted into ``{{token}}`` placeholders."""
    data = {
        "participantName": participant.name,
        "participantEmail": participant.email,
        "eventTitle": event.title,
        "eventDate": today_label(event.start_date.date()) if event.start_date else "",
        "skills": ", ".join(participant.skills),
        "issueDate": today_label(),
        "credentialTitle": title,
    }
    for key, value in (overrides or {}).items():
        if value is not None:
            data[str(key)] = str(value)
    return data


def failure_view(c: Credential) -> dict[str, Any]:
    """Error fields returned alongside a record that has no artifact."""
    detail = c.error_detail or {}
    return {
        "code": c.error_code,
        "message": c.error_message,
        "reason": detail.get("reason"),
        "retriable": bool(detail.get("retriable", c.error_code is not None)),
    }


class IssuanceCoordinator:
    def __init__(
        self,
        *,
        credentials: CredentialRepo,
        participants: ParticipantRepo,
        events: EventRepo,
        templates: TemplateRepo,
        gate: QuotaGate,
        renderer: Renderer,
        store: ObjectStore,
        activity: ActivityLog,
        fanout: WebhookFanout,
        verification: VerificationService,
        public_base_url: str,
        storage_folder: str = "credentials",
        deadline_seconds: float = 90.0,
        stuck_after: timedelta = timedelta(minutes=15),
    ) -> None:
        self._credentials = credentials
        self._participants = participants
        self._events = events
        self._templates = templates
        self._gate = gate
        self._renderer = renderer
        self._store = store
        self._activity = activity
        self._fanout = fanout
        self._verification = verification
        self._public_base_url = public_base_url
        self._storage_folder = storage_folder
        self.deadline_seconds = deadline_seconds
        self._stuck_after = stuck_after

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def issue(self, req: IssueRequest, principal: Principal) -> Credential:
        participant, event, design, template_id = await self.resolve(req, principal)
        await self.admit(principal.tenant_id)
        draft = await self.create_draft(
            req, principal, participant, event, design, template_id
        )
        return await self.generate_from_draft(draft, principal.user_id)

    async def issue_uploaded(
        self,
        req: IssueRequest,
        principal: Principal,
        data: bytes,
        content_type: str | None,
    ) -> Credential:
        """Issue with an artifact the caller already produced."""
        fmt = UPLOAD_CONTENT_TYPES.get((content_type or "").split(";")[0].strip().lower())
        if fmt is None:
            raise ValidationFailed(
                "File must be a PNG, JPEG or PDF",
                allowed=sorted(UPLOAD_CONTENT_TYPES),
            )
        if not data:
            raise ValidationFailed("Uploaded file is empty")
        if len(data) > MAX_UPLOAD_BYTES:
            raise ValidationFailed("Uploaded file exceeds 10 MB")

        participant, event, _, _ = await self.resolve(req, principal, with_design=False)
        await self.admit(principal.tenant_id)
        draft = await self.create_draft(req, principal, participant, event, None, None)
        c = await self._credentials.transition(draft.id, "draft", "generating")
        try:
            url = await self._store.put(
                data,
                "raw" if fmt == "pdf" else "image",
                self._folder(c),
                self._public_id(c, fmt),
                overwrite=True,
                fmt=fmt,
            )
        except DependencyError as exc:
            return await self._fail(c, exc)
        await self._credentials.attach_artifact(c.id, fmt, url)
        c = await self._transition(c, "generating", "issued")
        await self._after_issue(c, principal.user_id, source="upload")
        return c

    async def regenerate(self, credential_id: UUID, principal: Principal) -> Credential:
        """Re-run render and upload for a failed or stuck credential.

        The fingerprint, snapshots and verification URL are unchanged.
        """
        c = await self.get(credential_id, principal)
        if c.status == "failed":
            c = await self._transition(c, "failed", "generating")
        elif c.status == "generating":
            if c.updated_at > datetime.now(timezone.utc) - self._stuck_after:
                raise Conflict(
                    "Credential is still generating", currentStatus=c.status
                )
        else:
            raise InvalidStateTransition(
                f"Cannot regenerate a {c.status} credential",
                fromStatus=c.status,
                toStatus="generating",
            )
        logger.info("Regenerating credential=%s", c.id, extra={"credential_id": str(c.id)})
        return await self.generate(c, principal.user_id)

    async def download(
        self, credential_id: UUID, fmt: str, principal: Principal
    ) -> str:
        """Return the artifact URL for ``fmt``, rendering it on first request."""
        fmt = (fmt or "png").lower()
        if fmt == "jpg":
            fmt = "jpeg"
        if fmt not in ARTIFACT_FORMATS:
            raise ValidationFailed(
                f"format must be one of {', '.join(ARTIFACT_FORMATS)}"
            )
        c = await self.get(credential_id, principal)
        if c.status != "issued":
            raise InvalidStateTransition(
                f"Cannot download a {c.status} credential", currentStatus=c.status
            )

        url = c.artifact_urls.get(fmt)
        if url is None:
            if c.design is None and c.artifact_urls:
                raise ValidationFailed(
                    "Uploaded credential is only available as "
                    + ", ".join(sorted(c.artifact_urls)),
                    available=sorted(c.artifact_urls),
                )
            url = await self._render_on_demand(c, fmt)

        await self._credentials.record_download(c.id)
        await self._activity.record(
            "credential_downloaded",
            principal.user_id,
            {"format": fmt},
            tenant_id=c.tenant_id,
            credential_id=c.id,
        )
        await self._fanout.publish(
            c.tenant_id,
            "credential.downloaded",
            {"credentialId": str(c.id), "format": fmt, "url": url},
        )
        return url

    async def revoke(
        self, credential_id: UUID, principal: Principal, reason: str | None = None
    ) -> Credential:
        c = await self.get(credential_id, principal)
        c = await self._transition(c, "issued", "revoked")
        logger.info(
            "Credential revoked by=%s", principal.user_id, extra={"credential_id": str(c.id)}
        )
        await self._fanout.publish(
            c.tenant_id,
            "credential.revoked",
            {
                "credentialId": str(c.id),
                "fingerprint": c.fingerprint,
                "revokedAt": c.revoked_at.isoformat() if c.revoked_at else None,
                "reason": reason,
            },
        )
        return c

    async def share(
        self,
        credential_id: UUID,
        recipients: list[str],
        principal: Principal,
        message: str | None = None,
    ) -> Credential:
        cleaned = list(dict.fromkeys(r.strip().lower() for r in recipients if r.strip()))
        if not cleaned:
            raise ValidationFailed("At least one recipient email is required")
        if len(cleaned) > MAX_SHARE_RECIPIENTS:
            raise ValidationFailed(f"At most {MAX_SHARE_RECIPIENTS} recipients per share")
        invalid = [r for r in cleaned if not _EMAIL_RE.match(r)]
        if invalid:
            raise ValidationFailed("Invalid recipient email", invalid=invalid)

        c = await self.get(credential_id, principal)
        if c.status != "issued":
            raise InvalidStateTransition(
                f"Cannot share a {c.status} credential", currentStatus=c.status
            )
        c = await self._credentials.add_share(c.id, cleaned)
        await self._activity.record(
            "credential_delivered",
            principal.user_id,
            {"recipients": cleaned, "message": message},
            tenant_id=c.tenant_id,
            credential_id=c.id,
        )
        await self._fanout.publish(
            c.tenant_id,
            "credential.shared",
            {
                "credentialId": str(c.id),
                "recipients": cleaned,
                "verificationUrl": c.verification_url,
            },
        )
        return c

    async def get(self, credential_id: UUID, principal: Principal) -> Credential:
        c = await self._credentials.get(credential_id)
        # Another tenant's credential is reported exactly like a missing one.
        if c is None or c.tenant_id != principal.tenant_id:
            raise NotFound("Credential not found")
        return c

    async def list_credentials(
        self,
        principal: Principal,
        flt: CredentialFilter,
        limit: int = 20,
        offset: int = 0,
    ) -> Page[Credential]:
        return await self._credentials.list_by_tenant(
            principal.tenant_id, flt, limit, offset
        )

    async def stats(self, principal: Principal) -> dict[str, Any]:
        """Credential counts for the tenant, by status and by type."""
        counts = await self._credentials.count_by_status_and_type(principal.tenant_id)
        by_status = dict.fromkeys(CREDENTIAL_STATUSES, 0)
        by_type = dict.fromkeys(CREDENTIAL_TYPES, 0)
        for (status, type_), n in counts.items():
            by_status[status] = by_status.get(status, 0) + n
            by_type[type_] = by_type.get(type_, 0) + n
        return {"total": sum(counts.values()), "byStatus": by_status, "byType": by_type}

    async def preview(
        self,
        principal: Principal,
        *,
        design: dict[str, Any] | None = None,
        template_id: UUID | None = None,
        participant_data: dict[str, Any] | None = None,
        fmt: str = "png",
    ) -> RenderedArtifact:
        """Render a design with sample data.

        Nothing is stored and the quota gate is not consulted.
        """
        fmt = "jpeg" if fmt == "jpg" else fmt
        if fmt not in ARTIFACT_FORMATS:
            raise ValidationFailed(
                f"format must be one of {', '.join(ARTIFACT_FORMATS)}"
            )
        if template_id is not None:
            template = await self._templates.get(template_id)
            if template is None or template.tenant_id != principal.tenant_id:
                raise InvalidReference("Template not found", field="templateId")
            design = template.design
        try:
            spec = parse_design(design)
        except RenderFailed as exc:
            raise ValidationFailed(exc.message, field="designData") from None

        data = {
            **PREVIEW_SAMPLE_DATA,
            "issueDate": today_label(),
            "verificationUrl": verification_url(self._public_base_url, PREVIEW_FINGERPRINT),
        }
        for key, value in (participant_data or {}).items():
            if value is not None:
                data[str(key)] = str(value)
        try:
            async with asyncio.timeout(self.deadline_seconds):
                return await self._renderer.render(spec, data, fmt)
        except TimeoutError:
            raise DeadlineExceeded("Preview did not render in time") from None

    # ------------------------------------------------------------------
    # Steps shared by issue and batch
    # ------------------------------------------------------------------

    async def resolve(
        self, req: IssueRequest, principal: Principal, *, with_design: bool = True
    ) -> tuple[Participant, Event, dict[str, Any] | None, UUID | None]:
        """Validate a request and load what it refers to."""
        if req.type not in CREDENTIAL_TYPES:
            raise ValidationFailed(
                f"type must be one of {', '.join(CREDENTIAL_TYPES)}"
            )
        title = req.title.strip()
        if not title or len(title) > MAX_TITLE_LENGTH:
            raise ValidationFailed(
                f"title must be 1-{MAX_TITLE_LENGTH} characters"
            )

        event = await self._events.get(req.event_id)
        if event is None or event.tenant_id != principal.tenant_id:
            raise InvalidReference("Event not found", field="eventId")
        participant = await self._participants.get(req.participant_id)
        if participant is None or not (
            participant.tenant_id == principal.tenant_id
            or participant.id in event.participant_ids
        ):
            raise InvalidReference("Participant not found", field="participantId")

        if not with_design:
            return participant, event, None, None

        design = req.design
        template_id = None
        if req.template_id is not None:
            template = await self._templates.get(req.template_id)
            if template is None or template.tenant_id != principal.tenant_id:
                raise InvalidReference("Template not found", field="templateId")
            design = template.design
            template_id = template.id
        try:
            parse_design(design)
        except RenderFailed as exc:
            raise ValidationFailed(exc.message, field="designData") from None
        return participant, event, design, template_id

    async def admit(self, tenant_id: UUID) -> None:
        admission = await self._gate.admit(tenant_id, "credential-issue")
        if not admission.ok:
            raise error_for_code(admission.reason or "Unknown")

    async def create_draft(
        self,
        req: IssueRequest,
        principal: Principal,
        participant: Participant,
        event: Event,
        design: dict[str, Any] | None,
        template_id: UUID | None,
    ) -> Credential:
        title = req.title.strip()
        data = build_participant_data(participant, event, title, req.participant_data)
        fp = new_fingerprint(
            participant_ref=str(participant.id),
            event_ref=str(event.id),
            title=title,
            type=req.type,
        )
        url = verification_url(self._public_base_url, fp)
        data["verificationUrl"] = url
        qr = await asyncio.to_thread(qr_encoder.encode_data_uri, url)
        draft = Credential.new_draft(
            tenant_id=principal.tenant_id,
            participant_id=participant.id,
            event_id=event.id,
            title=title,
            type=req.type,
            fingerprint=fp,
            verification_url=url,
            qr_code=qr,
            design=design,
            participant_data=data,
            template_id=template_id,
            issued_by=principal.user_id,
        )
        return await self._credentials.create(draft)

    async def generate_from_draft(self, draft: Credential, actor: str) -> Credential:
        c = await self._credentials.transition(draft.id, "draft", "generating")
        return await self.generate(c, actor)

    async def generate(self, c: Credential, actor: str) -> Credential:
        log_extra = {"credential_id": str(c.id), "tenant_id": str(c.tenant_id)}
        try:
            async with asyncio.timeout(self.deadline_seconds):
                artifact = await self._render(c, "png")
                url = await self._store.put(
                    artifact.data,
                    "image",
                    self._folder(c),
                    self._public_id(c, "png"),
                    overwrite=True,
                    fmt="png",
                )
        except TimeoutError:
            CREDENTIALS_ISSUED.labels(type=c.type, outcome="timeout").inc()
            logger.warning(
                "Issuance deadline of %ss exceeded, leaving record in generating",
                self.deadline_seconds,
                extra=log_extra,
            )
            return await self._credentials.record_failure(
                c.id,
                DeadlineExceeded.code,
                "Rendering did not finish in time; retry with regenerate",
                {"retriable": True},
            )
        except DependencyError as exc:
            return await self._fail(c, exc)

        await self._credentials.attach_artifact(c.id, "png", url)
        c = await self._transition(c, "generating", "issued")
        await self._after_issue(c, actor)
        return c

    async def _render(self, c: Credential, fmt: str):
        try:
            return await self._renderer.render(c.design, c.participant_data, fmt)
        except AssetUnavailable as exc:
            logger.warning(
                "Render asset unavailable (%s), retrying once",
                exc.message,
                extra={"credential_id": str(c.id)},
            )
            return await self._renderer.render(c.design, c.participant_data, fmt)

    async def _render_on_demand(self, c: Credential, fmt: str) -> str:
        try:
            async with asyncio.timeout(self.deadline_seconds):
                artifact = await self._render(c, fmt)
                url = await self._store.put(
                    artifact.data,
                    "raw" if fmt == "pdf" else "image",
                    self._folder(c),
                    self._public_id(c, fmt),
                    overwrite=True,
                    fmt=fmt,
                )
        except TimeoutError:
            raise DeadlineExceeded(f"Rendering {fmt} did not finish in time") from None
        await self._credentials.attach_artifact(c.id, fmt, url)
        logger.info("Rendered %s on demand", fmt, extra={"credential_id": str(c.id)})
        return url

    async def _fail(self, c: Credential, exc: CredentialServiceError) -> Credential:
        detail = {
            "reason": getattr(exc, "sub_kind", None),
            "retriable": exc.retriable,
        }
        await self._credentials.record_failure(c.id, exc.code, exc.message, detail)
        c = await self._transition(c, "generating", "failed")
        CREDENTIALS_ISSUED.labels(type=c.type, outcome="failed").inc()
        logger.warning(
            "Issuance failed code=%s: %s",
            exc.code,
            exc.message,
            extra={"credential_id": str(c.id), "tenant_id": str(c.tenant_id)},
        )
        await self._fanout.publish(
            c.tenant_id,
            "credential.failed",
            {
                "credentialId": str(c.id),
                "fingerprint": c.fingerprint,
                "code": exc.code,
                "message": exc.message,
            },
        )
        return c

    async def _after_issue(self, c: Credential, actor: str, source: str = "design") -> None:
        CREDENTIALS_ISSUED.labels(type=c.type, outcome="issued").inc()
        logger.info(
            "Credential issued type=%s", c.type,
            extra={"credential_id": str(c.id), "tenant_id": str(c.tenant_id)},
        )
        if c.template_id is not None:
            await self._templates.increment_usage(c.template_id)
        await self._activity.record(
            "credential_issued",
            actor,
            {"title": c.title, "type": c.type, "source": source},
            tenant_id=c.tenant_id,
            credential_id=c.id,
        )
        await self._fanout.publish(
            c.tenant_id,
            "credential.issued",
            {
                "credentialId": str(c.id),
                "participantId": str(c.participant_id),
                "eventId": str(c.event_id),
                "title": c.title,
                "type": c.type,
                "fingerprint": c.fingerprint,
                "verificationUrl": c.verification_url,
                "artifactUrls": dict(c.artifact_urls),
            },
        )

    async def _transition(self, c: Credential, from_status: str, to_status: str) -> Credential:
        updated = await self._credentials.transition(c.id, from_status, to_status)
        await self._verification.invalidate(updated.fingerprint)
        return updated

    def _folder(self, c: Credential) -> str:
        return f"{self._storage_folder}/{c.tenant_id}"

    @staticmethod
    def _public_id(c: Credential, fmt: str) -> str:
        return f"{c.id}-{fmt}"
