"""JSON views of domain objects returned by the routers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sifapass.models.activity import ActivityEntry
from sifapass.models.credential import Credential
from sifapass.models.event import Event
from sifapass.models.page import Page
from sifapass.models.participant import Participant
from sifapass.models.template import DesignTemplate
from sifapass.models.tenant import Tenant
from sifapass.services.issuance import failure_view


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def credential_view(c: Credential) -> dict[str, Any]:
    view: dict[str, Any] = {
        "id": str(c.id),
        "participantId": str(c.participant_id),
        "eventId": str(c.event_id),
        "templateId": str(c.template_id) if c.template_id else None,
        "title": c.title,
        "type": c.type,
        "status": c.status,
        "fingerprint": c.fingerprint,
        "verificationUrl": c.verification_url,
        "qrCode": c.qr_code,
        "artifactUrls": dict(c.artifact_urls),
        "hasGeneratedImage": c.has_generated_image,
        "participantData": dict(c.participant_data),
        "issuedBy": c.issued_by,
        "issuedAt": _iso(c.issued_at),
        "revokedAt": _iso(c.revoked_at),
        "createdAt": _iso(c.created_at),
        "updatedAt": _iso(c.updated_at),
        "downloadCount": c.download_count,
        "lastDownloadedAt": _iso(c.last_downloaded_at),
        "sharedWith": list(c.shared_with),
    }
    if c.error_code is not None:
        view["error"] = failure_view(c)
    return view


def issue_response(c: Credential) -> dict[str, Any]:
    """Body of a 201 from an issuing endpoint, successful or not."""
    body: dict[str, Any] = {
        "success": c.status == "issued",
        "credential": credential_view(c),
        "hasGeneratedImage": c.has_generated_image,
    }
    if c.status != "issued":
        body.update(failure_view(c))
    return body


def page_view(page: Page, items: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "items": items,
        "total": page.total,
        "limit": page.limit,
        "offset": page.offset,
    }


def template_view(t: DesignTemplate, *, with_history: bool = False) -> dict[str, Any]:
    view: dict[str, Any] = {
        "id": str(t.id),
        "name": t.name,
        "type": t.type,
        "design": t.design,
        "version": t.version,
        "usageCount": t.usage_count,
        "createdAt": _iso(t.created_at),
        "updatedAt": _iso(t.updated_at),
    }
    if with_history:
        view["history"] = [
            {"version": h.version, "design": h.design, "savedAt": _iso(h.saved_at)}
            for h in reversed(t.history)
        ]
    return view


def event_view(e: Event) -> dict[str, Any]:
    return {
        "id": str(e.id),
        "title": e.title,
        "description": e.description,
        "startDate": _iso(e.start_date),
        "endDate": _iso(e.end_date),
        "capacity": e.capacity,
        "category": e.category,
        "eventCode": e.event_code,
        "status": e.status(),
        "participantIds": [str(p) for p in e.participant_ids],
        "participantCount": len(e.participant_ids),
        "createdAt": _iso(e.created_at),
    }


def participant_view(p: Participant) -> dict[str, Any]:
    return {
        "id": str(p.id),
        "name": p.name,
        "email": p.email,
        "skills": list(p.skills),
        "createdAt": _iso(p.created_at),
    }


def activity_view(a: ActivityEntry) -> dict[str, Any]:
    return {
        "id": str(a.id),
        "kind": a.kind,
        "actor": a.actor,
        "credentialId": str(a.credential_id) if a.credential_id else None,
        "details": a.details,
        "createdAt": _iso(a.created_at),
    }


def usage_view(t: Tenant) -> dict[str, Any]:
    return {
        "tenantId": str(t.id),
        "billingMode": t.billing_mode,
        "subscriptionStatus": t.subscription_status,
        "credits": t.credits,
        "limits": {
            "maxParticipants": t.max_participants,
            "maxEvents": t.max_events,
        },
        "period": {"start": _iso(t.period_start), "end": _iso(t.period_end)},
        "usage": {
            "credentialsIssued": t.usage.credentials_issued,
            "eventsCreated": t.usage.events_created,
            "participantsAdded": t.usage.participants_added,
        },
        "lifetimeUsage": {
            "credentialsIssued": t.lifetime_usage.credentials_issued,
            "eventsCreated": t.lifetime_usage.events_created,
            "participantsAdded": t.lifetime_usage.participants_added,
        },
    }
