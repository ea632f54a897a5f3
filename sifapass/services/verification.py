"""Public verification of credentials by fingerprint.

    verify(fp, caller_ip, principal=None) -> sanitized view

The view is read through the cache (300 s TTL).  Every state transition
calls ``invalidate``, so a revoked credential stops verifying as valid
immediately rather than after the TTL.  A lookup that raced with a
transition re-reads the record after populating the cache and drops the
entry when the status moved underneath it.  Verification never mutates
the credential.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import UUID

from sifapass.core.errors import NotFound
from sifapass.core.metrics import VERIFICATIONS
from sifapass.models.activity import ANONYMOUS
from sifapass.models.credential import VERIFIABLE_STATES, Credential
from sifapass.models.principal import Principal
from sifapass.repos.credential_repo import CredentialRepo
from sifapass.repos.event_repo import EventRepo
from sifapass.repos.participant_repo import ParticipantRepo
from sifapass.services.activity_log import ActivityLog
from sifapass.services.cache import CacheService
from sifapass.services.fingerprint import is_fingerprint
from sifapass.services.webhook_fanout import WebhookFanout

logger = logging.getLogger(__name__)

VERIFY_CACHE_TTL = 300


def cache_key(fingerprint: str) -> str:
    return f"verify:{fingerprint}"


class VerificationService:
    def __init__(
        self,
        credentials: CredentialRepo,
        participants: ParticipantRepo,
        events: EventRepo,
        activity: ActivityLog,
        fanout: WebhookFanout,
        cache: CacheService,
    ) -> None:
        self._credentials = credentials
        self._participants = participants
        self._events = events
        self._activity = activity
        self._fanout = fanout
        self._cache = cache

    async def verify(
        self,
        fingerprint: str,
        caller_ip: str | None,
        principal: Principal | None = None,
    ) -> dict[str, Any]:
        fp = fingerprint.strip().lower()
        entry = await self._lookup(fp)
        if entry is None:
            VERIFICATIONS.labels(outcome="not_found").inc()
            logger.info("Verification miss fp=%s...", fp[:12])
            raise NotFound("Credential not found or not yet issued")

        view = entry["view"]
        tenant_id = UUID(entry["tenantId"])
        credential_id = UUID(view["id"])
        outcome = "valid" if view["valid"] else "revoked"
        VERIFICATIONS.labels(outcome=outcome).inc()

        actor = principal.user_id if principal is not None else (caller_ip or ANONYMOUS)
        await self._activity.record(
            "credential_verified",
            actor,
            {"fingerprint": fp, "outcome": outcome},
            tenant_id=tenant_id,
            credential_id=credential_id,
        )
        await self._fanout.publish(
            tenant_id,
            "credential.verified",
            {
                "credentialId": view["id"],
                "fingerprint": fp,
                "status": view["status"],
                "verifiedBy": actor,
            },
        )
        return view

    async def invalidate(self, fingerprint: str) -> None:
        try:
            await self._cache.delete(cache_key(fingerprint))
        except Exception:
            logger.exception("Failed to invalidate verification cache")

    async def _lookup(self, fp: str) -> dict[str, Any] | None:
        if not is_fingerprint(fp):
            return None
        key = cache_key(fp)
        cached = await self._cache.get(key)
        if cached is not None:
            return json.loads(cached)

        credential = await self._credentials.find_by_fingerprint(fp)
        if credential is None or credential.status not in VERIFIABLE_STATES:
            return None
        entry = {
            "tenantId": str(credential.tenant_id),
            "view": await self._sanitized_view(credential),
        }
        await self._cache.set(key, json.dumps(entry), VERIFY_CACHE_TTL)

        # A transition between the read and the set has already run its
        # invalidation, so the entry just written may be stale.
        current = await self._credentials.find_by_fingerprint(fp)
        if current is None or current.status != credential.status:
            await self.invalidate(fp)
            if current is None or current.status not in VERIFIABLE_STATES:
                return None
            return {
                "tenantId": str(current.tenant_id),
                "view": await self._sanitized_view(current),
            }
        return entry

    async def _sanitized_view(self, c: Credential) -> dict[str, Any]:
        # The snapshot is what the artifact shows; the records are a fallback.
        participant_name = c.participant_data.get("participantName")
        if not participant_name:
            participant = await self._participants.get(c.participant_id)
            participant_name = participant.name if participant else None
        event_title = c.participant_data.get("eventTitle")
        if not event_title:
            event = await self._events.get(c.event_id)
            event_title = event.title if event else None

        view: dict[str, Any] = {
            "id": str(c.id),
            "participantId": str(c.participant_id),
            "eventId": str(c.event_id),
            "title": c.title,
            "type": c.type,
            "participantName": participant_name,
            "eventTitle": event_title,
            "issuedAt": c.issued_at.isoformat() if c.issued_at else None,
            "fingerprint": c.fingerprint,
            "verificationUrl": c.verification_url,
            "qrCode": c.qr_code,
            "status": c.status,
            "valid": c.status == "issued",
        }
        if c.status == "revoked":
            view["revokedAt"] = c.revoked_at.isoformat() if c.revoked_at else None
        return view
