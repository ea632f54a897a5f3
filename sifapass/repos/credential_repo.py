from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from sifapass.core.errors import Conflict, InvalidStateTransition, NotFound
from sifapass.models.credential import (
    ATTACHABLE_STATES,
    Credential,
    CredentialFilter,
    is_legal_transition,
)
from sifapass.models.page import Page


class CredentialRepo(Protocol):
    async def create(self, draft: Credential) -> Credential: ...
    async def get(self, credential_id: UUID) -> Credential | None: ...
    async def find_by_fingerprint(self, fingerprint: str) -> Credential | None: ...
    async def transition(
        self, credential_id: UUID, from_status: str, to_status: str
    ) -> Credential: ...
    async def attach_artifact(
        self, credential_id: UUID, fmt: str, url: str
    ) -> Credential: ...
    async def record_failure(
        self,
        credential_id: UUID,
        code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> Credential: ...
    async def record_download(self, credential_id: UUID) -> Credential: ...
    async def add_share(
        self, credential_id: UUID, recipients: list[str]
    ) -> Credential: ...
    async def list_by_tenant(
        self,
        tenant_id: UUID,
        flt: CredentialFilter,
        limit: int,
        offset: int,
    ) -> Page[Credential]: ...
    async def count_by_status_and_type(
        self, tenant_id: UUID
    ) -> dict[tuple[str, str], int]: ...
    async def list_stuck_generating(self, older_than: datetime) -> list[Credential]: ...


def check_transition(from_status: str, to_status: str) -> None:
    if not is_legal_transition(from_status, to_status):
        raise InvalidStateTransition(
            f"Cannot move a credential from {from_status} to {to_status}",
            fromStatus=from_status,
            toStatus=to_status,
        )


def transition_changes(to_status: str, now: datetime) -> dict[str, Any]:
    """Fields stamped alongside a status change."""
    changes: dict[str, Any] = {"status": to_status, "updated_at": now}
    if to_status == "issued":
        changes["issued_at"] = now
    elif to_status == "revoked":
        changes["revoked_at"] = now
    elif to_status == "generating":
        changes["error_code"] = None
        changes["error_message"] = None
        changes["error_detail"] = None
    return changes


def _matches(c: Credential, tenant_id: UUID, flt: CredentialFilter) -> bool:
    if c.tenant_id != tenant_id:
        return False
    if flt.type is not None and c.type != flt.type:
        return False
    if flt.status is not None and c.status != flt.status:
        return False
    if flt.event_id is not None and c.event_id != flt.event_id:
        return False
    if flt.participant_id is not None and c.participant_id != flt.participant_id:
        return False
    return True


class InMemoryCredentialRepo:
    """Credential store for dev and tests.

    The fingerprint index and the compare-and-set on status are guarded
    by one lock, which gives the same guarantees as the unique index and
    conditional UPDATE in the Postgres repo.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, Credential] = {}
        self._by_fingerprint: dict[str, UUID] = {}
        self._lock = threading.Lock()

    async def create(self, draft: Credential) -> Credential:
        with self._lock:
            if draft.fingerprint in self._by_fingerprint:
                raise Conflict("A credential with this fingerprint already exists")
            if draft.id in self._by_id:
                raise Conflict("A credential with this id already exists")
            self._by_id[draft.id] = draft
            self._by_fingerprint[draft.fingerprint] = draft.id
            return draft

    async def get(self, credential_id: UUID) -> Credential | None:
        return self._by_id.get(credential_id)

    async def find_by_fingerprint(self, fingerprint: str) -> Credential | None:
        cid = self._by_fingerprint.get(fingerprint)
        return self._by_id.get(cid) if cid is not None else None

    async def transition(
        self, credential_id: UUID, from_status: str, to_status: str
    ) -> Credential:
        check_transition(from_status, to_status)
        with self._lock:
            c = self._require(credential_id)
            if c.status != from_status:
                raise Conflict(
                    f"Credential is {c.status}, expected {from_status}",
                    currentStatus=c.status,
                )
            updated = replace(
                c, **transition_changes(to_status, datetime.now(timezone.utc))
            )
            self._by_id[credential_id] = updated
            return updated

    async def attach_artifact(
        self, credential_id: UUID, fmt: str, url: str
    ) -> Credential:
        with self._lock:
            c = self._require(credential_id)
            if c.status not in ATTACHABLE_STATES:
                raise InvalidStateTransition(
                    f"Cannot attach an artifact to a {c.status} credential"
                )
            urls = dict(c.artifact_urls)
            urls[fmt] = url
            updated = replace(
                c, artifact_urls=urls, updated_at=datetime.now(timezone.utc)
            )
            self._by_id[credential_id] = updated
            return updated

    async def record_failure(
        self,
        credential_id: UUID,
        code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> Credential:
        with self._lock:
            c = self._require(credential_id)
            updated = replace(
                c,
                error_code=code,
                error_message=message,
                error_detail=dict(detail) if detail else None,
                updated_at=datetime.now(timezone.utc),
            )
            self._by_id[credential_id] = updated
            return updated

    async def record_download(self, credential_id: UUID) -> Credential:
        with self._lock:
            c = self._require(credential_id)
            updated = replace(
                c,
                download_count=c.download_count + 1,
                last_downloaded_at=datetime.now(timezone.utc),
            )
            self._by_id[credential_id] = updated
            return updated

    async def add_share(self, credential_id: UUID, recipients: list[str]) -> Credential:
        with self._lock:
            c = self._require(credential_id)
            shared = list(c.shared_with)
            for r in recipients:
                if r not in shared:
                    shared.append(r)
            updated = replace(c, shared_with=tuple(shared))
            self._by_id[credential_id] = updated
            return updated

    async def list_by_tenant(
        self,
        tenant_id: UUID,
        flt: CredentialFilter,
        limit: int,
        offset: int,
    ) -> Page[Credential]:
        matching = sorted(
            (c for c in self._by_id.values() if _matches(c, tenant_id, flt)),
            key=lambda c: c.created_at,
            reverse=True,
        )
        return Page(
            items=matching[offset : offset + limit],
            total=len(matching),
            limit=limit,
            offset=offset,
        )

    async def count_by_status_and_type(self, tenant_id: UUID) -> dict[tuple[str, str], int]:
        counts: dict[tuple[str, str], int] = {}
        for c in self._by_id.values():
            if c.tenant_id == tenant_id:
                key = (c.status, c.type)
                counts[key] = counts.get(key, 0) + 1
        return counts

    async def list_stuck_generating(self, older_than: datetime) -> list[Credential]:
        return [
            c
            for c in self._by_id.values()
            if c.status == "generating" and c.updated_at < older_than
        ]

    def _require(self, credential_id: UUID) -> Credential:
        c = self._by_id.get(credential_id)
        if c is None:
            raise NotFound("Credential not found")
        return c

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
            self._by_fingerprint.clear()
