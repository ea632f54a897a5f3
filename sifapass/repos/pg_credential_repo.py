"""PostgreSQL implementation of CredentialRepo.

``transition`` is a compare-and-set: ``UPDATE ... WHERE id = :id AND
status = :from RETURNING *``.  When no row comes back the current row is
read to tell a missing credential (NotFound) from a lost race (Conflict).
The unique index on ``fingerprint`` rejects duplicate drafts.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sifapass.core.errors import Conflict, InvalidStateTransition, NotFound
from sifapass.db.tables import CredentialRow
from sifapass.models.credential import ATTACHABLE_STATES, Credential, CredentialFilter
from sifapass.models.page import Page
from sifapass.repos.credential_repo import check_transition, transition_changes


class PgCredentialRepo:
    """Satisfies the CredentialRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def create(self, draft: Credential) -> Credential:
        try:
            async with self._sessions.begin() as session:
                session.add(_credential_to_row(draft))
        except IntegrityError:
            raise Conflict(
                "A credential with this fingerprint already exists"
            ) from None
        return draft

    async def get(self, credential_id: UUID) -> Credential | None:
        async with self._sessions() as session:
            row = await session.get(CredentialRow, credential_id)
            return _row_to_credential(row) if row is not None else None

    async def find_by_fingerprint(self, fingerprint: str) -> Credential | None:
        async with self._sessions() as session:
            stmt = select(CredentialRow).where(CredentialRow.fingerprint == fingerprint)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_credential(row) if row is not None else None

    async def transition(
        self, credential_id: UUID, from_status: str, to_status: str
    ) -> Credential:
        check_transition(from_status, to_status)
        changes = transition_changes(to_status, datetime.now(timezone.utc))
        stmt = (
            update(CredentialRow)
            .where(CredentialRow.id == credential_id, CredentialRow.status == from_status)
            .values(**changes)
            .returning(CredentialRow)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is not None:
                return _row_to_credential(row)
            current = await session.get(CredentialRow, credential_id)
            if current is None:
                raise NotFound("Credential not found")
            raise Conflict(
                f"Credential is {current.status}, expected {from_status}",
                currentStatus=current.status,
            )

    async def attach_artifact(
        self, credential_id: UUID, fmt: str, url: str
    ) -> Credential:
        async with self._sessions.begin() as session:
            stmt = (
                select(CredentialRow)
                .where(CredentialRow.id == credential_id)
                .with_for_update()
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise NotFound("Credential not found")
            if row.status not in ATTACHABLE_STATES:
                raise InvalidStateTransition(
                    f"Cannot attach an artifact to a {row.status} credential"
                )
            # Reassign so the JSONB change is flushed.
            row.artifact_urls = {**(row.artifact_urls or {}), fmt: url}
            row.updated_at = datetime.now(timezone.utc)
            await session.flush()
            return _row_to_credential(row)

    async def record_failure(
        self,
        credential_id: UUID,
        code: str,
        message: str,
        detail: dict[str, Any] | None = None,
    ) -> Credential:
        return await self._update(
            credential_id,
            error_code=code,
            error_message=message,
            error_detail=dict(detail) if detail else None,
            updated_at=datetime.now(timezone.utc),
        )

    async def record_download(self, credential_id: UUID) -> Credential:
        return await self._update(
            credential_id,
            download_count=CredentialRow.download_count + 1,
            last_downloaded_at=datetime.now(timezone.utc),
        )

    async def add_share(self, credential_id: UUID, recipients: list[str]) -> Credential:
        async with self._sessions.begin() as session:
            stmt = (
                select(CredentialRow)
                .where(CredentialRow.id == credential_id)
                .with_for_update()
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise NotFound("Credential not found")
            shared = list(row.shared_with or [])
            shared.extend(r for r in recipients if r not in shared)
            row.shared_with = shared
            await session.flush()
            return _row_to_credential(row)

    async def list_by_tenant(
        self,
        tenant_id: UUID,
        flt: CredentialFilter,
        limit: int,
        offset: int,
    ) -> Page[Credential]:
        conditions = [CredentialRow.tenant_id == tenant_id]
        if flt.type is not None:
            conditions.append(CredentialRow.type == flt.type)
        if flt.status is not None:
            conditions.append(CredentialRow.status == flt.status)
        if flt.event_id is not None:
            conditions.append(CredentialRow.event_id == flt.event_id)
        if flt.participant_id is not None:
            conditions.append(CredentialRow.participant_id == flt.participant_id)

        async with self._sessions() as session:
            total = (
                await session.execute(
                    select(func.count()).select_from(CredentialRow).where(*conditions)
                )
            ).scalar_one()
            rows = (
                await session.execute(
                    select(CredentialRow)
                    .where(*conditions)
                    .order_by(CredentialRow.created_at.desc(), CredentialRow.id)
                    .limit(limit)
                    .offset(offset)
                )
            ).scalars()
            return Page(
                items=[_row_to_credential(r) for r in rows],
                total=total,
                limit=limit,
                offset=offset,
            )

    async def count_by_status_and_type(self, tenant_id: UUID) -> dict[tuple[str, str], int]:
        async with self._sessions() as session:
            rows = await session.execute(
                select(CredentialRow.status, CredentialRow.type, func.count())
                .where(CredentialRow.tenant_id == tenant_id)
                .group_by(CredentialRow.status, CredentialRow.type)
            )
            return {(status, type_): n for status, type_, n in rows}

    async def list_stuck_generating(self, older_than: datetime) -> list[Credential]:
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(CredentialRow).where(
                        CredentialRow.status == "generating",
                        CredentialRow.updated_at < older_than,
                    )
                )
            ).scalars()
            return [_row_to_credential(r) for r in rows]

    async def _update(self, credential_id: UUID, **values: Any) -> Credential:
        stmt = (
            update(CredentialRow)
            .where(CredentialRow.id == credential_id)
            .values(**values)
            .returning(CredentialRow)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise NotFound("Credential not found")
            return _row_to_credential(row)


def _credential_to_row(c: Credential) -> CredentialRow:
    return CredentialRow(
        id=c.id,
        tenant_id=c.tenant_id,
        participant_id=c.participant_id,
        event_id=c.event_id,
        template_id=c.template_id,
        title=c.title,
        type=c.type,
        fingerprint=c.fingerprint,
        verification_url=c.verification_url,
        qr_code=c.qr_code,
        status=c.status,
        design=c.design,
        participant_data=dict(c.participant_data),
        artifact_urls=dict(c.artifact_urls),
        issued_by=c.issued_by,
        created_at=c.created_at,
        updated_at=c.updated_at,
        issued_at=c.issued_at,
        revoked_at=c.revoked_at,
        last_downloaded_at=c.last_downloaded_at,
        download_count=c.download_count,
        shared_with=list(c.shared_with),
        error_code=c.error_code,
        error_message=c.error_message,
        error_detail=c.error_detail,
    )


def _row_to_credential(row: CredentialRow) -> Credential:
    return Credential(
        id=row.id,
        tenant_id=row.tenant_id,
        participant_id=row.participant_id,
        event_id=row.event_id,
        title=row.title,
        type=row.type,
        fingerprint=row.fingerprint,
        verification_url=row.verification_url,
        qr_code=row.qr_code,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
        design=row.design,
        participant_data=dict(row.participant_data or {}),
        artifact_urls=dict(row.artifact_urls or {}),
        template_id=row.template_id,
        issued_by=row.issued_by,
        issued_at=row.issued_at,
        revoked_at=row.revoked_at,
        last_downloaded_at=row.last_downloaded_at,
        download_count=row.download_count,
        shared_with=tuple(row.shared_with or ()),
        error_code=row.error_code,
        error_message=row.error_message,
        error_detail=row.error_detail,
    )
