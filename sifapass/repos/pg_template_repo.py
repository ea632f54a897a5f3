"""PostgreSQL implementation of TemplateRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sifapass.core.errors import Conflict, NotFound
from sifapass.db.tables import TemplateRow
from sifapass.models.page import Page
from sifapass.models.template import DesignTemplate, TemplateVersion


class PgTemplateRepo:
    """Satisfies the TemplateRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, template: DesignTemplate) -> None:
        async with self._sessions.begin() as session:
            session.add(
                TemplateRow(
                    id=template.id,
                    tenant_id=template.tenant_id,
                    name=template.name,
                    type=template.type,
                    design=template.design,
                    version=template.version,
                    history=_history_to_json(template.history),
                    usage_count=template.usage_count,
                    created_at=template.created_at,
                    updated_at=template.updated_at,
                )
            )

    async def get(self, template_id: UUID) -> DesignTemplate | None:
        async with self._sessions() as session:
            row = await session.get(TemplateRow, template_id)
            return _row_to_template(row) if row is not None else None

    async def list_by_tenant(
        self, tenant_id: UUID, limit: int, offset: int
    ) -> Page[DesignTemplate]:
        async with self._sessions() as session:
            total = (
                await session.execute(
                    select(func.count())
                    .select_from(TemplateRow)
                    .where(TemplateRow.tenant_id == tenant_id)
                )
            ).scalar_one()
            rows = (
                await session.execute(
                    select(TemplateRow)
                    .where(TemplateRow.tenant_id == tenant_id)
                    .order_by(TemplateRow.updated_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).scalars()
            return Page(
                items=[_row_to_template(r) for r in rows],
                total=total,
                limit=limit,
                offset=offset,
            )

    async def save_version(
        self, template: DesignTemplate, expected_version: int
    ) -> DesignTemplate:
        stmt = (
            update(TemplateRow)
            .where(
                TemplateRow.id == template.id,
                TemplateRow.version == expected_version,
            )
            .values(
                name=template.name,
                design=template.design,
                version=template.version,
                history=_history_to_json(template.history),
                updated_at=template.updated_at,
            )
        )
        async with self._sessions.begin() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                if await session.get(TemplateRow, template.id) is None:
                    raise NotFound("Template not found")
                raise Conflict("Template was modified concurrently; reload and retry")
        return template

    async def increment_usage(self, template_id: UUID) -> None:
        stmt = (
            update(TemplateRow)
            .where(TemplateRow.id == template_id)
            .values(usage_count=TemplateRow.usage_count + 1)
        )
        async with self._sessions.begin() as session:
            await session.execute(stmt)


def _history_to_json(history: tuple[TemplateVersion, ...]) -> list[dict]:
    return [
        {"version": v.version, "design": v.design, "saved_at": v.saved_at.isoformat()}
        for v in history
    ]


def _row_to_template(row: TemplateRow) -> DesignTemplate:
    return DesignTemplate(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        type=row.type,
        design=row.design,
        version=row.version,
        history=tuple(
            TemplateVersion(
                version=h["version"],
                design=h["design"],
                saved_at=datetime.fromisoformat(h["saved_at"]),
            )
            for h in (row.history or [])
        ),
        usage_count=row.usage_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
