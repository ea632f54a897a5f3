from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from sifapass.core.errors import Conflict, NotFound
from sifapass.models.page import Page
from sifapass.models.template import DesignTemplate


class TemplateRepo(Protocol):
    async def add(self, template: DesignTemplate) -> None: ...
    async def get(self, template_id: UUID) -> DesignTemplate | None: ...
    async def list_by_tenant(
        self, tenant_id: UUID, limit: int, offset: int
    ) -> Page[DesignTemplate]: ...
    async def save_version(
        self, template: DesignTemplate, expected_version: int
    ) -> DesignTemplate: ...
    async def increment_usage(self, template_id: UUID) -> None: ...


class InMemoryTemplateRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, DesignTemplate] = {}
        self._lock = threading.Lock()

    async def add(self, template: DesignTemplate) -> None:
        with self._lock:
            self._by_id[template.id] = template

    async def get(self, template_id: UUID) -> DesignTemplate | None:
        return self._by_id.get(template_id)

    async def list_by_tenant(
        self, tenant_id: UUID, limit: int, offset: int
    ) -> Page[DesignTemplate]:
        matching = sorted(
            (t for t in self._by_id.values() if t.tenant_id == tenant_id),
            key=lambda t: t.updated_at,
            reverse=True,
        )
        return Page(
            items=matching[offset : offset + limit],
            total=len(matching),
            limit=limit,
            offset=offset,
        )

    async def save_version(
        self, template: DesignTemplate, expected_version: int
    ) -> DesignTemplate:
        """Store a new version if nobody saved one since ``expected_version``."""
        with self._lock:
            current = self._by_id.get(template.id)
            if current is None:
                raise NotFound("Template not found")
            if current.version != expected_version:
                raise Conflict("Template was modified concurrently; reload and retry")
            self._by_id[template.id] = template
            return template

    async def increment_usage(self, template_id: UUID) -> None:
        with self._lock:
            t = self._by_id.get(template_id)
            if t is not None:
                self._by_id[template_id] = replace(t, usage_count=t.usage_count + 1)

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
