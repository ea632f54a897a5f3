"""Design template endpoints.

Templates are versioned: every PUT stores a new version and pushes the
previous design into a bounded history (last 10).  A PUT names the
version it was edited from; if somebody saved in between, the request
is refused with 409 instead of silently overwriting their change.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from sifapass.api.dependencies import require_principal, require_role
from sifapass.api.views import page_view, template_view
from sifapass.core.errors import NotFound, RenderFailed, ValidationFailed
from sifapass.models.credential import CREDENTIAL_TYPES
from sifapass.models.principal import Principal
from sifapass.models.template import DesignTemplate
from sifapass.services.container import template_repo
from sifapass.services.renderer import parse_design

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/templates", tags=["templates"])


class TemplateCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    type: str = "certificate"
    design: dict[str, Any]


class TemplateUpdateIn(BaseModel):
    design: dict[str, Any]
    version: int = Field(ge=1)
    name: str | None = Field(default=None, min_length=1, max_length=120)


def _validate_design(design: dict[str, Any]) -> None:
    try:
        parse_design(design)
    except RenderFailed as exc:
        raise ValidationFailed(exc.message, field="design") from None


async def _owned_template(template_id: UUID, principal: Principal) -> DesignTemplate:
    t = await template_repo.get(template_id)
    if t is None or t.tenant_id != principal.tenant_id:
        raise NotFound("Template not found")
    return t


@router.post("")
async def create_template(
    body: TemplateCreateIn,
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> JSONResponse:
    if body.type not in CREDENTIAL_TYPES:
        raise ValidationFailed(f"type must be one of {', '.join(CREDENTIAL_TYPES)}")
    _validate_design(body.design)
    t = DesignTemplate.new(
        tenant_id=principal.tenant_id,
        name=body.name.strip(),
        type=body.type,
        design=body.design,
    )
    await template_repo.add(t)
    logger.info("Template created id=%s name=%s", t.id, t.name)
    return JSONResponse({"success": True, "template": template_view(t)}, status_code=201)


@router.get("")
async def list_templates(
    principal: Annotated[Principal, Depends(require_principal)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    page = await template_repo.list_by_tenant(principal.tenant_id, limit, offset)
    return page_view(page, [template_view(t) for t in page.items])


@router.get("/{template_id}")
async def get_template(
    template_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    t = await _owned_template(template_id, principal)
    return {"success": True, "template": template_view(t, with_history=True)}


@router.put("/{template_id}")
async def update_template(
    template_id: UUID,
    body: TemplateUpdateIn,
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> dict:
    current = await _owned_template(template_id, principal)
    _validate_design(body.design)
    updated = await template_repo.save_version(
        current.with_design(body.design, body.name), expected_version=body.version
    )
    logger.info("Template id=%s saved as version %d", updated.id, updated.version)
    return {"success": True, "template": template_view(updated, with_history=True)}
