from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from sifapass.api.dependencies import require_principal
from sifapass.api.views import activity_view, page_view
from sifapass.models.activity import ActivityFilter
from sifapass.models.principal import Principal
from sifapass.services.container import activity_log

router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("")
async def list_activity(
    principal: Annotated[Principal, Depends(require_principal)],
    kind: str | None = None,
    credential_id: Annotated[UUID | None, Query(alias="credentialId")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """The tenant's audit trail, newest first."""
    page = await activity_log.query(
        ActivityFilter(
            tenant_id=principal.tenant_id, kind=kind, credential_id=credential_id
        ),
        limit,
        offset,
    )
    return page_view(page, [activity_view(a) for a in page.items])
