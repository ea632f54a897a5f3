from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from sifapass.api.dependencies import require_principal
from sifapass.api.views import usage_view
from sifapass.core.errors import NotFound
from sifapass.models.principal import Principal
from sifapass.services.container import tenant_repo

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/usage")
async def get_usage(
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    """Credits, plan ceilings and the counters the quota gate enforces."""
    tenant = await tenant_repo.get(principal.tenant_id)
    if tenant is None:
        raise NotFound("Tenant not found")
    return {"success": True, "usage": usage_view(tenant)}
