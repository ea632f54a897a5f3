"""Credential issuance, verification and lifecycle endpoints.

- POST /credentials                   issue from an uploaded artifact
- POST /credentials/design            issue by rendering a design (201 even
                                      when rendering fails)
- POST /credentials/batch             issue for many participants
- GET  /credentials/verify?hash=<fp>  public verification
- GET  /credentials                   list the tenant's credentials
- GET  /credentials/stats             counts by status and type
- POST /credentials/designer/preview  render a design with sample data;
                                      nothing is stored, no quota used
- GET  /credentials/{id}
- GET  /credentials/{id}/download     307 to the artifact URL
- POST /credentials/{id}/revoke
- POST /credentials/{id}/regenerate
- POST /credentials/{id}/share
"""

from __future__ import annotations

import base64
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from sifapass.api.dependencies import client_ip, optional_principal, require_principal
from sifapass.api.ratelimit import require_rate_limit
from sifapass.api.views import credential_view, issue_response, page_view
from sifapass.core.errors import ValidationFailed
from sifapass.models.credential import CREDENTIAL_STATUSES, CREDENTIAL_TYPES, CredentialFilter
from sifapass.models.principal import Principal
from sifapass.services.batch import BatchItem, BatchRequest
from sifapass.services.container import batch_issuer, coordinator, verification_service
from sifapass.services.issuance import IssueRequest
from sifapass.services.rate_limiter import BATCH_LIMIT, ISSUE_LIMIT, VERIFY_LIMIT

router = APIRouter(prefix="/credentials", tags=["credentials"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DesignIssueIn(_CamelModel):
    participant_id: UUID = Field(alias="participantId")
    event_id: UUID = Field(alias="eventId")
    title: str = Field(min_length=1, max_length=200)
    type: str = "certificate"
    template_id: UUID | None = Field(default=None, alias="templateId")
    design_data: dict[str, Any] | None = Field(default=None, alias="designData")
    participant_data: dict[str, str] = Field(default_factory=dict, alias="participantData")


class BatchItemIn(_CamelModel):
    participant_id: UUID = Field(alias="participantId")
    participant_data: dict[str, str] = Field(default_factory=dict, alias="participantData")
    item_ref: str | None = Field(default=None, alias="itemRef")


class BatchIssueIn(_CamelModel):
    event_id: UUID = Field(alias="eventId")
    title: str = Field(min_length=1, max_length=200)
    type: str = "certificate"
    template_id: UUID | None = Field(default=None, alias="templateId")
    design_data: dict[str, Any] | None = Field(default=None, alias="designData")
    items: list[BatchItemIn] = Field(min_length=1)


class PreviewIn(_CamelModel):
    design_data: dict[str, Any] | None = Field(default=None, alias="designData")
    template_id: UUID | None = Field(default=None, alias="templateId")
    participant_data: dict[str, str] = Field(default_factory=dict, alias="participantData")
    format: str = "png"


class RevokeIn(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ShareIn(BaseModel):
    recipients: list[str] = Field(min_length=1)
    message: str | None = Field(default=None, max_length=2000)


# --- Public verification (declared before /{credential_id}) ---


@router.get(
    "/verify",
    dependencies=[Depends(require_rate_limit(VERIFY_LIMIT, "verify"))],
)
async def verify_credential(
    request: Request,
    principal: Annotated[Principal | None, Depends(optional_principal)],
    hash: Annotated[str, Query(min_length=1, max_length=128)],
) -> dict:
    view = await verification_service.verify(hash, client_ip(request), principal)
    return {"success": True, "valid": view["valid"], "credential": view}


# --- Issuance ---


@router.post(
    "",
    status_code=201,
    dependencies=[Depends(require_rate_limit(ISSUE_LIMIT, "issue"))],
)
async def issue_uploaded_credential(
    principal: Annotated[Principal, Depends(require_principal)],
    participant_id: Annotated[UUID, Form(alias="participantId")],
    event_id: Annotated[UUID, Form(alias="eventId")],
    title: Annotated[str, Form(min_length=1, max_length=200)],
    file: Annotated[UploadFile, File()],
    type: Annotated[str, Form()] = "certificate",
) -> JSONResponse:
    data = await file.read()
    c = await coordinator.issue_uploaded(
        IssueRequest(
            participant_id=participant_id,
            event_id=event_id,
            title=title,
            type=type,
        ),
        principal,
        data,
        file.content_type,
    )
    return JSONResponse(issue_response(c), status_code=201)


@router.post(
    "/design",
    status_code=201,
    dependencies=[Depends(require_rate_limit(ISSUE_LIMIT, "issue"))],
)
async def issue_designed_credential(
    body: DesignIssueIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> JSONResponse:
    """Render and issue.  A failed render still answers 201 with the record."""
    c = await coordinator.issue(
        IssueRequest(
            participant_id=body.participant_id,
            event_id=body.event_id,
            title=body.title,
            type=body.type,
            template_id=body.template_id,
            design=body.design_data,
            participant_data=body.participant_data,
        ),
        principal,
    )
    return JSONResponse(issue_response(c), status_code=201)


@router.post(
    "/batch",
    dependencies=[Depends(require_rate_limit(BATCH_LIMIT, "batch"))],
)
async def issue_batch(
    body: BatchIssueIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    result = await batch_issuer.issue(
        BatchRequest(
            event_id=body.event_id,
            title=body.title,
            type=body.type,
            template_id=body.template_id,
            design=body.design_data,
            items=tuple(
                BatchItem(
                    participant_id=i.participant_id,
                    participant_data=i.participant_data,
                    item_ref=i.item_ref,
                )
                for i in body.items
            ),
        ),
        principal,
    )
    return {
        "success": not result.failures,
        "successes": [credential_view(c) for c in result.successes],
        "failures": [
            {
                "itemRef": f.item_ref,
                "reason": f.reason,
                "message": f.message,
                "credentialId": str(f.credential_id) if f.credential_id else None,
            }
            for f in result.failures
        ],
    }


# --- Reads ---


@router.get("")
async def list_credentials(
    principal: Annotated[Principal, Depends(require_principal)],
    type: str | None = None,
    status: str | None = None,
    event_id: Annotated[UUID | None, Query(alias="eventId")] = None,
    participant_id: Annotated[UUID | None, Query(alias="participantId")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    if type is not None and type not in CREDENTIAL_TYPES:
        raise ValidationFailed(f"type must be one of {', '.join(CREDENTIAL_TYPES)}")
    if status is not None and status not in CREDENTIAL_STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(CREDENTIAL_STATUSES)}")
    page = await coordinator.list_credentials(
        principal,
        CredentialFilter(
            type=type, status=status, event_id=event_id, participant_id=participant_id
        ),
        limit,
        offset,
    )
    return page_view(page, [credential_view(c) for c in page.items])


@router.get("/stats")
async def credential_stats(
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    return {"success": True, **await coordinator.stats(principal)}


@router.post(
    "/designer/preview",
    dependencies=[Depends(require_rate_limit(ISSUE_LIMIT, "preview"))],
)
async def preview_design(
    body: PreviewIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    artifact = await coordinator.preview(
        principal,
        design=body.design_data,
        template_id=body.template_id,
        participant_data=body.participant_data,
        fmt=body.format.lower(),
    )
    encoded = base64.b64encode(artifact.data).decode("ascii")
    return {
        "success": True,
        "format": artifact.format,
        "mimeType": artifact.mime_type,
        "width": artifact.width,
        "height": artifact.height,
        "preview": f"data:{artifact.mime_type};base64,{encoded}",
    }


@router.get("/{credential_id}")
async def get_credential(
    credential_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    c = await coordinator.get(credential_id, principal)
    return {"success": True, "credential": credential_view(c)}


@router.get("/{credential_id}/download")
async def download_credential(
    credential_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
    format: str = "png",
) -> RedirectResponse:
    url = await coordinator.download(credential_id, format, principal)
    return RedirectResponse(url, status_code=307)


# --- Lifecycle ---


@router.post("/{credential_id}/revoke")
async def revoke_credential(
    credential_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
    body: RevokeIn | None = None,
) -> dict:
    c = await coordinator.revoke(
        credential_id, principal, body.reason if body else None
    )
    return {"success": True, "credential": credential_view(c)}


@router.post(
    "/{credential_id}/regenerate",
    dependencies=[Depends(require_rate_limit(ISSUE_LIMIT, "issue"))],
)
async def regenerate_credential(
    credential_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    c = await coordinator.regenerate(credential_id, principal)
    return issue_response(c)


@router.post("/{credential_id}/share")
async def share_credential(
    credential_id: UUID,
    body: ShareIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict:
    c = await coordinator.share(credential_id, body.recipients, principal, body.message)
    return {"success": True, "credential": credential_view(c)}
