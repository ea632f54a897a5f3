from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from sifapass.core.errors import Forbidden, Unauthenticated
from sifapass.middleware.request_context import tenant_id_var
from sifapass.models.principal import Principal
from sifapass.services import token_service

logger = logging.getLogger(__name__)

# auto_error=False: a missing token must produce our error body, not
# FastAPI's default one.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token", auto_error=False)


def _principal_from_token(raw_token: str) -> Principal:
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise Unauthenticated("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise Unauthenticated("Invalid token") from None

    raw_tenant = claims.get("tenant_id")
    if not raw_tenant:
        logger.warning("Token for user=%s carries no tenant", claims["sub"])
        raise Forbidden("Token is not bound to a tenant")
    try:
        tenant_id = UUID(str(raw_tenant))
    except ValueError:
        raise Forbidden("Token carries an invalid tenant") from None

    tenant_id_var.set(str(tenant_id))
    return Principal(
        user_id=claims["sub"],
        tenant_id=tenant_id,
        roles=frozenset(claims.get("roles", [])),
    )


def require_principal(
    raw_token: Annotated[str | None, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token.  Returns a Principal.

    No token or a bad token is 401.  A valid token without a
    ``tenant_id`` claim is 403: the caller is known but acts for nobody.
    """
    if not raw_token:
        raise Unauthenticated("Missing bearer token")
    principal = _principal_from_token(raw_token)
    logger.debug(
        "Token validated for user=%s tenant=%s",
        principal.user_id,
        principal.tenant_id,
    )
    return principal


def optional_principal(
    raw_token: Annotated[str | None, Depends(oauth2_scheme)],
) -> Principal | None:
    """Like require_principal, but anonymous callers get None.

    A token that is present but invalid is still rejected.
    """
    if not raw_token:
        return None
    return _principal_from_token(raw_token)


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_principal)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise Forbidden("Insufficient permissions")
        return principal

    return _guard


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
