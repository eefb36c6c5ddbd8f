from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any, Literal

import jwt
from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.domain.errors import AuthError, ForbiddenError
from app.domain.permissions import ROLE_SYSADMIN, CallerContext, authorize
from app.infra.auth import decode_access_token
from app.infra.logging import get_logger
from app.services.identity_service import IdentityService
from app.services.paging import PageQuery

logger = get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except (jwt.PyJWTError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    if not claims.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    request.state.claims = claims
    return claims


def get_caller(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> CallerContext:
    # Grants are read fresh on every request.
    try:
        caller = IdentityService().resolve_caller(str(claims["sub"]))
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    request.state.caller = caller
    return caller


def require_access(
    *permissions: str,
    roles: tuple[str, ...] = (),
) -> Callable[[CallerContext], CallerContext]:
    """Guard that admits ``SYSADMIN``, any of ``roles``, or holders of all ``permissions``."""
    required_roles = (ROLE_SYSADMIN, *roles)
    required_permissions = tuple(item for item in permissions if item)

    def _checker(
        caller: Annotated[CallerContext, Depends(get_caller)],
    ) -> CallerContext:
        if authorize(caller, required_roles, required_permissions):
            return caller
        logger.info(
            "access denied user=%s tenant=%s roles=%s permissions=%s",
            caller.user_id,
            caller.tenant_id,
            list(required_roles),
            list(required_permissions),
        )
        raise ForbiddenError("You do not have permission to perform this action.")

    return _checker


def require_any_access(*permissions: str) -> Callable[[CallerContext], CallerContext]:
    """Guard that admits ``SYSADMIN`` or holders of at least one of ``permissions``."""
    candidates = tuple(item for item in permissions if item)

    def _checker(
        caller: Annotated[CallerContext, Depends(get_caller)],
    ) -> CallerContext:
        if any(authorize(caller, (ROLE_SYSADMIN,), (item,)) for item in candidates):
            return caller
        logger.info(
            "access denied user=%s tenant=%s any_of=%s",
            caller.user_id,
            caller.tenant_id,
            list(candidates),
        )
        raise ForbiddenError("You do not have permission to perform this action.")

    return _checker


def require_roles(*roles: str) -> Callable[[CallerContext], CallerContext]:
    """Role-only guard; permission codes never satisfy it."""
    expected = tuple(item for item in roles if item)

    def _checker(
        caller: Annotated[CallerContext, Depends(get_caller)],
    ) -> CallerContext:
        if expected and authorize(caller, expected, ()):
            return caller
        logger.info("access denied user=%s tenant=%s roles=%s", caller.user_id, caller.tenant_id, list(expected))
        raise ForbiddenError("You do not have permission to perform this action.")

    return _checker


def ensure_active_tenant(caller: CallerContext, tenant_id: str) -> None:
    if tenant_id != caller.tenant_id:
        raise ForbiddenError("tenant does not match the active tenant")


Caller = Annotated[CallerContext, Depends(get_caller)]


def get_page_query(
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=100, alias="perPage")] = 10,
    sort: str = "",
    order: Literal["asc", "desc"] = "asc",
    filter: str = "",
) -> PageQuery:
    return PageQuery(page=page, per_page=per_page, sort=sort, order=order, filter=filter.strip())


Paging = Annotated[PageQuery, Depends(get_page_query)]
