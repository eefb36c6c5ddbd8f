from __future__ import annotations

from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, status

from app.api.deps import Caller
from app.domain.errors import AuthError
from app.domain.models import (
    CurrentUserRead,
    LoginRequest,
    RefreshRequest,
    RegistrationUsernameCheckRequest,
    TenantCodeCheckRequest,
    TenantRead,
    TenantRegisterRead,
    TenantRegisterRequest,
    TokenResponse,
    ValidationOk,
)
from app.infra.auth import create_access_token, create_refresh_token, decode_refresh_token
from app.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


@router.post("/register-tenant", response_model=TenantRegisterRead, status_code=status.HTTP_201_CREATED)
def register_tenant(payload: TenantRegisterRequest, service: Service) -> TenantRegisterRead:
    tenant, admin = service.register_tenant(payload)
    return TenantRegisterRead(tenant=TenantRead.model_validate(tenant), user_id=admin.id)


@router.post("/validate-tenantcode", response_model=ValidationOk)
def validate_tenant_code(payload: TenantCodeCheckRequest, service: Service) -> ValidationOk:
    service.validate_tenant_code(payload.code)
    return ValidationOk(message="Tenant code is valid.")


@router.post("/validate-username", response_model=ValidationOk)
def validate_username(payload: RegistrationUsernameCheckRequest, service: Service) -> ValidationOk:
    service.validate_registration_username(payload.code, payload.username)
    return ValidationOk(message="Username is valid.")


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, service: Service) -> TokenResponse:
    user = service.login(payload.tenant_id, payload.username, payload.password)
    return TokenResponse(
        access_token=create_access_token(user_id=user.id, tenant_id=user.active_tenant_id),
        refresh_token=create_refresh_token(user_id=user.id, tenant_id=user.active_tenant_id),
    )


@router.post("/refresh", response_model=TokenResponse)
def refresh(payload: RefreshRequest, service: Service) -> TokenResponse:
    try:
        claims = decode_refresh_token(payload.refresh_token)
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired.") from exc
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid token.") from exc
    # Disabled or removed users lose their refresh tokens too.
    caller = service.resolve_caller(str(claims["sub"]))
    return TokenResponse(access_token=create_access_token(user_id=caller.user_id, tenant_id=caller.tenant_id))


@router.get("/user", response_model=CurrentUserRead)
def current_user(caller: Caller, service: Service) -> CurrentUserRead:
    user, tenant = service.get_profile(caller)
    return CurrentUserRead(
        id=user.id,
        username=user.username,
        fullname=user.fullname,
        active_tenant=TenantRead.model_validate(tenant),
        roles=sorted(caller.role_codes),
        permissions=sorted(caller.permission_codes),
    )
