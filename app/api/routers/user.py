from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import Caller, Paging, ensure_active_tenant, require_access, require_any_access
from app.domain.models import (
    Page,
    PasswordResetRequest,
    RefItem,
    Role,
    SwitchTenantRequest,
    TenantRead,
    TokenResponse,
    TreeResponse,
    User,
    UserCreate,
    UserDetailRead,
    UserRead,
    UsernameValidationRequest,
    UserUpdate,
    ValidationOk,
)
from app.domain.permissions import PERM_USER_ADD, PERM_USER_DELETE, PERM_USER_EDIT, PERM_USER_VIEW
from app.infra.auth import create_access_token, create_refresh_token
from app.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


def _user_detail(user: User, roles: list[Role]) -> UserDetailRead:
    detail = UserDetailRead.model_validate(user)
    detail.roles = [RefItem.model_validate(item) for item in roles]
    detail.role_ids = sorted(item.id for item in roles)
    return detail


@router.get(
    "",
    response_model=Page[UserRead],
    dependencies=[Depends(require_access(PERM_USER_VIEW))],
)
def list_users(caller: Caller, paging: Paging, service: Service) -> Page[UserRead]:
    users, total = service.list_users(caller.tenant_id, paging)
    return Page[UserRead](
        items=[UserRead.model_validate(item) for item in users],
        count=total,
        page=paging.page,
        per_page=paging.per_page,
        sort=paging.sort,
        order=paging.order,
        filter=paging.filter,
    )


@router.get(
    "/ref-roles",
    response_model=list[RefItem],
    dependencies=[Depends(require_access(PERM_USER_VIEW))],
)
def ref_roles(caller: Caller, service: Service) -> list[RefItem]:
    return [RefItem.model_validate(item) for item in service.ref_roles(caller.tenant_id)]


@router.get(
    "/role-tree",
    response_model=TreeResponse,
    dependencies=[Depends(require_access(PERM_USER_VIEW))],
)
def role_tree(
    caller: Caller,
    service: Service,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
) -> TreeResponse:
    tree, checked_ids = service.role_tree(caller.tenant_id, user_id)
    return TreeResponse(tree=tree, checked_ids=checked_ids)


@router.get("/user-tenants", response_model=list[TenantRead])
def user_tenants(caller: Caller, service: Service) -> list[TenantRead]:
    return [TenantRead.model_validate(item) for item in service.list_user_tenants(caller.user_id)]


@router.post("/switch-tenant", response_model=TokenResponse)
def switch_tenant(payload: SwitchTenantRequest, caller: Caller, service: Service) -> TokenResponse:
    user = service.switch_tenant(caller, payload.tenant_id)
    return TokenResponse(
        access_token=create_access_token(user_id=user.id, tenant_id=user.active_tenant_id),
        refresh_token=create_refresh_token(user_id=user.id, tenant_id=user.active_tenant_id),
    )


@router.post(
    "/add",
    response_model=UserDetailRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(PERM_USER_ADD))],
)
def create_user(payload: UserCreate, caller: Caller, service: Service) -> UserDetailRead:
    ensure_active_tenant(caller, payload.tenant_id)
    user, roles = service.create_user(caller.tenant_id, payload)
    return _user_detail(user, roles)


@router.post(
    "/validate-username",
    response_model=ValidationOk,
    dependencies=[Depends(require_any_access(PERM_USER_ADD, PERM_USER_EDIT))],
)
def validate_username(payload: UsernameValidationRequest, caller: Caller, service: Service) -> ValidationOk:
    ensure_active_tenant(caller, payload.tenant_id)
    service.validate_username(caller.tenant_id, payload.username, exclude_id=payload.id)
    return ValidationOk(message="Username is valid.")


@router.get(
    "/{user_id}",
    response_model=UserDetailRead,
    dependencies=[Depends(require_access(PERM_USER_VIEW))],
)
def get_user(user_id: str, caller: Caller, service: Service) -> UserDetailRead:
    user, roles = service.get_user(caller.tenant_id, user_id)
    return _user_detail(user, roles)


@router.put(
    "/{user_id}/edit",
    response_model=UserDetailRead,
    dependencies=[Depends(require_access(PERM_USER_EDIT))],
)
def update_user(user_id: str, payload: UserUpdate, caller: Caller, service: Service) -> UserDetailRead:
    ensure_active_tenant(caller, payload.tenant_id)
    user, roles = service.update_user(caller.tenant_id, user_id, payload)
    return _user_detail(user, roles)


@router.post(
    "/{user_id}/reset-password",
    response_model=UserRead,
    dependencies=[Depends(require_access(PERM_USER_EDIT))],
)
def reset_password(user_id: str, payload: PasswordResetRequest, caller: Caller, service: Service) -> UserRead:
    ensure_active_tenant(caller, payload.tenant_id)
    return UserRead.model_validate(service.reset_password(caller.tenant_id, user_id, payload))


@router.delete(
    "/{user_id}/delete",
    response_model=ValidationOk,
    dependencies=[Depends(require_access(PERM_USER_DELETE))],
)
def delete_user(user_id: str, caller: Caller, service: Service) -> ValidationOk:
    service.delete_user(caller, user_id)
    return ValidationOk(message="User deleted successfully")
