from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import Caller, Paging, ensure_active_tenant, require_access, require_any_access
from app.domain.models import (
    CodeValidationRequest,
    Page,
    Permission,
    PermissionRead,
    RefItem,
    Role,
    RoleCreate,
    RoleDetailRead,
    RoleRead,
    RoleUpdate,
    TreeResponse,
    ValidationOk,
)
from app.domain.permissions import PERM_ROLE_ADD, PERM_ROLE_DELETE, PERM_ROLE_EDIT, PERM_ROLE_VIEW
from app.services.access_service import AccessService

router = APIRouter()


def get_access_service() -> AccessService:
    return AccessService()


Service = Annotated[AccessService, Depends(get_access_service)]


def _role_detail(role: Role, permissions: list[Permission]) -> RoleDetailRead:
    detail = RoleDetailRead.model_validate(role)
    detail.permissions = [PermissionRead.model_validate(item) for item in permissions]
    detail.permission_ids = sorted(item.id for item in permissions)
    return detail


@router.get(
    "",
    response_model=Page[RoleRead],
    dependencies=[Depends(require_access(PERM_ROLE_VIEW))],
)
def list_roles(caller: Caller, paging: Paging, service: Service) -> Page[RoleRead]:
    roles, total = service.list_roles(caller.tenant_id, paging)
    return Page[RoleRead](
        items=[RoleRead.model_validate(item) for item in roles],
        count=total,
        page=paging.page,
        per_page=paging.per_page,
        sort=paging.sort,
        order=paging.order,
        filter=paging.filter,
    )


@router.get(
    "/ref-permissions",
    response_model=list[RefItem],
    dependencies=[Depends(require_access(PERM_ROLE_VIEW))],
)
def ref_permissions(caller: Caller, service: Service) -> list[RefItem]:
    return [RefItem.model_validate(item) for item in service.ref_permissions(caller.tenant_id)]


@router.get(
    "/permission-tree",
    response_model=TreeResponse,
    dependencies=[Depends(require_access(PERM_ROLE_VIEW))],
)
def permission_tree(
    caller: Caller,
    service: Service,
    role_id: Annotated[str | None, Query(alias="roleId")] = None,
) -> TreeResponse:
    tree, checked_ids = service.permission_tree(caller.tenant_id, role_id)
    return TreeResponse(tree=tree, checked_ids=checked_ids)


@router.post(
    "/add",
    response_model=RoleDetailRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(PERM_ROLE_ADD))],
)
def create_role(payload: RoleCreate, caller: Caller, service: Service) -> RoleDetailRead:
    ensure_active_tenant(caller, payload.tenant_id)
    role, permissions = service.create_role(caller.tenant_id, payload)
    return _role_detail(role, permissions)


@router.post(
    "/validate-code",
    response_model=ValidationOk,
    dependencies=[Depends(require_any_access(PERM_ROLE_ADD, PERM_ROLE_EDIT))],
)
def validate_code(payload: CodeValidationRequest, caller: Caller, service: Service) -> ValidationOk:
    ensure_active_tenant(caller, payload.tenant_id)
    service.validate_role_code(caller.tenant_id, payload.code, exclude_id=payload.id)
    return ValidationOk(message="Role code is valid.")


@router.get(
    "/{role_id}",
    response_model=RoleDetailRead,
    dependencies=[Depends(require_access(PERM_ROLE_VIEW))],
)
def get_role(role_id: str, caller: Caller, service: Service) -> RoleDetailRead:
    role, permissions = service.get_role(caller.tenant_id, role_id)
    return _role_detail(role, permissions)


@router.put(
    "/{role_id}/edit",
    response_model=RoleDetailRead,
    dependencies=[Depends(require_access(PERM_ROLE_EDIT))],
)
def update_role(role_id: str, payload: RoleUpdate, caller: Caller, service: Service) -> RoleDetailRead:
    ensure_active_tenant(caller, payload.tenant_id)
    role, permissions = service.update_role(caller.tenant_id, role_id, payload)
    return _role_detail(role, permissions)


@router.delete(
    "/{role_id}/delete",
    response_model=ValidationOk,
    dependencies=[Depends(require_access(PERM_ROLE_DELETE))],
)
def delete_role(role_id: str, caller: Caller, service: Service) -> ValidationOk:
    service.delete_role(caller.tenant_id, role_id)
    return ValidationOk(message="Role deleted successfully")
