from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.api.deps import Caller, Paging, ensure_active_tenant, require_access, require_any_access
from app.domain.models import (
    CodeValidationRequest,
    Page,
    PermissionCreate,
    PermissionRead,
    PermissionUpdate,
    ValidationOk,
)
from app.domain.permissions import (
    PERM_PERMISSION_ADD,
    PERM_PERMISSION_DELETE,
    PERM_PERMISSION_EDIT,
    PERM_PERMISSION_VIEW,
)
from app.services.access_service import AccessService

router = APIRouter()


def get_access_service() -> AccessService:
    return AccessService()


Service = Annotated[AccessService, Depends(get_access_service)]


@router.get(
    "",
    response_model=Page[PermissionRead],
    dependencies=[Depends(require_access(PERM_PERMISSION_VIEW))],
)
def list_permissions(caller: Caller, paging: Paging, service: Service) -> Page[PermissionRead]:
    permissions, total = service.list_permissions(caller.tenant_id, paging)
    return Page[PermissionRead](
        items=[PermissionRead.model_validate(item) for item in permissions],
        count=total,
        page=paging.page,
        per_page=paging.per_page,
        sort=paging.sort,
        order=paging.order,
        filter=paging.filter,
    )


@router.post(
    "/add",
    response_model=PermissionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_access(PERM_PERMISSION_ADD))],
)
def create_permission(payload: PermissionCreate, caller: Caller, service: Service) -> PermissionRead:
    ensure_active_tenant(caller, payload.tenant_id)
    return PermissionRead.model_validate(service.create_permission(caller.tenant_id, payload))


@router.post(
    "/validate-code",
    response_model=ValidationOk,
    dependencies=[Depends(require_any_access(PERM_PERMISSION_ADD, PERM_PERMISSION_EDIT))],
)
def validate_code(payload: CodeValidationRequest, caller: Caller, service: Service) -> ValidationOk:
    ensure_active_tenant(caller, payload.tenant_id)
    service.validate_permission_code(caller.tenant_id, payload.code, exclude_id=payload.id)
    return ValidationOk(message="Permission code is valid.")


@router.get(
    "/{permission_id}",
    response_model=PermissionRead,
    dependencies=[Depends(require_access(PERM_PERMISSION_VIEW))],
)
def get_permission(permission_id: str, caller: Caller, service: Service) -> PermissionRead:
    return PermissionRead.model_validate(service.get_permission(caller.tenant_id, permission_id))


@router.put(
    "/{permission_id}/edit",
    response_model=PermissionRead,
    dependencies=[Depends(require_access(PERM_PERMISSION_EDIT))],
)
def update_permission(
    permission_id: str,
    payload: PermissionUpdate,
    caller: Caller,
    service: Service,
) -> PermissionRead:
    ensure_active_tenant(caller, payload.tenant_id)
    return PermissionRead.model_validate(service.update_permission(caller.tenant_id, permission_id, payload))


@router.delete(
    "/{permission_id}/delete",
    response_model=ValidationOk,
    dependencies=[Depends(require_access(PERM_PERMISSION_DELETE))],
)
def delete_permission(permission_id: str, caller: Caller, service: Service) -> ValidationOk:
    service.delete_permission(caller.tenant_id, permission_id)
    return ValidationOk(message="Permission deleted successfully")
