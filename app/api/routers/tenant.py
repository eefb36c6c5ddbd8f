from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.api.deps import Caller, Paging, require_access, require_roles
from app.domain.models import (
    CodeValidationRequest,
    Page,
    TenantCreate,
    TenantRead,
    TenantUpdate,
    ValidationOk,
)
from app.domain.permissions import PERM_TENANT_EDIT, PERM_TENANT_VIEW, ROLE_SYSADMIN
from app.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


@router.get(
    "",
    response_model=Page[TenantRead],
    dependencies=[Depends(require_access(PERM_TENANT_VIEW))],
)
def list_tenants(caller: Caller, paging: Paging, service: Service) -> Page[TenantRead]:
    tenants, total = service.list_tenants(caller, paging)
    return Page[TenantRead](
        items=[TenantRead.model_validate(item) for item in tenants],
        count=total,
        page=paging.page,
        per_page=paging.per_page,
        sort=paging.sort,
        order=paging.order,
        filter=paging.filter,
    )


@router.post(
    "/add",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_roles(ROLE_SYSADMIN))],
)
def create_tenant(payload: TenantCreate, caller: Caller, service: Service) -> TenantRead:
    return TenantRead.model_validate(service.create_tenant(caller, payload))


@router.post(
    "/validate-code",
    response_model=ValidationOk,
    dependencies=[Depends(require_access(PERM_TENANT_EDIT))],
)
def validate_code(payload: CodeValidationRequest, service: Service) -> ValidationOk:
    service.validate_tenant_code(payload.code, exclude_id=payload.id)
    return ValidationOk(message="Tenant code is valid.")


@router.get(
    "/{tenant_id}",
    response_model=TenantRead,
    dependencies=[Depends(require_access(PERM_TENANT_VIEW))],
)
def get_tenant(tenant_id: str, caller: Caller, service: Service) -> TenantRead:
    return TenantRead.model_validate(service.get_tenant(caller, tenant_id))


@router.put(
    "/{tenant_id}/edit",
    response_model=TenantRead,
    dependencies=[Depends(require_access(PERM_TENANT_EDIT))],
)
def update_tenant(tenant_id: str, payload: TenantUpdate, caller: Caller, service: Service) -> TenantRead:
    return TenantRead.model_validate(service.update_tenant(caller, tenant_id, payload))


@router.delete(
    "/{tenant_id}/delete",
    response_model=ValidationOk,
    dependencies=[Depends(require_roles(ROLE_SYSADMIN))],
)
def delete_tenant(tenant_id: str, caller: Caller, service: Service) -> ValidationOk:
    service.delete_tenant(caller, tenant_id)
    return ValidationOk(message="Tenant deleted successfully")
