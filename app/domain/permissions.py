from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

ROLE_SYSADMIN = "SYSADMIN"

PERM_TENANT_VIEW = "system.tenant.view"
PERM_TENANT_ADD = "system.tenant.add"
PERM_TENANT_EDIT = "system.tenant.edit"
PERM_TENANT_DELETE = "system.tenant.delete"
PERM_USER_VIEW = "system.user.view"
PERM_USER_ADD = "system.user.add"
PERM_USER_EDIT = "system.user.edit"
PERM_USER_DELETE = "system.user.delete"
PERM_ROLE_VIEW = "system.role.view"
PERM_ROLE_ADD = "system.role.add"
PERM_ROLE_EDIT = "system.role.edit"
PERM_ROLE_DELETE = "system.role.delete"
PERM_PERMISSION_VIEW = "system.permission.view"
PERM_PERMISSION_ADD = "system.permission.add"
PERM_PERMISSION_EDIT = "system.permission.edit"
PERM_PERMISSION_DELETE = "system.permission.delete"

# (code, name) seeded into every new tenant's catalog.
DEFAULT_PERMISSIONS: tuple[tuple[str, str], ...] = (
    (PERM_TENANT_VIEW, "View Tenant"),
    (PERM_TENANT_ADD, "Create Tenant"),
    (PERM_TENANT_EDIT, "Edit Tenant"),
    (PERM_TENANT_DELETE, "Delete Tenant"),
    (PERM_USER_VIEW, "View User"),
    (PERM_USER_ADD, "Create User"),
    (PERM_USER_EDIT, "Edit User"),
    (PERM_USER_DELETE, "Delete User"),
    (PERM_ROLE_VIEW, "View Role"),
    (PERM_ROLE_ADD, "Create Role"),
    (PERM_ROLE_EDIT, "Edit Role"),
    (PERM_ROLE_DELETE, "Delete Role"),
    (PERM_PERMISSION_VIEW, "View Permission"),
    (PERM_PERMISSION_ADD, "Create Permission"),
    (PERM_PERMISSION_EDIT, "Edit Permission"),
    (PERM_PERMISSION_DELETE, "Delete Permission"),
)


@dataclass(frozen=True)
class CallerContext:
    """Who is calling and what they hold in their active tenant.

    Built once per request from a tenant-scoped read; never reused across
    requests, so a revoked grant stops working on the next call.
    """

    user_id: str
    tenant_id: str
    username: str = ""
    role_codes: frozenset[str] = field(default_factory=frozenset)
    permission_codes: frozenset[str] = field(default_factory=frozenset)


def is_reserved_role_code(code: str) -> bool:
    return code.strip().upper() == ROLE_SYSADMIN


def authorize(
    caller: CallerContext,
    required_roles: Iterable[str] = (),
    required_permissions: Iterable[str] = (),
) -> bool:
    roles = {item for item in required_roles if item}
    permissions = {item for item in required_permissions if item}
    if not roles and not permissions:
        return True
    if roles and not roles.isdisjoint(caller.role_codes):
        return True
    if permissions and permissions <= caller.permission_codes:
        return True
    return False
