from __future__ import annotations

from datetime import UTC, datetime
from typing import Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.domain.permission_tree import TreeNode


def now_utc() -> datetime:
    return datetime.now(UTC)


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    active_tenant_id: str = Field(foreign_key="tenants.id", index=True)
    username: str = Field(index=True)
    fullname: str | None = None
    email: str | None = None
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserTenant(SQLModel, table=True):
    __tablename__ = "user_tenants"

    user_id: str = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    tenant_id: str = Field(foreign_key="tenants.id", primary_key=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_roles_tenant_code"),
        UniqueConstraint("tenant_id", "id", name="uq_roles_tenant_id_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    code: str = Field(index=True)
    name: str
    description: str | None = None
    is_system: bool = Field(default=False)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_permissions_tenant_code"),
        UniqueConstraint("tenant_id", "id", name="uq_permissions_tenant_id_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    code: str = Field(index=True)
    name: str
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (
        ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        ForeignKeyConstraint(
            ["tenant_id", "role_id"],
            ["roles.tenant_id", "roles.id"],
            ondelete="CASCADE",
        ),
        Index("ix_user_roles_tenant_user", "tenant_id", "user_id"),
        Index("ix_user_roles_tenant_role", "tenant_id", "role_id"),
    )

    tenant_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RolePermission(SQLModel, table=True):
    __tablename__ = "role_permissions"
    __table_args__ = (
        ForeignKeyConstraint(
            ["tenant_id", "role_id"],
            ["roles.tenant_id", "roles.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["tenant_id", "permission_id"],
            ["permissions.tenant_id", "permissions.id"],
            ondelete="CASCADE",
        ),
        Index("ix_role_permissions_tenant_role", "tenant_id", "role_id"),
    )

    tenant_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    permission_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ORMReadModel(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


ItemT = TypeVar("ItemT")


class Page(ApiModel, Generic[ItemT]):
    items: list[ItemT]
    count: int
    page: int
    per_page: int
    sort: str
    order: str
    filter: str


class RefItem(ORMReadModel):
    id: str
    code: str
    name: str


class TenantCreate(ApiModel):
    code: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = None


class TenantUpdate(ApiModel):
    id: str
    code: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = None


class TenantRead(ORMReadModel):
    id: str
    code: str
    name: str
    description: str | None = None
    created_at: datetime


class TenantRegisterRequest(ApiModel):
    code: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = None
    username: str = PydanticField(min_length=1)
    password: str = PydanticField(min_length=6)


class TenantRegisterRead(ApiModel):
    tenant: TenantRead
    user_id: str


class CodeValidationRequest(ApiModel):
    id: str | None = None
    tenant_id: str = PydanticField(min_length=1)
    code: str = PydanticField(min_length=1)


class UsernameValidationRequest(ApiModel):
    id: str | None = None
    tenant_id: str = PydanticField(min_length=1)
    username: str = PydanticField(min_length=1)


class ValidationOk(ApiModel):
    message: str


class PermissionCreate(ApiModel):
    tenant_id: str = PydanticField(min_length=1)
    code: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = PydanticField(default=None, max_length=255)


class PermissionUpdate(PermissionCreate):
    id: str


class PermissionRead(ORMReadModel):
    id: str
    tenant_id: str
    code: str
    name: str
    description: str | None = None
    created_at: datetime


class RoleCreate(ApiModel):
    tenant_id: str = PydanticField(min_length=1)
    code: str = PydanticField(min_length=1)
    name: str = PydanticField(min_length=1)
    description: str | None = None
    permission_ids: list[str] = PydanticField(default_factory=list)


class RoleUpdate(RoleCreate):
    id: str


class RoleRead(ORMReadModel):
    id: str
    tenant_id: str
    code: str
    name: str
    description: str | None = None
    is_system: bool
    created_at: datetime


class RoleDetailRead(RoleRead):
    permissions: list[PermissionRead] = PydanticField(default_factory=list)
    permission_ids: list[str] = PydanticField(default_factory=list)


class UserCreate(ApiModel):
    tenant_id: str = PydanticField(min_length=1)
    username: str = PydanticField(min_length=1, pattern=r"^[^@]+$")
    password: str = PydanticField(min_length=6)
    fullname: str | None = None
    email: str | None = None
    role_ids: list[str] = PydanticField(default_factory=list)


class UserUpdate(ApiModel):
    id: str
    tenant_id: str = PydanticField(min_length=1)
    fullname: str | None = None
    email: str | None = None
    is_active: bool | None = None
    role_ids: list[str] = PydanticField(default_factory=list)


class UserRead(ORMReadModel):
    id: str
    tenant_id: str
    active_tenant_id: str
    username: str
    fullname: str | None = None
    email: str | None = None
    is_active: bool
    created_at: datetime


class UserDetailRead(UserRead):
    roles: list[RefItem] = PydanticField(default_factory=list)
    role_ids: list[str] = PydanticField(default_factory=list)


class SwitchTenantRequest(ApiModel):
    tenant_id: str = PydanticField(min_length=1)


class LoginRequest(ApiModel):
    tenant_id: str
    username: str
    password: str


class TokenResponse(ApiModel):
    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"


class RefreshRequest(ApiModel):
    refresh_token: str = PydanticField(min_length=1)


class TenantCodeCheckRequest(ApiModel):
    code: str = PydanticField(min_length=1)


class RegistrationUsernameCheckRequest(ApiModel):
    code: str = PydanticField(min_length=1)
    username: str = PydanticField(min_length=1, pattern=r"^[^@]+$")


class PasswordResetRequest(ApiModel):
    id: str = PydanticField(min_length=1)
    tenant_id: str = PydanticField(min_length=1)
    password: str = PydanticField(min_length=6)
    confirm_password: str = PydanticField(min_length=1)


class CurrentUserRead(ApiModel):
    id: str
    username: str
    fullname: str | None = None
    active_tenant: TenantRead
    roles: list[str]
    permissions: list[str]


class TreeResponse(ApiModel):
    tree: list[TreeNode]
    checked_ids: list[str]
