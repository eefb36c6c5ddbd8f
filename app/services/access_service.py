from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import ConflictError, NotFoundError, ValidationError
from app.domain.models import (
    Permission,
    PermissionCreate,
    PermissionUpdate,
    Role,
    RoleCreate,
    RolePermission,
    RoleUpdate,
    UserRole,
)
from app.domain.permission_tree import TreeNode, build_tree, reconcile_ids
from app.domain.permissions import is_reserved_role_code
from app.infra.db import get_engine
from app.infra.logging import get_logger
from app.services.paging import PageQuery, fetch_page

logger = get_logger(__name__)


class AccessService:
    """Per-tenant permission catalog and roles with their permission grants."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _catalog(self, session: Session, tenant_id: str) -> list[Permission]:
        statement = select(Permission).where(Permission.tenant_id == tenant_id)
        return list(session.exec(statement).all())

    def _get_scoped_permission(self, session: Session, tenant_id: str, permission_id: str) -> Permission | None:
        statement = (
            select(Permission).where(Permission.tenant_id == tenant_id).where(Permission.id == permission_id)
        )
        return session.exec(statement).first()

    def _get_scoped_role(self, session: Session, tenant_id: str, role_id: str) -> Role | None:
        statement = select(Role).where(Role.tenant_id == tenant_id).where(Role.id == role_id)
        return session.exec(statement).first()

    def _get_editable_role(self, session: Session, tenant_id: str, role_id: str) -> Role:
        role = self._get_scoped_role(session, tenant_id, role_id)
        if role is None:
            raise NotFoundError("role not found")
        if role.is_system:
            raise ConflictError("system roles are read-only")
        return role

    def _granted_ids(self, session: Session, tenant_id: str, role_id: str) -> set[str]:
        statement = (
            select(RolePermission.permission_id)
            .where(RolePermission.tenant_id == tenant_id)
            .where(RolePermission.role_id == role_id)
        )
        return set(session.exec(statement).all())

    def _replace_grants(self, session: Session, tenant_id: str, role_id: str, permission_ids: list[str]) -> set[str]:
        kept = reconcile_ids(self._catalog(session, tenant_id), permission_ids)
        dropped = set(permission_ids) - kept
        if dropped:
            logger.warning(
                "dropped stale permission ids tenant=%s role=%s ids=%s", tenant_id, role_id, sorted(dropped)
            )
        session.execute(
            sa.delete(RolePermission)
            .where(col(RolePermission.tenant_id) == tenant_id)
            .where(col(RolePermission.role_id) == role_id)
        )
        for permission_id in sorted(kept):
            session.add(RolePermission(tenant_id=tenant_id, role_id=role_id, permission_id=permission_id))
        logger.info("role grants replaced tenant=%s role=%s count=%d", tenant_id, role_id, len(kept))
        return kept

    def _permissions_of(self, session: Session, tenant_id: str, role_id: str) -> list[Permission]:
        ids = self._granted_ids(session, tenant_id, role_id)
        if not ids:
            return []
        statement = (
            select(Permission)
            .where(Permission.tenant_id == tenant_id)
            .where(col(Permission.id).in_(ids))
            .order_by(col(Permission.code))
        )
        return list(session.exec(statement).all())

    # Permission catalog

    def list_permissions(self, tenant_id: str, query: PageQuery) -> tuple[list[Permission], int]:
        with self._session() as session:
            return fetch_page(
                session,
                select(Permission).where(Permission.tenant_id == tenant_id),
                query,
                sort_columns={
                    "id": Permission.id,
                    "code": Permission.code,
                    "name": Permission.name,
                    "description": Permission.description,
                },
                filter_columns=[Permission.code, Permission.name, Permission.description],
                default_sort="code",
            )

    def get_permission(self, tenant_id: str, permission_id: str) -> Permission:
        with self._session() as session:
            permission = self._get_scoped_permission(session, tenant_id, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            return permission

    def create_permission(self, tenant_id: str, payload: PermissionCreate) -> Permission:
        self.validate_permission_code(tenant_id, payload.code)
        with self._session() as session:
            permission = Permission(
                tenant_id=tenant_id,
                code=payload.code,
                name=payload.name,
                description=payload.description,
            )
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission code already exists in tenant") from exc
            session.refresh(permission)
            return permission

    def update_permission(self, tenant_id: str, permission_id: str, payload: PermissionUpdate) -> Permission:
        if payload.id != permission_id:
            raise ValidationError("invalid permission id", field="id")
        self.validate_permission_code(tenant_id, payload.code, exclude_id=permission_id)
        with self._session() as session:
            permission = self._get_scoped_permission(session, tenant_id, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            permission.code = payload.code
            permission.name = payload.name
            permission.description = payload.description
            session.add(permission)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("permission code already exists in tenant") from exc
            session.refresh(permission)
            return permission

    def delete_permission(self, tenant_id: str, permission_id: str) -> None:
        with self._session() as session:
            permission = self._get_scoped_permission(session, tenant_id, permission_id)
            if permission is None:
                raise NotFoundError("permission not found")
            session.execute(
                sa.delete(RolePermission)
                .where(col(RolePermission.tenant_id) == tenant_id)
                .where(col(RolePermission.permission_id) == permission_id)
            )
            session.delete(permission)
            session.commit()

    def validate_permission_code(self, tenant_id: str, code: str, exclude_id: str | None = None) -> None:
        with self._session() as session:
            statement = select(Permission.id).where(Permission.tenant_id == tenant_id).where(Permission.code == code)
            if exclude_id:
                statement = statement.where(Permission.id != exclude_id)
            if session.exec(statement).first() is not None:
                raise ValidationError("Permission code already exists.", field="code")

    def ref_permissions(self, tenant_id: str) -> list[Permission]:
        with self._session() as session:
            return sorted(self._catalog(session, tenant_id), key=lambda item: (item.code, item.id))

    def permission_tree(self, tenant_id: str, role_id: str | None = None) -> tuple[list[TreeNode], list[str]]:
        with self._session() as session:
            catalog = self._catalog(session, tenant_id)
            checked: set[str] = set()
            if role_id:
                if self._get_scoped_role(session, tenant_id, role_id) is None:
                    raise NotFoundError("role not found")
                checked = self._granted_ids(session, tenant_id, role_id)
            tree = build_tree(catalog, checked)
            return tree, sorted(reconcile_ids(catalog, checked))

    # Roles

    def list_roles(self, tenant_id: str, query: PageQuery) -> tuple[list[Role], int]:
        with self._session() as session:
            statement = select(Role).where(Role.tenant_id == tenant_id).where(col(Role.is_system).is_(False))
            return fetch_page(
                session,
                statement,
                query,
                sort_columns={
                    "id": Role.id,
                    "code": Role.code,
                    "name": Role.name,
                    "description": Role.description,
                },
                filter_columns=[Role.code, Role.name, Role.description],
                default_sort="code",
            )

    def get_role(self, tenant_id: str, role_id: str) -> tuple[Role, list[Permission]]:
        with self._session() as session:
            role = self._get_scoped_role(session, tenant_id, role_id)
            if role is None:
                raise NotFoundError("role not found")
            return role, self._permissions_of(session, tenant_id, role_id)

    def create_role(self, tenant_id: str, payload: RoleCreate) -> tuple[Role, list[Permission]]:
        self.validate_role_code(tenant_id, payload.code)
        with self._session() as session:
            role = Role(tenant_id=tenant_id, code=payload.code, name=payload.name, description=payload.description)
            session.add(role)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role code already exists in tenant") from exc
            self._replace_grants(session, tenant_id, role.id, payload.permission_ids)
            session.commit()
            session.refresh(role)
            return role, self._permissions_of(session, tenant_id, role.id)

    def update_role(self, tenant_id: str, role_id: str, payload: RoleUpdate) -> tuple[Role, list[Permission]]:
        if payload.id != role_id:
            raise ValidationError("invalid role id", field="id")
        self.validate_role_code(tenant_id, payload.code, exclude_id=role_id)
        with self._session() as session:
            role = self._get_editable_role(session, tenant_id, role_id)
            role.code = payload.code
            role.name = payload.name
            role.description = payload.description
            session.add(role)
            self._replace_grants(session, tenant_id, role_id, payload.permission_ids)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("role code already exists in tenant") from exc
            session.refresh(role)
            return role, self._permissions_of(session, tenant_id, role_id)

    def delete_role(self, tenant_id: str, role_id: str) -> None:
        with self._session() as session:
            role = self._get_editable_role(session, tenant_id, role_id)
            session.execute(
                sa.delete(RolePermission)
                .where(col(RolePermission.tenant_id) == tenant_id)
                .where(col(RolePermission.role_id) == role_id)
            )
            session.execute(
                sa.delete(UserRole).where(col(UserRole.tenant_id) == tenant_id).where(col(UserRole.role_id) == role_id)
            )
            session.delete(role)
            session.commit()
            logger.info("role deleted tenant=%s role=%s", tenant_id, role_id)

    def validate_role_code(self, tenant_id: str, code: str, exclude_id: str | None = None) -> None:
        if is_reserved_role_code(code):
            raise ValidationError("Role code is reserved.", field="code")
        with self._session() as session:
            statement = select(Role.id).where(Role.tenant_id == tenant_id).where(Role.code == code)
            if exclude_id:
                statement = statement.where(Role.id != exclude_id)
            if session.exec(statement).first() is not None:
                raise ValidationError("Role code already exists.", field="code")
