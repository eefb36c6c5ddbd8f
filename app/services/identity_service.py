from __future__ import annotations

import hashlib
import os

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.domain.errors import AuthError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.domain.models import (
    PasswordResetRequest,
    Permission,
    Role,
    RolePermission,
    Tenant,
    TenantCreate,
    TenantRegisterRequest,
    TenantUpdate,
    User,
    UserCreate,
    UserRole,
    UserTenant,
    UserUpdate,
)
from app.domain.permission_tree import TreeNode, build_tree, reconcile_ids
from app.domain.permissions import DEFAULT_PERMISSIONS, ROLE_SYSADMIN, CallerContext
from app.infra.db import get_engine
from app.infra.logging import get_logger
from app.services.paging import PageQuery, fetch_page

logger = get_logger(__name__)

ROLE_USER = "USER"


class IdentityService:
    """Tenants, users, memberships and the per-request caller resolution."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "console-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _seed_tenant(self, session: Session, tenant: Tenant) -> Role:
        permissions = [
            Permission(tenant_id=tenant.id, code=code, name=name, description=f"default permission {code}")
            for code, name in DEFAULT_PERMISSIONS
        ]
        session.add_all(permissions)
        sysadmin = Role(
            tenant_id=tenant.id,
            code=ROLE_SYSADMIN,
            name="System Administrator",
            description="Full access to all system features",
            is_system=True,
        )
        session.add(sysadmin)
        session.add(
            Role(
                tenant_id=tenant.id,
                code=ROLE_USER,
                name="User",
                description="Regular user role",
            )
        )
        session.flush()
        for permission in permissions:
            session.add(RolePermission(tenant_id=tenant.id, role_id=sysadmin.id, permission_id=permission.id))
        return sysadmin

    def _is_member(self, session: Session, tenant_id: str, user_id: str) -> bool:
        return session.get(UserTenant, (user_id, tenant_id)) is not None

    def _get_member(self, session: Session, tenant_id: str, user_id: str) -> User | None:
        statement = (
            select(User)
            .join(UserTenant, col(UserTenant.user_id) == col(User.id))
            .where(UserTenant.tenant_id == tenant_id)
            .where(User.id == user_id)
        )
        return session.exec(statement).first()

    def _assignable_roles(self, session: Session, tenant_id: str) -> list[Role]:
        statement = select(Role).where(Role.tenant_id == tenant_id).where(col(Role.is_system).is_(False))
        return list(session.exec(statement).all())

    def _user_role_ids(self, session: Session, tenant_id: str, user_id: str) -> set[str]:
        statement = select(UserRole.role_id).where(UserRole.tenant_id == tenant_id).where(UserRole.user_id == user_id)
        return set(session.exec(statement).all())

    def _replace_user_roles(self, session: Session, tenant_id: str, user_id: str, role_ids: list[str]) -> set[str]:
        assignable = self._assignable_roles(session, tenant_id)
        kept = reconcile_ids(assignable, role_ids)
        dropped = set(role_ids) - kept
        if dropped:
            logger.warning("dropped stale role ids tenant=%s user=%s ids=%s", tenant_id, user_id, sorted(dropped))

        # System role links are never edited from here.
        assignable_ids = [role.id for role in assignable]
        session.execute(
            sa.delete(UserRole)
            .where(col(UserRole.tenant_id) == tenant_id)
            .where(col(UserRole.user_id) == user_id)
            .where(col(UserRole.role_id).in_(assignable_ids))
        )
        for role_id in sorted(kept):
            session.add(UserRole(tenant_id=tenant_id, user_id=user_id, role_id=role_id))
        logger.info("user roles replaced tenant=%s user=%s count=%d", tenant_id, user_id, len(kept))
        return kept

    def register_tenant(self, payload: TenantRegisterRequest) -> tuple[Tenant, User]:
        with self._session() as session:
            tenant = Tenant(code=payload.code, name=payload.name, description=payload.description)
            session.add(tenant)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant code already exists") from exc

            sysadmin = self._seed_tenant(session, tenant)
            admin = User(
                tenant_id=tenant.id,
                active_tenant_id=tenant.id,
                username=payload.username,
                password_hash=self._hash_password(payload.password),
                is_active=True,
            )
            session.add(admin)
            session.flush()
            session.add(UserTenant(user_id=admin.id, tenant_id=tenant.id))
            session.add(UserRole(tenant_id=tenant.id, user_id=admin.id, role_id=sysadmin.id))
            session.commit()
            session.refresh(tenant)
            session.refresh(admin)
            logger.info("tenant registered tenant=%s code=%s admin=%s", tenant.id, tenant.code, admin.id)
            return tenant, admin

    def create_tenant(self, caller: CallerContext, payload: TenantCreate) -> Tenant:
        with self._session() as session:
            tenant = Tenant(code=payload.code, name=payload.name, description=payload.description)
            session.add(tenant)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant code already exists") from exc

            sysadmin = self._seed_tenant(session, tenant)
            session.add(UserTenant(user_id=caller.user_id, tenant_id=tenant.id))
            session.add(UserRole(tenant_id=tenant.id, user_id=caller.user_id, role_id=sysadmin.id))
            session.commit()
            session.refresh(tenant)
            logger.info("tenant created tenant=%s code=%s by=%s", tenant.id, tenant.code, caller.user_id)
            return tenant

    def list_tenants(self, caller: CallerContext, query: PageQuery) -> tuple[list[Tenant], int]:
        with self._session() as session:
            statement = (
                select(Tenant)
                .join(UserTenant, col(UserTenant.tenant_id) == col(Tenant.id))
                .where(UserTenant.user_id == caller.user_id)
            )
            return fetch_page(
                session,
                statement,
                query,
                sort_columns={"id": Tenant.id, "code": Tenant.code, "name": Tenant.name, "description": Tenant.description},
                filter_columns=[Tenant.code, Tenant.name, Tenant.description],
                default_sort="code",
            )

    def get_tenant(self, caller: CallerContext, tenant_id: str) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None or not self._is_member(session, tenant_id, caller.user_id):
                raise NotFoundError("tenant not found")
            return tenant

    def update_tenant(self, caller: CallerContext, tenant_id: str, payload: TenantUpdate) -> Tenant:
        if payload.id != tenant_id:
            raise ValidationError("invalid tenant id", field="id")
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None or not self._is_member(session, tenant_id, caller.user_id):
                raise NotFoundError("tenant not found")
            tenant.code = payload.code
            tenant.name = payload.name
            tenant.description = payload.description
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant code already exists") from exc
            session.refresh(tenant)
            return tenant

    def delete_tenant(self, caller: CallerContext, tenant_id: str) -> None:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None or not self._is_member(session, tenant_id, caller.user_id):
                raise NotFoundError("tenant not found")
            if tenant_id == caller.tenant_id:
                raise ConflictError("cannot delete the active tenant")
            home_user = session.exec(select(User.id).where(User.tenant_id == tenant_id)).first()
            if home_user is not None:
                raise ConflictError("tenant still owns users")

            session.execute(sa.delete(UserRole).where(col(UserRole.tenant_id) == tenant_id))
            session.execute(sa.delete(RolePermission).where(col(RolePermission.tenant_id) == tenant_id))
            session.execute(sa.delete(Role).where(col(Role.tenant_id) == tenant_id))
            session.execute(sa.delete(Permission).where(col(Permission.tenant_id) == tenant_id))
            session.execute(sa.delete(UserTenant).where(col(UserTenant.tenant_id) == tenant_id))
            for user in session.exec(select(User).where(User.active_tenant_id == tenant_id)).all():
                user.active_tenant_id = user.tenant_id
                session.add(user)
            session.flush()
            session.delete(tenant)
            session.commit()
            logger.info("tenant deleted tenant=%s by=%s", tenant_id, caller.user_id)

    def validate_tenant_code(self, code: str, exclude_id: str | None = None) -> None:
        with self._session() as session:
            statement = select(Tenant.id).where(Tenant.code == code)
            if exclude_id:
                statement = statement.where(Tenant.id != exclude_id)
            if session.exec(statement).first() is not None:
                raise ValidationError("Tenant code already exists.", field="code")

    def validate_username(self, tenant_id: str, username: str, exclude_id: str | None = None) -> None:
        with self._session() as session:
            statement = select(User.id).where(User.tenant_id == tenant_id).where(User.username == username)
            if exclude_id:
                statement = statement.where(User.id != exclude_id)
            if session.exec(statement).first() is not None:
                raise ValidationError("Username already exists.", field="username")

    def validate_registration_username(self, code: str, username: str) -> None:
        """Public check before ``register_tenant``; the tenant may not exist yet."""
        with self._session() as session:
            statement = (
                select(User.id)
                .join(Tenant, col(Tenant.id) == col(User.tenant_id))
                .where(Tenant.code == code)
                .where(User.username == username)
            )
            if session.exec(statement).first() is not None:
                raise ValidationError("Username already exists.", field="username")

    def list_users(self, tenant_id: str, query: PageQuery) -> tuple[list[User], int]:
        with self._session() as session:
            statement = (
                select(User)
                .join(UserTenant, col(UserTenant.user_id) == col(User.id))
                .where(UserTenant.tenant_id == tenant_id)
            )
            return fetch_page(
                session,
                statement,
                query,
                sort_columns={
                    "id": User.id,
                    "username": User.username,
                    "fullname": User.fullname,
                    "email": User.email,
                },
                filter_columns=[User.username, User.fullname, User.email],
                default_sort="username",
            )

    def create_user(self, tenant_id: str, payload: UserCreate) -> tuple[User, list[Role]]:
        self.validate_username(tenant_id, payload.username)
        with self._session() as session:
            if session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            user = User(
                tenant_id=tenant_id,
                active_tenant_id=tenant_id,
                username=payload.username,
                fullname=payload.fullname,
                email=payload.email,
                password_hash=self._hash_password(payload.password),
                is_active=True,
            )
            session.add(user)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists in tenant") from exc
            session.add(UserTenant(user_id=user.id, tenant_id=tenant_id))
            self._replace_user_roles(session, tenant_id, user.id, payload.role_ids)
            session.commit()
            session.refresh(user)
            return user, self._roles_of(session, tenant_id, user.id)

    def _roles_of(self, session: Session, tenant_id: str, user_id: str) -> list[Role]:
        statement = (
            select(Role)
            .join(UserRole, col(UserRole.role_id) == col(Role.id))
            .where(UserRole.tenant_id == tenant_id)
            .where(UserRole.user_id == user_id)
            .where(Role.tenant_id == tenant_id)
            .order_by(col(Role.code))
        )
        return list(session.exec(statement).all())

    def get_user(self, tenant_id: str, user_id: str) -> tuple[User, list[Role]]:
        with self._session() as session:
            user = self._get_member(session, tenant_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user, self._roles_of(session, tenant_id, user_id)

    def update_user(self, tenant_id: str, user_id: str, payload: UserUpdate) -> tuple[User, list[Role]]:
        if payload.id != user_id:
            raise ValidationError("invalid user id", field="id")
        with self._session() as session:
            user = self._get_member(session, tenant_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if "fullname" in payload.model_fields_set:
                user.fullname = payload.fullname
            if "email" in payload.model_fields_set:
                user.email = payload.email
            if payload.is_active is not None:
                user.is_active = payload.is_active
            session.add(user)
            self._replace_user_roles(session, tenant_id, user_id, payload.role_ids)
            session.commit()
            session.refresh(user)
            return user, self._roles_of(session, tenant_id, user_id)

    def delete_user(self, caller: CallerContext, user_id: str) -> None:
        tenant_id = caller.tenant_id
        if user_id == caller.user_id:
            raise ConflictError("cannot delete the current user")
        with self._session() as session:
            user = self._get_member(session, tenant_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if user.tenant_id == tenant_id:
                session.execute(sa.delete(UserRole).where(col(UserRole.user_id) == user_id))
                session.execute(sa.delete(UserTenant).where(col(UserTenant.user_id) == user_id))
                session.delete(user)
            else:
                # Only the membership in this tenant goes away.
                session.execute(
                    sa.delete(UserRole)
                    .where(col(UserRole.tenant_id) == tenant_id)
                    .where(col(UserRole.user_id) == user_id)
                )
                session.execute(
                    sa.delete(UserTenant)
                    .where(col(UserTenant.tenant_id) == tenant_id)
                    .where(col(UserTenant.user_id) == user_id)
                )
                if user.active_tenant_id == tenant_id:
                    user.active_tenant_id = user.tenant_id
                    session.add(user)
            session.commit()
            logger.info("user removed tenant=%s user=%s by=%s", tenant_id, user_id, caller.user_id)

    def ref_roles(self, tenant_id: str) -> list[Role]:
        with self._session() as session:
            return sorted(self._assignable_roles(session, tenant_id), key=lambda item: (item.code, item.id))

    def role_tree(self, tenant_id: str, user_id: str | None = None) -> tuple[list[TreeNode], list[str]]:
        with self._session() as session:
            roles = self._assignable_roles(session, tenant_id)
            checked: set[str] = set()
            if user_id:
                if self._get_member(session, tenant_id, user_id) is None:
                    raise NotFoundError("user not found")
                checked = self._user_role_ids(session, tenant_id, user_id)
            tree = build_tree(roles, checked, root_name="Roles")
            return tree, sorted(reconcile_ids(roles, checked))

    def list_user_tenants(self, user_id: str) -> list[Tenant]:
        with self._session() as session:
            statement = (
                select(Tenant)
                .join(UserTenant, col(UserTenant.tenant_id) == col(Tenant.id))
                .where(UserTenant.user_id == user_id)
                .order_by(col(Tenant.code))
            )
            return list(session.exec(statement).all())

    def switch_tenant(self, caller: CallerContext, tenant_id: str) -> User:
        with self._session() as session:
            if not self._is_member(session, tenant_id, caller.user_id):
                raise ForbiddenError("not a member of the requested tenant")
            user = session.get(User, caller.user_id)
            if user is None:
                raise AuthError("user not found")
            user.active_tenant_id = tenant_id
            session.add(user)
            session.commit()
            session.refresh(user)
            logger.info("active tenant switched user=%s tenant=%s", user.id, tenant_id)
            return user

    def login(self, tenant_id: str, username: str, password: str) -> User:
        with self._session() as session:
            statement = select(User).where(User.tenant_id == tenant_id).where(User.username == username)
            user = session.exec(statement).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
            if not self._is_member(session, user.active_tenant_id, user.id):
                user.active_tenant_id = user.tenant_id
                session.add(user)
                session.commit()
                session.refresh(user)
            return user

    def reset_password(self, tenant_id: str, user_id: str, payload: PasswordResetRequest) -> User:
        if payload.id != user_id:
            raise ValidationError("invalid user id", field="id")
        if payload.password != payload.confirm_password:
            raise ValidationError("Password confirmation does not match", field="confirmPassword")
        with self._session() as session:
            user = self._get_member(session, tenant_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            # Credentials belong to the home tenant.
            if user.tenant_id != tenant_id:
                raise ForbiddenError("password is managed by the user's home tenant")
            user.password_hash = self._hash_password(payload.password)
            session.add(user)
            session.commit()
            session.refresh(user)
            logger.info("password reset tenant=%s user=%s", tenant_id, user_id)
            return user

    def collect_effective_permissions(self, tenant_id: str, user_id: str) -> tuple[set[str], set[str]]:
        """Role codes and permission codes held by ``user_id`` in ``tenant_id``."""
        with self._session() as session:
            roles = self._roles_of(session, tenant_id, user_id)
            role_codes = {role.code for role in roles}
            role_ids = [role.id for role in roles]
            if not role_ids:
                return role_codes, set()
            statement = (
                select(Permission.code)
                .join(
                    RolePermission,
                    (col(RolePermission.permission_id) == col(Permission.id))
                    & (col(RolePermission.tenant_id) == col(Permission.tenant_id)),
                )
                .where(RolePermission.tenant_id == tenant_id)
                .where(col(RolePermission.role_id).in_(role_ids))
            )
            return role_codes, set(session.exec(statement).all())

    def resolve_caller(self, user_id: str) -> CallerContext:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None or not user.is_active:
                raise AuthError("invalid token")
            tenant_id = user.active_tenant_id
            if not self._is_member(session, tenant_id, user.id):
                tenant_id = user.tenant_id
            username = user.username
        role_codes, permission_codes = self.collect_effective_permissions(tenant_id, user_id)
        return CallerContext(
            user_id=user_id,
            tenant_id=tenant_id,
            username=username,
            role_codes=frozenset(role_codes),
            permission_codes=frozenset(permission_codes),
        )

    def get_profile(self, caller: CallerContext) -> tuple[User, Tenant]:
        with self._session() as session:
            user = session.get(User, caller.user_id)
            tenant = session.get(Tenant, caller.tenant_id)
            if user is None or tenant is None:
                raise AuthError("invalid token")
            return user, tenant
