from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.accounts.models import User
from app.authz.models import Permission, Role
from app.authz.schemas import PermissionRead, RoleCreate, RoleRead, RoleUpdate, UserRoleRead, UserRoleUpdate
from app.core.errors import (
    ForbiddenError,
    NameConflictError,
    NotFoundError,
    RoleInUseError,
    ValidationFailedError,
)
from app.platform.security.access import Operation, access_engine
from app.platform.security.context import Caller
from app.platform.security.roles import SUPER_ADMIN
from app.platform.security.tenancy import resolve_org_scope, resolve_write_org


logger = logging.getLogger("app.authz")


class RoleService:
    def list_permissions(self, session: Session) -> list[PermissionRead]:
        rows = session.scalars(select(Permission).order_by(Permission.subject.asc(), Permission.action.asc())).all()
        return [PermissionRead.model_validate(row) for row in rows]

    def list_roles(self, session: Session, caller: Caller, organization_id: int | None = None) -> list[RoleRead]:
        scope = resolve_org_scope(caller, organization_id)
        stmt = select(Role).options(selectinload(Role.permissions))
        if not scope.unrestricted:
            global_clause = Role.is_global.is_(True)
            if not caller.is_super_admin:
                global_clause = global_clause & (Role.name != SUPER_ADMIN)
            stmt = stmt.where(or_(global_clause, Role.organization_id == scope.organization_id))

        roles = session.scalars(stmt.order_by(Role.created_at.asc(), Role.id.asc())).all()
        counts = self._user_counts(session, [role.id for role in roles])
        return [self._to_read(role, counts.get(role.id, 0)) for role in roles]

    def create_role(self, session: Session, caller: Caller, dto: RoleCreate) -> RoleRead:
        access_engine.require(caller, Operation.MANAGE_ROLES)
        access_engine.require_org_target(caller, dto.organization_id)
        organization_id = resolve_write_org(caller, dto.organization_id)

        name = dto.name
        self._ensure_not_global_name(session, name)
        role = Role(
            name=name,
            description=dto.description,
            is_global=False,
            organization_id=organization_id,
            permissions=self._load_permissions(session, dto.permission_ids),
        )
        session.add(role)
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(role)
        logger.info("role_created", extra={"organization_id": organization_id, "user_id": caller.user_id, "role": name})
        return self._to_read(role, 0)

    def update_role(self, session: Session, caller: Caller, role_id: int, dto: RoleUpdate) -> RoleRead:
        access_engine.require(caller, Operation.MANAGE_ROLES)
        role = self._get_mutable_role(session, caller, role_id, verb="modify")

        if dto.name is not None:
            name = dto.name
            self._ensure_not_global_name(session, name)
            role.name = name
        if dto.description is not None:
            role.description = dto.description
        if dto.permission_ids is not None:
            role.permissions = self._load_permissions(session, dto.permission_ids)

        try:
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(role)
        return self._to_read(role, self._user_counts(session, [role.id]).get(role.id, 0))

    def delete_role(self, session: Session, caller: Caller, role_id: int) -> None:
        access_engine.require(caller, Operation.MANAGE_ROLES)
        role = self._get_mutable_role(session, caller, role_id, verb="delete")
        if self._user_counts(session, [role.id]).get(role.id, 0) > 0:
            raise RoleInUseError("Cannot delete a role that is currently assigned to users")

        organization_id = role.organization_id
        session.delete(role)
        session.commit()
        logger.info("role_deleted", extra={"organization_id": organization_id, "user_id": caller.user_id})

    def reassign_user_role(self, session: Session, caller: Caller, dto: UserRoleUpdate) -> UserRoleRead:
        access_engine.require(caller, Operation.MANAGE_ROLES)

        user = session.scalar(select(User).options(selectinload(User.role)).where(User.id == dto.user_id))
        if user is None or not resolve_org_scope(caller).contains(user.organization_id):
            raise NotFoundError("User not found or access denied")
        access_engine.require_role_grant(caller, user.role.name)

        target = session.get(Role, dto.role_id)
        if target is None or (not target.is_global and target.organization_id != user.organization_id):
            raise NotFoundError("Role not found")
        access_engine.require_role_grant(caller, target.name)

        user.role = target
        session.commit()
        logger.info(
            "user_role_reassigned",
            extra={"organization_id": user.organization_id, "user_id": user.id, "role": target.name},
        )
        return UserRoleRead(id=user.id, name=user.name, email=user.email, role=target.name, role_id=target.id)

    def _get_mutable_role(self, session: Session, caller: Caller, role_id: int, *, verb: str) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError("Role not found")
        if role.is_global or (not caller.is_super_admin and role.organization_id != caller.organization_id):
            raise ForbiddenError(f"Cannot {verb} global or unauthorized roles")
        return role

    def _ensure_not_global_name(self, session: Session, name: str) -> None:
        clash = session.scalar(select(Role.id).where(Role.is_global.is_(True), Role.name == name))
        if clash is not None:
            raise NameConflictError("Cannot use a system-reserved role name", details={"name": name})

    def _load_permissions(self, session: Session, permission_ids: Sequence[int]) -> list[Permission]:
        wanted = set(permission_ids)
        if not wanted:
            return []
        rows = session.scalars(
            select(Permission)
            .where(Permission.id.in_(wanted))
            .order_by(Permission.subject.asc(), Permission.action.asc())
        ).all()
        missing = sorted(wanted - {row.id for row in rows})
        if missing:
            raise ValidationFailedError("Unknown permission ids", details={"permission_ids": missing})
        return list(rows)

    def _user_counts(self, session: Session, role_ids: Sequence[int]) -> dict[int, int]:
        if not role_ids:
            return {}
        rows = session.execute(
            select(User.role_id, func.count(User.id)).where(User.role_id.in_(list(role_ids))).group_by(User.role_id)
        ).all()
        return {role_id: count for role_id, count in rows}

    def _to_read(self, role: Role, user_count: int) -> RoleRead:
        return RoleRead.model_validate(role).model_copy(update={"user_count": user_count})


role_service = RoleService()
