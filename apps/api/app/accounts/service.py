from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.accounts.models import Organization, User
from app.accounts.schemas import AuthTokenRead, LoginRequest, ProfileRead, RegisterRequest, UserCreate, UserRead
from app.authz.models import Role
from app.core.auth import issue_access_token, load_user
from app.core.errors import EmailConflictError, NotFoundError, UnauthorizedError
from app.core.security import hash_password, verify_password
from app.platform.security.access import Operation, access_engine
from app.platform.security.context import Caller
from app.platform.security.roles import ORG_ADMIN
from app.platform.security.tenancy import apply_tenant_filter, resolve_org_scope, resolve_write_org


logger = logging.getLogger("app.accounts")


def _profile(user: User) -> ProfileRead:
    return ProfileRead(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role.name,
        permissions=[permission.key for permission in user.role.permissions],
        organization_id=user.organization_id,
        organization_name=user.organization.name if user.organization is not None else None,
    )


def _user_read(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role.name,
        role_id=user.role_id,
        organization_id=user.organization_id,
    )


class AccountService:
    def register(self, session: Session, dto: RegisterRequest) -> AuthTokenRead:
        """Create an organization together with its first user, who becomes ORG_ADMIN."""

        email = str(dto.email)
        self._ensure_email_free(session, email)
        admin_role = session.scalar(select(Role).where(Role.name == ORG_ADMIN, Role.is_global.is_(True)))
        if admin_role is None:
            raise NotFoundError("ORG_ADMIN role is not provisioned")

        organization = Organization(name=dto.company_name)
        session.add(organization)
        try:
            session.flush()
            user = User(
                name=dto.name,
                email=email,
                password_hash=hash_password(dto.password),
                organization_id=organization.id,
                role_id=admin_role.id,
            )
            session.add(user)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise EmailConflictError("User already exists") from exc
        except Exception:
            session.rollback()
            raise

        logger.info("organization_registered", extra={"organization_id": organization.id, "user_id": user.id})
        return self._token_for(session, user.id)

    def login(self, session: Session, dto: LoginRequest) -> AuthTokenRead:
        user = session.scalar(select(User).where(User.email == str(dto.email)))
        if user is None or not verify_password(dto.password, user.password_hash):
            raise UnauthorizedError("Invalid email or password")
        return self._token_for(session, user.id)

    def me(self, session: Session, caller: Caller) -> ProfileRead:
        user = load_user(session, caller.user_id)
        if user is None:
            raise NotFoundError("User not found")
        return _profile(user)

    def list_users(self, session: Session, caller: Caller, organization_id: int | None = None) -> list[UserRead]:
        access_engine.require(caller, Operation.LIST_USERS)
        scope = resolve_org_scope(caller, organization_id)
        stmt = apply_tenant_filter(select(User).options(selectinload(User.role)), User.organization_id, scope)
        return [_user_read(user) for user in session.scalars(stmt.order_by(User.id.asc())).all()]

    def create_org_user(self, session: Session, caller: Caller, dto: UserCreate) -> UserRead:
        access_engine.require(caller, Operation.CREATE_USER)
        organization_id = resolve_write_org(caller, dto.organization_id)

        email = str(dto.email)
        self._ensure_email_free(session, email)
        role = session.get(Role, dto.role_id)
        if role is None or (not role.is_global and role.organization_id != organization_id):
            raise NotFoundError("Role not found")
        access_engine.require_role_grant(caller, role.name)

        user = User(
            name=dto.name,
            email=email,
            password_hash=hash_password(dto.password),
            organization_id=organization_id,
            role_id=role.id,
        )
        session.add(user)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise EmailConflictError("User already exists") from exc

        session.refresh(user)
        logger.info(
            "user_created",
            extra={"organization_id": organization_id, "user_id": caller.user_id, "role": role.name},
        )
        return _user_read(user)

    def _ensure_email_free(self, session: Session, email: str) -> None:
        if session.scalar(select(User.id).where(User.email == email)) is not None:
            raise EmailConflictError("User already exists", details={"email": email})

    def _token_for(self, session: Session, user_id: int) -> AuthTokenRead:
        user = load_user(session, user_id)
        if user is None:
            raise NotFoundError("User not found")
        profile = _profile(user)
        token = issue_access_token(user.id, user.organization_id, user.role.name)
        return AuthTokenRead(**profile.model_dump(), token=token)


account_service = AccountService()
