from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload
from starlette.requests import Request

from app.accounts.models import User
from app.authz.models import Role
from app.context import get_correlation_id
from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import UnauthorizedError
from app.platform.security.context import Caller


def issue_access_token(user_id: int, organization_id: int | None, role_name: str) -> str:
    settings = get_settings()
    expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expires_minutes)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "org": organization_id,
        "role": role_name,
        "exp": expires_at,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise UnauthorizedError("Not authorized, token failed") from exc


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header[len("Bearer ") :].strip() if auth_header.startswith("Bearer ") else ""


def load_user(session: Session, user_id: int) -> User | None:
    return session.scalar(
        select(User)
        .options(selectinload(User.role).selectinload(Role.permissions))
        .where(User.id == user_id)
    )


def caller_for_user(user: User) -> Caller:
    return Caller(
        user_id=user.id,
        organization_id=user.organization_id,
        role=user.role.name,
        permissions=frozenset(permission.key for permission in user.role.permissions),
        correlation_id=get_correlation_id(),
    )


def get_current_caller(request: Request, db: Session = Depends(get_db)) -> Caller:
    """Resolve the bearer token into a Caller, reading role and permissions fresh from the database."""

    token = bearer_token(request)
    if not token:
        raise UnauthorizedError("Not authorized, no token")

    payload = decode_access_token(token)
    try:
        user_id = int(payload.get("sub", ""))
    except (TypeError, ValueError) as exc:
        raise UnauthorizedError("Not authorized, token failed") from exc

    user = load_user(db, user_id)
    if user is None:
        raise UnauthorizedError("Not authorized, user not found")

    caller = caller_for_user(user)
    request.state.caller = caller
    return caller
