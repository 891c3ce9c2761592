from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.accounts.schemas import AuthTokenRead, LoginRequest, ProfileRead, RegisterRequest, UserCreate, UserRead
from app.accounts.service import account_service
from app.api.errors import crm_error_response
from app.core.auth import get_current_caller
from app.core.database import get_db
from app.core.errors import CRMError
from app.platform.security.context import Caller


auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/register", response_model=AuthTokenRead, status_code=status.HTTP_201_CREATED)
def register(
    request: Request,
    dto: RegisterRequest,
    db: Session = Depends(get_db),
) -> AuthTokenRead | JSONResponse:
    try:
        return account_service.register(db, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@auth_router.post("/login", response_model=AuthTokenRead)
def login(
    request: Request,
    dto: LoginRequest,
    db: Session = Depends(get_db),
) -> AuthTokenRead | JSONResponse:
    try:
        return account_service.login(db, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@auth_router.get("/me", response_model=ProfileRead)
def me(
    request: Request,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> ProfileRead | JSONResponse:
    try:
        return account_service.me(db, caller)
    except CRMError as exc:
        return crm_error_response(request, exc)


@auth_router.get("/users", response_model=list[UserRead])
def list_users(
    request: Request,
    organization_id: int | None = Query(default=None, alias="orgId"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> list[UserRead] | JSONResponse:
    try:
        return account_service.list_users(db, caller, organization_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@auth_router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_org_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> UserRead | JSONResponse:
    try:
        return account_service.create_org_user(db, caller, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)
