from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.api.errors import crm_error_response
from app.authz.schemas import PermissionRead, RoleCreate, RoleRead, RoleUpdate, UserRoleRead, UserRoleUpdate
from app.authz.service import role_service
from app.core.auth import get_current_caller
from app.core.database import get_db
from app.core.errors import CRMError
from app.crm.schemas import MessageRead
from app.platform.security.context import Caller


roles_router = APIRouter(prefix="/api/roles", tags=["roles"])


@roles_router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(
    db: Session = Depends(get_db),
    _caller: Caller = Depends(get_current_caller),
) -> list[PermissionRead]:
    return role_service.list_permissions(db)


@roles_router.patch("/user-role", response_model=UserRoleRead)
def reassign_user_role(
    request: Request,
    dto: UserRoleUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> UserRoleRead | JSONResponse:
    try:
        return role_service.reassign_user_role(db, caller, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@roles_router.get("", response_model=list[RoleRead])
def list_roles(
    request: Request,
    organization_id: int | None = Query(default=None, alias="orgId"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> list[RoleRead] | JSONResponse:
    try:
        return role_service.list_roles(db, caller, organization_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@roles_router.post("", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
def create_role(
    request: Request,
    dto: RoleCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> RoleRead | JSONResponse:
    try:
        return role_service.create_role(db, caller, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@roles_router.patch("/{role_id}", response_model=RoleRead)
def update_role(
    request: Request,
    role_id: int,
    dto: RoleUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> RoleRead | JSONResponse:
    try:
        return role_service.update_role(db, caller, role_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@roles_router.delete("/{role_id}", response_model=MessageRead)
def delete_role(
    request: Request,
    role_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> MessageRead | JSONResponse:
    try:
        role_service.delete_role(db, caller, role_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return MessageRead(message="Role deleted successfully")
