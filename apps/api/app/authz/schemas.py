from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    subject: str
    key: str


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=128)
    description: str | None = None
    permission_ids: list[int] = Field(default_factory=list)
    organization_id: int | None = None


class RoleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    permission_ids: list[int] | None = None


class RoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    is_global: bool
    organization_id: int | None
    permissions: list[PermissionRead]
    user_count: int = 0
    created_at: datetime


class UserRoleUpdate(BaseModel):
    user_id: int
    role_id: int


class UserRoleRead(BaseModel):
    id: int
    name: str
    email: str
    role: str
    role_id: int
