from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, EmailStr, Field, StringConstraints


PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2)]


class RegisterRequest(BaseModel):
    name: PersonName
    email: EmailStr
    password: str = Field(min_length=6)
    company_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserCreate(BaseModel):
    name: PersonName
    email: EmailStr
    password: str = Field(min_length=6)
    role_id: int = Field(gt=0)
    organization_id: int | None = None


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    role: str
    role_id: int
    organization_id: int | None


class ProfileRead(BaseModel):
    id: int
    name: str
    email: str
    role: str
    permissions: list[str]
    organization_id: int | None
    organization_name: str | None


class AuthTokenRead(ProfileRead):
    token: str
