from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class CustomerCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2)
    email: EmailStr
    phone: str | None = None
    company: str | None = None
    status: str | None = None
    organization_id: int | None = None


class CustomerUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=2)
    email: EmailStr | None = None
    phone: str | None = None
    company: str | None = None
    status: str | None = None


class CustomerStatusUpdate(BaseModel):
    # Optional so a missing value is reported with the allowed vocabulary.
    status: str | None = None


class HandlerAssign(BaseModel):
    user_id: int


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone: str | None
    company: str | None
    status: str
    organization_id: int
    created_by_id: int
    source: str | None
    created_by: UserSummary | None = None
    handlers: list[UserSummary] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class InteractionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    customer_id: int
    type: str = Field(min_length=1, max_length=64)
    details: str | None = None
    date: datetime | None = None


class InteractionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    user_id: int
    type: str
    details: str | None
    date: datetime
    user: UserSummary | None = None
    created_at: datetime


class CustomerDetailRead(CustomerRead):
    interactions: list[InteractionRead] = Field(default_factory=list)


class CustomerStatsRead(BaseModel):
    total: int
    my_leads: int
    stages: dict[str, int]


class PipelineStageCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=128)
    color: str | None = Field(default=None, max_length=32)
    order: int = 0
    organization_id: int | None = None


class PipelineStageUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=128)
    color: str | None = Field(default=None, max_length=32)
    order: int | None = None


class PipelineStageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    color: str | None
    order: int
    created_at: datetime


class StageOrder(BaseModel):
    id: int
    order: int


class StageReorderRequest(BaseModel):
    stages: list[StageOrder]


class MessageRead(BaseModel):
    message: str
