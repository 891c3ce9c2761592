from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.api.errors import crm_error_response
from app.core.auth import get_current_caller
from app.core.database import get_db
from app.core.errors import CRMError
from app.crm.schemas import (
    CustomerCreate,
    CustomerDetailRead,
    CustomerRead,
    CustomerStatsRead,
    CustomerStatusUpdate,
    CustomerUpdate,
    HandlerAssign,
    InteractionCreate,
    InteractionRead,
    MessageRead,
    PipelineStageCreate,
    PipelineStageRead,
    PipelineStageUpdate,
    StageReorderRequest,
)
from app.crm.service import customer_service, interaction_service, stage_service
from app.platform.security.context import Caller


customers_router = APIRouter(prefix="/api/customers", tags=["customers"])
interactions_router = APIRouter(prefix="/api/interactions", tags=["interactions"])
pipeline_router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


@customers_router.post("", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(
    request: Request,
    dto: CustomerCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> CustomerRead | JSONResponse:
    try:
        return customer_service.create_customer(db, caller, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@customers_router.get("", response_model=list[CustomerRead])
def list_customers(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    handler_id: str | None = Query(default=None, alias="handlerId"),
    search: str | None = Query(default=None),
    organization_id: int | None = Query(default=None, alias="orgId"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> list[CustomerRead] | JSONResponse:
    try:
        return customer_service.list_customers(
            db,
            caller,
            status=status_filter,
            handler_id=handler_id,
            search=search,
            organization_id=organization_id,
        )
    except CRMError as exc:
        return crm_error_response(request, exc)


@customers_router.get("/stats", response_model=CustomerStatsRead)
def customer_stats(
    request: Request,
    organization_id: int | None = Query(default=None, alias="orgId"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> CustomerStatsRead | JSONResponse:
    try:
        return customer_service.stats(db, caller, organization_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@customers_router.get("/{customer_id}", response_model=CustomerDetailRead)
def get_customer(
    request: Request,
    customer_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> CustomerDetailRead | JSONResponse:
    try:
        return customer_service.get_customer(db, caller, customer_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@customers_router.patch("/{customer_id}", response_model=CustomerRead)
def update_customer(
    request: Request,
    customer_id: int,
    dto: CustomerUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> CustomerRead | JSONResponse:
    try:
        return customer_service.update_customer(db, caller, customer_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@customers_router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    request: Request,
    customer_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> Response:
    try:
        customer_service.delete_customer(db, caller, customer_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@customers_router.patch("/{customer_id}/status", response_model=CustomerRead)
def set_customer_status(
    request: Request,
    customer_id: int,
    dto: CustomerStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> CustomerRead | JSONResponse:
    try:
        return customer_service.set_status(db, caller, customer_id, dto.status)
    except CRMError as exc:
        return crm_error_response(request, exc)


@customers_router.post("/{customer_id}/handlers", response_model=CustomerRead)
def assign_handler(
    request: Request,
    customer_id: int,
    dto: HandlerAssign,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> CustomerRead | JSONResponse:
    try:
        return customer_service.assign_handler(db, caller, customer_id, dto.user_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@customers_router.delete("/{customer_id}/handlers/{user_id}", response_model=CustomerRead)
def unassign_handler(
    request: Request,
    customer_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> CustomerRead | JSONResponse:
    try:
        return customer_service.unassign_handler(db, caller, customer_id, user_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@interactions_router.post("", response_model=InteractionRead, status_code=status.HTTP_201_CREATED)
def create_interaction(
    request: Request,
    dto: InteractionCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> InteractionRead | JSONResponse:
    try:
        return interaction_service.create_interaction(db, caller, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@interactions_router.get("/customer/{customer_id}", response_model=list[InteractionRead])
def list_customer_interactions(
    request: Request,
    customer_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> list[InteractionRead] | JSONResponse:
    try:
        return interaction_service.list_for_customer(db, caller, customer_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@interactions_router.delete("/{interaction_id}", response_model=MessageRead)
def delete_interaction(
    request: Request,
    interaction_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> MessageRead | JSONResponse:
    try:
        interaction_service.delete_interaction(db, caller, interaction_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return MessageRead(message="Interaction deleted")


@pipeline_router.get("/stages", response_model=list[PipelineStageRead])
def list_stages(
    request: Request,
    organization_id: int | None = Query(default=None, alias="orgId"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> list[PipelineStageRead] | JSONResponse:
    try:
        return stage_service.list_stages(db, caller, organization_id)
    except CRMError as exc:
        return crm_error_response(request, exc)


@pipeline_router.post("/stages", response_model=PipelineStageRead, status_code=status.HTTP_201_CREATED)
def create_stage(
    request: Request,
    dto: PipelineStageCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> PipelineStageRead | JSONResponse:
    try:
        return stage_service.create_stage(db, caller, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@pipeline_router.patch("/stages/reorder", response_model=list[PipelineStageRead])
def reorder_stages(
    request: Request,
    dto: StageReorderRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> list[PipelineStageRead] | JSONResponse:
    try:
        return stage_service.reorder_stages(db, caller, dto.stages)
    except CRMError as exc:
        return crm_error_response(request, exc)


@pipeline_router.patch("/stages/{stage_id}", response_model=PipelineStageRead)
def update_stage(
    request: Request,
    stage_id: int,
    dto: PipelineStageUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> PipelineStageRead | JSONResponse:
    try:
        return stage_service.update_stage(db, caller, stage_id, dto)
    except CRMError as exc:
        return crm_error_response(request, exc)


@pipeline_router.delete("/stages/{stage_id}", response_model=MessageRead)
def delete_stage(
    request: Request,
    stage_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
) -> MessageRead | JSONResponse:
    try:
        stage_service.delete_stage(db, caller, stage_id)
    except CRMError as exc:
        return crm_error_response(request, exc)
    return MessageRead(message="Stage deleted")
