from __future__ import annotations

import logging
from collections.abc import Sequence

from opentelemetry import trace
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.accounts.models import User
from app.crm.filters import CustomerFilter, HandlerClause, OwnershipClause, SearchClause, StatusClause, TenantClause
from app.crm.models import CUSTOMER_DEPENDENTS, Customer, Interaction, PipelineStage, customer_handler
from app.crm.repositories import CustomerRepository, PipelineStageRepository
from app.crm.schemas import (
    CustomerCreate,
    CustomerDetailRead,
    CustomerRead,
    CustomerStatsRead,
    CustomerUpdate,
    InteractionCreate,
    InteractionRead,
    PipelineStageCreate,
    PipelineStageRead,
    PipelineStageUpdate,
    StageOrder,
)
from app.core.errors import (
    InvalidStatusError,
    NameConflictError,
    NotFoundError,
    StageInUseError,
    ValidationFailedError,
)
from app.metrics import observe_customer_cascade_delete, observe_status_transition
from app.platform.security.access import Operation, access_engine
from app.platform.security.context import Caller
from app.platform.security.tenancy import resolve_write_org


logger = logging.getLogger("app.crm")
tracer = trace.get_tracer("app.crm")

# Status vocabulary of an organization that has not configured any pipeline stages.
FALLBACK_STATUSES: tuple[str, ...] = ("NEW", "CONTACTED", "QUALIFIED", "PROPOSAL", "WON", "LOST")
DEFAULT_STATUS = "NEW"

_CUSTOMER_LOAD_OPTIONS = (
    selectinload(Customer.created_by),
    selectinload(Customer.handlers),
)


class PipelineStageService:
    def __init__(self, repository: PipelineStageRepository | None = None) -> None:
        self.repository = repository or PipelineStageRepository()

    def list_stages(self, session: Session, caller: Caller, organization_id: int | None = None) -> list[PipelineStageRead]:
        scope = self.repository.resolve_scope(caller, organization_id)
        return [PipelineStageRead.model_validate(stage) for stage in self.repository.list_for_scope(session, scope)]

    def vocabulary(self, session: Session, organization_id: int | None) -> list[str]:
        """Stage names of the organization in display order, or the fallback statuses."""

        if organization_id is None:
            return list(FALLBACK_STATUSES)
        stages = self.repository.list_for_org(session, organization_id)
        if not stages:
            return list(FALLBACK_STATUSES)
        return [stage.name for stage in stages]

    def default_status(self, session: Session, organization_id: int) -> str:
        stages = self.repository.list_for_org(session, organization_id)
        return stages[0].name if stages else DEFAULT_STATUS

    def validate_status(self, session: Session, organization_id: int, status: str | None) -> str:
        allowed = self.vocabulary(session, organization_id)
        if not status or status not in allowed:
            raise InvalidStatusError(status, allowed)
        return status

    def create_stage(self, session: Session, caller: Caller, dto: PipelineStageCreate) -> PipelineStageRead:
        access_engine.require(caller, Operation.MANAGE_PIPELINE)
        organization_id = resolve_write_org(caller, dto.organization_id)

        name = dto.name
        self._ensure_name_free(session, organization_id, name)
        stage = PipelineStage(organization_id=organization_id, name=name, color=dto.color, order=dto.order)
        session.add(stage)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise NameConflictError("A stage with this name already exists", details={"name": name}) from exc
        session.refresh(stage)
        logger.info("pipeline_stage_created", extra={"organization_id": organization_id, "user_id": caller.user_id})
        return PipelineStageRead.model_validate(stage)

    def update_stage(
        self,
        session: Session,
        caller: Caller,
        stage_id: int,
        dto: PipelineStageUpdate,
    ) -> PipelineStageRead:
        access_engine.require(caller, Operation.MANAGE_PIPELINE)
        stage = self.repository.get_in_scope(session, self.repository.resolve_scope(caller), stage_id)
        if stage is None:
            raise NotFoundError("Stage not found or unauthorized")

        try:
            if dto.name is not None and dto.name != stage.name:
                new_name = dto.name
                self._ensure_name_free(session, stage.organization_id, new_name)
                # Customers follow the renamed stage so their status stays in the vocabulary.
                session.execute(
                    update(Customer)
                    .where(Customer.organization_id == stage.organization_id, Customer.status == stage.name)
                    .values(status=new_name)
                )
                stage.name = new_name
            if dto.color is not None:
                stage.color = dto.color
            if dto.order is not None:
                stage.order = dto.order
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(stage)
        return PipelineStageRead.model_validate(stage)

    def delete_stage(self, session: Session, caller: Caller, stage_id: int) -> None:
        access_engine.require(caller, Operation.MANAGE_PIPELINE)
        stage = self.repository.get_in_scope(session, self.repository.resolve_scope(caller), stage_id)
        if stage is None:
            raise NotFoundError("Stage not found or unauthorized")

        in_use = session.scalar(
            select(func.count(Customer.id)).where(
                Customer.organization_id == stage.organization_id,
                Customer.status == stage.name,
            )
        )
        if in_use:
            raise StageInUseError("Cannot delete stage that has leads", details={"customers": in_use})

        session.delete(stage)
        session.commit()

    def reorder_stages(self, session: Session, caller: Caller, items: Sequence[StageOrder]) -> list[PipelineStageRead]:
        """Apply every requested position or none of them."""

        if not items:
            raise ValidationFailedError("At least one stage is required")
        stage_ids = [item.id for item in items]
        duplicates = sorted({stage_id for stage_id in stage_ids if stage_ids.count(stage_id) > 1})
        if duplicates:
            raise ValidationFailedError("Duplicate stage ids", details={"ids": duplicates})

        stages = self.repository.get_many_in_scope(session, self.repository.resolve_scope(caller), stage_ids)
        missing = [stage_id for stage_id in stage_ids if stage_id not in stages]
        if missing:
            raise NotFoundError("Stage not found or unauthorized", details={"ids": missing})

        try:
            for item in items:
                stages[item.id].order = item.order
            session.commit()
        except Exception:
            session.rollback()
            raise

        ordered = sorted(stages.values(), key=lambda stage: (stage.organization_id, stage.order, stage.id))
        return [PipelineStageRead.model_validate(stage) for stage in ordered]

    def _ensure_name_free(self, session: Session, organization_id: int, name: str) -> None:
        if self.repository.find_by_name(session, organization_id, name) is not None:
            raise NameConflictError("A stage with this name already exists", details={"name": name})


class CustomerService:
    def __init__(
        self,
        repository: CustomerRepository | None = None,
        stages: PipelineStageService | None = None,
    ) -> None:
        self.repository = repository or CustomerRepository()
        self.stages = stages or PipelineStageService()

    def create_customer(self, session: Session, caller: Caller, dto: CustomerCreate) -> CustomerRead:
        organization_id = resolve_write_org(caller, dto.organization_id)
        if dto.status:
            status = self.stages.validate_status(session, organization_id, dto.status)
        else:
            status = self.stages.default_status(session, organization_id)

        creator = session.get(User, caller.user_id)
        source_name = (creator.name or creator.email) if creator is not None else None
        customer = Customer(
            name=dto.name,
            email=str(dto.email),
            phone=dto.phone,
            company=dto.company,
            status=status,
            organization_id=organization_id,
            created_by_id=caller.user_id,
            source=f"User: {source_name or 'Unknown User'}",
            handlers=[creator] if creator is not None else [],
        )
        session.add(customer)
        session.commit()
        logger.info(
            "customer_created",
            extra={"organization_id": organization_id, "user_id": caller.user_id, "customer_id": customer.id},
        )
        return CustomerRead.model_validate(self._reload(session, customer.id))

    def list_customers(
        self,
        session: Session,
        caller: Caller,
        *,
        status: str | None = None,
        handler_id: str | None = None,
        search: str | None = None,
        organization_id: int | None = None,
    ) -> list[CustomerRead]:
        scope = self.repository.resolve_scope(caller, organization_id)
        customer_filter = self.repository.build_filter(caller, scope)

        if status and status != "all":
            customer_filter = customer_filter.narrowed(StatusClause(status))
        # Restricted callers are already confined to their own records; a handler filter must not widen that.
        if handler_id and customer_filter.ownership is None:
            customer_filter = customer_filter.narrowed(HandlerClause(self._parse_handler_id(caller, handler_id)))
        if search and search.strip():
            customer_filter = customer_filter.narrowed(SearchClause(search.strip()))

        stmt = (
            customer_filter.apply(select(Customer))
            .options(*_CUSTOMER_LOAD_OPTIONS)
            .order_by(Customer.created_at.desc(), Customer.id.desc())
        )
        return [CustomerRead.model_validate(row) for row in session.scalars(stmt).all()]

    def get_customer(self, session: Session, caller: Caller, customer_id: int) -> CustomerDetailRead:
        customer = self.repository.get_visible(
            session,
            caller,
            customer_id,
            options=(
                *_CUSTOMER_LOAD_OPTIONS,
                selectinload(Customer.interactions).selectinload(Interaction.user),
            ),
        )
        if customer is None:
            raise NotFoundError("Customer not found")
        return CustomerDetailRead.model_validate(customer)

    def update_customer(self, session: Session, caller: Caller, customer_id: int, dto: CustomerUpdate) -> CustomerRead:
        customer = self.repository.get_visible(session, caller, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found or access denied")

        changes = dto.model_dump(exclude_unset=True)
        if "status" in changes:
            changes["status"] = self.stages.validate_status(session, customer.organization_id, changes["status"])
        if changes.get("email") is not None:
            changes["email"] = str(changes["email"])
        for field_name, value in changes.items():
            if field_name in {"name", "email"} and value is None:
                continue
            setattr(customer, field_name, value)

        session.commit()
        return CustomerRead.model_validate(self._reload(session, customer_id))

    def delete_customer(self, session: Session, caller: Caller, customer_id: int) -> None:
        """Remove a customer and every record attached to it in one transaction."""

        access_engine.require(caller, Operation.DELETE_CUSTOMER)
        customer = self.repository.get_in_tenant(session, caller, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        organization_id = customer.organization_id

        try:
            for model in CUSTOMER_DEPENDENTS:
                session.execute(delete(model).where(model.customer_id == customer_id))
            session.execute(delete(customer_handler).where(customer_handler.c.customer_id == customer_id))
            session.execute(delete(Customer).where(Customer.id == customer_id))
            session.commit()
        except Exception:
            session.rollback()
            observe_customer_cascade_delete(outcome="rolled_back")
            logger.error(
                "customer_delete_rolled_back",
                exc_info=True,
                extra={"organization_id": organization_id, "customer_id": customer_id, "user_id": caller.user_id},
            )
            raise

        observe_customer_cascade_delete(outcome="deleted")
        logger.info(
            "customer_deleted",
            extra={"organization_id": organization_id, "customer_id": customer_id, "user_id": caller.user_id},
        )

    def assign_handler(self, session: Session, caller: Caller, customer_id: int, user_id: int) -> CustomerRead:
        customer, handler = self._load_handler_pair(session, caller, customer_id, user_id)
        if handler not in customer.handlers:
            customer.handlers.append(handler)
            session.commit()
        return CustomerRead.model_validate(self._reload(session, customer_id))

    def unassign_handler(self, session: Session, caller: Caller, customer_id: int, user_id: int) -> CustomerRead:
        customer, handler = self._load_handler_pair(session, caller, customer_id, user_id)
        if handler in customer.handlers:
            customer.handlers.remove(handler)
            session.commit()
        return CustomerRead.model_validate(self._reload(session, customer_id))

    def stats(self, session: Session, caller: Caller, organization_id: int | None = None) -> CustomerStatsRead:
        scope = self.repository.resolve_scope(caller, organization_id)
        vocabulary = self.stages.vocabulary(session, scope.organization_id)
        visible = self.repository.build_filter(caller, scope)

        rows = session.execute(
            select(Customer.status, func.count(Customer.id))
            .where(visible.to_sql(), Customer.status.in_(vocabulary))
            .group_by(Customer.status)
        ).all()
        counts = {status: count for status, count in rows}
        stages = {name: counts.get(name, 0) for name in vocabulary}

        mine = CustomerFilter(tenant=TenantClause(scope), ownership=OwnershipClause(caller.user_id))
        my_leads = session.scalar(select(func.count(Customer.id)).where(mine.to_sql())) or 0
        return CustomerStatsRead(total=sum(stages.values()), my_leads=my_leads, stages=stages)

    def set_status(self, session: Session, caller: Caller, customer_id: int, new_status: str | None) -> CustomerRead:
        """Move a customer to any stage of its organization's vocabulary; repeating a move is a no-op."""

        with tracer.start_as_current_span("crm.customer.set_status") as span:
            span.set_attribute("customer_id", customer_id)
            if caller.correlation_id:
                span.set_attribute("correlation_id", caller.correlation_id)

            customer = self.repository.get_visible(session, caller, customer_id)
            if customer is None:
                raise NotFoundError("Lead not found or access denied")

            allowed = self.stages.vocabulary(session, customer.organization_id)
            if not new_status or new_status not in allowed:
                observe_status_transition(outcome="rejected")
                raise InvalidStatusError(new_status, allowed)

            previous = customer.status
            customer.status = new_status
            session.commit()
            span.set_attribute("to_status", new_status)

        observe_status_transition(outcome="applied")
        logger.info(
            "customer_status_changed",
            extra={
                "organization_id": customer.organization_id,
                "customer_id": customer_id,
                "user_id": caller.user_id,
                "from_status": previous,
                "to_status": new_status,
            },
        )
        return CustomerRead.model_validate(self._reload(session, customer_id))

    def _load_handler_pair(self, session: Session, caller: Caller, customer_id: int, user_id: int) -> tuple[Customer, User]:
        access_engine.require(caller, Operation.ASSIGN_HANDLER)
        customer = self.repository.get_visible(session, caller, customer_id, options=(selectinload(Customer.handlers),))
        if customer is None:
            raise NotFoundError("Customer not found")
        handler = session.get(User, user_id)
        if handler is None or handler.organization_id != customer.organization_id:
            raise NotFoundError("User not found")
        return customer, handler

    def _parse_handler_id(self, caller: Caller, raw: str) -> int:
        if raw == "me":
            return caller.user_id
        try:
            return int(raw)
        except ValueError as exc:
            raise ValidationFailedError("handlerId must be an integer or 'me'", details={"handler_id": raw}) from exc

    def _reload(self, session: Session, customer_id: int) -> Customer:
        customer = session.scalar(select(Customer).options(*_CUSTOMER_LOAD_OPTIONS).where(Customer.id == customer_id))
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer


class InteractionService:
    def __init__(self, customers: CustomerRepository | None = None) -> None:
        self.customers = customers or CustomerRepository()

    def create_interaction(self, session: Session, caller: Caller, dto: InteractionCreate) -> InteractionRead:
        if self.customers.get_visible(session, caller, dto.customer_id) is None:
            raise NotFoundError("Customer not found or access denied")

        interaction = Interaction(
            customer_id=dto.customer_id,
            user_id=caller.user_id,
            type=dto.type,
            details=dto.details,
        )
        if dto.date is not None:
            interaction.date = dto.date
        session.add(interaction)
        session.commit()
        session.refresh(interaction)
        return InteractionRead.model_validate(interaction)

    def list_for_customer(self, session: Session, caller: Caller, customer_id: int) -> list[InteractionRead]:
        if self.customers.get_visible(session, caller, customer_id) is None:
            raise NotFoundError("Customer not found or access denied")

        rows = session.scalars(
            select(Interaction)
            .options(selectinload(Interaction.user))
            .where(Interaction.customer_id == customer_id)
            .order_by(Interaction.date.desc(), Interaction.id.desc())
        ).all()
        return [InteractionRead.model_validate(row) for row in rows]

    def delete_interaction(self, session: Session, caller: Caller, interaction_id: int) -> None:
        interaction = session.get(Interaction, interaction_id)
        if interaction is None or self.customers.get_visible(session, caller, interaction.customer_id) is None:
            raise NotFoundError("Interaction not found or unauthorized")

        session.delete(interaction)
        session.commit()


stage_service = PipelineStageService()
customer_service = CustomerService(stages=stage_service)
interaction_service = InteractionService()
