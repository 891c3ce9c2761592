from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.interfaces import LoaderOption

from app.crm.filters import Clause, CustomerFilter, IdClause, OwnershipClause, TenantClause
from app.crm.models import Customer, PipelineStage
from app.platform.security.access import access_engine
from app.platform.security.context import Caller
from app.platform.security.repository import BaseRepository
from app.platform.security.tenancy import OrgScope


class CustomerRepository(BaseRepository):
    model = Customer

    def build_filter(self, caller: Caller, scope: OrgScope, *criteria: Clause) -> CustomerFilter:
        owner_id = access_engine.ownership_user_id(caller)
        ownership = OwnershipClause(owner_id) if owner_id is not None else None
        return CustomerFilter(tenant=TenantClause(scope), ownership=ownership, criteria=tuple(criteria))

    def get_visible(
        self,
        session: Session,
        caller: Caller,
        customer_id: int,
        options: Sequence[LoaderOption] = (),
    ) -> Customer | None:
        """Load a customer only when both the tenant and ownership axes allow it."""

        customer_filter = self.build_filter(caller, self.resolve_scope(caller), IdClause(customer_id))
        return session.scalar(customer_filter.apply(select(Customer)).options(*options))

    def get_in_tenant(self, session: Session, caller: Caller, customer_id: int) -> Customer | None:
        query = self.apply_scope_query(select(Customer).where(Customer.id == customer_id), self.resolve_scope(caller))
        return session.scalar(query)


class PipelineStageRepository(BaseRepository):
    model = PipelineStage

    def list_for_scope(self, session: Session, scope: OrgScope) -> list[PipelineStage]:
        query = self.apply_scope_query(select(PipelineStage), scope)
        return list(session.scalars(query.order_by(PipelineStage.order.asc(), PipelineStage.id.asc())).all())

    def list_for_org(self, session: Session, organization_id: int) -> list[PipelineStage]:
        return self.list_for_scope(session, OrgScope(organization_id=organization_id))

    def get_in_scope(self, session: Session, scope: OrgScope, stage_id: int) -> PipelineStage | None:
        query = self.apply_scope_query(select(PipelineStage).where(PipelineStage.id == stage_id), scope)
        return session.scalar(query)

    def get_many_in_scope(self, session: Session, scope: OrgScope, stage_ids: Sequence[int]) -> dict[int, PipelineStage]:
        query: Any = self.apply_scope_query(select(PipelineStage).where(PipelineStage.id.in_(list(stage_ids))), scope)
        return {stage.id: stage for stage in session.scalars(query).all()}

    def find_by_name(self, session: Session, organization_id: int, name: str) -> PipelineStage | None:
        return session.scalar(
            select(PipelineStage).where(
                PipelineStage.organization_id == organization_id,
                PipelineStage.name == name,
            )
        )
