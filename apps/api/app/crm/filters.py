"""Customer visibility filters expressed as a small clause tree.

Every customer query is the conjunction of independent clauses::

    tenant AND ownership AND status AND handler AND search

``ownership`` and ``search`` are each an OR-group internally, but they only
ever meet through the top-level AND, so a search term can narrow what a
restricted caller sees but never widen it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import and_, or_, true
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from app.accounts.models import User
from app.crm.models import Customer
from app.platform.security.tenancy import OrgScope


class Clause(Protocol):
    def to_sql(self) -> ColumnElement[bool]:
        ...


@dataclass(frozen=True, slots=True)
class TenantClause:
    scope: OrgScope

    def to_sql(self) -> ColumnElement[bool]:
        clause = self.scope.clause(Customer.organization_id)
        return true() if clause is None else clause


@dataclass(frozen=True, slots=True)
class OwnershipClause:
    """Records the user created or is connected to as a handler."""

    user_id: int

    def to_sql(self) -> ColumnElement[bool]:
        return or_(
            Customer.created_by_id == self.user_id,
            Customer.handlers.any(User.id == self.user_id),
        )


@dataclass(frozen=True, slots=True)
class HandlerClause:
    user_id: int

    def to_sql(self) -> ColumnElement[bool]:
        return Customer.handlers.any(User.id == self.user_id)


@dataclass(frozen=True, slots=True)
class StatusClause:
    status: str

    def to_sql(self) -> ColumnElement[bool]:
        return Customer.status == self.status


@dataclass(frozen=True, slots=True)
class IdClause:
    customer_id: int

    def to_sql(self) -> ColumnElement[bool]:
        return Customer.id == self.customer_id


@dataclass(frozen=True, slots=True)
class SearchClause:
    """Case-insensitive substring match on name, email or company."""

    term: str

    def to_sql(self) -> ColumnElement[bool]:
        pattern = f"%{self.term}%"
        return or_(
            Customer.name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.company.ilike(pattern),
        )


@dataclass(frozen=True, slots=True)
class CustomerFilter:
    tenant: TenantClause
    ownership: OwnershipClause | None = None
    criteria: tuple[Clause, ...] = field(default_factory=tuple)

    def clauses(self) -> list[Clause]:
        items: list[Clause] = [self.tenant]
        if self.ownership is not None:
            items.append(self.ownership)
        items.extend(self.criteria)
        return items

    def to_sql(self) -> ColumnElement[bool]:
        return and_(*(clause.to_sql() for clause in self.clauses()))

    def narrowed(self, *clauses: Clause) -> CustomerFilter:
        return CustomerFilter(tenant=self.tenant, ownership=self.ownership, criteria=self.criteria + clauses)

    def apply(self, query: Select[Any]) -> Select[Any]:
        return query.where(self.to_sql())
