from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from app.core.errors import ValidationFailedError
from app.platform.security.context import Caller


logger = logging.getLogger("app.security.tenancy")


@dataclass(frozen=True, slots=True)
class OrgScope:
    """Effective organization scope for a read or write.

    ``organization_id`` is ``None`` only when the scope is unrestricted.
    """

    organization_id: int | None
    unrestricted: bool = False

    def contains(self, organization_id: int | None) -> bool:
        if self.unrestricted:
            return True
        return organization_id is not None and organization_id == self.organization_id

    def clause(self, column: Any) -> ColumnElement[bool] | None:
        if self.unrestricted:
            return None
        return column == self.organization_id

    def require_single(self) -> int:
        if self.organization_id is None:
            raise ValidationFailedError("organization_id is required for this operation")
        return self.organization_id


def resolve_org_scope(caller: Caller, explicit_org_id: int | None = None) -> OrgScope:
    """Derive the organization scope a caller may query.

    Only platform admins may widen (no explicit org) or redirect (explicit org)
    the scope; everyone else is pinned to their own organization.
    """

    if caller.is_super_admin:
        if explicit_org_id is None:
            return OrgScope(organization_id=None, unrestricted=True)
        return OrgScope(organization_id=explicit_org_id)

    if explicit_org_id is not None and explicit_org_id != caller.organization_id:
        logger.info(
            "tenant_scope_pinned",
            extra={"user_id": caller.user_id, "organization_id": caller.organization_id, "role": caller.role},
        )
    return OrgScope(organization_id=caller.organization_id)


def resolve_write_org(caller: Caller, explicit_org_id: int | None = None) -> int:
    """Resolve the single organization a new record is created in."""

    if caller.is_super_admin and explicit_org_id is not None:
        return explicit_org_id
    return OrgScope(organization_id=caller.organization_id).require_single()


def apply_tenant_filter(query: Select[Any], column: Any, scope: OrgScope) -> Select[Any]:
    clause = scope.clause(column)
    if clause is None:
        return query
    return query.where(clause)
