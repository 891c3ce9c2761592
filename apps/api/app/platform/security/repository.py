from __future__ import annotations

from typing import Any

from sqlalchemy.sql import Select

from app.platform.security.context import Caller
from app.platform.security.tenancy import OrgScope, apply_tenant_filter, resolve_org_scope


class BaseRepository:
    """Tenant-aware query helpers shared by repositories of organization-owned models."""

    model: Any = None

    def resolve_scope(self, caller: Caller, explicit_org_id: int | None = None) -> OrgScope:
        return resolve_org_scope(caller, explicit_org_id)

    def apply_scope_query(self, query: Select[Any], scope: OrgScope) -> Select[Any]:
        return apply_tenant_filter(query, self.model.organization_id, scope)
