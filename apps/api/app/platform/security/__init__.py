from app.platform.security.access import AccessDecisionEngine, Operation, access_engine
from app.platform.security.context import Caller
from app.platform.security.repository import BaseRepository
from app.platform.security.roles import RoleCategory, categorize_role
from app.platform.security.tenancy import OrgScope, apply_tenant_filter, resolve_org_scope, resolve_write_org

__all__ = [
    "AccessDecisionEngine",
    "BaseRepository",
    "Caller",
    "Operation",
    "OrgScope",
    "RoleCategory",
    "access_engine",
    "apply_tenant_filter",
    "categorize_role",
    "resolve_org_scope",
    "resolve_write_org",
]
