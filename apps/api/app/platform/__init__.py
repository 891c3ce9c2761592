from app.platform.security import (
    AccessDecisionEngine,
    BaseRepository,
    Caller,
    Operation,
    OrgScope,
    access_engine,
    resolve_org_scope,
)

__all__ = [
    "AccessDecisionEngine",
    "BaseRepository",
    "Caller",
    "Operation",
    "OrgScope",
    "access_engine",
    "resolve_org_scope",
]
