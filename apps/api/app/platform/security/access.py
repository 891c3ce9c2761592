from __future__ import annotations

import logging
from enum import StrEnum

from app.core.errors import ForbiddenError
from app.metrics import observe_access_denied
from app.platform.security.context import Caller
from app.platform.security.roles import SALES_AGENT, SUPER_ADMIN, RoleCategory


logger = logging.getLogger("app.security.access")


class Operation(StrEnum):
    DELETE_CUSTOMER = "customer.delete"
    ASSIGN_HANDLER = "customer.assign_handler"
    MANAGE_PIPELINE = "pipeline.manage"
    MANAGE_ROLES = "role.manage"
    TARGET_OTHER_ORGANIZATION = "organization.cross_tenant"
    GRANT_PLATFORM_ADMIN = "role.grant_platform_admin"
    LIST_USERS = "user.list"
    CREATE_USER = "user.create"


_ADMINS = frozenset({RoleCategory.PLATFORM, RoleCategory.ORG_ADMIN})
_PLATFORM_ONLY = frozenset({RoleCategory.PLATFORM})

_CATEGORY_GATES: dict[Operation, frozenset[RoleCategory]] = {
    Operation.DELETE_CUSTOMER: _ADMINS,
    Operation.ASSIGN_HANDLER: _ADMINS,
    Operation.MANAGE_PIPELINE: _ADMINS,
    Operation.MANAGE_ROLES: _ADMINS,
    Operation.TARGET_OTHER_ORGANIZATION: _PLATFORM_ONLY,
    Operation.GRANT_PLATFORM_ADMIN: _PLATFORM_ONLY,
    Operation.LIST_USERS: _ADMINS,
    Operation.CREATE_USER: _ADMINS,
}

# Named roles allowed through a gate in addition to the categories above.
_ROLE_GATES: dict[Operation, frozenset[str]] = {
    Operation.ASSIGN_HANDLER: frozenset({SALES_AGENT}),
    Operation.LIST_USERS: frozenset({SALES_AGENT}),
}

_DENIAL_MESSAGES: dict[Operation, str] = {
    Operation.DELETE_CUSTOMER: "Not authorized to delete customers",
    Operation.ASSIGN_HANDLER: "You do not have permission to assign leads",
    Operation.MANAGE_PIPELINE: "Only admins can manage pipeline stages",
    Operation.MANAGE_ROLES: "Only admins can manage roles",
    Operation.TARGET_OTHER_ORGANIZATION: "Only platform administrators can act on another organization",
    Operation.GRANT_PLATFORM_ADMIN: "Only platform administrators can grant or revoke platform administrator access",
    Operation.LIST_USERS: "Not authorized to list users",
    Operation.CREATE_USER: "Not authorized to create users",
}


class AccessDecisionEngine:
    """Single place where role categories are turned into allow/deny decisions.

    Two axes apply to customer-touching operations: the tenant axis, handled by
    ``resolve_org_scope``, and the ownership axis exposed through
    ``ownership_user_id``. Operation gates are evaluated by ``is_allowed``.
    """

    def is_allowed(self, caller: Caller, operation: Operation) -> bool:
        if caller.category in _CATEGORY_GATES[operation]:
            return True
        return caller.role in _ROLE_GATES.get(operation, frozenset())

    def require(self, caller: Caller, operation: Operation) -> None:
        if self.is_allowed(caller, operation):
            return
        self._deny(caller, operation)

    def require_org_target(self, caller: Caller, organization_id: int | None) -> None:
        if organization_id is None or organization_id == caller.organization_id:
            return
        self.require(caller, Operation.TARGET_OTHER_ORGANIZATION)

    def require_role_grant(self, caller: Caller, *role_names: str | None) -> None:
        if SUPER_ADMIN in role_names:
            self.require(caller, Operation.GRANT_PLATFORM_ADMIN)

    def ownership_user_id(self, caller: Caller) -> int | None:
        """User id records must be created by or handled by, or ``None`` when unrestricted."""

        if caller.category == RoleCategory.RESTRICTED:
            return caller.user_id
        return None

    def _deny(self, caller: Caller, operation: Operation) -> None:
        observe_access_denied(operation=operation.value)
        logger.warning(
            "access_denied",
            extra={
                "operation": operation.value,
                "user_id": caller.user_id,
                "organization_id": caller.organization_id,
                "role": caller.role,
            },
        )
        raise ForbiddenError(_DENIAL_MESSAGES[operation])


access_engine = AccessDecisionEngine()
