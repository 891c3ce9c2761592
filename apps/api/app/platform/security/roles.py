from __future__ import annotations

from enum import StrEnum


SUPER_ADMIN = "SUPER_ADMIN"
ORG_ADMIN = "ORG_ADMIN"
EMPLOYEE = "EMPLOYEE"
SALES_AGENT = "Sales Agent"

GLOBAL_ROLE_NAMES = (SUPER_ADMIN, ORG_ADMIN, EMPLOYEE)
RESTRICTED_ROLE_NAMES = frozenset({EMPLOYEE, SALES_AGENT})


class RoleCategory(StrEnum):
    PLATFORM = "platform"
    ORG_ADMIN = "org_admin"
    RESTRICTED = "restricted"
    STANDARD = "standard"


def categorize_role(role_name: str | None) -> RoleCategory:
    """Map a role name onto the closed set of categories used by access decisions.

    Non-global roles can never reuse a global role name, so the name alone is
    enough to identify the platform and organization admin roles.
    """

    if role_name == SUPER_ADMIN:
        return RoleCategory.PLATFORM
    if role_name == ORG_ADMIN:
        return RoleCategory.ORG_ADMIN
    if role_name in RESTRICTED_ROLE_NAMES:
        return RoleCategory.RESTRICTED
    return RoleCategory.STANDARD
