from __future__ import annotations

import logging

import pytest
from prometheus_client import REGISTRY

from app.core.errors import ForbiddenError
from app.platform.security.access import Operation, access_engine
from app.platform.security.context import Caller
from app.platform.security.roles import RoleCategory, categorize_role


def _caller(role: str, organization_id: int | None = 1, user_id: int = 7) -> Caller:
    return Caller(user_id=user_id, organization_id=organization_id, role=role)


def _denied_count(operation: Operation) -> float:
    return REGISTRY.get_sample_value("access_denied_total", {"operation": operation.value}) or 0.0


@pytest.mark.parametrize(
    ("role", "category"),
    [
        ("SUPER_ADMIN", RoleCategory.PLATFORM),
        ("ORG_ADMIN", RoleCategory.ORG_ADMIN),
        ("EMPLOYEE", RoleCategory.RESTRICTED),
        ("Sales Agent", RoleCategory.RESTRICTED),
        ("Account Manager", RoleCategory.STANDARD),
    ],
)
def test_role_category_is_derived_from_name(role: str, category: RoleCategory) -> None:
    assert categorize_role(role) == category
    assert _caller(role).category == category


def test_delete_customer_is_limited_to_admins() -> None:
    assert access_engine.is_allowed(_caller("SUPER_ADMIN"), Operation.DELETE_CUSTOMER)
    assert access_engine.is_allowed(_caller("ORG_ADMIN"), Operation.DELETE_CUSTOMER)
    assert not access_engine.is_allowed(_caller("Sales Agent"), Operation.DELETE_CUSTOMER)
    assert not access_engine.is_allowed(_caller("EMPLOYEE"), Operation.DELETE_CUSTOMER)
    assert not access_engine.is_allowed(_caller("Account Manager"), Operation.DELETE_CUSTOMER)


def test_sales_agent_may_assign_handlers_and_list_users() -> None:
    agent = _caller("Sales Agent")

    assert access_engine.is_allowed(agent, Operation.ASSIGN_HANDLER)
    assert access_engine.is_allowed(agent, Operation.LIST_USERS)
    assert not access_engine.is_allowed(agent, Operation.CREATE_USER)
    assert not access_engine.is_allowed(_caller("EMPLOYEE"), Operation.ASSIGN_HANDLER)


def test_pipeline_and_role_management_require_admin() -> None:
    for operation in (Operation.MANAGE_PIPELINE, Operation.MANAGE_ROLES):
        assert access_engine.is_allowed(_caller("ORG_ADMIN"), operation)
        assert not access_engine.is_allowed(_caller("Account Manager"), operation)
        assert not access_engine.is_allowed(_caller("EMPLOYEE"), operation)


def test_ownership_axis_only_applies_to_restricted_roles() -> None:
    assert access_engine.ownership_user_id(_caller("EMPLOYEE", user_id=3)) == 3
    assert access_engine.ownership_user_id(_caller("Sales Agent", user_id=4)) == 4
    assert access_engine.ownership_user_id(_caller("ORG_ADMIN")) is None
    assert access_engine.ownership_user_id(_caller("Account Manager")) is None
    assert access_engine.ownership_user_id(_caller("SUPER_ADMIN", organization_id=None)) is None


def test_cross_org_target_requires_platform_admin() -> None:
    access_engine.require_org_target(_caller("ORG_ADMIN", organization_id=1), 1)
    access_engine.require_org_target(_caller("ORG_ADMIN", organization_id=1), None)
    access_engine.require_org_target(_caller("SUPER_ADMIN", organization_id=None), 5)

    with pytest.raises(ForbiddenError):
        access_engine.require_org_target(_caller("ORG_ADMIN", organization_id=1), 2)


def test_granting_super_admin_requires_super_admin() -> None:
    access_engine.require_role_grant(_caller("ORG_ADMIN"), "EMPLOYEE", "Sales Agent")
    access_engine.require_role_grant(_caller("SUPER_ADMIN", organization_id=None), "SUPER_ADMIN")

    with pytest.raises(ForbiddenError):
        access_engine.require_role_grant(_caller("ORG_ADMIN"), "EMPLOYEE", "SUPER_ADMIN")


def test_denial_is_counted_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="app.security.access")
    before = _denied_count(Operation.DELETE_CUSTOMER)

    with pytest.raises(ForbiddenError) as exc_info:
        access_engine.require(_caller("EMPLOYEE", organization_id=3, user_id=9), Operation.DELETE_CUSTOMER)

    assert exc_info.value.status_code == 403
    assert _denied_count(Operation.DELETE_CUSTOMER) == before + 1
    records = [record for record in caplog.records if record.getMessage() == "access_denied"]
    assert records
    assert getattr(records[-1], "operation", None) == "customer.delete"
    assert getattr(records[-1], "user_id", None) == 9
    assert getattr(records[-1], "organization_id", None) == 3
