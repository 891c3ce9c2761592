from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.authz.models import Permission, Role
from app.platform.security.roles import EMPLOYEE, ORG_ADMIN, SUPER_ADMIN


logger = logging.getLogger("app.authz.seed")

PERMISSION_SUBJECTS = ("Customer", "Interaction", "PipelineStage", "Role", "User")
PERMISSION_ACTIONS = ("create", "read", "update", "delete", "manage")

PERMISSION_CATALOG: tuple[tuple[str, str], ...] = tuple(
    (action, subject) for subject in PERMISSION_SUBJECTS for action in PERMISSION_ACTIONS
)

_EMPLOYEE_GRANTS = frozenset(
    {
        ("create", "Customer"),
        ("read", "Customer"),
        ("update", "Customer"),
        ("create", "Interaction"),
        ("read", "Interaction"),
        ("read", "PipelineStage"),
    }
)

GLOBAL_ROLES: tuple[tuple[str, str, frozenset[tuple[str, str]]], ...] = (
    (SUPER_ADMIN, "Platform administrator with access to every organization", frozenset(PERMISSION_CATALOG)),
    (ORG_ADMIN, "Administrator of a single organization", frozenset(PERMISSION_CATALOG)),
    (EMPLOYEE, "Organization member limited to their own customers", _EMPLOYEE_GRANTS),
)


def seed_access_catalog(session: Session) -> dict[str, Role]:
    """Insert missing catalog permissions and global roles; safe to run repeatedly.

    Existing global roles keep whatever permissions they already hold.
    """

    existing = {
        (permission.action, permission.subject): permission
        for permission in session.scalars(select(Permission)).all()
    }
    for action, subject in PERMISSION_CATALOG:
        if (action, subject) in existing:
            continue
        permission = Permission(action=action, subject=subject)
        session.add(permission)
        existing[(action, subject)] = permission
    session.flush()

    roles: dict[str, Role] = {}
    for name, description, grants in GLOBAL_ROLES:
        role = session.scalar(select(Role).where(Role.name == name, Role.is_global.is_(True)))
        if role is None:
            role = Role(
                name=name,
                description=description,
                is_global=True,
                organization_id=None,
                permissions=[existing[grant] for grant in PERMISSION_CATALOG if grant in grants],
            )
            session.add(role)
        roles[name] = role

    session.commit()
    logger.info("access_catalog_seeded")
    return roles
