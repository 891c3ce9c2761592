"""create crm core tables and seed access catalog

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "organization",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "authz_permission",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("subject", sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("action", "subject", name="uq_authz_permission_action_subject"),
    )

    op.create_table(
        "authz_role",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organization.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_authz_role_organization_id"), "authz_role", ["organization_id"], unique=False)

    op.create_table(
        "authz_role_permission",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["permission_id"], ["authz_permission.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["authz_role.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )

    op.create_table(
        "app_user",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organization.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["role_id"], ["authz_role.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_app_user_organization_id"), "app_user", ["organization_id"], unique=False)

    op.create_table(
        "crm_pipeline_stage",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organization.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "name", name="uq_crm_pipeline_stage_organization_name"),
    )
    op.create_index(
        op.f("ix_crm_pipeline_stage_organization_id"),
        "crm_pipeline_stage",
        ["organization_id"],
        unique=False,
    )

    op.create_table(
        "crm_customer",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("company", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=128), nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by_id"], ["app_user.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["organization_id"], ["organization.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_crm_customer_organization_id"), "crm_customer", ["organization_id"], unique=False)
    op.create_index(op.f("ix_crm_customer_status"), "crm_customer", ["status"], unique=False)

    op.create_table(
        "crm_customer_handler",
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("customer_id", "user_id"),
    )

    op.create_table(
        "crm_interaction",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["app_user.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_crm_interaction_customer_id"), "crm_interaction", ["customer_id"], unique=False)

    op.create_table(
        "crm_internal_note",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("author_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["author_id"], ["app_user.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_crm_internal_note_customer_id"), "crm_internal_note", ["customer_id"], unique=False)

    op.create_table(
        "crm_task",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("assignee_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["assignee_id"], ["app_user.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_crm_task_customer_id"), "crm_task", ["customer_id"], unique=False)

    op.create_table(
        "crm_event",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["owner_id"], ["app_user.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_crm_event_customer_id"), "crm_event", ["customer_id"], unique=False)

    op.create_table(
        "crm_file",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("uploaded_by_id", sa.Integer(), nullable=True),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uploaded_by_id"], ["app_user.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_crm_file_customer_id"), "crm_file", ["customer_id"], unique=False)

    _seed_access_catalog()


# Frozen copy of the catalog as of this revision.
_SUBJECTS = ("Customer", "Interaction", "PipelineStage", "Role", "User")
_ACTIONS = ("create", "read", "update", "delete", "manage")
_CATALOG = [(action, subject) for subject in _SUBJECTS for action in _ACTIONS]
_EMPLOYEE_GRANTS = {
    ("create", "Customer"),
    ("read", "Customer"),
    ("update", "Customer"),
    ("create", "Interaction"),
    ("read", "Interaction"),
    ("read", "PipelineStage"),
}
_GLOBAL_ROLES = [
    ("SUPER_ADMIN", "Platform administrator with access to every organization", set(_CATALOG)),
    ("ORG_ADMIN", "Administrator of a single organization", set(_CATALOG)),
    ("EMPLOYEE", "Organization member limited to their own customers", _EMPLOYEE_GRANTS),
]


def _seed_access_catalog() -> None:
    bind = op.get_bind()
    now = datetime.now(timezone.utc)

    permission_table = sa.table(
        "authz_permission",
        sa.column("id", sa.Integer()),
        sa.column("action", sa.String()),
        sa.column("subject", sa.String()),
    )
    op.bulk_insert(permission_table, [{"action": action, "subject": subject} for action, subject in _CATALOG])
    permission_ids = {
        (row.action, row.subject): row.id
        for row in bind.execute(sa.select(permission_table.c.id, permission_table.c.action, permission_table.c.subject))
    }

    role_table = sa.table(
        "authz_role",
        sa.column("id", sa.Integer()),
        sa.column("name", sa.String()),
        sa.column("description", sa.Text()),
        sa.column("is_global", sa.Boolean()),
        sa.column("organization_id", sa.Integer()),
        sa.column("created_at", sa.DateTime(timezone=True)),
    )
    op.bulk_insert(
        role_table,
        [
            {"name": name, "description": description, "is_global": True, "organization_id": None, "created_at": now}
            for name, description, _grants in _GLOBAL_ROLES
        ],
    )
    role_ids = {
        row.name: row.id
        for row in bind.execute(sa.select(role_table.c.id, role_table.c.name).where(role_table.c.is_global.is_(True)))
    }

    role_permission_table = sa.table(
        "authz_role_permission",
        sa.column("role_id", sa.Integer()),
        sa.column("permission_id", sa.Integer()),
    )
    links: list[dict[str, object]] = []
    for name, _description, grants in _GLOBAL_ROLES:
        for grant in _CATALOG:
            if grant in grants:
                links.append({"role_id": role_ids[name], "permission_id": permission_ids[grant]})
    op.bulk_insert(role_permission_table, links)


def downgrade() -> None:
    op.drop_index(op.f("ix_crm_file_customer_id"), table_name="crm_file")
    op.drop_table("crm_file")
    op.drop_index(op.f("ix_crm_event_customer_id"), table_name="crm_event")
    op.drop_table("crm_event")
    op.drop_index(op.f("ix_crm_task_customer_id"), table_name="crm_task")
    op.drop_table("crm_task")
    op.drop_index(op.f("ix_crm_internal_note_customer_id"), table_name="crm_internal_note")
    op.drop_table("crm_internal_note")
    op.drop_index(op.f("ix_crm_interaction_customer_id"), table_name="crm_interaction")
    op.drop_table("crm_interaction")
    op.drop_table("crm_customer_handler")
    op.drop_index(op.f("ix_crm_customer_status"), table_name="crm_customer")
    op.drop_index(op.f("ix_crm_customer_organization_id"), table_name="crm_customer")
    op.drop_table("crm_customer")
    op.drop_index(op.f("ix_crm_pipeline_stage_organization_id"), table_name="crm_pipeline_stage")
    op.drop_table("crm_pipeline_stage")
    op.drop_index(op.f("ix_app_user_organization_id"), table_name="app_user")
    op.drop_table("app_user")
    op.drop_table("authz_role_permission")
    op.drop_index(op.f("ix_authz_role_organization_id"), table_name="authz_role")
    op.drop_table("authz_role")
    op.drop_table("authz_permission")
    op.drop_table("organization")
