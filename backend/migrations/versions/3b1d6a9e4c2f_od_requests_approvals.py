"""od requests + per-group approval chains

Revision ID: 3b1d6a9e4c2f
Revises:
Create Date: 2026-10-19 09:12:04.118302
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3b1d6a9e4c2f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, name: str, schema: str | None = None) -> bool:
    insp = sa.inspect(bind)
    return name in insp.get_table_names(schema=schema)


def upgrade() -> None:
    """Create the directory, flow template, request and approval tables if missing."""
    bind = op.get_bind()

    # ---- DIRECTORY ----
    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=16), nullable=False),
            sa.Column("push_token", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    if not _table_exists(bind, "departments"):
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        )
    if not _table_exists(bind, "groups"):
        op.create_table(
            "groups",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("section", sa.String(length=32), nullable=True),
            sa.Column("batch", sa.String(length=32), nullable=True),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
        )
        op.create_index(op.f("ix_groups_department_id"), "groups", ["department_id"])
    if not _table_exists(bind, "students"):
        op.create_table(
            "students",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
            sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id"), nullable=False),
            sa.Column("roll_no", sa.String(length=64), nullable=False, unique=True),
        )
        op.create_index(op.f("ix_students_group_id"), "students", ["group_id"])
    if not _table_exists(bind, "teachers"):
        op.create_table(
            "teachers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
        )
    if not _table_exists(bind, "labs"):
        op.create_table(
            "labs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False, unique=True),
            sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
        )
    if not _table_exists(bind, "group_approvers"):
        op.create_table(
            "group_approvers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id"), nullable=False),
            sa.Column("teacher_id", sa.Integer(), sa.ForeignKey("teachers.id"), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False),
            sa.UniqueConstraint("group_id", "role", name="uq_group_approvers_group_role"),
        )
        op.create_index(op.f("ix_group_approvers_teacher_id"), "group_approvers", ["teacher_id"])

    # ---- FLOW TEMPLATES ----
    if not _table_exists(bind, "flow_templates"):
        op.create_table(
            "flow_templates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index(op.f("ix_flow_templates_name"), "flow_templates", ["name"], unique=True)
    if not _table_exists(bind, "flow_steps"):
        op.create_table(
            "flow_steps",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("flow_template_id", sa.Integer(), sa.ForeignKey("flow_templates.id"), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False),
            sa.UniqueConstraint("flow_template_id", "sequence", name="uq_flow_steps_template_sequence"),
        )

    # ---- REQUESTS + APPROVALS ----
    if not _table_exists(bind, "requests"):
        op.create_table(
            "requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("type", sa.String(length=16), nullable=False),
            sa.Column("category", sa.String(length=32), nullable=True),
            sa.Column("needs_lab", sa.Boolean(), nullable=False),
            sa.Column("reason", sa.String(length=1000), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("start_date", sa.DateTime(), nullable=False),
            sa.Column("end_date", sa.DateTime(), nullable=False),
            sa.Column("lab_id", sa.Integer(), sa.ForeignKey("labs.id"), nullable=True),
            sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("flow_template_id", sa.Integer(), sa.ForeignKey("flow_templates.id"), nullable=False),
            sa.Column("proof_of_od", sa.String(length=1024), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.CheckConstraint("end_date >= start_date", name="ck_requests_date_order"),
        )
        op.create_index(op.f("ix_requests_requested_by_id"), "requests", ["requested_by_id"])
        op.create_index(op.f("ix_requests_flow_template_id"), "requests", ["flow_template_id"])
    if not _table_exists(bind, "request_students"):
        op.create_table(
            "request_students",
            sa.Column("request_id", sa.Integer(), sa.ForeignKey("requests.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("student_id", sa.Integer(), sa.ForeignKey("students.id"), primary_key=True),
        )
        op.create_index(op.f("ix_request_students_student_id"), "request_students", ["student_id"])
    if not _table_exists(bind, "approvals"):
        op.create_table(
            "approvals",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("request_id", sa.Integer(), sa.ForeignKey("requests.id", ondelete="CASCADE"), nullable=False),
            sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id"), nullable=False),
            sa.Column("current_step_index", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.UniqueConstraint("request_id", "group_id", name="uq_approvals_request_group"),
        )
        op.create_index(op.f("ix_approvals_request_id"), "approvals", ["request_id"])
        op.create_index(op.f("ix_approvals_group_id"), "approvals", ["group_id"])
    if not _table_exists(bind, "approval_steps"):
        op.create_table(
            "approval_steps",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("approval_id", sa.Integer(), sa.ForeignKey("approvals.id", ondelete="CASCADE"), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("approved_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("approval_id", "sequence", name="uq_approval_steps_approval_sequence"),
        )
        op.create_index(op.f("ix_approval_steps_user_id"), "approval_steps", ["user_id"])

    # ---- AUDIT LOG ----
    if not _table_exists(bind, "audit_log"):
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("action", sa.String(length=128), nullable=True),
            sa.Column("request_id", sa.Integer(), nullable=True),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index(op.f("ix_audit_log_request_id"), "audit_log", ["request_id"])
        op.create_index(op.f("ix_audit_log_action"), "audit_log", ["action"])


def downgrade() -> None:
    """Drop everything in reverse dependency order."""
    for table in (
        "audit_log", "approval_steps", "approvals", "request_students", "requests",
        "flow_steps", "flow_templates", "group_approvers", "labs", "teachers",
        "students", "groups", "departments", "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
