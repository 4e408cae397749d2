"""Initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _lifecycle_columns() -> list[sa.Column]:
    return [
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        *_lifecycle_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("employee_code", sa.String(length=50), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), server_default=sa.text("''"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("designation", sa.String(length=100), nullable=True),
        sa.Column("department", sa.String(length=100), nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "employee_code", name="uq_employees_tenant_code"),
    )
    op.create_index("ix_employees_tenant_id", "employees", ["tenant_id"])

    for table in ("subjects", "evaluators"):
        op.create_table(
            table,
            sa.Column("id", sa.Uuid(), nullable=False),
            sa.Column("tenant_id", sa.Uuid(), nullable=False),
            sa.Column("employee_id", sa.Uuid(), nullable=False),
            sa.Column("credential_hash", sa.String(length=128), nullable=False),
            sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
            *_lifecycle_columns(),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "employee_id", name=f"uq_{table}_tenant_employee"),
        )
        op.create_index(f"ix_{table}_tenant_id", table, ["tenant_id"])

    op.create_table(
        "subject_evaluators",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("evaluator_id", sa.Uuid(), nullable=False),
        sa.Column("relationship", sa.String(length=50), nullable=False),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subject_id"], ["subjects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["evaluator_id"], ["evaluators.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "subject_id", "evaluator_id", name="uq_subject_evaluators_pair"),
    )
    op.create_index("ix_subject_evaluators_tenant_id", "subject_evaluators", ["tenant_id"])
    op.create_index("ix_subject_evaluators_subject_id", "subject_evaluators", ["subject_id"])
    op.create_index("ix_subject_evaluators_evaluator_id", "subject_evaluators", ["evaluator_id"])

    op.create_table(
        "surveys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_surveys_tenant_id", "surveys", ["tenant_id"])

    op.create_table(
        "subject_evaluator_surveys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("relationship_edge_id", sa.Uuid(), nullable=False),
        sa.Column("survey_id", sa.Uuid(), nullable=False),
        sa.Column("last_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["relationship_edge_id"], ["subject_evaluators.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["survey_id"], ["surveys.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "relationship_edge_id", "survey_id", name="uq_subject_evaluator_surveys_edge_survey"
        ),
    )
    op.create_index("ix_subject_evaluator_surveys_tenant_id", "subject_evaluator_surveys", ["tenant_id"])
    op.create_index("ix_subject_evaluator_surveys_survey_id", "subject_evaluator_surveys", ["survey_id"])


def downgrade() -> None:
    op.drop_table("subject_evaluator_surveys")
    op.drop_table("surveys")
    op.drop_table("subject_evaluators")
    op.drop_table("evaluators")
    op.drop_table("subjects")
    op.drop_table("employees")
    op.drop_table("tenants")
