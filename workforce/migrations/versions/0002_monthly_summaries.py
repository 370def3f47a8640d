"""Add monthly summaries and invoice sequence counters

Revision ID: 0002_monthly_summaries
Revises: 0001_initial
Create Date: 2026-10-02 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_monthly_summaries"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

payment_type = postgresql.ENUM(
    "hourly",
    "daily",
    "monthly",
    "contract",
    name="payment_type",
    create_type=False,
)
monthly_summary_status = postgresql.ENUM(
    "DRAFT",
    "SUBMITTED",
    "APPROVED",
    name="monthly_summary_status",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    monthly_summary_status.create(bind, checkfirst=True)

    op.create_table(
        "monthly_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("total_working_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_worked_hours", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_ot_hours", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("approved_leaves", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("absent_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "project_breakdown",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("payment_type", payment_type, nullable=True),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_percentage", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("invoice_number", sa.String(length=64), nullable=True),
        sa.Column(
            "status",
            monthly_summary_status,
            nullable=False,
            server_default=sa.text("'DRAFT'"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "month", "year", name="uq_monthly_summaries_employee_period"),
        sa.UniqueConstraint("invoice_number", name="uq_monthly_summaries_invoice_number"),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_monthly_summaries_month"),
        sa.CheckConstraint(
            "tax_percentage >= 0 AND tax_percentage <= 100",
            name="ck_monthly_summaries_tax_percentage",
        ),
    )
    op.create_index("ix_monthly_summaries_employee_id", "monthly_summaries", ["employee_id"], unique=False)
    op.create_index("ix_monthly_summaries_period", "monthly_summaries", ["year", "month"], unique=False)

    op.create_table(
        "invoice_sequences",
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("year", "month", name="pk_invoice_sequences"),
    )


def downgrade() -> None:
    op.drop_table("invoice_sequences")
    op.drop_index("ix_monthly_summaries_period", table_name="monthly_summaries")
    op.drop_index("ix_monthly_summaries_employee_id", table_name="monthly_summaries")
    op.drop_table("monthly_summaries")

    bind = op.get_bind()
    monthly_summary_status.drop(bind, checkfirst=True)
