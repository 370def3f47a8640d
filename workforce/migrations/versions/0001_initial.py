"""Initial workforce schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
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
timesheet_approval_status = postgresql.ENUM(
    "Draft",
    "Submitted",
    "Approved",
    "Rejected",
    name="timesheet_approval_status",
    create_type=False,
)
leave_request_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    "cancelled",
    name="leave_request_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    payment_type.create(bind, checkfirst=True)
    timesheet_approval_status.create(bind, checkfirst=True)
    leave_request_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("payment_type", payment_type, nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("daily_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("monthly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("contract_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", name="uq_employees_user_id"),
        sa.CheckConstraint(
            "(hourly_rate IS NULL OR hourly_rate >= 0)"
            " AND (daily_rate IS NULL OR daily_rate >= 0)"
            " AND (monthly_rate IS NULL OR monthly_rate >= 0)"
            " AND (contract_rate IS NULL OR contract_rate >= 0)",
            name="ck_employees_rates_non_negative",
        ),
    )
    op.create_index("ix_employees_email", "employees", ["email"], unique=False)

    op.create_table(
        "attendance_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_attendance_logs_user_id", "attendance_logs", ["user_id"], unique=False)
    op.create_index("ix_attendance_logs_check_in_time", "attendance_logs", ["check_in_time"], unique=False)

    op.create_table(
        "timesheets",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("total_hours", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("overtime_hours", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "approval_status",
            timesheet_approval_status,
            nullable=False,
            server_default=sa.text("'Draft'"),
        ),
        sa.Column("project_id", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "employee_id",
            "work_date",
            "project_id",
            name="uq_timesheets_employee_day_project",
            postgresql_nulls_not_distinct=True,
        ),
        sa.CheckConstraint("total_hours >= 0 AND overtime_hours >= 0", name="ck_timesheets_hours_non_negative"),
    )
    op.create_index("ix_timesheets_employee_id", "timesheets", ["employee_id"], unique=False)
    op.create_index("ix_timesheets_work_date", "timesheets", ["work_date"], unique=False)

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            leave_request_status,
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("number_of_days", sa.Numeric(5, 2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_requests_date_order"),
    )
    op.create_index("ix_leave_requests_employee_id", "leave_requests", ["employee_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_leave_requests_employee_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_index("ix_timesheets_work_date", table_name="timesheets")
    op.drop_index("ix_timesheets_employee_id", table_name="timesheets")
    op.drop_table("timesheets")
    op.drop_index("ix_attendance_logs_check_in_time", table_name="attendance_logs")
    op.drop_index("ix_attendance_logs_user_id", table_name="attendance_logs")
    op.drop_table("attendance_logs")
    op.drop_index("ix_employees_email", table_name="employees")
    op.drop_table("employees")
    op.drop_table("projects")
    op.drop_table("users")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    leave_request_status.drop(bind, checkfirst=True)
    timesheet_approval_status.drop(bind, checkfirst=True)
    payment_type.drop(bind, checkfirst=True)
