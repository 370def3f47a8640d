from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from workforce import models  # noqa: F401
from workforce.db import Base
from workforce.models import (
    AttendanceLog,
    Employee,
    LeaveRequest,
    LeaveRequestStatus,
    PaymentType,
    Project,
    Timesheet,
    TimesheetApprovalStatus,
    User,
)


def make_memory_session_factory() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_employee(
    db: Session,
    *,
    full_name: str,
    email: str | None = None,
    with_user: bool = True,
    payment_type: PaymentType | None = None,
    hourly_rate: str | None = None,
    daily_rate: str | None = None,
    monthly_rate: str | None = None,
    contract_rate: str | None = None,
    is_active: bool = True,
) -> Employee:
    user = None
    if with_user:
        user = User(email=email or f"{full_name.lower().replace(' ', '.')}@example.com")
        db.add(user)
        db.flush()
    employee = Employee(
        full_name=full_name,
        email=email,
        user_id=user.id if user is not None else None,
        payment_type=payment_type,
        hourly_rate=Decimal(hourly_rate) if hourly_rate is not None else None,
        daily_rate=Decimal(daily_rate) if daily_rate is not None else None,
        monthly_rate=Decimal(monthly_rate) if monthly_rate is not None else None,
        contract_rate=Decimal(contract_rate) if contract_rate is not None else None,
        is_active=is_active,
    )
    db.add(employee)
    db.commit()
    return employee


def add_check_in(db: Session, *, user_id: int, at: datetime) -> None:
    db.add(AttendanceLog(user_id=user_id, check_in_time=at.astimezone(timezone.utc)))
    db.commit()


def add_timesheet(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    hours: str,
    overtime: str = "0",
    status: TimesheetApprovalStatus = TimesheetApprovalStatus.APPROVED,
    project_id: int | None = None,
) -> None:
    db.add(
        Timesheet(
            employee_id=employee_id,
            work_date=work_date,
            total_hours=Decimal(hours),
            overtime_hours=Decimal(overtime),
            approval_status=status,
            project_id=project_id,
        )
    )
    db.commit()


def add_leave(
    db: Session,
    *,
    employee_id: int,
    start: date,
    end: date,
    days: str,
    status: LeaveRequestStatus = LeaveRequestStatus.APPROVED,
) -> None:
    db.add(
        LeaveRequest(
            employee_id=employee_id,
            start_date=start,
            end_date=end,
            number_of_days=Decimal(days),
            status=status,
        )
    )
    db.commit()


def add_project(db: Session, name: str) -> Project:
    project = Project(name=name)
    db.add(project)
    db.commit()
    return project
