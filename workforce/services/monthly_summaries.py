from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from workforce.errors import AggregationError, ApiError, ResolutionError, SequenceConflictError
from workforce.models import (
    AttendanceLog,
    Employee,
    LeaveRequest,
    LeaveRequestStatus,
    MonthlySummary,
    MonthlySummaryStatus,
    Project,
    Timesheet,
    TimesheetApprovalStatus,
)
from workforce.settings import get_settings
from workforce.services.identity import NotFound, resolve_attendance_identity
from workforce.services.invoices import reserve_invoice_number
from workforce.services.summary_calc import (
    ZERO,
    TimesheetRow,
    build_project_breakdown,
    calculate_absent_days,
    calculate_payroll,
    calculate_subtotal,
    count_distinct_days,
    month_date_range,
    rate_for_payment_type,
    round_money,
    to_decimal,
    weekdays_in_month,
)

logger = logging.getLogger("workforce.summaries")

MIN_YEAR = 2000
MAX_YEAR = 2100

COUNTED_TIMESHEET_STATUSES = (
    TimesheetApprovalStatus.DRAFT,
    TimesheetApprovalStatus.SUBMITTED,
    TimesheetApprovalStatus.APPROVED,
)


@dataclass(frozen=True)
class SummaryFigures:
    total_working_days: int
    total_worked_hours: Decimal
    total_ot_hours: Decimal
    approved_leaves: Decimal
    absent_days: int
    project_breakdown: list[dict[str, Any]]
    subtotal: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    total_amount: Decimal


class BatchOutcome(str, enum.Enum):
    GENERATED = "GENERATED"
    SKIPPED_APPROVED = "SKIPPED_APPROVED"
    FAILED = "FAILED"


@dataclass
class BatchItem:
    employee_id: int
    employee_name: str
    outcome: BatchOutcome
    summary_id: int | None = None
    invoice_number: str | None = None
    error_code: str | None = None
    message: str | None = None


@dataclass
class BatchReport:
    year: int
    month: int
    items: list[BatchItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items)

    def _count(self, outcome: BatchOutcome) -> int:
        return sum(1 for item in self.items if item.outcome is outcome)

    @property
    def generated(self) -> int:
        return self._count(BatchOutcome.GENERATED)

    @property
    def skipped(self) -> int:
        return self._count(BatchOutcome.SKIPPED_APPROVED)

    @property
    def failed(self) -> int:
        return self._count(BatchOutcome.FAILED)


def validate_period(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ApiError(422, "INVALID_PERIOD", "month must be between 1 and 12")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise ApiError(422, "INVALID_PERIOD", f"year must be between {MIN_YEAR} and {MAX_YEAR}")


def resolve_tax_percentage(value: Decimal | float | str | None) -> Decimal:
    raw = get_settings().default_tax_percentage if value is None else value
    try:
        tax_percentage = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ApiError(422, "INVALID_TAX_PERCENTAGE", "tax_percentage must be a number") from exc
    if not tax_percentage.is_finite() or not ZERO <= tax_percentage <= Decimal(100):
        raise ApiError(422, "INVALID_TAX_PERCENTAGE", "tax_percentage must be between 0 and 100")
    return tax_percentage


@lru_cache
def _attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo("UTC")


def _local_date_from_utc(ts_utc: datetime) -> date:
    if ts_utc.tzinfo is None:
        ts_utc = ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(_attendance_timezone()).date()


def _local_date_range_to_utc_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    tz = _attendance_timezone()
    start_local = datetime.combine(start_date, datetime.min.time(), tzinfo=tz)
    end_local = datetime.combine(end_date + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def count_attendance_days(db: Session, *, user_id: int, first_day: date, last_day: date) -> int:
    start_utc, end_utc = _local_date_range_to_utc_bounds(first_day, last_day)
    check_ins = db.scalars(
        select(AttendanceLog.check_in_time).where(
            AttendanceLog.user_id == user_id,
            AttendanceLog.check_in_time >= start_utc,
            AttendanceLog.check_in_time < end_utc,
        )
    ).all()
    local_days = (_local_date_from_utc(ts) for ts in check_ins)
    return count_distinct_days(day for day in local_days if first_day <= day <= last_day)


def load_timesheet_rows(db: Session, *, employee_id: int, first_day: date, last_day: date) -> list[TimesheetRow]:
    rows = db.execute(
        select(
            Timesheet.work_date,
            Timesheet.total_hours,
            Timesheet.overtime_hours,
            Timesheet.project_id,
        )
        .where(
            Timesheet.employee_id == employee_id,
            Timesheet.work_date >= first_day,
            Timesheet.work_date <= last_day,
            Timesheet.approval_status.in_(COUNTED_TIMESHEET_STATUSES),
        )
        .order_by(Timesheet.work_date.asc(), Timesheet.id.asc())
    ).all()
    return [
        TimesheetRow(
            work_date=row.work_date,
            total_hours=to_decimal(row.total_hours),
            overtime_hours=to_decimal(row.overtime_hours),
            project_id=row.project_id,
        )
        for row in rows
    ]


def sum_approved_leave_days(db: Session, *, employee_id: int, first_day: date, last_day: date) -> Decimal:
    values = db.scalars(
        select(LeaveRequest.number_of_days).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LeaveRequestStatus.APPROVED,
            LeaveRequest.start_date <= last_day,
            LeaveRequest.end_date >= first_day,
        )
    ).all()
    return sum((to_decimal(value) for value in values), ZERO)


def load_project_names(db: Session, project_ids: set[int]) -> dict[int, str]:
    if not project_ids:
        return {}
    rows = db.execute(select(Project.id, Project.name).where(Project.id.in_(project_ids))).all()
    return {row.id: row.name for row in rows}


def compute_summary_figures(
    db: Session,
    employee: Employee,
    *,
    user_id: int,
    year: int,
    month: int,
    tax_percentage: Decimal,
) -> SummaryFigures:
    first_day, last_day = month_date_range(year, month)
    weekdays = weekdays_in_month(year, month)

    total_working_days = count_attendance_days(db, user_id=user_id, first_day=first_day, last_day=last_day)
    timesheet_rows = load_timesheet_rows(db, employee_id=employee.id, first_day=first_day, last_day=last_day)
    worked_hours = sum((row.total_hours for row in timesheet_rows), ZERO)
    ot_hours = sum((row.overtime_hours for row in timesheet_rows), ZERO)
    approved_leaves = sum_approved_leave_days(db, employee_id=employee.id, first_day=first_day, last_day=last_day)

    project_ids = {row.project_id for row in timesheet_rows if row.project_id is not None}
    breakdown = build_project_breakdown(timesheet_rows, load_project_names(db, project_ids))

    rate = rate_for_payment_type(
        employee.payment_type,
        hourly_rate=employee.hourly_rate,
        daily_rate=employee.daily_rate,
        monthly_rate=employee.monthly_rate,
        contract_rate=employee.contract_rate,
    )
    subtotal = calculate_subtotal(
        payment_type=employee.payment_type,
        rate=rate,
        worked_hours=worked_hours,
        ot_hours=ot_hours,
        total_working_days=total_working_days,
        weekdays=weekdays,
        overtime_multiplier=get_settings().overtime_multiplier,
    )
    payroll = calculate_payroll(subtotal, tax_percentage)

    return SummaryFigures(
        total_working_days=total_working_days,
        total_worked_hours=worked_hours,
        total_ot_hours=ot_hours,
        approved_leaves=approved_leaves,
        absent_days=calculate_absent_days(
            weekdays=weekdays,
            total_working_days=total_working_days,
            approved_leaves=approved_leaves,
        ),
        project_breakdown=breakdown,
        subtotal=round_money(payroll.subtotal),
        tax_percentage=payroll.tax_percentage,
        tax_amount=round_money(payroll.tax_amount),
        total_amount=payroll.total_amount,
    )


def get_summary_for_period(
    db: Session,
    *,
    employee_id: int,
    year: int,
    month: int,
    for_update: bool = False,
) -> MonthlySummary | None:
    stmt = select(MonthlySummary).where(
        MonthlySummary.employee_id == employee_id,
        MonthlySummary.year == year,
        MonthlySummary.month == month,
    )
    if for_update:
        # Re-read committed state even when the row is already in the identity map.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.scalar(stmt)


def _apply_figures(summary: MonthlySummary, figures: SummaryFigures) -> None:
    summary.total_working_days = figures.total_working_days
    summary.total_worked_hours = figures.total_worked_hours
    summary.total_ot_hours = figures.total_ot_hours
    summary.approved_leaves = figures.approved_leaves
    summary.absent_days = figures.absent_days
    summary.project_breakdown = figures.project_breakdown
    summary.subtotal = figures.subtotal
    summary.tax_percentage = figures.tax_percentage
    summary.tax_amount = figures.tax_amount
    summary.total_amount = figures.total_amount


def _generate_once(
    db: Session,
    *,
    employee_id: int,
    year: int,
    month: int,
    tax_percentage: Decimal,
) -> tuple[MonthlySummary, bool]:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise ResolutionError(employee_id, "Employee not found")

    existing = get_summary_for_period(db, employee_id=employee_id, year=year, month=month, for_update=True)
    if existing is not None and existing.status == MonthlySummaryStatus.APPROVED:
        return existing, False

    identity = resolve_attendance_identity(db, employee)
    if isinstance(identity, NotFound):
        raise ResolutionError(employee_id, identity.reason)

    figures = compute_summary_figures(
        db,
        employee,
        user_id=identity.user_id,
        year=year,
        month=month,
        tax_percentage=tax_percentage,
    )

    invoice_number: str | None = None
    if figures.subtotal > 0:
        if existing is not None and existing.invoice_number:
            invoice_number = existing.invoice_number
        else:
            invoice_number = reserve_invoice_number(db, year=year, month=month)

    summary = existing
    if summary is None:
        summary = MonthlySummary(employee_id=employee_id, year=year, month=month)
        db.add(summary)
    _apply_figures(summary, figures)
    summary.payment_type = employee.payment_type
    summary.invoice_number = invoice_number
    summary.status = MonthlySummaryStatus.DRAFT
    db.flush()

    logger.info(
        "monthly_summary_computed",
        extra={
            "employee_id": employee_id,
            "year": year,
            "month": month,
            "identity_source": identity.source,
            "total_working_days": figures.total_working_days,
            "subtotal": figures.subtotal,
            "invoice_number": invoice_number,
        },
    )
    return summary, True


def generate_monthly_summary(
    db: Session,
    *,
    employee_id: int,
    year: int,
    month: int,
    tax_percentage: Decimal | float | str | None = None,
) -> MonthlySummary:
    """Compute and upsert the monthly summary of one employee.

    Approved summaries are returned untouched. Each attempt runs in a single
    transaction; a unique-constraint conflict (invoice number or the summary
    key itself) rolls the attempt back and recomputes from scratch.
    """
    validate_period(year, month)
    tax = resolve_tax_percentage(tax_percentage)
    max_attempts = max(1, get_settings().invoice_max_attempts)

    for attempt in range(1, max_attempts + 1):
        try:
            summary, generated = _generate_once(
                db,
                employee_id=employee_id,
                year=year,
                month=month,
                tax_percentage=tax,
            )
            if not generated:
                # Nothing was written; end the transaction to release the row lock.
                db.commit()
                logger.info(
                    "monthly_summary_skipped_approved",
                    extra={"employee_id": employee_id, "year": year, "month": month, "summary_id": summary.id},
                )
                return summary
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "monthly_summary_write_conflict",
                extra={"employee_id": employee_id, "year": year, "month": month, "attempt": attempt},
            )
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception(
                "monthly_summary_aggregation_failed",
                extra={"employee_id": employee_id, "year": year, "month": month},
            )
            raise AggregationError(
                employee_id,
                f"Failed to aggregate monthly summary for employee {employee_id}",
            ) from exc

        db.refresh(summary)
        return summary

    raise SequenceConflictError(year, month, max_attempts)


def generate_monthly_summaries_for_all(
    db: Session,
    *,
    year: int,
    month: int,
    tax_percentage: Decimal | float | str | None = None,
    include_inactive: bool = False,
) -> BatchReport:
    validate_period(year, month)
    tax = resolve_tax_percentage(tax_percentage)

    stmt = select(Employee.id, Employee.full_name).order_by(Employee.id.asc())
    if not include_inactive:
        stmt = stmt.where(Employee.is_active.is_(True))
    employees = db.execute(stmt).all()

    report = BatchReport(year=year, month=month)
    for employee_id, employee_name in employees:
        try:
            summary = generate_monthly_summary(
                db,
                employee_id=employee_id,
                year=year,
                month=month,
                tax_percentage=tax,
            )
        except ApiError as exc:
            db.rollback()
            report.items.append(
                BatchItem(
                    employee_id=employee_id,
                    employee_name=employee_name,
                    outcome=BatchOutcome.FAILED,
                    error_code=exc.code,
                    message=exc.message,
                )
            )
            logger.warning(
                "monthly_summary_batch_item_failed",
                extra={"employee_id": employee_id, "year": year, "month": month, "error_code": exc.code},
            )
            continue
        except Exception as exc:
            # Drop any flushed counter bump before moving on to the next employee.
            db.rollback()
            report.items.append(
                BatchItem(
                    employee_id=employee_id,
                    employee_name=employee_name,
                    outcome=BatchOutcome.FAILED,
                    error_code="INTERNAL_ERROR",
                    message=str(exc) or exc.__class__.__name__,
                )
            )
            logger.exception(
                "monthly_summary_batch_item_crashed",
                extra={"employee_id": employee_id, "year": year, "month": month},
            )
            continue

        outcome = (
            BatchOutcome.SKIPPED_APPROVED
            if summary.status == MonthlySummaryStatus.APPROVED
            else BatchOutcome.GENERATED
        )
        report.items.append(
            BatchItem(
                employee_id=employee_id,
                employee_name=employee_name,
                outcome=outcome,
                summary_id=summary.id,
                invoice_number=summary.invoice_number,
            )
        )

    logger.info(
        "monthly_summary_batch_complete",
        extra={
            "year": year,
            "month": month,
            "total": report.total,
            "generated": report.generated,
            "skipped": report.skipped,
            "failed": report.failed,
        },
    )
    return report


def list_monthly_summaries(
    db: Session,
    *,
    employee_id: int | None = None,
    year: int | None = None,
    month: int | None = None,
    status: MonthlySummaryStatus | None = None,
) -> list[MonthlySummary]:
    stmt = select(MonthlySummary).order_by(
        MonthlySummary.year.desc(),
        MonthlySummary.month.desc(),
        MonthlySummary.employee_id.asc(),
    )
    if employee_id is not None:
        stmt = stmt.where(MonthlySummary.employee_id == employee_id)
    if year is not None:
        stmt = stmt.where(MonthlySummary.year == year)
    if month is not None:
        stmt = stmt.where(MonthlySummary.month == month)
    if status is not None:
        stmt = stmt.where(MonthlySummary.status == status)
    return list(db.scalars(stmt).all())


def get_monthly_summary(db: Session, summary_id: int) -> MonthlySummary:
    summary = db.get(MonthlySummary, summary_id)
    if summary is None:
        raise ApiError(404, "SUMMARY_NOT_FOUND", "Monthly summary not found")
    return summary
