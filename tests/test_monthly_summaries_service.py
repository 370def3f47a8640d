from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import unittest
from unittest.mock import patch
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from workforce.errors import AggregationError, ApiError, ResolutionError, SequenceConflictError
from workforce.models import (
    Employee,
    InvoiceSequence,
    LeaveRequestStatus,
    MonthlySummary,
    MonthlySummaryStatus,
    PaymentType,
    TimesheetApprovalStatus,
)
from workforce.services.monthly_summaries import generate_monthly_summary, list_monthly_summaries
from tests.helpers import (
    add_check_in,
    add_employee,
    add_leave,
    add_project,
    add_timesheet,
    make_memory_session_factory,
)


def _utc(year: int, month: int, day: int, hour: int = 8) -> datetime:
    return datetime(year, month, day, hour, 0, tzinfo=timezone.utc)


STORED_COLUMNS = (
    "total_working_days",
    "total_worked_hours",
    "total_ot_hours",
    "approved_leaves",
    "absent_days",
    "project_breakdown",
    "payment_type",
    "subtotal",
    "tax_percentage",
    "tax_amount",
    "total_amount",
    "invoice_number",
    "status",
)


def _stored_summary(session_factory: sessionmaker[Session], summary_id: int) -> dict[str, object]:
    with session_factory() as db:
        summary = db.get(MonthlySummary, summary_id)
        return {name: getattr(summary, name) for name in STORED_COLUMNS}


class MonthlySummaryAggregationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_memory_session_factory()()

    def tearDown(self) -> None:
        self.db.close()

    def test_working_days_count_distinct_check_in_dates(self) -> None:
        employee = add_employee(self.db, full_name="Ali Demir")
        add_check_in(self.db, user_id=employee.user_id, at=_utc(2024, 1, 15, 8))
        add_check_in(self.db, user_id=employee.user_id, at=_utc(2024, 1, 15, 13))
        add_check_in(self.db, user_id=employee.user_id, at=_utc(2024, 1, 16, 9))
        add_check_in(self.db, user_id=employee.user_id, at=_utc(2023, 12, 31, 23))
        add_check_in(self.db, user_id=employee.user_id, at=_utc(2024, 2, 1, 0))

        summary = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)

        self.assertEqual(summary.total_working_days, 2)
        self.assertEqual(summary.absent_days, 21)
        self.assertEqual(summary.status, MonthlySummaryStatus.DRAFT)

    def test_month_bounds_follow_attendance_timezone(self) -> None:
        employee = add_employee(self.db, full_name="Ali Demir")
        # 17:00 UTC on Jan 31 is already Feb 1 in Singapore.
        add_check_in(self.db, user_id=employee.user_id, at=_utc(2024, 1, 31, 17))
        add_check_in(self.db, user_id=employee.user_id, at=_utc(2023, 12, 31, 20))

        with patch(
            "workforce.services.monthly_summaries._attendance_timezone",
            return_value=ZoneInfo("Asia/Singapore"),
        ):
            january = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)

        self.assertEqual(january.total_working_days, 1)

    def test_timesheet_hours_exclude_rejected(self) -> None:
        employee = add_employee(self.db, full_name="Ali Demir")
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 1, 2), hours="8", overtime="1",
                      status=TimesheetApprovalStatus.DRAFT)
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 1, 3), hours="7.5",
                      status=TimesheetApprovalStatus.SUBMITTED)
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 1, 4), hours="9", overtime="2",
                      status=TimesheetApprovalStatus.APPROVED)
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 1, 5), hours="12", overtime="4",
                      status=TimesheetApprovalStatus.REJECTED)
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 2, 1), hours="8")

        summary = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)

        self.assertEqual(summary.total_worked_hours, Decimal("24.50"))
        self.assertEqual(summary.total_ot_hours, Decimal("3.00"))

    def test_overlapping_leave_counts_in_both_months(self) -> None:
        employee = add_employee(self.db, full_name="Ali Demir")
        add_leave(self.db, employee_id=employee.id, start=date(2024, 1, 30), end=date(2024, 2, 2), days="4")
        add_leave(self.db, employee_id=employee.id, start=date(2024, 1, 10), end=date(2024, 1, 10), days="1",
                  status=LeaveRequestStatus.PENDING)

        january = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)
        february = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=2)

        self.assertEqual(january.approved_leaves, Decimal("4"))
        self.assertEqual(february.approved_leaves, Decimal("4"))
        self.assertEqual(january.absent_days, 23 - 4)

    def test_project_breakdown_uses_project_names(self) -> None:
        employee = add_employee(self.db, full_name="Ali Demir")
        tower = add_project(self.db, "Tower A")
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 1, 2), hours="8", project_id=tower.id)
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 1, 3), hours="4")

        summary = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)

        self.assertEqual(
            [(item["project_name"], item["days_worked"]) for item in summary.project_breakdown],
            [("Tower A", 1), ("Unassigned", 1)],
        )


class MonthlySummaryPayrollTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_memory_session_factory()
        self.db = self.session_factory()

    def tearDown(self) -> None:
        self.db.close()

    def _hourly_employee(self, name: str = "Zeynep Acar") -> Employee:
        employee = add_employee(self.db, full_name=name, payment_type=PaymentType.HOURLY, hourly_rate="20")
        for offset in range(16):
            add_timesheet(
                self.db,
                employee_id=employee.id,
                work_date=date(2024, 1, 1) + timedelta(days=offset),
                hours="10",
                overtime="1" if offset < 10 else "0",
            )
        return employee

    def test_hourly_payroll_and_first_invoice_number(self) -> None:
        employee = self._hourly_employee()

        summary = generate_monthly_summary(
            self.db, employee_id=employee.id, year=2024, month=1, tax_percentage=Decimal("5")
        )

        self.assertEqual(summary.payment_type, PaymentType.HOURLY)
        self.assertEqual(summary.subtotal, Decimal("3500.00"))
        self.assertEqual(summary.tax_amount, Decimal("175.00"))
        self.assertEqual(summary.total_amount, Decimal("3675.00"))
        self.assertEqual(summary.invoice_number, "INV-2024-01-0001")

    def test_monthly_rate_is_prorated_by_attendance(self) -> None:
        employee = add_employee(self.db, full_name="Emre Sahin", payment_type=PaymentType.MONTHLY, monthly_rate="2300")
        for day in range(1, 11):
            add_check_in(self.db, user_id=employee.user_id, at=_utc(2024, 1, day))

        summary = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)

        self.assertEqual(summary.total_working_days, 10)
        self.assertEqual(summary.subtotal, Decimal("1000.00"))
        self.assertEqual(summary.total_amount, Decimal("1000.00"))

    def test_zero_subtotal_has_no_invoice(self) -> None:
        employee = add_employee(self.db, full_name="Emre Sahin")
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 1, 2), hours="8")

        summary = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)

        self.assertEqual(summary.subtotal, Decimal("0"))
        self.assertIsNone(summary.invoice_number)
        self.assertIsNone(self.db.get(InvoiceSequence, (2024, 1)))

    def test_regeneration_keeps_invoice_number_and_figures(self) -> None:
        first = self._hourly_employee("Zeynep Acar")
        second = self._hourly_employee("Can Ozturk")

        initial = generate_monthly_summary(
            self.db, employee_id=first.id, year=2024, month=1, tax_percentage="5"
        )
        summary_id = initial.id
        before = _stored_summary(self.session_factory, summary_id)

        again = generate_monthly_summary(
            self.db, employee_id=first.id, year=2024, month=1, tax_percentage="5"
        )
        after = _stored_summary(self.session_factory, summary_id)
        other = generate_monthly_summary(self.db, employee_id=second.id, year=2024, month=1)

        self.assertEqual(again.id, summary_id)
        self.assertEqual(after, before)
        self.assertEqual(before["invoice_number"], "INV-2024-01-0001")
        self.assertEqual(before["status"], MonthlySummaryStatus.DRAFT)
        self.assertEqual(other.invoice_number, "INV-2024-01-0002")
        self.assertEqual(self.db.scalar(select(func.count()).select_from(MonthlySummary)), 2)

    def test_numbering_continues_after_existing_invoices(self) -> None:
        legacy = add_employee(self.db, full_name="Legacy Worker")
        self.db.add(
            MonthlySummary(
                employee_id=legacy.id,
                year=2024,
                month=1,
                invoice_number="INV-2024-01-0007",
                status=MonthlySummaryStatus.APPROVED,
            )
        )
        self.db.commit()
        employee = self._hourly_employee()

        summary = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)

        self.assertEqual(summary.invoice_number, "INV-2024-01-0008")

    def test_invoice_numbers_restart_each_month(self) -> None:
        employee = self._hourly_employee()
        add_timesheet(self.db, employee_id=employee.id, work_date=date(2024, 2, 5), hours="8")

        january = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=1)
        february = generate_monthly_summary(self.db, employee_id=employee.id, year=2024, month=2)

        self.assertEqual(january.invoice_number, "INV-2024-01-0001")
        self.assertEqual(february.invoice_number, "INV-2024-02-0001")


class MonthlySummaryLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_memory_session_factory()
        self.db = self.session_factory()
        self.employee = add_employee(
            self.db, full_name="Deniz Aydin", payment_type=PaymentType.DAILY, daily_rate="150"
        )
        add_check_in(self.db, user_id=self.employee.user_id, at=_utc(2024, 1, 2))

    def tearDown(self) -> None:
        self.db.close()

    def test_approved_summary_is_not_recomputed(self) -> None:
        summary = generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)
        summary.status = MonthlySummaryStatus.APPROVED
        self.db.commit()
        approved = _stored_summary(self.session_factory, summary.id)
        add_check_in(self.db, user_id=self.employee.user_id, at=_utc(2024, 1, 3))

        again = generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)

        self.assertEqual(again.status, MonthlySummaryStatus.APPROVED)
        self.assertEqual(_stored_summary(self.session_factory, summary.id), approved)
        self.assertEqual(approved["total_working_days"], 1)
        self.assertEqual(approved["subtotal"], Decimal("150.00"))

    def test_approval_committed_by_another_session_is_respected(self) -> None:
        summary = generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)
        self.assertEqual(summary.status, MonthlySummaryStatus.DRAFT)

        with self.session_factory() as approver:
            row = approver.get(MonthlySummary, summary.id)
            row.status = MonthlySummaryStatus.APPROVED
            approver.commit()
            add_check_in(approver, user_id=self.employee.user_id, at=_utc(2024, 1, 3))
        approved = _stored_summary(self.session_factory, summary.id)

        # self.db still holds the DRAFT instance in its identity map.
        again = generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)

        self.assertEqual(again.status, MonthlySummaryStatus.APPROVED)
        self.assertEqual(_stored_summary(self.session_factory, summary.id), approved)
        self.assertEqual(approved["total_working_days"], 1)
        self.assertEqual(approved["subtotal"], Decimal("150.00"))

    def test_regenerating_submitted_summary_resets_to_draft(self) -> None:
        summary = generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)
        summary.status = MonthlySummaryStatus.SUBMITTED
        self.db.commit()
        add_check_in(self.db, user_id=self.employee.user_id, at=_utc(2024, 1, 3))

        again = generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)

        self.assertEqual(again.status, MonthlySummaryStatus.DRAFT)
        self.assertEqual(again.total_working_days, 2)
        self.assertEqual(again.subtotal, Decimal("300.00"))

    def test_unresolvable_employee_writes_nothing(self) -> None:
        orphan = Employee(full_name="No Login", email=None)
        self.db.add(orphan)
        self.db.commit()

        with self.assertRaises(ResolutionError) as ctx:
            generate_monthly_summary(self.db, employee_id=orphan.id, year=2024, month=1)

        self.assertEqual(ctx.exception.code, "EMPLOYEE_UNRESOLVED")
        self.assertEqual(list_monthly_summaries(self.db, employee_id=orphan.id), [])

    def test_missing_employee(self) -> None:
        with self.assertRaises(ResolutionError):
            generate_monthly_summary(self.db, employee_id=4242, year=2024, month=1)

    def test_invalid_period_and_tax(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=13)
        self.assertEqual(ctx.exception.code, "INVALID_PERIOD")

        with self.assertRaises(ApiError) as ctx:
            generate_monthly_summary(
                self.db, employee_id=self.employee.id, year=2024, month=1, tax_percentage="150"
            )
        self.assertEqual(ctx.exception.code, "INVALID_TAX_PERCENTAGE")

    def test_write_conflict_is_retried(self) -> None:
        conflict = IntegrityError("INSERT INTO invoice_sequences", {}, Exception("duplicate key"))
        with patch(
            "workforce.services.monthly_summaries.reserve_invoice_number",
            side_effect=[conflict, "INV-2024-01-0001"],
        ) as reserve:
            summary = generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)

        self.assertEqual(reserve.call_count, 2)
        self.assertEqual(summary.invoice_number, "INV-2024-01-0001")

    def test_exhausted_retries_raise_sequence_conflict(self) -> None:
        conflict = IntegrityError("INSERT INTO invoice_sequences", {}, Exception("duplicate key"))
        with patch(
            "workforce.services.monthly_summaries.reserve_invoice_number",
            side_effect=conflict,
        ):
            with self.assertRaises(SequenceConflictError) as ctx:
                generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(list_monthly_summaries(self.db, employee_id=self.employee.id), [])

    def test_database_failure_becomes_aggregation_error(self) -> None:
        failure = OperationalError("SELECT timesheets", {}, Exception("connection lost"))
        with patch(
            "workforce.services.monthly_summaries.load_timesheet_rows",
            side_effect=failure,
        ):
            with self.assertRaises(AggregationError) as ctx:
                generate_monthly_summary(self.db, employee_id=self.employee.id, year=2024, month=1)

        self.assertEqual(ctx.exception.code, "SUMMARY_AGGREGATION_FAILED")
        self.assertIs(ctx.exception.__cause__, failure)
        self.assertEqual(list_monthly_summaries(self.db, employee_id=self.employee.id), [])


if __name__ == "__main__":
    unittest.main()
