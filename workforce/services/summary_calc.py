from __future__ import annotations

import re
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from math import floor
from typing import Any, Iterable

from workforce.models import PaymentType

ZERO = Decimal("0")
CENTS = Decimal("0.01")
DEFAULT_OVERTIME_MULTIPLIER = Decimal("1.5")
UNASSIGNED_PROJECT_NAME = "Unassigned"


@dataclass(frozen=True)
class PayrollFigures:
    subtotal: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class TimesheetRow:
    work_date: date
    total_hours: Decimal
    overtime_hours: Decimal
    project_id: int | None


def month_date_range(year: int, month: int) -> tuple[date, date]:
    days_in_month = monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, days_in_month)


def weekdays_in_month(year: int, month: int) -> int:
    first_day, last_day = month_date_range(year, month)
    count = 0
    current = first_day
    while current <= last_day:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_absent_days(
    *,
    weekdays: int,
    total_working_days: int,
    approved_leaves: Decimal,
) -> int:
    return max(0, weekdays - total_working_days - floor(approved_leaves))


def calculate_subtotal(
    *,
    payment_type: PaymentType | str | None,
    rate: Decimal | None,
    worked_hours: Decimal,
    ot_hours: Decimal,
    total_working_days: int,
    weekdays: int,
    overtime_multiplier: Decimal = DEFAULT_OVERTIME_MULTIPLIER,
) -> Decimal:
    """Gross pay for the month before tax.

    Unknown payment types and missing rates yield zero so employees without a
    pay configuration still get a summary of their hours.
    """
    if payment_type is None or rate is None:
        return ZERO
    try:
        kind = PaymentType(payment_type)
    except ValueError:
        return ZERO

    if kind is PaymentType.HOURLY:
        return worked_hours * rate + ot_hours * rate * overtime_multiplier
    if kind is PaymentType.DAILY:
        return Decimal(total_working_days) * rate
    if kind is PaymentType.MONTHLY:
        if weekdays <= 0:
            return ZERO
        return rate * Decimal(total_working_days) / Decimal(weekdays)
    return rate


def rate_for_payment_type(
    payment_type: PaymentType | None,
    *,
    hourly_rate: Decimal | None,
    daily_rate: Decimal | None,
    monthly_rate: Decimal | None,
    contract_rate: Decimal | None,
) -> Decimal | None:
    rates = {
        PaymentType.HOURLY: hourly_rate,
        PaymentType.DAILY: daily_rate,
        PaymentType.MONTHLY: monthly_rate,
        PaymentType.CONTRACT: contract_rate,
    }
    if payment_type is None:
        return None
    value = rates.get(payment_type)
    return None if value is None else to_decimal(value)


def calculate_payroll(subtotal: Decimal, tax_percentage: Decimal) -> PayrollFigures:
    # Tax stays unrounded until the final total.
    tax_amount = subtotal * tax_percentage / Decimal(100) if subtotal > 0 else ZERO
    return PayrollFigures(
        subtotal=subtotal,
        tax_percentage=tax_percentage,
        tax_amount=tax_amount,
        total_amount=round_money(subtotal + tax_amount),
    )


def count_distinct_days(days: Iterable[date]) -> int:
    return len(set(days))


def build_project_breakdown(
    rows: Iterable[TimesheetRow],
    project_names: dict[int, str],
) -> list[dict[str, Any]]:
    groups: dict[int | None, dict[str, Any]] = {}
    for row in rows:
        group = groups.setdefault(
            row.project_id,
            {"dates": set(), "total_hours": ZERO, "ot_hours": ZERO},
        )
        group["dates"].add(row.work_date)
        group["total_hours"] += row.total_hours
        group["ot_hours"] += row.overtime_hours

    breakdown: list[dict[str, Any]] = []
    for project_id, group in groups.items():
        name = project_names.get(project_id) if project_id is not None else None
        breakdown.append(
            {
                "project_id": project_id,
                "project_name": name or UNASSIGNED_PROJECT_NAME,
                "days_worked": len(group["dates"]),
                "total_hours": float(group["total_hours"]),
                "ot_hours": float(group["ot_hours"]),
            }
        )

    breakdown.sort(key=lambda item: (-item["total_hours"], item["project_name"], item["project_id"] or 0))
    return breakdown


def format_invoice_number(prefix: str, year: int, month: int, sequence: int, width: int = 4) -> str:
    return f"{prefix}-{year:04d}-{month:02d}-{sequence:0{width}d}"


def parse_invoice_sequence(invoice_number: str | None, prefix: str, year: int, month: int) -> int | None:
    if not invoice_number:
        return None
    pattern = rf"^{re.escape(prefix)}-{year:04d}-{month:02d}-(\d+)$"
    match = re.match(pattern, invoice_number.strip())
    if match is None:
        return None
    return int(match.group(1))
