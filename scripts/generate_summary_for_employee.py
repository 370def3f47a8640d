#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workforce.db import SessionLocal
from workforce.errors import ApiError
from workforce.logging_utils import setup_json_logging
from workforce.models import Employee
from workforce.schemas import MonthlySummaryRead
from workforce.services.monthly_summaries import generate_monthly_summary


def build_parser() -> argparse.ArgumentParser:
    today = date.today()
    parser = argparse.ArgumentParser(description="Generate the monthly summary of a single employee.")
    parser.add_argument("employee", help="Employee id or full name (case-insensitive).")
    parser.add_argument("--month", type=int, default=today.month)
    parser.add_argument("--year", type=int, default=today.year)
    parser.add_argument("--tax", type=str, default=None, help="Tax percentage override (0-100).")
    return parser


def find_employee_id(db: Session, needle: str) -> int | None:
    if needle.isdigit():
        return db.scalar(select(Employee.id).where(Employee.id == int(needle)))
    return db.scalar(
        select(Employee.id)
        .where(func.lower(Employee.full_name) == needle.strip().lower())
        .order_by(Employee.id.asc())
        .limit(1)
    )


def run(argv: list[str] | None = None) -> dict[str, Any]:
    args = build_parser().parse_args(argv)
    setup_json_logging(service="generate_summary_for_employee")

    with SessionLocal() as db:
        employee_id = find_employee_id(db, args.employee)
        if employee_id is None:
            return {"ok": False, "error": {"code": "EMPLOYEE_NOT_FOUND", "message": f"No employee matches {args.employee!r}"}}
        try:
            summary = generate_monthly_summary(
                db,
                employee_id=employee_id,
                year=args.year,
                month=args.month,
                tax_percentage=args.tax,
            )
        except ApiError as exc:
            return {"ok": False, "error": {"code": exc.code, "message": exc.message}}
        return {"ok": True, "summary": MonthlySummaryRead.model_validate(summary).model_dump(mode="json")}


if __name__ == "__main__":
    result = run()
    print(json.dumps(result, ensure_ascii=False, indent=2))
    sys.exit(0 if result["ok"] else 1)
