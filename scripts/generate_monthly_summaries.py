#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from datetime import date
from typing import Any

from workforce.db import SessionLocal
from workforce.logging_utils import setup_json_logging
from workforce.services.monthly_summaries import generate_monthly_summaries_for_all


def build_parser() -> argparse.ArgumentParser:
    today = date.today()
    parser = argparse.ArgumentParser(description="Generate monthly summaries for every employee.")
    parser.add_argument("--month", type=int, default=today.month)
    parser.add_argument("--year", type=int, default=today.year)
    parser.add_argument("--tax", type=str, default=None, help="Tax percentage override (0-100).")
    parser.add_argument("--include-inactive", action="store_true")
    return parser


def run(argv: list[str] | None = None) -> dict[str, Any]:
    args = build_parser().parse_args(argv)
    setup_json_logging(service="generate_monthly_summaries")

    with SessionLocal() as db:
        report = generate_monthly_summaries_for_all(
            db,
            year=args.year,
            month=args.month,
            tax_percentage=args.tax,
            include_inactive=args.include_inactive,
        )

    return {
        "year": report.year,
        "month": report.month,
        "total": report.total,
        "generated": report.generated,
        "skipped": report.skipped,
        "failed": report.failed,
        "items": [asdict(item) for item in report.items],
    }


if __name__ == "__main__":
    result = run()
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    sys.exit(1 if result["failed"] else 0)
