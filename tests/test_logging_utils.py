import io
import json
import logging
import sys
import unittest
from datetime import date
from decimal import Decimal

from workforce.logging_utils import JsonFormatter, setup_json_logging


class JsonLoggingTests(unittest.TestCase):
    def tearDown(self) -> None:
        logging.getLogger().handlers.clear()

    def test_extra_fields_are_serialized(self) -> None:
        stream = io.StringIO()
        setup_json_logging(service="payroll-test", stream=stream)

        logging.getLogger("workforce.summaries").info(
            "monthly_summary_computed",
            extra={"employee_id": 7, "subtotal": Decimal("3500.00"), "period_start": date(2024, 1, 1)},
        )

        payload = json.loads(stream.getvalue().strip())
        self.assertEqual(payload["message"], "monthly_summary_computed")
        self.assertEqual(payload["service"], "payroll-test")
        self.assertEqual(payload["logger"], "workforce.summaries")
        self.assertEqual(payload["employee_id"], 7)
        self.assertEqual(payload["subtotal"], "3500.00")
        self.assertEqual(payload["period_start"], "2024-01-01")
        self.assertNotIn("args", payload)

    def test_exception_is_included(self) -> None:
        formatter = JsonFormatter()
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.getLogger("x").makeRecord(
                "x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        payload = json.loads(formatter.format(record))
        self.assertIn("RuntimeError: boom", payload["exception"])
        self.assertNotIn("service", payload)


if __name__ == "__main__":
    unittest.main()
