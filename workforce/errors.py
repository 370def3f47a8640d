from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ResolutionError(ApiError):
    """Employee cannot be mapped to an attendance identity."""

    def __init__(self, employee_id: int, reason: str):
        super().__init__(404, "EMPLOYEE_UNRESOLVED", f"Employee {employee_id}: {reason}")
        self.employee_id = employee_id
        self.reason = reason


class AggregationError(ApiError):
    def __init__(self, employee_id: int, message: str):
        super().__init__(500, "SUMMARY_AGGREGATION_FAILED", message)
        self.employee_id = employee_id


class SequenceConflictError(ApiError):
    def __init__(self, year: int, month: int, attempts: int):
        super().__init__(
            409,
            "INVOICE_SEQUENCE_CONFLICT",
            f"Could not reserve an invoice number for {year}-{month:02d} after {attempts} attempts",
        )
        self.year = year
        self.month = month
        self.attempts = attempts


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
