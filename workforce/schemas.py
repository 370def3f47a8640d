import json
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from workforce.models import MonthlySummaryStatus, PaymentType
from workforce.services.monthly_summaries import BatchOutcome, BatchReport

ViewerRole = Literal["admin", "supervisor", "staff"]

FINANCIAL_FIELDS = (
    "payment_type",
    "subtotal",
    "tax_percentage",
    "tax_amount",
    "total_amount",
    "invoice_number",
)


class ProjectBreakdownItem(BaseModel):
    project_id: int | None = None
    project_name: str
    days_worked: int
    total_hours: float
    ot_hours: float


class MonthlySummaryRead(BaseModel):
    id: int
    employee_id: int
    month: int
    year: int
    total_working_days: int
    total_worked_hours: Decimal
    total_ot_hours: Decimal
    approved_leaves: Decimal
    absent_days: int
    project_breakdown: list[ProjectBreakdownItem] = Field(default_factory=list)
    payment_type: PaymentType | None = None
    subtotal: Decimal | None = None
    tax_percentage: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    invoice_number: str | None = None
    status: MonthlySummaryStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("project_breakdown", mode="before")
    @classmethod
    def _parse_breakdown(cls, value: object) -> object:
        # Older rows may hold the breakdown as a JSON string or NULL.
        if value is None or value == "":
            return []
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except ValueError:
                return []
            return parsed if isinstance(parsed, list) else []
        return value

    def for_viewer(self, role: ViewerRole) -> "MonthlySummaryRead":
        if role == "admin":
            return self
        return self.model_copy(update={name: None for name in FINANCIAL_FIELDS})


class MonthlySummaryGenerateRequest(BaseModel):
    employee_id: int = Field(ge=1)
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    tax_percentage: Decimal | None = Field(default=None, ge=0, le=100)


class MonthlySummaryGenerateResponse(BaseModel):
    summary: MonthlySummaryRead
    skipped: bool


class MonthlySummaryBatchRequest(BaseModel):
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    tax_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    include_inactive: bool = False


class MonthlySummaryBatchItemRead(BaseModel):
    employee_id: int
    employee_name: str
    outcome: BatchOutcome
    summary_id: int | None = None
    invoice_number: str | None = None
    error_code: str | None = None
    message: str | None = None

    model_config = ConfigDict(from_attributes=True)


class MonthlySummaryBatchResponse(BaseModel):
    year: int
    month: int
    total: int
    generated: int
    skipped: int
    failed: int
    items: list[MonthlySummaryBatchItemRead]

    @classmethod
    def from_report(cls, report: BatchReport) -> "MonthlySummaryBatchResponse":
        return cls(
            year=report.year,
            month=report.month,
            total=report.total,
            generated=report.generated,
            skipped=report.skipped,
            failed=report.failed,
            items=[MonthlySummaryBatchItemRead.model_validate(item) for item in report.items],
        )
