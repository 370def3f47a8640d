from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from workforce.audit import log_audit
from workforce.db import get_db
from workforce.errors import ApiError
from workforce.models import AuditActorType, MonthlySummaryStatus
from workforce.schemas import (
    MonthlySummaryBatchRequest,
    MonthlySummaryBatchResponse,
    MonthlySummaryGenerateRequest,
    MonthlySummaryGenerateResponse,
    MonthlySummaryRead,
    ViewerRole,
)
from workforce.services.exports import XLSX_MEDIA_TYPE, build_monthly_summaries_xlsx_bytes
from workforce.services.monthly_summaries import (
    generate_monthly_summaries_for_all,
    generate_monthly_summary,
    get_monthly_summary,
    list_monthly_summaries,
)

router = APIRouter(tags=["monthly-summaries"])


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.post(
    "/api/admin/monthly-summaries/generate",
    response_model=MonthlySummaryGenerateResponse,
    status_code=status.HTTP_201_CREATED,
)
def generate_summary_endpoint(
    payload: MonthlySummaryGenerateRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> MonthlySummaryGenerateResponse:
    try:
        summary = generate_monthly_summary(
            db,
            employee_id=payload.employee_id,
            year=payload.year,
            month=payload.month,
            tax_percentage=payload.tax_percentage,
        )
    except ApiError as exc:
        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id="admin",
            action="MONTHLY_SUMMARY_GENERATED",
            success=False,
            entity_type="employee",
            entity_id=str(payload.employee_id),
            details={"year": payload.year, "month": payload.month, "error_code": exc.code},
            request_id=_request_id(request),
        )
        raise

    response = MonthlySummaryGenerateResponse(
        summary=MonthlySummaryRead.model_validate(summary),
        skipped=summary.status == MonthlySummaryStatus.APPROVED,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action="MONTHLY_SUMMARY_SKIPPED" if response.skipped else "MONTHLY_SUMMARY_GENERATED",
        success=True,
        entity_type="monthly_summary",
        entity_id=str(response.summary.id),
        details={
            "employee_id": payload.employee_id,
            "year": payload.year,
            "month": payload.month,
            "invoice_number": response.summary.invoice_number,
        },
        request_id=_request_id(request),
    )
    return response


@router.post(
    "/api/admin/monthly-summaries/generate-all",
    response_model=MonthlySummaryBatchResponse,
)
def generate_all_summaries_endpoint(
    payload: MonthlySummaryBatchRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> MonthlySummaryBatchResponse:
    report = generate_monthly_summaries_for_all(
        db,
        year=payload.year,
        month=payload.month,
        tax_percentage=payload.tax_percentage,
        include_inactive=payload.include_inactive,
    )
    response = MonthlySummaryBatchResponse.from_report(report)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action="MONTHLY_SUMMARY_BATCH_GENERATED",
        success=response.failed == 0,
        entity_type="monthly_summary_batch",
        entity_id=f"{payload.year:04d}-{payload.month:02d}",
        details={
            "total": response.total,
            "generated": response.generated,
            "skipped": response.skipped,
            "failed": response.failed,
        },
        request_id=_request_id(request),
    )
    return response


@router.get(
    "/api/admin/monthly-summaries",
    response_model=list[MonthlySummaryRead],
)
def list_summaries_endpoint(
    employee_id: int | None = Query(default=None, ge=1),
    year: int | None = Query(default=None, ge=2000, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    summary_status: MonthlySummaryStatus | None = Query(default=None, alias="status"),
    viewer_role: ViewerRole = Query(default="admin"),
    db: Session = Depends(get_db),
) -> list[MonthlySummaryRead]:
    summaries = list_monthly_summaries(
        db,
        employee_id=employee_id,
        year=year,
        month=month,
        status=summary_status,
    )
    return [MonthlySummaryRead.model_validate(item).for_viewer(viewer_role) for item in summaries]


@router.get("/api/admin/monthly-summaries/export.xlsx")
def export_summaries_xlsx(
    request: Request,
    employee_id: int | None = Query(default=None, ge=1),
    year: int | None = Query(default=None, ge=2000, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    summary_status: MonthlySummaryStatus | None = Query(default=None, alias="status"),
    viewer_role: ViewerRole = Query(default="admin"),
    db: Session = Depends(get_db),
) -> Response:
    summaries = list_monthly_summaries(
        db,
        employee_id=employee_id,
        year=year,
        month=month,
        status=summary_status,
    )
    payload = build_monthly_summaries_xlsx_bytes(db, summaries, viewer_role=viewer_role)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action="MONTHLY_SUMMARY_EXPORT_XLSX",
        success=True,
        entity_type="export",
        entity_id="bulk",
        details={
            "employee_id": employee_id,
            "year": year,
            "month": month,
            "status": summary_status.value if summary_status is not None else None,
            "viewer_role": viewer_role,
            "count": len(summaries),
        },
        request_id=_request_id(request),
    )
    period = f"{year:04d}-{month:02d}" if year is not None and month is not None else "all"
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="monthly-summaries-{period}.xlsx"'},
    )


@router.get("/api/admin/monthly-summaries/{summary_id}/export.xlsx")
def export_summary_xlsx(
    summary_id: int,
    request: Request,
    viewer_role: ViewerRole = Query(default="admin"),
    db: Session = Depends(get_db),
) -> Response:
    summary = get_monthly_summary(db, summary_id)
    payload = build_monthly_summaries_xlsx_bytes(db, [summary], viewer_role=viewer_role)
    filename = f"monthly-summary-{summary.employee_id}-{summary.year:04d}-{summary.month:02d}.xlsx"
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id="admin",
        action="MONTHLY_SUMMARY_EXPORT_XLSX",
        success=True,
        entity_type="monthly_summary",
        entity_id=str(summary_id),
        details={"viewer_role": viewer_role},
        request_id=_request_id(request),
    )
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/api/admin/monthly-summaries/{summary_id}",
    response_model=MonthlySummaryRead,
)
def get_summary_endpoint(
    summary_id: int,
    viewer_role: ViewerRole = Query(default="admin"),
    db: Session = Depends(get_db),
) -> MonthlySummaryRead:
    summary = get_monthly_summary(db, summary_id)
    return MonthlySummaryRead.model_validate(summary).for_viewer(viewer_role)
