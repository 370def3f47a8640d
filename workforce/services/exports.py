from __future__ import annotations

from collections.abc import Sequence
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session

from workforce.models import Employee, MonthlySummary
from workforce.schemas import MonthlySummaryRead, ViewerRole

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

SUMMARY_SHEET_TITLE = "Summaries"
BREAKDOWN_SHEET_TITLE = "Project Breakdown"

SUMMARY_HEADERS = [
    "Summary ID",
    "Employee ID",
    "Employee",
    "Period",
    "Status",
    "Working Days",
    "Worked Hours",
    "OT Hours",
    "Approved Leave",
    "Absent Days",
    "Payment Type",
    "Subtotal",
    "Tax %",
    "Tax Amount",
    "Total",
    "Invoice Number",
]
BREAKDOWN_HEADERS = [
    "Summary ID",
    "Employee",
    "Period",
    "Project ID",
    "Project",
    "Days Worked",
    "Total Hours",
    "OT Hours",
]

# 1-based columns of SUMMARY_HEADERS holding decimals.
DECIMAL_COLUMNS = (7, 8, 9, 12, 13, 14, 15)

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
HEADER_FONT = Font(bold=True, color="FFFFFF")
THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _style_body(ws: Worksheet, *, decimal_columns: Sequence[int] = ()) -> None:
    for row_idx in range(2, ws.max_row + 1):
        for cell in ws[row_idx]:
            cell.border = THIN_BORDER
            if row_idx % 2 == 0:
                cell.fill = ZEBRA_FILL
            if cell.column in decimal_columns and cell.value is not None:
                cell.number_format = "0.00"
    ws.freeze_panes = "A2"


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        col_letter = get_column_letter(column_cells[0].column)
        max_len = max(len("" if cell.value is None else str(cell.value)) for cell in column_cells)
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _employee_names(db: Session, employee_ids: set[int]) -> dict[int, str]:
    if not employee_ids:
        return {}
    rows = db.execute(select(Employee.id, Employee.full_name).where(Employee.id.in_(employee_ids))).all()
    return {row.id: row.full_name for row in rows}


def _summary_row(view: MonthlySummaryRead, employee_name: str) -> list[object]:
    return [
        view.id,
        view.employee_id,
        employee_name,
        f"{view.year:04d}-{view.month:02d}",
        view.status.value,
        view.total_working_days,
        view.total_worked_hours,
        view.total_ot_hours,
        view.approved_leaves,
        view.absent_days,
        view.payment_type.value if view.payment_type is not None else None,
        view.subtotal,
        view.tax_percentage,
        view.tax_amount,
        view.total_amount,
        view.invoice_number,
    ]


def build_monthly_summaries_xlsx_bytes(
    db: Session,
    summaries: Sequence[MonthlySummary],
    *,
    viewer_role: ViewerRole = "admin",
) -> bytes:
    """One row per summary plus a sheet with each summary's project breakdown.

    Financial columns are left empty for roles that may not see them.
    """
    wb = Workbook()
    summary_ws = wb.active
    summary_ws.title = SUMMARY_SHEET_TITLE
    summary_ws.append(SUMMARY_HEADERS)
    _style_header(summary_ws)

    breakdown_ws = wb.create_sheet(BREAKDOWN_SHEET_TITLE)
    breakdown_ws.append(BREAKDOWN_HEADERS)
    _style_header(breakdown_ws)

    names = _employee_names(db, {summary.employee_id for summary in summaries})
    for summary in summaries:
        view = MonthlySummaryRead.model_validate(summary).for_viewer(viewer_role)
        employee_name = names.get(view.employee_id, f"Employee {view.employee_id}")
        period = f"{view.year:04d}-{view.month:02d}"
        summary_ws.append(_summary_row(view, employee_name))
        for item in view.project_breakdown:
            breakdown_ws.append(
                [
                    view.id,
                    employee_name,
                    period,
                    item.project_id,
                    item.project_name,
                    item.days_worked,
                    item.total_hours,
                    item.ot_hours,
                ]
            )

    _style_body(summary_ws, decimal_columns=DECIMAL_COLUMNS)
    _style_body(breakdown_ws, decimal_columns=(7, 8))
    _auto_width(summary_ws)
    _auto_width(breakdown_ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
