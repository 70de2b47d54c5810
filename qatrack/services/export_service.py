import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
RATE_FILLS = {
    "green": PatternFill(start_color="27AE60", end_color="27AE60", fill_type="solid"),
    "amber": PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid"),
    "red": PatternFill(start_color="E74C3C", end_color="E74C3C", fill_type="solid"),
}
WHITE_FONT = Font(color="FFFFFF", bold=True)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

PROJECT_COLUMNS = [
    ("project_name", "Project"),
    ("total_bugs", "Total Bugs"),
    ("open_bugs", "Open Bugs"),
    ("resolved_bugs", "Resolved Bugs"),
    ("total_test_cases", "Test Cases"),
    ("active_test_cases", "Active"),
    ("closed_test_cases", "Closed"),
    ("passed_tests", "Passed"),
    ("failed_tests", "Failed"),
    ("pending_tests", "Pending"),
    ("success_rate", "Success Rate %"),
]


def _rate_band(rate: int) -> str:
    if rate >= 80:
        return "green"
    if rate >= 50:
        return "amber"
    return "red"


def _write_header(ws, row: int, headers: list[str]) -> None:
    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center")


def _autosize(ws, minimum: int = 10, maximum: int = 45) -> None:
    widths = {}
    for row in ws.iter_rows():
        for cell in row:
            if cell.value is None:
                continue
            widths[cell.column] = max(widths.get(cell.column, 0), len(str(cell.value)))
    for col, width in widths.items():
        ws.column_dimensions[get_column_letter(col)].width = min(max(width + 2, minimum), maximum)


def export_report_xlsx(report: dict) -> io.BytesIO:
    """
    Generate a styled Excel workbook from a build_report() result.
    Returns a BytesIO buffer ready for Flask send_file.
    """
    wb = Workbook()

    # ── Sheet 1: Summary ──────────────────────────────────────────────
    ws = wb.active
    ws.title = "Summary"
    ws["A1"] = "QA Report"
    ws["A1"].font = Font(size=16, bold=True)
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    aggregate = report.get("aggregate", {})
    ws["A4"] = "Overall Success Rate"
    ws["A4"].font = Font(size=12, bold=True)
    rate = aggregate.get("success_rate", 0)
    ws["B4"] = f"{rate}%"
    ws["B4"].fill = RATE_FILLS[_rate_band(rate)]
    ws["B4"].font = WHITE_FONT
    ws["B4"].alignment = Alignment(horizontal="center")

    row = 6
    _write_header(ws, row, ["Metric", "Value"])
    for key, label in PROJECT_COLUMNS[1:]:
        row += 1
        ws.cell(row=row, column=1, value=label).border = THIN_BORDER
        ws.cell(row=row, column=2, value=aggregate.get(key, 0)).border = THIN_BORDER
    _autosize(ws)

    # ── Sheet 2: Projects ─────────────────────────────────────────────
    ws2 = wb.create_sheet("Projects")
    _write_header(ws2, 1, [label for _key, label in PROJECT_COLUMNS])
    for i, project in enumerate(report.get("projects", []), 2):
        for col, (key, _label) in enumerate(PROJECT_COLUMNS, 1):
            ws2.cell(row=i, column=col, value=project.get(key)).border = THIN_BORDER
    _autosize(ws2)

    # ── Sheet 3: Bug Trend ────────────────────────────────────────────
    ws3 = wb.create_sheet("Bug Trend")
    _write_header(ws3, 1, ["Date", "Created", "Resolved"])
    for i, point in enumerate(report.get("trend", []), 2):
        ws3.cell(row=i, column=1, value=point["date"]).border = THIN_BORDER
        ws3.cell(row=i, column=2, value=point["created"]).border = THIN_BORDER
        ws3.cell(row=i, column=3, value=point["resolved"]).border = THIN_BORDER
    _autosize(ws3)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    logger.info("Report workbook generated for %d project(s)", len(report.get("projects", [])))
    return buf


def export_report_csv(report: dict) -> str:
    """Per-project statistics as CSV, one row per project plus a total row."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([key for key, _label in PROJECT_COLUMNS])
    for project in report.get("projects", []):
        writer.writerow([project.get(key) for key, _label in PROJECT_COLUMNS])

    aggregate = report.get("aggregate", {})
    writer.writerow(["TOTAL"] + [aggregate.get(key) for key, _label in PROJECT_COLUMNS[1:]])
    return buf.getvalue()
