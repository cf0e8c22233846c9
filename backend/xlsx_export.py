# Spreadsheet rendering of an aggregated survey report
from __future__ import annotations

import io

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill

from reports import ReportResult, Breakdown

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SHEET_TITLE = "Reporte"
LABEL_COLUMN_WIDTH = 60
VALUE_COLUMN_WIDTH = 20
DATE_FORMAT = "%Y-%m-%d %H:%M"

_TITLE_FONT = Font(bold=True, size=14)
_BOLD = Font(bold=True)
_SECTION_FILL = PatternFill(start_color="FFDDEBF7", end_color="FFDDEBF7", fill_type="solid")


def _put(ws, row: int, column: int, value):
    """Write a cell; strings are sanitised and always stored as text (never formulas)."""
    cell = ws.cell(row=row, column=column)
    if isinstance(value, str):
        cell.value = ILLEGAL_CHARACTERS_RE.sub("", value)
        cell.data_type = "s"
    else:
        cell.value = value
    return cell


def render_xlsx(result: ReportResult) -> bytes:
    """Render a report as a single-sheet workbook, keeping the report's ordering."""
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE

    _put(ws, 1, 1, f"Reporte: {result.survey.title}").font = _TITLE_FONT
    _put(ws, 2, 1, "Total de respuestas").font = _BOLD
    _put(ws, 2, 2, result.survey.total_unique_submission_timestamps)
    row = 4

    for summary in result.questions:
        for column, value in ((1, summary.question_text), (2, f"{summary.total_answers} respuestas")):
            cell = _put(ws, row, column, value)
            cell.font = _BOLD
            cell.fill = _SECTION_FILL
        row += 1

        if isinstance(summary.shape, Breakdown):
            for option, count in summary.shape.counts.items():
                _put(ws, row, 1, f"  {option}")
                _put(ws, row, 2, count)
                row += 1
        else:
            for entry in summary.shape.entries:
                _put(ws, row, 1, f"  {entry.value}")
                _put(ws, row, 2, entry.submitted_at.strftime(DATE_FORMAT))
                row += 1

        row += 1  # blank separator

    ws.column_dimensions["A"].width = LABEL_COLUMN_WIDTH
    ws.column_dimensions["B"].width = VALUE_COLUMN_WIDTH

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
