"""Paginated PDF rendering of an aggregated survey report.

Layout is computed with a top-down cursor (points from the top edge). A page
break happens whenever the next block would push the cursor past
``PAGE_BREAK_Y``, both between questions and inside a table, so the same
report always paginates the same way. The canvas runs in invariant mode,
which drops timestamps and random document ids from the output.
"""
from __future__ import annotations

import io
from typing import List, Sequence, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from reports import ReportResult, QuestionSummary, Breakdown

PDF_MEDIA_TYPE = "application/pdf"

PAGE_SIZE = A4
MARGIN = 50
PAGE_BREAK_Y = 750
ROW_HEIGHT = 20
CELL_PADDING = 6
COLUMN_WIDTHS = (375, 120)
TABLE_WIDTH = sum(COLUMN_WIDTHS)

VERBATIM_MAX_CHARS = 60
VERBATIM_MAX_ROWS = 5
DATE_FORMAT = "%Y-%m-%d %H:%M"

HEADER_FILL = colors.HexColor("#2F5597")
HEADER_TEXT = colors.white
STRIPE_FILL = colors.HexColor("#F2F2F2")
BORDER = colors.HexColor("#808080")

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_ITALIC = "Helvetica-Oblique"


def truncate(text: str, limit: int = VERBATIM_MAX_CHARS) -> str:
    """Cut text to ``limit`` characters, then collapse whitespace in what is kept."""
    text = text.strip()
    clipped = len(text) > limit
    text = " ".join(text[:limit].split())
    return text + "..." if clipped else text


def _fit(text: str, font: str, size: float, width: float) -> str:
    """Shorten text with an ellipsis until it fits the given width."""
    if stringWidth(text, font, size) <= width:
        return text
    while text and stringWidth(text + "...", font, size) > width:
        text = text[:-1]
    return text + "..."


def table_rows(summary: QuestionSummary) -> Tuple[Tuple[str, str], List[Tuple[str, str]], int]:
    """Return (header, rows, hidden_count) for a question's table."""
    if isinstance(summary.shape, Breakdown):
        rows = [(option, str(count)) for option, count in summary.shape.counts.items()]
        return ("Opción", "Cantidad"), rows, 0
    entries = summary.shape.entries
    rows = [(truncate(e.value), e.submitted_at.strftime(DATE_FORMAT)) for e in entries[:VERBATIM_MAX_ROWS]]
    return ("Respuesta", "Fecha"), rows, max(0, len(entries) - VERBATIM_MAX_ROWS)


class _PageWriter:
    def __init__(self, buf):
        self.canvas = canvas.Canvas(buf, pagesize=PAGE_SIZE, invariant=1)
        self.page_height = PAGE_SIZE[1]
        self.y = MARGIN

    def new_page(self):
        self.canvas.showPage()
        self.y = MARGIN

    def ensure(self, height: float) -> bool:
        """Break the page if ``height`` more points would pass the threshold."""
        if self.y + height > PAGE_BREAK_Y:
            self.new_page()
            return True
        return False

    def text(self, value: str, font: str, size: float, x: float = MARGIN, color=colors.black):
        self.canvas.setFillColor(color)
        self.canvas.setFont(font, size)
        self.canvas.drawString(x, self.page_height - self.y, value)

    def paragraph(self, value: str, font: str, size: float, leading: float):
        for line in simpleSplit(value, font, size, TABLE_WIDTH):
            self.ensure(leading)
            self.y += leading
            self.text(line, font, size)

    def row(self, cells: Sequence[str], fill, font: str, text_color):
        c = self.canvas
        bottom = self.page_height - self.y - ROW_HEIGHT
        x = MARGIN
        c.setStrokeColor(BORDER)
        c.setLineWidth(0.5)
        for width, value in zip(COLUMN_WIDTHS, cells):
            if fill is not None:
                c.setFillColor(fill)
                c.rect(x, bottom, width, ROW_HEIGHT, stroke=1, fill=1)
            else:
                c.rect(x, bottom, width, ROW_HEIGHT, stroke=1, fill=0)
            c.setFillColor(text_color)
            c.setFont(font, 10)
            c.drawString(x + CELL_PADDING, bottom + 6, _fit(value, font, 10, width - 2 * CELL_PADDING))
            x += width
        self.y += ROW_HEIGHT

    def save(self):
        self.canvas.save()


def _render_title(w: _PageWriter, result: ReportResult):
    w.y += 18
    w.text("Reporte de Encuesta", FONT_BOLD, 18)
    w.y += 10
    w.paragraph(result.survey.title, FONT_BOLD, 14, 20)
    if result.survey.description:
        w.paragraph(result.survey.description, FONT, 10, 14)
    w.y += 18
    w.text(f"Total de respuestas: {result.survey.total_unique_submission_timestamps}", FONT, 11)
    w.y += 24


def _render_question(w: _PageWriter, number: int, summary: QuestionSummary):
    header, rows, hidden = table_rows(summary)
    heading = simpleSplit(f"{number}. {summary.question_text}", FONT_BOLD, 12, TABLE_WIDTH)

    # keep the heading together with the table header and its first row
    w.ensure(16 * len(heading) + 16 + ROW_HEIGHT * 2)
    for line in heading:
        w.y += 16
        w.text(line, FONT_BOLD, 12)
    w.y += 14
    w.text(f"Tipo: {summary.question_type}  |  Respuestas: {summary.total_answers}", FONT, 9, color=colors.grey)
    w.y += 6

    w.row(header, HEADER_FILL, FONT_BOLD, HEADER_TEXT)
    for index, cells in enumerate(rows):
        if w.ensure(ROW_HEIGHT):
            w.row(header, HEADER_FILL, FONT_BOLD, HEADER_TEXT)
        w.row(cells, STRIPE_FILL if index % 2 else None, FONT, colors.black)

    if hidden:
        w.ensure(16)
        w.y += 14
        w.text(f"+{hidden} respuestas más", FONT_ITALIC, 9, color=colors.grey)
    w.y += 24


def render_pdf(result: ReportResult) -> bytes:
    """Render a report as a multi-page PDF; identical reports give identical bytes."""
    buf = io.BytesIO()
    w = _PageWriter(buf)
    w.canvas.setTitle(f"Reporte - {result.survey.title}")
    w.canvas.setAuthor("FeedFlow")

    _render_title(w, result)
    if not result.questions:
        w.text("Sin respuestas registradas.", FONT_ITALIC, 11, color=colors.grey)
    for number, summary in enumerate(result.questions, start=1):
        _render_question(w, number, summary)

    w.save()
    return buf.getvalue()
