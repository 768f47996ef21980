"""Excel, Word and PDF renderings of a flat record set."""
from __future__ import annotations

import io
from datetime import datetime
from typing import Any, Mapping, Sequence

from docx import Document
from markupsafe import escape
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter


class PdfGenerationError(RuntimeError):
    """Raised when WeasyPrint cannot generate a PDF due to missing libraries."""


_REQUIRED_NATIVE_DEPS_MESSAGE = (
    "Unable to generate PDF exports because WeasyPrint's native dependencies "
    "are missing. Install the Pango, GObject, and Cairo libraries to enable "
    "PDF generation."
)

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
HEADER_ALIGN = Alignment(horizontal="center", vertical="center")
COLUMN_WIDTH = 20
# Excel limits sheet titles to 31 characters.
SHEET_TITLE_LIMIT = 31


def _cell_value(value: Any) -> Any:
    if value is None or isinstance(value, (int, float, bool, datetime)):
        return value
    return str(value)


def build_workbook(
    columns: Sequence[str], rows: Sequence[Mapping[str, Any]], title: str = "Report"
) -> bytes:
    """Return an ``.xlsx`` document with one header row and one row per record."""

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = (title or "Report")[:SHEET_TITLE_LIMIT]

    for index, column in enumerate(columns, 1):
        cell = sheet.cell(row=1, column=index, value=column)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGN
        sheet.column_dimensions[get_column_letter(index)].width = COLUMN_WIDTH

    for row in rows:
        sheet.append([_cell_value(row.get(column)) for column in columns])

    sheet.freeze_panes = "A2"

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_document(
    columns: Sequence[str], rows: Sequence[Mapping[str, Any]], title: str = "Report"
) -> bytes:
    """Return a ``.docx`` document holding one table: a header row, then the records."""

    document = Document()
    document.add_heading(title or "Report", level=1)

    if columns:
        table = document.add_table(rows=1, cols=len(columns))
        table.style = "Table Grid"
        for cell, column in zip(table.rows[0].cells, columns):
            cell.text = ""
            cell.paragraphs[0].add_run(str(column)).bold = True
        for row in rows:
            cells = table.add_row().cells
            for cell, column in zip(cells, columns):
                value = row.get(column)
                cell.text = "" if value is None else str(value)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def render_records_html(
    title: str,
    columns: Sequence[str],
    rows: Sequence[Mapping[str, Any]],
    stats: Mapping[str, int] | None = None,
) -> str:
    header = "".join(f"<th>{escape(column)}</th>" for column in columns)
    body = "".join(
        "<tr>"
        + "".join(
            f"<td>{escape('' if row.get(column) is None else row.get(column))}</td>"
            for column in columns
        )
        + "</tr>"
        for row in rows
    )
    summary = ""
    if stats:
        summary = (
            f"<p class=\"stats\">Total: {stats.get('total', 0)} &middot; "
            f"Pass: {stats.get('pass', 0)} &middot; Fail: {stats.get('fail', 0)}</p>"
        )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title>"
        "<style>"
        "@page { size: A4 landscape; margin: 12mm; }"
        "body { font-family: sans-serif; font-size: 9pt; }"
        "table { border-collapse: collapse; width: 100%; }"
        "th, td { border: 1px solid #999; padding: 3px 5px; text-align: left; }"
        "th { background: #2f5496; color: #fff; }"
        "</style></head><body>"
        f"<h1>{escape(title)}</h1>{summary}"
        f"<table><thead><tr>{header}</tr></thead><tbody>{body}</tbody></table>"
        "</body></html>"
    )


def render_html_to_pdf(html: str, base_url: str | None = None) -> bytes:
    """Render HTML content to PDF bytes using WeasyPrint."""

    try:
        from weasyprint import HTML
    except (ImportError, OSError) as exc:  # pragma: no cover - depends on host libraries
        raise PdfGenerationError(_REQUIRED_NATIVE_DEPS_MESSAGE) from exc

    try:
        return HTML(string=html, base_url=base_url).write_pdf()
    except OSError as exc:  # pragma: no cover - depends on host libraries
        raise PdfGenerationError(_REQUIRED_NATIVE_DEPS_MESSAGE) from exc


__all__ = [
    "PdfGenerationError",
    "build_document",
    "build_workbook",
    "render_html_to_pdf",
    "render_records_html",
]
