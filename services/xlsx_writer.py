"""Serialize a WorkbookLayout to an .xlsx file with openpyxl."""

import datetime as dt
import re
from pathlib import Path
from typing import Optional, Union

import openpyxl
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.workbook import Workbook
import structlog

from config.errors import ErrorCode, ExportError
from services.xlsx_layout import (
    BODY,
    HEADER,
    LABEL,
    LINK,
    TEXT,
    TITLE,
    TOTAL,
    CellSpec,
    SheetLayout,
    WorkbookLayout,
)

logger = structlog.get_logger(__name__)


# ─── Style Definitions ────────────────────────────────────────────────
TITLE_FONT = Font(name='Calibri', bold=True, size=14)
HEADER_FONT = Font(name='Calibri', bold=True, size=11, color='FFFFFF')
HEADER_FILL = PatternFill(start_color='2F5496', end_color='2F5496', fill_type='solid')
TOTAL_FILL = PatternFill(start_color='D6E4F0', end_color='D6E4F0', fill_type='solid')
TOTAL_FONT = Font(name='Calibri', bold=True, size=11)
LABEL_FONT = Font(name='Calibri', bold=True, size=10)
BODY_FONT = Font(name='Calibri', size=10)
LINK_FONT = Font(name='Calibri', size=10, color='0563C1', underline='single')
WRAP = Alignment(wrap_text=True, vertical='top')
THIN_BORDER = Border(
    left=Side(style='thin'), right=Side(style='thin'),
    top=Side(style='thin'), bottom=Side(style='thin')
)

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
DEFAULT_PROJECT_NAME = "AV Project"


def build_export_filename(project_name: Optional[str], on_date: Optional[dt.date] = None) -> str:
    """'<project> - BOQ Report - YYYY-MM-DD.xlsx' with unsafe characters removed."""
    on_date = on_date or dt.date.today()
    name = INVALID_FILENAME_CHARS.sub("", project_name or "").strip() or DEFAULT_PROJECT_NAME
    return f"{name} - BOQ Report - {on_date.isoformat()}.xlsx"


def style_cell(cell, cell_spec: CellSpec, tabular: bool) -> None:
    if cell_spec.style == TITLE:
        cell.font = TITLE_FONT
    elif cell_spec.style == HEADER:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(wrap_text=True, vertical='center', horizontal='center')
        cell.border = THIN_BORDER
    elif cell_spec.style == TOTAL:
        cell.font = TOTAL_FONT
        cell.fill = TOTAL_FILL
        cell.border = THIN_BORDER
    elif cell_spec.style == LABEL:
        cell.font = LABEL_FONT
    elif cell_spec.style == LINK:
        cell.font = LINK_FONT
        if tabular:
            cell.border = THIN_BORDER
    elif cell_spec.style == TEXT:
        cell.font = BODY_FONT
        cell.alignment = WRAP
    elif cell_spec.style == BODY:
        cell.font = BODY_FONT
        if tabular:
            cell.alignment = WRAP
            cell.border = THIN_BORDER

    if cell_spec.number_format:
        cell.number_format = cell_spec.number_format


def render_sheet(wb: Workbook, sheet: SheetLayout) -> None:
    ws = wb.create_sheet(title=sheet.title)
    for row_index, row in enumerate(sheet.rows, start=1):
        # Body cells inside a header/totals block get borders
        tabular = (
            sheet.header_row is not None
            and row_index - 1 > sheet.header_row
            and (sheet.totals_row is None or row_index - 1 <= sheet.totals_row)
            and any(cell_spec.value is not None for cell_spec in row)
        )
        for col_index, cell_spec in enumerate(row, start=1):
            if cell_spec.value is None and cell_spec.style == BODY and not tabular:
                continue
            cell = ws.cell(row=row_index, column=col_index, value=cell_spec.value)
            style_cell(cell, cell_spec, tabular)
            if cell_spec.hyperlink:
                cell.hyperlink = cell_spec.hyperlink

    for col_index, width in enumerate(sheet.column_widths, start=1):
        ws.column_dimensions[get_column_letter(col_index)].width = width

    if sheet.room_id is not None:
        ws.freeze_panes = 'A2'


def render_workbook(layout: WorkbookLayout) -> Workbook:
    """Build an openpyxl Workbook from a layout; the first sheet is active."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for sheet in layout.sheets:
        render_sheet(wb, sheet)
    if wb.worksheets:
        wb.active = 0
    return wb


def export_workbook(
    layout: WorkbookLayout,
    output_dir: Union[str, Path],
    filename: Optional[str] = None,
) -> Path:
    """Render and save a layout.

    Returns:
        Path of the written file.

    Raises:
        ExportError: If the workbook cannot be built or written.
    """
    directory = Path(output_dir)
    path = directory / (filename or build_export_filename(None))
    try:
        wb = render_workbook(layout)
        directory.mkdir(parents=True, exist_ok=True)
        wb.save(path)
    except (OSError, ValueError) as e:
        logger.error("workbook_export_failed", path=str(path), error=str(e))
        raise ExportError(
            message=f"Could not write {path.name}: {e}",
            code=ErrorCode.EXPORT_FAILED,
            details={"path": str(path)},
        ) from e

    logger.info("workbook_exported", path=str(path), sheets=len(layout.sheets))
    return path
