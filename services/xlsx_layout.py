"""Spreadsheet layout for BOQ proposals.

Turns rooms, client details and a pricing context into a workbook
description: ordered sheets of styled cells. Serialization to .xlsx lives in
``services.xlsx_writer``; nothing here touches openpyxl.

Sheets, in order:
1. Version Control      - client and contact metadata
2. Proposal Summary     - one row per room plus a Grand Total row
3. Scope of Work        - static text
4. Terms & Conditions   - static text
5. BOQ - <room>         - one per room with items, followed by a totals row

Every figure comes from the pricing engine; every total is the sum of the
cells above it.
"""

import datetime as dt
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Sequence, Set

import structlog

from models.client_details import ClientDetails
from models.pricing import ZERO, ItemPricing, PricingContext, RoomPricing, TaxPolicy
from models.proposal_text import SCOPE_OF_WORK, TERMS_AND_CONDITIONS
from models.room import Room
from services.pricing_engine import price_room

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_SHEET_NAME_LENGTH = 31
INVALID_SHEET_CHARS = re.compile(r"[\\/*?:\[\]]")

MONEY_FORMAT = "#,##0.00"
PERCENT_FORMAT = '0.00"%"'
DATE_FORMAT = "yyyy-mm-dd"

VERSION_SHEET = "Version Control"
SUMMARY_SHEET = "Proposal Summary"
SCOPE_SHEET = "Scope of Work"
TERMS_SHEET = "Terms & Conditions"
INFO_SHEETS = (VERSION_SHEET, SUMMARY_SHEET, SCOPE_SHEET, TERMS_SHEET)

ROOM_SHEET_PREFIX = "BOQ - "
GRAND_TOTAL_LABEL = "Grand Total"
NO_IMAGE = "N/A"
IMAGE_LINK_TEXT = "View Image"

# Cell styles understood by the writer
TITLE = "title"
HEADER = "header"
LABEL = "label"
BODY = "body"
TEXT = "text"
TOTAL = "total"
LINK = "link"


# =============================================================================
# Layout types
# =============================================================================


@dataclass(frozen=True)
class CellSpec:
    """One cell: value plus presentation."""
    value: Any = None
    style: str = BODY
    number_format: Optional[str] = None
    hyperlink: Optional[str] = None


BLANK = CellSpec()


@dataclass
class SheetLayout:
    """A sheet as rows of cells.

    ``header_row`` and ``totals_row`` are 0-based row indexes, set on
    tabular sheets.
    """
    title: str
    rows: List[List[CellSpec]] = field(default_factory=list)
    column_widths: List[int] = field(default_factory=list)
    header_row: Optional[int] = None
    totals_row: Optional[int] = None
    room_id: Optional[str] = None

    @property
    def headers(self) -> List[Any]:
        if self.header_row is None:
            return []
        return [cell.value for cell in self.rows[self.header_row]]

    def column_index(self, header: str) -> int:
        """0-based index of a header; raises ValueError if absent."""
        return self.headers.index(header)

    def data_rows(self) -> List[List[CellSpec]]:
        """Rows between the header and the totals row."""
        if self.header_row is None:
            return []
        end = self.totals_row if self.totals_row is not None else len(self.rows)
        return [row for row in self.rows[self.header_row + 1:end] if any(c.value is not None for c in row)]

    def total_cell(self, header: str) -> CellSpec:
        if self.totals_row is None:
            raise ValueError(f"Sheet '{self.title}' has no totals row")
        return self.rows[self.totals_row][self.column_index(header)]


@dataclass
class WorkbookLayout:
    """Ordered sheets of one proposal workbook."""
    sheets: List[SheetLayout] = field(default_factory=list)
    currency: str = "USD"

    @property
    def sheet_names(self) -> List[str]:
        return [sheet.title for sheet in self.sheets]

    def sheet(self, title: str) -> SheetLayout:
        for sheet in self.sheets:
            if sheet.title == title:
                return sheet
        raise KeyError(title)

    @property
    def room_sheets(self) -> List[SheetLayout]:
        return [sheet for sheet in self.sheets if sheet.room_id is not None]


# =============================================================================
# Sheet names
# =============================================================================


def sanitize_sheet_name(name: str, fallback: str = "Sheet") -> str:
    """Make ``name`` a valid sheet name.

    Removes ``\\ / * ? : [ ]``, trims whitespace and apostrophes from both
    ends and truncates to 31 characters.
    """
    cleaned = INVALID_SHEET_CHARS.sub("", name or "")
    cleaned = cleaned.strip().strip("'").strip()
    cleaned = cleaned[:MAX_SHEET_NAME_LENGTH].rstrip().rstrip("'").rstrip()
    return cleaned or fallback


def unique_sheet_name(name: str, used: Set[str]) -> str:
    """Sanitize ``name`` and suffix it with (2), (3)... until unused.

    Comparison is case-insensitive, as in spreadsheet applications. The
    chosen name is added to ``used`` (lowercased).
    """
    base = sanitize_sheet_name(name)
    candidate = base
    counter = 2
    while candidate.lower() in used:
        suffix = f" ({counter})"
        candidate = base[:MAX_SHEET_NAME_LENGTH - len(suffix)].rstrip() + suffix
        counter += 1
    used.add(candidate.lower())
    return candidate


# =============================================================================
# Cell helpers
# =============================================================================


def _money(value: Decimal, style: str = BODY) -> CellSpec:
    return CellSpec(value, style, MONEY_FORMAT)


def _sum_column(rows: Iterable[List[CellSpec]], index: int) -> Decimal:
    total = ZERO
    for row in rows:
        value = row[index].value
        if isinstance(value, Decimal):
            total += value
    return total


def _text_rows(title: str, lines: Sequence[str]) -> List[List[CellSpec]]:
    return [[CellSpec(title, TITLE)]] + [[CellSpec(line, TEXT)] for line in lines]


# =============================================================================
# Sheets
# =============================================================================


def build_version_sheet(client_details: ClientDetails, generated_on: dt.date) -> SheetLayout:
    """Version and contact metadata."""
    def date_cell(value: Optional[dt.date]) -> CellSpec:
        return CellSpec(value, BODY, DATE_FORMAT) if value else BLANK

    def pair(label: str, value: Any) -> List[CellSpec]:
        return [CellSpec(label, LABEL), CellSpec(value or None)]

    rows = [
        [CellSpec("Version", HEADER), CellSpec(None, HEADER), CellSpec("Contact Details", HEADER), CellSpec(None, HEADER)],
        [CellSpec("Date of First Draft", LABEL), date_cell(client_details.date)]
        + pair("Design Engineer", client_details.design_engineer),
        [CellSpec("Date of Final Draft", LABEL), BLANK] + pair("Account Manager", client_details.account_manager),
        [CellSpec("Version No.", LABEL), CellSpec("1.0")] + pair("Client Name", client_details.client_name),
        [CellSpec("Published Date", LABEL), date_cell(generated_on)]
        + pair("Key Client Personnel", client_details.key_client_personnel),
        [BLANK, BLANK] + pair("Project Name", client_details.display_project_name),
        [BLANK, BLANK] + pair("Prepared By", client_details.prepared_by),
        [BLANK, BLANK] + pair("Location", client_details.location),
        [BLANK, BLANK] + pair("Currency", client_details.currency),
        [BLANK, BLANK] + pair("Budget", client_details.budget),
        [BLANK, BLANK] + pair("Key Comments", client_details.key_comments),
    ]
    return SheetLayout(title=VERSION_SHEET, rows=rows, column_widths=[20, 20, 22, 40], header_row=0)


def build_summary_sheet(room_pricings: Sequence[RoomPricing], currency: str) -> SheetLayout:
    """One row per room, then a Grand Total row summing the room rows.

    Rooms without items appear with a zero total.
    """
    amount_header = f"Total Amount ({currency})"
    rows: List[List[CellSpec]] = [
        [CellSpec(SUMMARY_SHEET, TITLE)],
        [],
        [CellSpec("Sr. No.", HEADER), CellSpec("Description", HEADER), CellSpec(amount_header, HEADER)],
    ]
    header_row = len(rows) - 1

    room_rows = [
        [CellSpec(index), CellSpec(pricing.room_name), _money(pricing.grand_total)]
        for index, pricing in enumerate(room_pricings, start=1)
    ]
    rows.extend(room_rows)
    rows.append([])
    rows.append([
        CellSpec(None, TOTAL),
        CellSpec(GRAND_TOTAL_LABEL, TOTAL),
        _money(_sum_column(room_rows, 2), TOTAL),
    ])
    return SheetLayout(
        title=SUMMARY_SHEET,
        rows=[[BLANK] if not row else row for row in rows],
        column_widths=[10, 40, 22],
        header_row=header_row,
        totals_row=len(rows) - 1,
    )


def room_sheet_headers(context: PricingContext) -> List[str]:
    """Column headers of a room sheet for the context's tax policy."""
    currency = context.currency
    if context.tax_policy == TaxPolicy.SPLIT:
        half = f"{context.tax_component_rate_percent.normalize():f}"
        first, second = context.tax_split_labels
        tax_headers = [f"{first} ({half}%)", f"{second} ({half}%)"]
    else:
        tax_headers = [f"Tax ({context.tax_rate_percent.normalize():f}%)"]
    return (
        ["Category", "Brand", "Model Number", "Description", "Qty",
         f"Unit Price ({currency})", f"Total Price ({currency})", "Margin %"]
        + tax_headers
        + [f"Final Total ({currency})", "Notes", "Reference Image"]
    )


def _tax_cells(pricing: ItemPricing, context: PricingContext) -> List[CellSpec]:
    if context.tax_policy == TaxPolicy.SPLIT:
        return [_money(component) for component in pricing.tax_components]
    return [_money(pricing.tax_amount)]


def _image_cell(url: Optional[str]) -> CellSpec:
    if not url:
        return CellSpec(NO_IMAGE)
    return CellSpec(IMAGE_LINK_TEXT, LINK, hyperlink=url)


def build_room_sheet(room: Room, title: str, context: PricingContext) -> SheetLayout:
    """Line items of one room plus a totals row.

    Unit and total price include margin; tax columns follow the context's
    tax policy. The totals row sums Total Price, the tax columns and Final
    Total over the data rows.
    """
    headers = room_sheet_headers(context)
    pricing = price_room(room, context)

    data_rows: List[List[CellSpec]] = []
    for item, item_pricing in zip(room.items, pricing.items):
        data_rows.append(
            [
                CellSpec(item.category),
                CellSpec(item.brand),
                CellSpec(item.model),
                CellSpec(item.item_description),
                CellSpec(item.quantity),
                _money(item_pricing.unit_price_after_margin),
                _money(item_pricing.amount_after_margin),
                CellSpec(item_pricing.margin_percent, BODY, PERCENT_FORMAT),
            ]
            + _tax_cells(item_pricing, context)
            + [
                _money(item_pricing.final_price),
                CellSpec(item.notes),
                _image_cell(item.image_url),
            ]
        )

    summed = set(range(headers.index("Margin %") + 1, len(headers) - 2))
    summed.add(headers.index(f"Total Price ({context.currency})"))

    totals: List[CellSpec] = []
    for index in range(len(headers)):
        if index == headers.index("Description"):
            totals.append(CellSpec(GRAND_TOTAL_LABEL, TOTAL))
        elif index in summed:
            totals.append(_money(_sum_column(data_rows, index), TOTAL))
        else:
            totals.append(CellSpec(None, TOTAL))

    rows = [[CellSpec(h, HEADER) for h in headers]] + data_rows + [totals]
    widths = [18, 18, 22, 45, 6, 16, 16, 10] + [14] * (len(headers) - 11) + [18, 40, 16]
    return SheetLayout(
        title=title,
        rows=rows,
        column_widths=widths,
        header_row=0,
        totals_row=len(rows) - 1,
        room_id=room.id,
    )


def build_workbook_layout(
    rooms: Sequence[Room],
    client_details: ClientDetails,
    context: PricingContext,
    generated_on: Optional[dt.date] = None,
) -> WorkbookLayout:
    """Lay out the full proposal workbook.

    Rooms without items get no BOQ sheet. With no items at all the
    informational sheets are still produced and the summary totals zero.

    Args:
        rooms: Project rooms in display order.
        client_details: Commercial context for the header sheets.
        context: Pricing context used for every figure.
        generated_on: Published date (defaults to today).

    Returns:
        WorkbookLayout.
    """
    generated_on = generated_on or dt.date.today()
    used: Set[str] = {name.lower() for name in INFO_SHEETS}

    room_pricings = [price_room(room, context) for room in rooms]

    layout = WorkbookLayout(currency=context.currency)
    layout.sheets.append(build_version_sheet(client_details, generated_on))
    layout.sheets.append(build_summary_sheet(room_pricings, context.currency))
    layout.sheets.append(SheetLayout(SCOPE_SHEET, _text_rows(SCOPE_SHEET, SCOPE_OF_WORK), [100]))
    layout.sheets.append(SheetLayout(TERMS_SHEET, _text_rows(TERMS_SHEET, TERMS_AND_CONDITIONS), [100]))

    for room in rooms:
        if not room.has_items:
            continue
        title = unique_sheet_name(f"{ROOM_SHEET_PREFIX}{room.name}", used)
        layout.sheets.append(build_room_sheet(room, title, context))

    logger.info(
        "workbook_laid_out",
        sheet_count=len(layout.sheets),
        room_sheets=len(layout.room_sheets),
        currency=context.currency,
        tax_policy=context.tax_policy.value,
    )
    return layout
