"""Console pricing report for the BOQ CLI.

Prints project totals with banner markers so they stand out from the
structured log stream.
"""

from typing import Optional, Sequence

import structlog

from models.pricing import ProjectPricing
from services.pricing_engine import format_money

logger = structlog.get_logger()

BANNER_WIDTH = 72
PROJECT_BANNER_CHAR = "═"
ROOM_BANNER_CHAR = "─"


def _create_banner(char: str, text: str, width: int = BANNER_WIDTH) -> str:
    """Create a centered banner with given character."""
    text_with_spaces = f" {text} "
    padding = (width - len(text_with_spaces)) // 2
    return char * padding + text_with_spaces + char * (width - padding - len(text_with_spaces))


def format_pricing_report(pricing: ProjectPricing, tax_labels: Optional[Sequence[str]] = None) -> str:
    """Render room and project totals as text.

    Args:
        pricing: Priced project.
        tax_labels: Two labels to show the tax halves under; flat tax when omitted.
    """
    currency = pricing.currency
    lines = [_create_banner(PROJECT_BANNER_CHAR, f"BOQ TOTALS ({currency})")]

    for room in pricing.rooms:
        lines.append(_create_banner(ROOM_BANNER_CHAR, room.room_name))
        lines.append(f"  Items          : {room.item_count}")
        lines.append(f"  Subtotal       : {format_money(room.subtotal, currency)}")
        lines.append(f"  Margin         : {format_money(room.margin_amount, currency)}")
        if tax_labels:
            for label, amount in zip(tax_labels, room.tax_components):
                lines.append(f"  {label:<15}: {format_money(amount, currency)}")
        else:
            lines.append(f"  Tax            : {format_money(room.tax_amount, currency)}")
        lines.append(f"  Room total     : {format_money(room.grand_total, currency)}")

    lines.append(PROJECT_BANNER_CHAR * BANNER_WIDTH)
    lines.append(f"  GRAND TOTAL    : {format_money(pricing.grand_total, currency)}")
    lines.append(PROJECT_BANNER_CHAR * BANNER_WIDTH)
    return "\n".join(lines)


def print_pricing_report(pricing: ProjectPricing, tax_labels: Optional[Sequence[str]] = None) -> None:
    """Print the report and log a one-line summary."""
    print("\n" + format_pricing_report(pricing, tax_labels) + "\n")
    logger.info(
        "pricing_report_printed",
        currency=pricing.currency,
        room_count=len(pricing.rooms),
        grand_total=str(pricing.grand_total),
    )
