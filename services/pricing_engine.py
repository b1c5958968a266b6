"""Pricing engine for AV BOQs.

Pure, deterministic derivation of selected-currency figures from line item
base values. Every display or export read calls into this module; no other
module re-implements margin fallback or tax maths.

Per-item order:
1. Convert unit and total price by the exchange rate
2. Apply the resolved margin multiplier (1 + margin/100)
3. Tax = tax rate x amount after margin (split halves sum exactly to it)
4. Final price = amount after margin + tax

Room and project figures are sums of the per-item figures, never recomputed
from aggregate totals. All arithmetic is Decimal with no intermediate
rounding; rounding to cents happens only at presentation.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, Union

import structlog

from models.client_details import currency_symbol
from models.line_item import MAX_MARGIN_PERCENT, LineItem
from models.pricing import (
    DEFAULT_TAX_RATE_PERCENT,
    DEFAULT_TAX_SPLIT_LABELS,
    HUNDRED,
    ONE,
    ZERO,
    ItemPricing,
    PricingContext,
    ProjectPricing,
    RoomPricing,
    TaxPolicy,
)
from models.room import Room

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

# Largest reference->selected multiplier accepted from a rate table
MAX_RATE = Decimal("1e6")

Number = Union[int, float, str, Decimal]


# =============================================================================
# Numeric helpers
# =============================================================================


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a loosely typed number to Decimal.

    Returns None for missing, boolean, non-numeric, NaN or infinite input.
    Floats go through ``str`` so 19.99 stays 19.99.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, int):
            result = Decimal(value)
        elif isinstance(value, float):
            result = Decimal(str(value))
        elif isinstance(value, str):
            cleaned = value.strip().replace(",", "")
            if not cleaned:
                return None
            result = Decimal(cleaned)
        else:
            return None
    except InvalidOperation:
        return None
    if not result.is_finite():
        return None
    return result


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal, currency: str) -> str:
    """Format an amount for display, e.g. '$1,234.50'."""
    return f"{currency_symbol(currency)}{round_money(amount):,.2f}"


def split_tax(tax_amount: Decimal) -> Tuple[Decimal, Decimal]:
    """Split a flat tax amount into two halves that sum exactly to it."""
    first = tax_amount / 2
    return first, tax_amount - first


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def _sum_pairs(pairs: Iterable[Tuple[Decimal, Decimal]]) -> Tuple[Decimal, Decimal]:
    first, second = ZERO, ZERO
    for a, b in pairs:
        first += a
        second += b
    return first, second


# =============================================================================
# Context
# =============================================================================


def resolve_rate(
    currency: str,
    rates: Optional[Mapping[str, Any]],
    reference_currency: str = "USD",
) -> Decimal:
    """Pick the reference->currency multiplier, defaulting to 1.0.

    The default applies when the currency is the reference currency, when no
    rate table is available, or when the table entry is missing, negative,
    out of range or not a finite number.
    """
    code = currency.upper()
    if code == reference_currency.upper():
        return ONE
    if not rates:
        logger.warning("exchange_rate_fallback", currency=code, reason="no_rates")
        return ONE

    raw = rates.get(code)
    rate = to_decimal(raw)
    if rate is None:
        logger.warning("exchange_rate_fallback", currency=code, reason="missing_rate", raw=raw)
        return ONE
    if rate < 0:
        logger.warning("exchange_rate_fallback", currency=code, reason="negative_rate", raw=raw)
        return ONE
    if rate > MAX_RATE:
        logger.warning("exchange_rate_fallback", currency=code, reason="rate_out_of_range", raw=raw)
        return ONE
    return rate


def build_pricing_context(
    currency: str,
    rates: Optional[Mapping[str, Any]] = None,
    global_margin_percent: Number = 0,
    tax_rate_percent: Number = DEFAULT_TAX_RATE_PERCENT,
    tax_policy: Union[TaxPolicy, str] = TaxPolicy.FLAT,
    tax_split_labels: Sequence[str] = DEFAULT_TAX_SPLIT_LABELS,
    reference_currency: str = "USD",
) -> PricingContext:
    """Build a fresh PricingContext for one display or export pass.

    Args:
        currency: Selected currency code.
        rates: Rate table (reference -> target); None or {} when unavailable.
        global_margin_percent: Margin for items without an override.
        tax_rate_percent: Combined tax rate.
        tax_policy: 'flat' or 'split' presentation.
        tax_split_labels: Labels for the two halves.
        reference_currency: Currency base prices are held in.

    Returns:
        PricingContext.
    """
    margin = to_decimal(global_margin_percent)
    if margin is None or margin < 0 or margin > MAX_MARGIN_PERCENT:
        logger.warning("global_margin_defaulted", value=global_margin_percent)
        margin = ZERO

    tax_rate = to_decimal(tax_rate_percent)
    if tax_rate is None or tax_rate < 0:
        logger.warning("tax_rate_defaulted", value=tax_rate_percent)
        tax_rate = DEFAULT_TAX_RATE_PERCENT

    return PricingContext(
        currency=currency,
        rate=resolve_rate(currency, rates, reference_currency),
        global_margin_percent=margin,
        tax_rate_percent=tax_rate,
        tax_policy=TaxPolicy(tax_policy),
        tax_split_labels=tuple(tax_split_labels),
    )


def context_from_settings(
    settings,
    currency: Optional[str] = None,
    rates: Optional[Mapping[str, Any]] = None,
    global_margin_percent: Optional[Number] = None,
) -> PricingContext:
    """Build a PricingContext using configured tax and margin defaults."""
    return build_pricing_context(
        currency=currency or settings.default_currency,
        rates=rates,
        global_margin_percent=(
            global_margin_percent
            if global_margin_percent is not None
            else settings.default_margin_percent
        ),
        tax_rate_percent=settings.tax_rate_percent,
        tax_policy=settings.tax_policy,
        tax_split_labels=settings.tax_split_labels,
        reference_currency=settings.reference_currency,
    )


# =============================================================================
# Derivation
# =============================================================================


def resolve_margin(item: LineItem, context: PricingContext) -> Decimal:
    """Margin for an item: its own override when set, else the global margin.

    An override of 0 is honoured; only None falls back.
    """
    if item.margin_percent is not None:
        return item.margin_percent
    return context.global_margin_percent


def price_item(item: LineItem, context: PricingContext) -> ItemPricing:
    """Derive all selected-currency figures for one item."""
    margin = resolve_margin(item, context)

    converted_unit = item.unit_price * context.rate
    converted_total = item.total_price * context.rate

    multiplier = ONE + margin / HUNDRED
    unit_after_margin = converted_unit * multiplier
    amount_after_margin = converted_total * multiplier

    tax_fraction = context.tax_rate_percent / HUNDRED
    tax_amount = amount_after_margin * tax_fraction

    return ItemPricing(
        item_id=item.id,
        quantity=item.quantity,
        margin_percent=margin,
        converted_unit_price=converted_unit,
        converted_total=converted_total,
        unit_price_after_margin=unit_after_margin,
        amount_after_margin=amount_after_margin,
        margin_amount=amount_after_margin - converted_total,
        tax_amount=tax_amount,
        tax_components=split_tax(tax_amount),
        unit_price_final=unit_after_margin + unit_after_margin * tax_fraction,
        final_price=amount_after_margin + tax_amount,
    )


def price_room(room: Room, context: PricingContext) -> RoomPricing:
    """Price every item of a room and sum the per-item figures."""
    items = [price_item(item, context) for item in room.items]
    return RoomPricing(
        room_id=room.id,
        room_name=room.name,
        items=items,
        subtotal=_sum(p.converted_total for p in items),
        margin_amount=_sum(p.margin_amount for p in items),
        amount_after_margin=_sum(p.amount_after_margin for p in items),
        tax_amount=_sum(p.tax_amount for p in items),
        tax_components=_sum_pairs(p.tax_components for p in items),
        grand_total=_sum(p.final_price for p in items),
    )


def price_project(rooms: Sequence[Room], context: PricingContext) -> ProjectPricing:
    """Price all rooms and sum the room figures."""
    priced = [price_room(room, context) for room in rooms]
    result = ProjectPricing(
        currency=context.currency,
        rooms=priced,
        subtotal=_sum(r.subtotal for r in priced),
        margin_amount=_sum(r.margin_amount for r in priced),
        amount_after_margin=_sum(r.amount_after_margin for r in priced),
        tax_amount=_sum(r.tax_amount for r in priced),
        tax_components=_sum_pairs(r.tax_components for r in priced),
        grand_total=_sum(r.grand_total for r in priced),
    )
    logger.debug(
        "project_priced",
        currency=context.currency,
        rate=str(context.rate),
        room_count=len(priced),
        grand_total=str(result.grand_total),
    )
    return result
