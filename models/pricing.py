"""Pricing context and derived pricing result models.

The context is the ephemeral input to every pricing read; the result
dataclasses are what the pricing engine hands to display and export code.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")

DEFAULT_TAX_RATE_PERCENT = Decimal("18")
DEFAULT_TAX_SPLIT_LABELS = ("CGST", "SGST")


class TaxPolicy(str, Enum):
    """How tax is presented: one flat column, or two equal halves."""

    FLAT = "flat"
    SPLIT = "split"


# =============================================================================
# PRICING CONTEXT
# =============================================================================


class PricingContext(BaseModel):
    """Currency, margin and tax inputs for one pricing pass.

    Never persisted. Build a fresh one for each display or export with
    ``services.pricing_engine.build_pricing_context``.
    """

    model_config = ConfigDict(frozen=True)

    currency: str = Field(..., min_length=3, max_length=3, description="Selected ISO currency code")
    rate: Decimal = Field(
        default=ONE, ge=0, description="Multiplier from reference currency to selected currency"
    )
    global_margin_percent: Decimal = Field(
        default=ZERO, ge=0, description="Margin applied to items without an override"
    )
    tax_rate_percent: Decimal = Field(
        default=DEFAULT_TAX_RATE_PERCENT, ge=0, description="Combined tax rate"
    )
    tax_policy: TaxPolicy = Field(default=TaxPolicy.FLAT, description="Tax presentation policy")
    tax_split_labels: Tuple[str, str] = Field(
        default=DEFAULT_TAX_SPLIT_LABELS, description="Labels of the two tax halves"
    )

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @property
    def tax_component_rate_percent(self) -> Decimal:
        """Rate of each half when tax is split."""
        return self.tax_rate_percent / 2


# =============================================================================
# PRICING RESULTS
# =============================================================================


@dataclass(frozen=True)
class ItemPricing:
    """Derived figures for one line item in the selected currency.

    Attributes:
        item_id: Line item identifier
        quantity: Quantity priced
        margin_percent: Margin actually used (override or global fallback)
        converted_unit_price: Unit price after currency conversion
        converted_total: Quantity x unit price after conversion, before margin
        unit_price_after_margin: Converted unit price with margin applied
        amount_after_margin: Converted total with margin applied
        margin_amount: amount_after_margin - converted_total
        tax_amount: Tax on amount_after_margin at the flat rate
        tax_components: The two halves of tax_amount, summing exactly to it
        unit_price_final: Unit price with margin and tax
        final_price: amount_after_margin + tax_amount
    """

    item_id: str
    quantity: int
    margin_percent: Decimal
    converted_unit_price: Decimal
    converted_total: Decimal
    unit_price_after_margin: Decimal
    amount_after_margin: Decimal
    margin_amount: Decimal
    tax_amount: Decimal
    tax_components: Tuple[Decimal, Decimal]
    unit_price_final: Decimal
    final_price: Decimal


@dataclass(frozen=True)
class RoomPricing:
    """Per-room aggregates; every figure is a sum over ``items``."""

    room_id: str
    room_name: str
    items: List[ItemPricing] = field(default_factory=list)
    subtotal: Decimal = ZERO
    margin_amount: Decimal = ZERO
    amount_after_margin: Decimal = ZERO
    tax_amount: Decimal = ZERO
    tax_components: Tuple[Decimal, Decimal] = (ZERO, ZERO)
    grand_total: Decimal = ZERO

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ProjectPricing:
    """Project aggregates; every figure is a sum over ``rooms``."""

    currency: str
    rooms: List[RoomPricing] = field(default_factory=list)
    subtotal: Decimal = ZERO
    margin_amount: Decimal = ZERO
    amount_after_margin: Decimal = ZERO
    tax_amount: Decimal = ZERO
    tax_components: Tuple[Decimal, Decimal] = (ZERO, ZERO)
    grand_total: Decimal = ZERO

    def room(self, room_id: str) -> RoomPricing:
        """Look up a room's pricing by id.

        Raises:
            KeyError: If the room was not priced.
        """
        for room_pricing in self.rooms:
            if room_pricing.room_id == room_id:
                return room_pricing
        raise KeyError(room_id)
