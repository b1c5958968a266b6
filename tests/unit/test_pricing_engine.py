"""
Unit Tests for the pricing engine.

Test Coverage:
- Per-item derivation order (conversion, margin, tax, final)
- Margin fallback: override vs. global, explicit 0
- Tax split halves summing exactly to the flat amount
- Room and project aggregation as sums of item figures
- Rate fallback to 1.0
- Boardroom scenarios (259.60 / 236.00)
"""

import pytest
from decimal import Decimal

from models.pricing import TaxPolicy
from services.pricing_engine import (
    build_pricing_context,
    context_from_settings,
    format_money,
    price_item,
    price_project,
    price_room,
    resolve_margin,
    resolve_rate,
    round_money,
    split_tax,
    to_decimal,
)


# =============================================================================
# Scenarios
# =============================================================================


class TestBoardroomScenarios:
    """The reference Boardroom figures."""

    def test_global_margin_applies_without_override(self, boardroom):
        context = build_pricing_context("USD", global_margin_percent=10, tax_rate_percent=18)

        item = price_item(boardroom.items[0], context)
        room = price_room(boardroom, context)
        project = price_project([boardroom], context)

        assert item.amount_after_margin == Decimal("220.00")
        assert item.tax_amount == Decimal("39.60")
        assert item.final_price == Decimal("259.60")
        assert room.grand_total == Decimal("259.60")
        assert project.grand_total == Decimal("259.60")

    def test_explicit_zero_margin_ignores_global(self, boardroom):
        boardroom.items[0].set_margin(Decimal("0"))
        context = build_pricing_context("USD", global_margin_percent=10, tax_rate_percent=18)

        item = price_item(boardroom.items[0], context)

        assert item.margin_percent == Decimal("0")
        assert item.amount_after_margin == Decimal("200.00")
        assert item.tax_amount == Decimal("36.00")
        assert item.final_price == Decimal("236.00")


# =============================================================================
# Item derivation
# =============================================================================


class TestPriceItem:
    """Tests for price_item."""

    def test_currency_conversion_before_margin(self, boardroom_item):
        context = build_pricing_context("INR", rates={"INR": "83.5"}, global_margin_percent=20)

        pricing = price_item(boardroom_item, context)

        assert pricing.converted_unit_price == Decimal("8350.00")
        assert pricing.converted_total == Decimal("16700.00")
        assert pricing.unit_price_after_margin == Decimal("10020.00")
        assert pricing.amount_after_margin == Decimal("20040.00")
        assert pricing.margin_amount == Decimal("3340.00")

    def test_unit_final_times_quantity_matches_final(self, boardroom_item):
        context = build_pricing_context("USD", global_margin_percent=10)

        pricing = price_item(boardroom_item, context)

        assert pricing.unit_price_final * pricing.quantity == pricing.final_price

    def test_zero_quantity_listed_with_zero_totals(self, make_room):
        room = make_room("Store", (0, 500, None))
        context = build_pricing_context("USD", global_margin_percent=15)

        pricing = price_room(room, context)

        assert pricing.item_count == 1
        assert pricing.items[0].final_price == 0
        assert pricing.grand_total == 0

    def test_split_components_sum_to_flat(self, make_room):
        room = make_room("Odd", (3, "33.33", "7.5"), (1, "0.01", None))
        context = build_pricing_context("USD", global_margin_percent=3, tax_policy="split")

        for pricing in price_room(room, context).items:
            first, second = pricing.tax_components
            assert first + second == pricing.tax_amount

    def test_tax_policy_does_not_change_amounts(self, boardroom):
        flat = build_pricing_context("USD", global_margin_percent=10, tax_policy=TaxPolicy.FLAT)
        split = build_pricing_context("USD", global_margin_percent=10, tax_policy=TaxPolicy.SPLIT)

        assert price_room(boardroom, flat).grand_total == price_room(boardroom, split).grand_total
        assert split.tax_component_rate_percent == Decimal("9")

    def test_rate_one_is_identity(self, make_room):
        room = make_room("Lab", (3, "19.99", None), (7, "1234.56", "12"))
        context = build_pricing_context("USD", global_margin_percent=0, tax_rate_percent=0)

        for item, pricing in zip(room.items, price_room(room, context).items):
            if item.margin_percent is None:
                assert pricing.final_price == item.total_price
            assert pricing.converted_total == item.total_price


class TestMarginResolution:
    """Tests for resolve_margin."""

    def test_override_wins(self, boardroom_item):
        boardroom_item.set_margin(Decimal("25"))
        context = build_pricing_context("USD", global_margin_percent=10)

        assert resolve_margin(boardroom_item, context) == Decimal("25")

    def test_none_falls_back(self, boardroom_item):
        context = build_pricing_context("USD", global_margin_percent=10)

        assert resolve_margin(boardroom_item, context) == Decimal("10")


# =============================================================================
# Aggregation
# =============================================================================


class TestAggregation:
    """Room and project figures are sums of item figures."""

    @pytest.fixture
    def rooms(self, make_room):
        return [
            make_room("Boardroom", (2, "100", None), (1, "4999.99", "0"), (3, "333.33", "12.5")),
            make_room("Huddle", (1, "2900", None)),
            make_room("Empty"),
        ]

    @pytest.mark.parametrize("policy", ["flat", "split"])
    def test_room_figures_are_item_sums(self, rooms, policy):
        context = build_pricing_context("EUR", rates={"EUR": 0.92}, global_margin_percent=7, tax_policy=policy)

        for room in rooms:
            pricing = price_room(room, context)
            assert pricing.grand_total == sum((p.final_price for p in pricing.items), Decimal("0"))
            assert pricing.tax_amount == sum((p.tax_amount for p in pricing.items), Decimal("0"))
            assert pricing.subtotal == sum((p.converted_total for p in pricing.items), Decimal("0"))
            assert pricing.tax_components[0] + pricing.tax_components[1] == pricing.tax_amount

    def test_project_is_room_sum(self, rooms):
        context = build_pricing_context("GBP", rates={"GBP": "0.79"}, global_margin_percent=10)

        project = price_project(rooms, context)

        assert len(project.rooms) == 3
        assert project.grand_total == sum((r.grand_total for r in project.rooms), Decimal("0"))
        assert project.margin_amount == sum((r.margin_amount for r in project.rooms), Decimal("0"))
        assert project.room(rooms[2].id).grand_total == 0

    def test_unknown_room_lookup(self, rooms):
        project = price_project(rooms, build_pricing_context("USD"))

        with pytest.raises(KeyError):
            project.room("missing")


# =============================================================================
# Context and helpers
# =============================================================================


class TestContext:
    """Tests for rate resolution and context building."""

    def test_reference_currency_rate_is_one(self):
        assert resolve_rate("usd", {"USD": "5"}) == Decimal("1")

    @pytest.mark.parametrize("rates", [
        None, {}, {"EUR": 0.9}, {"INR": -3}, {"INR": "abc"}, {"INR": float("nan")}, {"INR": "1e1000000"},
    ])
    def test_rate_defaults_to_one(self, rates):
        assert resolve_rate("INR", rates) == Decimal("1")

    def test_rate_taken_from_table(self):
        assert resolve_rate("INR", {"INR": 83.12}) == Decimal("83.12")

    def test_bad_margin_defaults_to_zero(self):
        context = build_pricing_context("USD", global_margin_percent="lots")
        assert context.global_margin_percent == 0
        assert build_pricing_context("USD", global_margin_percent="1e1000000").global_margin_percent == 0

    def test_currency_uppercased(self):
        assert build_pricing_context("eur").currency == "EUR"

    def test_context_from_settings(self, test_settings):
        test_settings.tax_policy = "split"
        context = context_from_settings(test_settings, currency="INR", rates={"INR": 80}, global_margin_percent=5)

        assert context.currency == "INR"
        assert context.rate == Decimal("80")
        assert context.global_margin_percent == Decimal("5")
        assert context.tax_policy == TaxPolicy.SPLIT
        assert context.tax_split_labels == ("CGST", "SGST")


class TestHelpers:
    """Tests for numeric helpers."""

    @pytest.mark.parametrize("value,expected", [
        (19.99, Decimal("19.99")),
        ("1,299.50", Decimal("1299.50")),
        (3, Decimal("3")),
        (True, None),
        (None, None),
        ("", None),
        ("n/a", None),
        (float("inf"), None),
    ])
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    def test_split_tax_odd_cent(self):
        first, second = split_tax(Decimal("0.01"))
        assert first + second == Decimal("0.01")

    def test_round_money(self):
        assert round_money(Decimal("2.675")) == Decimal("2.68")

    def test_format_money(self):
        assert format_money(Decimal("1234.5"), "USD") == "$1,234.50"
        assert format_money(Decimal("99"), "INR") == "₹99.00"
        assert format_money(Decimal("5"), "JPY") == "JPY5.00"
