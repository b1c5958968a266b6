"""Unit tests for the BOQ command line and console report."""

import json
import openpyxl
import pytest
from decimal import Decimal

from models.pricing import ProjectPricing, RoomPricing
from scripts.boq_cli import build_parser, main
from utils.report import format_pricing_report


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Pin the settings the CLI reads from the environment."""
    monkeypatch.setenv("DEFAULT_CURRENCY", "USD")
    monkeypatch.setenv("DEFAULT_MARGIN_PERCENT", "0")
    monkeypatch.setenv("TAX_RATE_PERCENT", "18")
    monkeypatch.setenv("TAX_POLICY", "flat")
    monkeypatch.setenv("TAX_SPLIT_LABELS", "CGST,SGST")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")


@pytest.fixture
def saved_rooms(tmp_path):
    path = tmp_path / "boq.json"
    path.write_text(json.dumps([
        {"name": "Boardroom", "items": [{
            "category": "Display", "itemDescription": "55-inch display", "brand": "LG",
            "model": "55UH5N", "quantity": 2, "unitPrice": 100,
        }]},
        {"name": "Broken", "items": [{"category": "Audio"}]},
    ]), encoding="utf-8")
    return path


class TestParser:
    """Tests for build_parser."""

    def test_generate_needs_a_source(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["generate"])

    def test_price_args(self):
        args = build_parser().parse_args(["price", "boq.json", "--margin", "10", "--tax-policy", "split"])

        assert args.command == "price"
        assert args.margin == "10"
        assert args.tax_policy == "split"


class TestMain:
    """Tests for main."""

    def test_price_prints_totals(self, saved_rooms, capsys):
        code = main(["price", str(saved_rooms), "--no-rates", "--margin", "10"])

        captured = capsys.readouterr()
        assert code == 0
        assert "$259.60" in captured.out
        assert "Skipped" in captured.err

    def test_price_split_labels(self, saved_rooms, capsys):
        main(["price", str(saved_rooms), "--no-rates", "--margin", "10", "--tax-policy", "split"])

        out = capsys.readouterr().out
        assert "CGST" in out
        assert "$19.80" in out

    def test_export_writes_workbook(self, saved_rooms, tmp_path, capsys):
        out_dir = tmp_path / "out"

        code = main(["export", str(saved_rooms), "--no-rates", "--project", "HQ", "--out", str(out_dir)])

        assert code == 0
        written = list(out_dir.glob("HQ - BOQ Report - *.xlsx"))
        assert len(written) == 1
        assert "BOQ - Boardroom" in openpyxl.load_workbook(written[0]).sheetnames

    def test_malformed_file_is_an_error(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("not json", encoding="utf-8")

        code = main(["export", str(path), "--no-rates", "--out", str(tmp_path)])

        assert code == 1
        assert "invalid BOQ format" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        assert main(["price", str(tmp_path / "missing.json"), "--no-rates"]) == 2

    def test_malformed_currency_is_an_error(self, saved_rooms, capsys):
        code = main(["price", str(saved_rooms), "--no-rates", "--currency", "EURO"])

        assert code == 1
        assert "three-letter" in capsys.readouterr().err


def test_format_pricing_report():
    room = RoomPricing(
        room_id="r1", room_name="Huddle", subtotal=Decimal("1000"),
        margin_amount=Decimal("100"), amount_after_margin=Decimal("1100"),
        tax_amount=Decimal("198"), tax_components=(Decimal("99"), Decimal("99")),
        grand_total=Decimal("1298"),
    )
    pricing = ProjectPricing(currency="INR", rooms=[room], grand_total=Decimal("1298"))

    text = format_pricing_report(pricing)

    assert " BOQ TOTALS (INR) " in text
    assert " Huddle " in text
    assert "₹1,298.00" in text
    assert "CGST" not in format_pricing_report(pricing)
    assert "SGST           : ₹99.00" in format_pricing_report(pricing, ("CGST", "SGST"))
