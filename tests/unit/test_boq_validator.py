"""Unit tests for AI response parsing and validation."""

import json
import pytest
from decimal import Decimal

from config.errors import ErrorCode, MalformedResponseError, ValidationError
from models.room import RoomStatus
from services.pricing_engine import build_pricing_context, price_room
from validators.boq_validator import (
    parse_item_record,
    parse_rooms_payload,
    parse_rooms_response,
    strip_code_fences,
)


class TestParseRoomsResponse:
    """Tests for parse_rooms_response."""

    def test_valid_payload(self, sample_rooms_payload):
        result = parse_rooms_response(json.dumps(sample_rooms_payload))

        assert [room.name for room in result.rooms] == ["Boardroom", "Huddle Room"]
        assert result.item_count == 3
        assert result.issues == []
        assert all(room.status == RoomStatus.READY for room in result.rooms)

        mic = result.rooms[0].items[1]
        assert mic.brand == "Shure"
        assert mic.quantity == 2
        assert mic.unit_price == Decimal("3200.0")
        assert mic.total_price == Decimal("6400.0")
        assert mic.margin_percent is None

    def test_code_fences_stripped(self, sample_rooms_payload):
        text = "```json\n" + json.dumps(sample_rooms_payload) + "\n```"

        result = parse_rooms_response(text)

        assert len(result.rooms) == 2

    def test_non_array_payload_is_malformed(self, sample_rooms_payload):
        text = json.dumps({"rooms": sample_rooms_payload})

        with pytest.raises(MalformedResponseError) as exc_info:
            parse_rooms_response(text)

        assert exc_info.value.code == ErrorCode.MALFORMED_RESPONSE
        assert exc_info.value.raw_text == text

    def test_invalid_json_is_malformed(self):
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_rooms_response("Sure! Here is your BOQ: [")

        assert "parse_error" in exc_info.value.details

    def test_non_text_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            parse_rooms_response(None)

    def test_empty_array_gives_no_rooms(self):
        result = parse_rooms_response("[]")

        assert result.rooms == []

    def test_every_id_fresh(self, sample_rooms_payload):
        first = parse_rooms_payload(sample_rooms_payload)
        second = parse_rooms_payload(sample_rooms_payload)

        first_ids = {item.id for room in first.rooms for item in room.items}
        second_ids = {item.id for room in second.rooms for item in room.items}
        assert len(first_ids) == 3
        assert not first_ids & second_ids


class TestDropPolicy:
    """Malformed items and rooms are dropped and reported."""

    def test_bad_item_dropped_room_kept(self, sample_rooms_payload):
        sample_rooms_payload[0]["items"].append({"category": "Control", "brand": "Crestron", "quantity": 1})
        sample_rooms_payload[0]["items"].append({**sample_rooms_payload[0]["items"][0], "quantity": -2})

        result = parse_rooms_payload(sample_rooms_payload)

        assert len(result.rooms[0].items) == 2
        assert len(result.dropped_items) == 2
        assert result.dropped_items[0].room_name == "Boardroom"
        assert result.dropped_items[0].item_index == 2
        assert "room 'Boardroom', item 3" in result.dropped_items[0].describe()

    def test_bad_room_dropped_others_kept(self, sample_rooms_payload):
        sample_rooms_payload.insert(0, {"items": []})
        sample_rooms_payload.append("not a room")

        result = parse_rooms_payload(sample_rooms_payload)

        assert [room.name for room in result.rooms] == ["Boardroom", "Huddle Room"]
        assert [issue.room_index for issue in result.dropped_rooms] == [0, 3]

    def test_all_rooms_bad_is_malformed(self):
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_rooms_payload([{"name": "Lobby"}, 42])

        assert len(exc_info.value.details["issues"]) == 2

    def test_room_with_only_bad_items_kept_empty(self):
        result = parse_rooms_payload([{"name": "Lobby", "items": [{"brand": "X"}]}])

        assert result.rooms[0].items == []
        assert len(result.dropped_items) == 1


class TestParseItemRecord:
    """Tests for parse_item_record."""

    def test_aliases_and_numeric_strings(self):
        item = parse_item_record({
            "category": "Control",
            "itemName": "Touch panel",
            "brand": "Crestron",
            "modelNumber": "TSW-1070",
            "qty": "3",
            "unit_price": "1,250.00",
            "notes": "  Wall mount  ",
            "imageUrl": "https://img.example.com/tsw.png",
        })

        assert item.item_description == "Touch panel"
        assert item.model == "TSW-1070"
        assert item.quantity == 3
        assert item.unit_price == Decimal("1250.00")
        assert item.notes == "Wall mount"
        assert item.image_url == "https://img.example.com/tsw.png"

    def test_numeric_model_accepted_as_text(self, sample_item_record):
        item = parse_item_record({**sample_item_record, "model": 5200})

        assert item.model == "5200"

    def test_declared_total_ignored(self, sample_item_record):
        item = parse_item_record({**sample_item_record, "quantity": 2, "totalPrice": 1})

        assert item.total_price == Decimal("9998.0")

    def test_margin_kept_including_zero(self, sample_item_record):
        assert parse_item_record({**sample_item_record, "margin": 0}).margin_percent == Decimal("0")
        assert parse_item_record({**sample_item_record, "marginPercent": "12.5"}).margin_percent == Decimal("12.5")

    @pytest.mark.parametrize("margin", ["high", -5, True, "1e1000000"])
    def test_unusable_margin_cleared(self, sample_item_record, margin):
        assert parse_item_record({**sample_item_record, "margin": margin}).margin_percent is None

    def test_fractional_quantity_rejected(self, sample_item_record):
        with pytest.raises(ValidationError) as exc_info:
            parse_item_record({**sample_item_record, "quantity": 1.5})

        assert exc_info.value.field == "quantity"

    def test_missing_price_rejected(self, sample_item_record):
        record = dict(sample_item_record)
        del record["unitPrice"]

        with pytest.raises(ValidationError) as exc_info:
            parse_item_record(record)

        assert exc_info.value.code == ErrorCode.MISSING_FIELD

    def test_boolean_text_rejected(self, sample_item_record):
        with pytest.raises(ValidationError):
            parse_item_record({**sample_item_record, "brand": True})

    def test_exponent_price_accepted(self, sample_item_record):
        item = parse_item_record({**sample_item_record, "unitPrice": "1.5e3", "quantity": 2})

        assert item.unit_price == Decimal("1500")
        assert item.total_price == Decimal("3000")

    @pytest.mark.parametrize("price", ["1e1000000", 1e300, "2e12"])
    def test_out_of_range_price_rejected(self, sample_item_record, price):
        with pytest.raises(ValidationError) as exc_info:
            parse_item_record({**sample_item_record, "unitPrice": price})

        assert exc_info.value.field == "unit_price"

    @pytest.mark.parametrize("quantity", ["1e1000000", 10 ** 7])
    def test_out_of_range_quantity_rejected(self, sample_item_record, quantity):
        with pytest.raises(ValidationError) as exc_info:
            parse_item_record({**sample_item_record, "quantity": quantity})

        assert exc_info.value.field == "quantity"

    def test_out_of_range_item_dropped_room_priced(self, sample_rooms_payload):
        sample_rooms_payload[0]["items"][0]["unitPrice"] = "1e1000000"

        result = parse_rooms_payload(sample_rooms_payload)

        boardroom = result.rooms[0]
        assert [item.model for item in boardroom.items] == ["MXA920"]
        assert len(result.dropped_items) == 1
        assert price_room(boardroom, build_pricing_context("USD")).subtotal == Decimal("6400.0")


def test_strip_code_fences():
    assert strip_code_fences("```\n[1]\n```") == "[1]"
    assert strip_code_fences("  [1]  ") == "[1]"
