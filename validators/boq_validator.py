"""AI BOQ response parsing and validation.

Turns the untrusted output of the AI collaborator (JSON text of unknown
shape) into Room and LineItem models, or fails with MalformedResponseError.

Policy for partially bad payloads:
- A malformed item is dropped; the rest of its room is kept.
- A malformed room record is dropped; the other rooms are kept.
- Every drop is recorded as a ParseIssue on the result.
- A payload with room records of which none survive is malformed.

Optional fields that are present but unusable (a margin that is not a
number within range, a non-string note) are cleared rather than failing
the item.
"""

import json
from dataclasses import dataclass, field
from decimal import Decimal, DecimalException
from typing import Any, Dict, List, Optional, Sequence

import structlog

from config.errors import ErrorCode, MalformedResponseError, ValidationError
from models.line_item import MAX_MARGIN_PERCENT, MAX_QUANTITY, MAX_UNIT_PRICE, LineItem
from models.room import Room, RoomStatus
from services.pricing_engine import to_decimal

logger = structlog.get_logger(__name__)


# Accepted key spellings, first match wins
ROOM_NAME_KEYS = ("name", "roomName", "room_name")
ROOM_ITEMS_KEYS = ("items", "boq", "lineItems", "line_items")
ROOM_REQUIREMENTS_KEYS = ("requirements", "summary")

REQUIRED_ITEM_KEYS: Dict[str, Sequence[str]] = {
    "category": ("category",),
    "item_description": ("itemDescription", "item_description", "description", "itemName", "name"),
    "brand": ("brand",),
    "model": ("model", "modelNumber", "model_number"),
    "quantity": ("quantity", "qty"),
    "unit_price": ("unitPrice", "unit_price"),
}
MARGIN_KEYS = ("margin", "marginPercent", "margin_percent")
NOTES_KEYS = ("notes",)
IMAGE_KEYS = ("imageUrl", "image_url")
TOTAL_KEYS = ("totalPrice", "total_price")

TEXT_FIELDS = ("category", "item_description", "brand", "model")


@dataclass
class ParseIssue:
    """A room or item record that was dropped during parsing."""
    room_index: int
    item_index: Optional[int]
    reason: str
    room_name: Optional[str] = None

    def describe(self) -> str:
        where = f"room {self.room_index + 1}"
        if self.room_name:
            where = f"room '{self.room_name}'"
        if self.item_index is not None:
            where = f"{where}, item {self.item_index + 1}"
        return f"{where}: {self.reason}"


@dataclass
class ParseResult:
    """Rooms built from an AI response plus whatever was dropped."""
    rooms: List[Room] = field(default_factory=list)
    issues: List[ParseIssue] = field(default_factory=list)
    raw_text: Optional[str] = None

    @property
    def item_count(self) -> int:
        return sum(len(room.items) for room in self.rooms)

    @property
    def dropped_items(self) -> List[ParseIssue]:
        return [issue for issue in self.issues if issue.item_index is not None]

    @property
    def dropped_rooms(self) -> List[ParseIssue]:
        return [issue for issue in self.issues if issue.item_index is None]


# =============================================================================
# Helpers
# =============================================================================


def strip_code_fences(content: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def _pick(record: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _text(value: Any, field_name: str) -> str:
    if isinstance(value, bool):
        raise ValidationError(f"Field '{field_name}' must be text", field=field_name,
                              code=ErrorCode.INVALID_FIELD)
    if isinstance(value, (int, float, Decimal)):
        value = str(value)
    if not isinstance(value, str):
        raise ValidationError(f"Field '{field_name}' must be text", field=field_name,
                              code=ErrorCode.INVALID_FIELD)
    if not value.strip():
        raise ValidationError(f"Missing required field '{field_name}'", field=field_name,
                              code=ErrorCode.MISSING_FIELD)
    return value.strip()


def _quantity(value: Any) -> int:
    number = to_decimal(value)
    if number is None or number != number.to_integral_value():
        raise ValidationError(f"Quantity must be a whole number, got {value!r}",
                              field="quantity", code=ErrorCode.INVALID_FIELD)
    if number > MAX_QUANTITY:
        raise ValidationError(f"Quantity {value!r} exceeds {MAX_QUANTITY}",
                              field="quantity", code=ErrorCode.INVALID_FIELD)
    return int(number)


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _optional_margin(value: Any) -> Optional[Decimal]:
    margin = to_decimal(value)
    if margin is None or margin < 0 or margin > MAX_MARGIN_PERCENT:
        if value is not None:
            logger.warning("item_margin_ignored", value=value)
        return None
    return margin


# =============================================================================
# Records
# =============================================================================


def parse_item_record(record: Any) -> LineItem:
    """Validate one item record and build a LineItem with a fresh id.

    Raises:
        ValidationError: If a required field is missing or invalid.
    """
    if not isinstance(record, dict):
        raise ValidationError("Item record is not an object", code=ErrorCode.INVALID_FIELD)

    values: Dict[str, Any] = {}
    for field_name, keys in REQUIRED_ITEM_KEYS.items():
        value = _pick(record, keys)
        if value is None:
            raise ValidationError(f"Missing required field '{field_name}'", field=field_name,
                                  code=ErrorCode.MISSING_FIELD)
        values[field_name] = value

    for field_name in TEXT_FIELDS:
        values[field_name] = _text(values[field_name], field_name)

    quantity = _quantity(values["quantity"])
    unit_price = to_decimal(values["unit_price"])
    if unit_price is None:
        raise ValidationError(f"Unit price must be a number, got {values['unit_price']!r}",
                              field="unit_price", code=ErrorCode.INVALID_FIELD)
    if unit_price > MAX_UNIT_PRICE:
        raise ValidationError(f"Unit price {values['unit_price']!r} exceeds {MAX_UNIT_PRICE}",
                              field="unit_price", code=ErrorCode.INVALID_FIELD)

    item = LineItem.create(
        category=values["category"],
        item_description=values["item_description"],
        brand=values["brand"],
        model=values["model"],
        quantity=quantity,
        unit_price=unit_price,
        margin_percent=_optional_margin(_pick(record, MARGIN_KEYS)),
        notes=_optional_text(_pick(record, NOTES_KEYS)),
        image_url=_optional_text(_pick(record, IMAGE_KEYS)),
    )

    try:
        derived_total = item.total_price
    except DecimalException as e:
        raise ValidationError(f"Total price of '{item.item_description}' is out of range",
                              field="unit_price", code=ErrorCode.INVALID_FIELD) from e

    declared_total = to_decimal(_pick(record, TOTAL_KEYS))
    if declared_total is not None and declared_total != derived_total:
        logger.warning(
            "declared_total_mismatch",
            item=item.item_description,
            declared=str(declared_total),
            derived=str(derived_total),
        )
    return item


def parse_room_record(record: Any, room_index: int, issues: List[ParseIssue]) -> Room:
    """Validate one room record; bad items are dropped into ``issues``.

    Raises:
        ValidationError: If the room itself has no name or no item list.
    """
    if not isinstance(record, dict):
        raise ValidationError("Room record is not an object", code=ErrorCode.INVALID_FIELD)

    name = _pick(record, ROOM_NAME_KEYS)
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Room record has no name", field="name", code=ErrorCode.MISSING_FIELD)
    name = name.strip()

    raw_items = _pick(record, ROOM_ITEMS_KEYS)
    if not isinstance(raw_items, list):
        raise ValidationError(f"Room '{name}' has no item list", field="items",
                              code=ErrorCode.MISSING_FIELD)

    items: List[LineItem] = []
    for item_index, item_record in enumerate(raw_items):
        try:
            items.append(parse_item_record(item_record))
        except ValidationError as e:
            issues.append(ParseIssue(room_index, item_index, e.message, room_name=name))
            logger.warning(
                "line_item_dropped",
                room=name,
                item_index=item_index,
                reason=e.message,
            )

    return Room.create(
        name=name,
        requirements=_optional_text(_pick(record, ROOM_REQUIREMENTS_KEYS)) or "",
        items=items,
        status=RoomStatus.READY,
    )


# =============================================================================
# Payloads
# =============================================================================


def parse_rooms_payload(data: Any, raw_text: Optional[str] = None) -> ParseResult:
    """Validate already-decoded JSON purporting to be a list of rooms.

    Raises:
        MalformedResponseError: If ``data`` is not a list, or it holds room
            records and none of them is valid.
    """
    if raw_text is None:
        raw_text = json.dumps(data, default=str)[:2000]

    if not isinstance(data, list):
        raise MalformedResponseError(
            "The AI returned an invalid BOQ format: expected a list of rooms.",
            raw_text=raw_text,
            details={"received_type": type(data).__name__},
        )

    result = ParseResult(raw_text=raw_text)
    for room_index, record in enumerate(data):
        try:
            room = parse_room_record(record, room_index, result.issues)
        except ValidationError as e:
            result.issues.append(ParseIssue(room_index, None, e.message))
            logger.warning("room_record_dropped", room_index=room_index, reason=e.message)
            continue
        result.rooms.append(room)

    if data and not result.rooms:
        raise MalformedResponseError(
            "The AI response did not contain any valid room.",
            raw_text=raw_text,
            details={"issues": [issue.describe() for issue in result.issues]},
        )

    logger.info(
        "boq_response_parsed",
        room_count=len(result.rooms),
        item_count=result.item_count,
        dropped_items=len(result.dropped_items),
        dropped_rooms=len(result.dropped_rooms),
    )
    return result


def parse_rooms_response(raw_text: Any) -> ParseResult:
    """Parse raw AI text into rooms.

    Accepts a JSON array, optionally wrapped in a markdown code block.

    Raises:
        MalformedResponseError: If the text is not JSON or not a list of rooms.
    """
    if not isinstance(raw_text, str):
        raise MalformedResponseError(
            "The AI returned an invalid BOQ format: response is not text.",
            raw_text=repr(raw_text),
        )

    try:
        data = json.loads(strip_code_fences(raw_text))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(
            "The AI returned an invalid BOQ format.",
            raw_text=raw_text,
            details={"parse_error": str(e)},
        ) from e

    return parse_rooms_payload(data, raw_text=raw_text)
