"""Room model: a named collection of line items for one physical space."""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic import ValidationError as PydanticValidationError

from config.errors import ErrorCode, ValidationError
from models.line_item import LineItem, new_id, to_validation_error


class RoomStatus(str, Enum):
    """Generation status of a room."""

    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"
    ERROR = "error"


class Room(BaseModel):
    """A room and its ordered BOQ.

    Items keep insertion order; only explicit deletion removes one.
    The identifier is assigned once and cannot be changed.
    """

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id, frozen=True, description="Room identifier")
    name: str = Field(..., min_length=1, description="Display name")
    requirements: str = Field(default="", description="Free-text requirements summary")
    answers: Dict[str, Any] = Field(default_factory=dict, description="Questionnaire answers")
    items: List[LineItem] = Field(default_factory=list, description="Ordered BOQ line items")
    status: RoomStatus = Field(default=RoomStatus.IDLE, description="Generation status")
    error: Optional[str] = Field(None, description="Last error shown for this room")

    _request_token: int = PrivateAttr(default=0)

    @classmethod
    def create(cls, **fields: Any) -> "Room":
        """Construct a room, raising ValidationError on bad fields."""
        try:
            return cls(**fields)
        except PydanticValidationError as e:
            raise to_validation_error(e, "room") from e

    # -------------------------------------------------------------------------
    # Item operations
    # -------------------------------------------------------------------------

    @property
    def has_items(self) -> bool:
        return bool(self.items)

    def get_item(self, item_id: str) -> LineItem:
        """Find an item by id.

        Raises:
            ValidationError: If the item is not in this room.
        """
        for item in self.items:
            if item.id == item_id:
                return item
        raise ValidationError(
            message=f"Item {item_id} not found in room '{self.name}'",
            field="item_id",
            code=ErrorCode.ITEM_NOT_FOUND,
            details={"room_id": self.id},
        )

    def add_item(self, item: LineItem) -> LineItem:
        """Append an item at the end of the BOQ."""
        if any(existing.id == item.id for existing in self.items):
            raise ValidationError(
                message=f"Item {item.id} already exists in room '{self.name}'",
                field="item_id",
                details={"room_id": self.id},
            )
        self.items.append(item)
        return item

    def remove_item(self, item_id: str) -> LineItem:
        """Delete an item; the remaining items keep their order."""
        item = self.get_item(item_id)
        self.items.remove(item)
        return item

    def replace_items(self, items: List[LineItem]) -> None:
        """Swap in a complete new BOQ (result of generation or refinement)."""
        self.items = list(items)

    def update_quantity(self, item_id: str, quantity: int) -> LineItem:
        item = self.get_item(item_id)
        item.set_quantity(quantity)
        return item

    def update_margin(self, item_id: str, margin_percent: Optional[Decimal]) -> LineItem:
        item = self.get_item(item_id)
        item.set_margin(margin_percent)
        return item

    # -------------------------------------------------------------------------
    # Request bookkeeping
    # -------------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self.status == RoomStatus.PENDING

    def begin_request(self) -> int:
        """Mark the room pending and return the token of the new request."""
        self._request_token += 1
        self.status = RoomStatus.PENDING
        self.error = None
        return self._request_token

    def is_current(self, token: int) -> bool:
        """True if ``token`` belongs to the latest request for this room."""
        return token == self._request_token

    def supersede(self) -> None:
        """Invalidate any in-flight request so its result is discarded."""
        self._request_token += 1
        if self.status == RoomStatus.PENDING:
            self.status = RoomStatus.READY if self.items else RoomStatus.IDLE

    def mark_ready(self) -> None:
        self.status = RoomStatus.READY
        self.error = None

    def mark_error(self, message: str) -> None:
        self.status = RoomStatus.ERROR
        self.error = message
