"""Line item model for the AV Bill of Quantities.

A line item is one priced equipment entry. Base prices are held in the
reference currency; everything in the selected currency is derived by the
pricing engine on each read.
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic import ValidationError as PydanticValidationError

from config.errors import ErrorCode, ValidationError

if TYPE_CHECKING:
    from models.pricing import ItemPricing, PricingContext


# Upper bounds keep derived money figures inside Decimal range
MAX_QUANTITY = 1_000_000
MAX_UNIT_PRICE = Decimal("1e12")
MAX_MARGIN_PERCENT = Decimal("10000")


def new_id() -> str:
    """Generate a collision-resistant identifier for rooms and items."""
    return uuid.uuid4().hex


def to_validation_error(exc: PydanticValidationError, subject: str) -> ValidationError:
    """Convert a pydantic error into a ValidationError naming the first bad field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc", ())
    field_name = ".".join(str(part) for part in loc) or None
    code = ErrorCode.MISSING_FIELD if first.get("type") == "missing" else ErrorCode.INVALID_FIELD
    return ValidationError(
        message=f"Invalid {subject}: {field_name or 'record'}: {first.get('msg', str(exc))}",
        field=field_name,
        code=code,
        details={"errors": [f"{err['loc']}: {err['msg']}" for err in errors]},
    )


class LineItem(BaseModel):
    """One priced equipment entry of a room's BOQ.

    ``total_price`` is derived from ``quantity`` and ``unit_price`` and is
    therefore always consistent with them. ``margin_percent`` of ``None``
    means "use the global margin"; ``0`` is an explicit zero margin.
    """

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    id: str = Field(default_factory=new_id, frozen=True, description="Stable item identifier")
    category: str = Field(..., min_length=1, description="e.g., Display, Audio, Control")
    item_description: str = Field(..., min_length=1, description="Item name / description")
    brand: str = Field(..., min_length=1, description="Manufacturer")
    model: str = Field(..., min_length=1, description="Model number or name")
    quantity: int = Field(..., ge=0, le=MAX_QUANTITY, description="Number of units")
    unit_price: Decimal = Field(..., ge=0, le=MAX_UNIT_PRICE, description="Unit price in the reference currency")
    margin_percent: Optional[Decimal] = Field(
        None, ge=0, le=MAX_MARGIN_PERCENT, description="Per-item margin override (None = global margin)"
    )
    notes: Optional[str] = Field(None, description="Free-text notes")
    image_url: Optional[str] = Field(None, description="Reference image URL")

    @computed_field
    @property
    def total_price(self) -> Decimal:
        """Quantity x unit price in the reference currency."""
        return self.quantity * self.unit_price

    @property
    def has_margin_override(self) -> bool:
        return self.margin_percent is not None

    @classmethod
    def create(cls, **fields: Any) -> "LineItem":
        """Construct a line item, raising ValidationError on bad fields."""
        try:
            return cls(**fields)
        except PydanticValidationError as e:
            raise to_validation_error(e, "line item") from e

    def _assign(self, name: str, value: Any) -> None:
        try:
            setattr(self, name, value)
        except PydanticValidationError as e:
            raise ValidationError(
                message=f"Invalid {name} for item '{self.item_description}': {value!r}",
                field=name,
                code=ErrorCode.INVALID_FIELD,
                details={"item_id": self.id},
            ) from e

    def set_quantity(self, quantity: int) -> None:
        """Change the quantity; negative or fractional values are rejected."""
        self._assign("quantity", quantity)

    def set_unit_price(self, unit_price: Decimal) -> None:
        """Change the reference-currency unit price."""
        self._assign("unit_price", unit_price)

    def set_margin(self, margin_percent: Optional[Decimal]) -> None:
        """Set a margin override, or clear it with ``None``."""
        self._assign("margin_percent", margin_percent)

    def effective_price(self, context: "PricingContext") -> "ItemPricing":
        """Derive selected-currency figures for this item. Pure."""
        from services.pricing_engine import price_item
        return price_item(self, context)
