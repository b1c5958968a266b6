"""Project session: the single owner of rooms and their BOQs.

Coordinates the AI collaborator, pricing and export:
- Room management (add, delete, rename, questionnaire answers)
- BOQ generation and refinement, one request per room at a time
- Line item edits (quantity, margin, searched products)
- Pricing read on demand, never cached
- Spreadsheet export
"""

import asyncio
import datetime as dt
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from config.errors import (
    BoqError,
    ErrorCode,
    ExportError,
    ExternalServiceError,
    MalformedResponseError,
    ValidationError,
)
from config.settings import Settings, load_settings
from models.client_details import ClientDetails, normalize_currency_code
from models.line_item import MAX_MARGIN_PERCENT, LineItem
from models.pricing import PricingContext, ProjectPricing, RoomPricing
from models.product import ProductDetails
from models.room import Room
from services.boq_generator import BoqGenerator
from services.currency_service import CurrencyRateService
from services.pricing_engine import context_from_settings, price_project, price_room, to_decimal
from services.product_search_service import ProductSearchService
from services.xlsx_layout import WorkbookLayout, build_workbook_layout
from services.xlsx_writer import build_export_filename, export_workbook
from validators.boq_validator import ParseResult

logger = structlog.get_logger(__name__)


EMPTY_QUESTIONNAIRE_MESSAGE = "Please fill out the questionnaire before generating."
NOTHING_TO_EXPORT_MESSAGE = "Please generate at least one BOQ before exporting."


def answers_to_requirements(answers: Mapping[str, Any]) -> str:
    """Flatten questionnaire answers into a requirements string.

    Produces ``key: value`` pairs joined by ``; ``. List answers are joined
    with ``, ``; empty answers are skipped.

    Example:
        {"roomType": "Boardroom", "features": ["VC", "Wireless"]}
        -> "roomType: Boardroom; features: VC, Wireless"
    """
    parts = []
    for key, value in answers.items():
        if isinstance(value, (list, tuple)):
            values = [str(v) for v in value if v not in (None, "")]
            if values:
                parts.append(f"{key}: {', '.join(values)}")
        elif value not in (None, "", False):
            parts.append(f"{key}: {value}")
    return "; ".join(parts)


class ProjectSession:
    """In-memory project: rooms, client details and the global margin.

    Collaborators are injected; anything not supplied is built from
    ``settings`` on first use.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        generator: Optional[BoqGenerator] = None,
        rate_service: Optional[CurrencyRateService] = None,
        product_search: Optional[ProductSearchService] = None,
        client_details: Optional[ClientDetails] = None,
    ):
        """Initialize ProjectSession.

        Args:
            settings: Application settings (loaded from the environment if omitted).
            generator: AI collaborator for generate/refine.
            rate_service: Exchange rate collaborator.
            product_search: Product search collaborator.
            client_details: Commercial context; defaults use the configured currency.
        """
        self.settings = settings or load_settings()
        self._generator = generator
        self._rate_service = rate_service
        self._product_search = product_search

        self.client_details = client_details or ClientDetails(currency=self.settings.default_currency)
        self.global_margin_percent: Decimal = to_decimal(self.settings.default_margin_percent) or Decimal("0")
        self.rates: Dict[str, Decimal] = {}

        self.rooms: List[Room] = []
        self.active_room_id: Optional[str] = None
        self.last_issues: Dict[str, List[str]] = {}
        self._room_counter = 0

    # =========================================================================
    # Collaborators
    # =========================================================================

    @property
    def generator(self) -> BoqGenerator:
        if self._generator is None:
            from services.llm_service import LLMService
            self._generator = BoqGenerator(LLMService(settings=self.settings))
        return self._generator

    @property
    def rate_service(self) -> CurrencyRateService:
        if self._rate_service is None:
            self._rate_service = CurrencyRateService(settings=self.settings)
        return self._rate_service

    @property
    def product_search(self) -> ProductSearchService:
        if self._product_search is None:
            self._product_search = ProductSearchService(settings=self.settings)
        return self._product_search

    # =========================================================================
    # Rooms
    # =========================================================================

    def find_room(self, room_id: str) -> Optional[Room]:
        for room in self.rooms:
            if room.id == room_id:
                return room
        return None

    def get_room(self, room_id: str) -> Room:
        """Look up a room.

        Raises:
            ValidationError: If no room has this id.
        """
        room = self.find_room(room_id)
        if room is None:
            raise ValidationError(
                message=f"Room {room_id} not found",
                field="room_id",
                code=ErrorCode.ROOM_NOT_FOUND,
            )
        return room

    @property
    def active_room(self) -> Optional[Room]:
        if self.active_room_id is None:
            return None
        return self.find_room(self.active_room_id)

    def set_active_room(self, room_id: str) -> Room:
        room = self.get_room(room_id)
        self.active_room_id = room.id
        return room

    def add_room(self, name: Optional[str] = None) -> Room:
        """Create an empty room and make it the active one."""
        self._room_counter += 1
        room = Room.create(name=name or f"Room {self._room_counter}")
        self.rooms.append(room)
        self.active_room_id = room.id
        logger.info("room_added", room_id=room.id, name=room.name)
        return room

    def import_rooms(self, rooms: Sequence[Room]) -> List[Room]:
        """Append already-built rooms, e.g. parsed from a saved AI response."""
        for room in rooms:
            self._room_counter += 1
            self.rooms.append(room)
        if self.active_room_id is None and self.rooms:
            self.active_room_id = self.rooms[0].id
        return list(rooms)

    def delete_room(self, room_id: str) -> Room:
        """Remove a room; an in-flight request for it is discarded on return."""
        room = self.get_room(room_id)
        room.supersede()
        self.rooms.remove(room)
        self.last_issues.pop(room.id, None)
        if self.active_room_id == room.id:
            self.active_room_id = self.rooms[0].id if self.rooms else None
        logger.info("room_deleted", room_id=room.id, name=room.name)
        return room

    def rename_room(self, room_id: str, name: str) -> Room:
        room = self.get_room(room_id)
        try:
            room.name = name
        except PydanticValidationError as e:
            raise ValidationError(
                message=f"Invalid room name: {name!r}",
                field="name",
                code=ErrorCode.INVALID_FIELD,
            ) from e
        return room

    def update_answers(self, room_id: str, answers: Mapping[str, Any]) -> Room:
        """Store questionnaire answers and the requirements derived from them."""
        room = self.get_room(room_id)
        room.answers = dict(answers)
        room.requirements = answers_to_requirements(room.answers)
        return room

    # =========================================================================
    # Generation and refinement
    # =========================================================================

    def _requirements_for(self, room: Room) -> str:
        requirements = room.requirements.strip() or answers_to_requirements(room.answers)
        if not requirements:
            raise ValidationError(EMPTY_QUESTIONNAIRE_MESSAGE, field="answers", code=ErrorCode.MISSING_FIELD)
        return requirements

    def _is_live(self, room: Room, token: int) -> bool:
        """True if the room still exists and ``token`` is its latest request."""
        return self.find_room(room.id) is room and room.is_current(token)

    def _fail(self, room: Room, token: int, operation: str, error: BoqError) -> None:
        if not self._is_live(room, token):
            logger.info("room_result_discarded", room_id=room.id, operation=operation, reason="stale")
            return
        room.mark_error(f"Failed to {operation}: {error.message}")
        logger.warning(
            "room_request_failed",
            room_id=room.id,
            operation=operation,
            code=error.code,
            error=error.message,
        )

    def _abort(self, room: Room, token: int, operation: str, error: Exception) -> None:
        """Release a room whose request died on an unexpected error."""
        logger.exception("room_request_crashed", room_id=room.id, operation=operation, error=str(error))
        if self._is_live(room, token):
            room.mark_error(f"Failed to {operation}: unexpected error ({type(error).__name__})")

    def _accept(self, room: Room, token: int, operation: str, result: ParseResult) -> bool:
        if not self._is_live(room, token):
            logger.info("room_result_discarded", room_id=room.id, operation=operation, reason="stale")
            return False
        if not result.rooms:
            self._fail(room, token, operation, MalformedResponseError(
                "The AI response did not contain any room.", raw_text=result.raw_text,
            ))
            return False
        self.last_issues[room.id] = [issue.describe() for issue in result.issues]
        return True

    async def generate_room(self, room_id: str) -> bool:
        """Generate a BOQ for a room from its requirements.

        The first room of the response replaces the room's items; any further
        rooms are appended to the project. Failures are stored on the room.
        An unexpected error also marks the room failed before it propagates.

        Returns:
            True if a result was applied.
        """
        room = self.get_room(room_id)
        if room.is_busy:
            logger.info("room_request_ignored", room_id=room.id, operation="generate", reason="busy")
            return False

        token = room.begin_request()
        logger.info("room_generation_started", room_id=room.id, name=room.name)
        try:
            requirements = self._requirements_for(room)
            result = await self.generator.generate_result(
                requirements, self.client_details, room_name=room.name,
            )
        except (ValidationError, MalformedResponseError, ExternalServiceError) as e:
            self._fail(room, token, "generate", e)
            return False
        except asyncio.CancelledError:
            if self._is_live(room, token):
                room.supersede()
            raise
        except Exception as e:
            self._abort(room, token, "generate", e)
            raise

        if not self._accept(room, token, "generate", result):
            return False

        first, extra = result.rooms[0], result.rooms[1:]
        room.replace_items(first.items)
        room.mark_ready()
        self.import_rooms(extra)

        logger.info(
            "room_generation_completed",
            room_id=room.id,
            item_count=len(room.items),
            extra_rooms=len(extra),
            dropped=len(result.issues),
        )
        return True

    async def refine_room(self, room_id: str, instruction: str) -> bool:
        """Apply a free-text change request to a room's BOQ.

        The response room with the same name (or else the first one) replaces
        the room's items. Failures are stored on the room and leave its
        items untouched.
        An unexpected error also marks the room failed before it propagates.

        Returns:
            True if a result was applied.
        """
        room = self.get_room(room_id)
        if room.is_busy:
            logger.info("room_request_ignored", room_id=room.id, operation="refine", reason="busy")
            return False

        token = room.begin_request()
        logger.info("room_refinement_started", room_id=room.id, instruction=instruction[:80])
        try:
            if not room.has_items:
                raise ValidationError("Generate a BOQ before refining it.", field="items",
                                      code=ErrorCode.MISSING_FIELD)
            if not instruction or not instruction.strip():
                raise ValidationError("Describe the change to make.", field="instruction",
                                      code=ErrorCode.MISSING_FIELD)
            result = await self.generator.refine_result([room], instruction.strip())
        except (ValidationError, MalformedResponseError, ExternalServiceError) as e:
            self._fail(room, token, "refine", e)
            return False
        except asyncio.CancelledError:
            if self._is_live(room, token):
                room.supersede()
            raise
        except Exception as e:
            self._abort(room, token, "refine", e)
            raise

        if not self._accept(room, token, "refine", result):
            return False

        match = next((r for r in result.rooms if r.name == room.name), result.rooms[0])
        room.replace_items(match.items)
        room.mark_ready()
        logger.info("room_refinement_completed", room_id=room.id, item_count=len(room.items))
        return True

    def cancel_generation(self, room_id: str) -> None:
        """Discard the in-flight request of a room, if any."""
        room = self.get_room(room_id)
        room.supersede()
        logger.info("room_request_cancelled", room_id=room.id)

    # =========================================================================
    # Item edits
    # =========================================================================

    def add_item(self, room_id: str, item: LineItem) -> LineItem:
        return self.get_room(room_id).add_item(item)

    def remove_item(self, room_id: str, item_id: str) -> LineItem:
        return self.get_room(room_id).remove_item(item_id)

    def update_item_quantity(self, room_id: str, item_id: str, quantity: int) -> LineItem:
        return self.get_room(room_id).update_quantity(item_id, quantity)

    def update_item_margin(self, room_id: str, item_id: str, margin_percent: Optional[Any]) -> LineItem:
        """Set a per-item margin override, or clear it with None.

        Raises:
            ValidationError: If the margin is not a non-negative number.
        """
        margin = None
        if margin_percent is not None:
            margin = to_decimal(margin_percent)
            if margin is None:
                raise ValidationError(
                    message=f"Margin must be a number, got {margin_percent!r}",
                    field="margin_percent",
                    code=ErrorCode.INVALID_FIELD,
                )
        return self.get_room(room_id).update_margin(item_id, margin)

    def set_global_margin(self, margin_percent: Any) -> Decimal:
        """Set the margin applied to items without an override.

        Raises:
            ValidationError: If the margin is not a number within range.
        """
        margin = to_decimal(margin_percent)
        if margin is None or margin < 0 or margin > MAX_MARGIN_PERCENT:
            raise ValidationError(
                message=f"Global margin must be a number from 0 to {MAX_MARGIN_PERCENT}, got {margin_percent!r}",
                field="global_margin_percent",
                code=ErrorCode.INVALID_FIELD,
            )
        self.global_margin_percent = margin
        return margin

    def set_currency(self, currency: str) -> str:
        """Select the proposal currency.

        Raises:
            ValidationError: If the code is not three letters.
        """
        try:
            code = normalize_currency_code(currency)
        except ValueError as e:
            raise ValidationError(str(e), field="currency", code=ErrorCode.INVALID_FIELD) from e
        self.client_details.currency = code
        return code

    async def add_searched_product(
        self,
        room_id: str,
        category: str,
        brand: str,
        model: str,
        quantity: int = 1,
    ) -> LineItem:
        """Add a product priced from its top Google Shopping result.

        Raises:
            ExternalServiceError: If the search fails.
            ValidationError: If no priced result is found.
        """
        room = self.get_room(room_id)
        query = f"{brand} {model}".strip()
        response = await self.product_search.search_products(query, num_results=5)
        if not response.results:
            raise ValidationError(
                message=f"No priced product found for '{query}'",
                field="model",
                code=ErrorCode.INVALID_FIELD,
            )

        top = response.results[0]
        item = LineItem.create(
            category=category,
            item_description=top.title or query,
            brand=brand,
            model=model,
            quantity=quantity,
            unit_price=top.price,
            notes=f"Price from {top.source}" if top.source else None,
            image_url=top.image_url,
        )
        room.add_item(item)
        logger.info("searched_product_added", room_id=room.id, item_id=item.id, price=str(top.price))
        return item

    async def lookup_item_details(self, room_id: str, item_id: str) -> ProductDetails:
        """Find image, description and sources for an item.

        A found image is kept on the item when it has none yet.
        """
        item = self.get_room(room_id).get_item(item_id)
        details = await self.product_search.fetch_product_details(f"{item.brand} {item.model}")
        if details.image_url and not item.image_url:
            item.image_url = details.image_url
        return details

    # =========================================================================
    # Pricing
    # =========================================================================

    async def refresh_rates(self) -> Dict[str, Decimal]:
        """Fetch the rate table; an unavailable service leaves an empty table."""
        self.rates = await self.rate_service.get_rates_or_empty()
        return self.rates

    def pricing_context(self, rates: Optional[Mapping[str, Any]] = None) -> PricingContext:
        """Build a fresh context for the selected currency and global margin."""
        return context_from_settings(
            self.settings,
            currency=self.client_details.currency,
            rates=self.rates if rates is None else rates,
            global_margin_percent=self.global_margin_percent,
        )

    def room_pricing(self, room_id: str, rates: Optional[Mapping[str, Any]] = None) -> RoomPricing:
        return price_room(self.get_room(room_id), self.pricing_context(rates))

    def project_pricing(self, rates: Optional[Mapping[str, Any]] = None) -> ProjectPricing:
        return price_project(self.rooms, self.pricing_context(rates))

    # =========================================================================
    # Export
    # =========================================================================

    def build_layout(
        self,
        rates: Optional[Mapping[str, Any]] = None,
        generated_on: Optional[dt.date] = None,
    ) -> WorkbookLayout:
        return build_workbook_layout(
            self.rooms,
            self.client_details,
            self.pricing_context(rates),
            generated_on=generated_on,
        )

    def export(
        self,
        output_dir: Optional[Union[str, Path]] = None,
        rates: Optional[Mapping[str, Any]] = None,
        filename: Optional[str] = None,
        generated_on: Optional[dt.date] = None,
    ) -> Path:
        """Write the project workbook.

        Returns:
            Path of the written file.

        Raises:
            ExportError: If no room has items or the file cannot be written.
        """
        if not any(room.has_items for room in self.rooms):
            raise ExportError(NOTHING_TO_EXPORT_MESSAGE, code=ErrorCode.EXPORT_NO_DATA)

        on_date = generated_on or dt.date.today()
        layout = self.build_layout(rates, generated_on=on_date)
        name = filename or build_export_filename(self.client_details.project_name, on_date)
        path = export_workbook(layout, output_dir or self.settings.export_dir, filename=name)
        logger.info("project_exported", path=str(path), room_count=len(self.rooms))
        return path
