"""BOQ generation and refinement through the LLM.

The AI collaborator contract:
- generate(requirements, client_details) -> rooms
- refine(current_rooms, instruction) -> rooms

Both fail with ExternalServiceError when the LLM call fails and with
MalformedResponseError when the reply cannot be turned into rooms.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

import structlog

from models.client_details import ClientDetails
from models.room import Room
from services.llm_service import LLMService
from validators.boq_validator import ParseResult, parse_rooms_response

logger = structlog.get_logger(__name__)


ROOM_SCHEMA_DESCRIPTION = """Respond with a JSON array of room objects:
[
  {
    "name": "<room name>",
    "items": [
      {
        "category": "e.g., Display, Audio, Control",
        "itemDescription": "A detailed description of the item",
        "brand": "Manufacturer",
        "model": "Model number or name",
        "quantity": <integer>,
        "unitPrice": <price of a single unit in USD>,
        "totalPrice": <quantity * unitPrice in USD>
      }
    ]
  }
]"""

GENERATE_SYSTEM_PROMPT = f"""You are an expert Audio-Visual system designer. Your task is to generate a detailed Bill of Quantities (BOQ) based on the user's requirements.
- Use realistic, current, and professional-grade AV equipment brands and models (e.g., Crestron, Shure, Samsung, Barco, Biamp, QSC).
- Calculate the totalPrice accurately (quantity * unitPrice).
- Ensure all necessary components for a functional system are included (cables, mounts, connectors, etc.).
- The output must be ONLY the JSON array, with no other text or markdown.

{ROOM_SCHEMA_DESCRIPTION}"""

REFINE_SYSTEM_PROMPT = f"""You are an expert Audio-Visual system designer. Your task is to refine an existing Bill of Quantities (BOQ) based on user instructions.
- You will be given the current BOQ as JSON and a request for changes.
- Apply the changes and return the complete, updated BOQ for every room you were given, keeping room names unchanged.
- Keep any "margin" value of an item you do not change.
- Ensure all calculations (totalPrice) are correct in the updated BOQ.
- The output must be ONLY the JSON array, with no other text or markdown.

{ROOM_SCHEMA_DESCRIPTION}"""


def rooms_to_payload(rooms: Sequence[Room]) -> List[Dict[str, Any]]:
    """Serialize rooms into the JSON shape the model reads and writes.

    ``margin`` is null for items without an override and a number otherwise,
    so an explicit 0 survives the round trip.
    """
    return [
        {
            "name": room.name,
            "requirements": room.requirements,
            "items": [
                {
                    "category": item.category,
                    "itemDescription": item.item_description,
                    "brand": item.brand,
                    "model": item.model,
                    "quantity": item.quantity,
                    "unitPrice": float(item.unit_price),
                    "totalPrice": float(item.total_price),
                    "margin": float(item.margin_percent) if item.margin_percent is not None else None,
                    "notes": item.notes,
                    "imageUrl": item.image_url,
                }
                for item in room.items
            ],
        }
        for room in rooms
    ]


def describe_client_context(client_details: Optional[ClientDetails]) -> str:
    """Render the commercial context as prompt lines."""
    if client_details is None:
        return ""
    lines = [
        ("Client", client_details.client_name),
        ("Project", client_details.project_name),
        ("Location", client_details.location),
        ("Budget", client_details.budget),
        ("Key comments", client_details.key_comments),
    ]
    return "\n".join(f"{label}: {value}" for label, value in lines if value)


class BoqGenerator:
    """AI collaborator producing rooms of priced line items."""

    def __init__(self, llm_service: LLMService, max_tokens: Optional[int] = None):
        """Initialize BoqGenerator.

        Args:
            llm_service: Configured LLM service.
            max_tokens: Optional response token cap.
        """
        self.llm_service = llm_service
        self.max_tokens = max_tokens

    async def _ask(self, system_prompt: str, user_message: str, operation: str) -> ParseResult:
        result = await self.llm_service.generate_with_system_prompt(
            system_prompt,
            user_message,
            self.max_tokens,
        )
        parsed = parse_rooms_response(result["content"])
        logger.info(
            "boq_ai_result",
            operation=operation,
            room_count=len(parsed.rooms),
            item_count=parsed.item_count,
            dropped=len(parsed.issues),
            tokens_used=result.get("tokens_used", 0),
        )
        return parsed

    async def generate_result(
        self,
        requirements: str,
        client_details: Optional[ClientDetails] = None,
        room_name: Optional[str] = None,
    ) -> ParseResult:
        """Generate rooms and keep the parse issues."""
        context = describe_client_context(client_details)
        target = f' for the room "{room_name}"' if room_name else ""
        user_message = f"Generate a BOQ{target} for the following requirements: {requirements}"
        if context:
            user_message = f"{user_message}\n\nProject context:\n{context}"
        return await self._ask(GENERATE_SYSTEM_PROMPT, user_message, "generate")

    async def refine_result(self, rooms: Sequence[Room], instruction: str) -> ParseResult:
        """Refine rooms and keep the parse issues."""
        current = json.dumps(rooms_to_payload(rooms), indent=2)
        user_message = (
            f"Current BOQ:\n{current}\n\n"
            f'Refinement Request:\n"{instruction}"\n\n'
            "Please provide the full, updated BOQ in JSON format."
        )
        return await self._ask(REFINE_SYSTEM_PROMPT, user_message, "refine")

    async def generate(
        self,
        requirements: str,
        client_details: Optional[ClientDetails] = None,
    ) -> List[Room]:
        """Generate a BOQ for the requirements.

        Raises:
            ExternalServiceError: If the LLM call fails.
            MalformedResponseError: If the reply is not a list of rooms.
        """
        return (await self.generate_result(requirements, client_details)).rooms

    async def refine(self, current_rooms: Sequence[Room], instruction: str) -> List[Room]:
        """Refine existing rooms with a free-text instruction.

        Raises:
            ExternalServiceError: If the LLM call fails.
            MalformedResponseError: If the reply is not a list of rooms.
        """
        return (await self.refine_result(current_rooms, instruction)).rooms
