"""Pytest configuration and shared fixtures for AV BOQ tests."""

import json
import os
import sys
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from typing import Any, Dict, List


# ============================================================================
# Ensure local imports work (config/, models/, services/, validators/)
# ============================================================================
#
# The codebase uses absolute imports like `from models...` / `from services...`,
# so the repository root must be importable as the top-level module root.
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


# ============================================================================
# Settings
# ============================================================================

@pytest.fixture
def test_settings(tmp_path):
    """Settings with explicit values so the environment cannot leak in."""
    from config.settings import load_settings

    return load_settings(
        llm_model="gpt-4o",
        llm_temperature=0.1,
        openai_api_key="test-api-key",
        reference_currency="USD",
        default_currency="USD",
        default_margin_percent=0.0,
        tax_rate_percent=18.0,
        tax_policy="flat",
        tax_split_labels=["CGST", "SGST"],
        exchange_rate_url="https://rates.example.com/v6/latest",
        exchange_rate_timeout_seconds=5.0,
        exchange_rate_cache_seconds=3600,
        serp_api_key="test-serp-key",
        export_dir=str(tmp_path),
        log_level="INFO",
    )


# ============================================================================
# LLM Mocks
# ============================================================================

@pytest.fixture
def mock_chat_openai():
    """Mock ChatOpenAI client."""
    mock = AsyncMock()
    mock.ainvoke.return_value = MagicMock(
        content="Mock response content",
        response_metadata={"token_usage": {"total_tokens": 100}}
    )
    return mock


@pytest.fixture
def mock_llm_service(mock_chat_openai, test_settings):
    """LLMService whose client is the mocked ChatOpenAI."""
    from services.llm_service import LLMService

    with patch('services.llm_service.ChatOpenAI', return_value=mock_chat_openai):
        service = LLMService(settings=test_settings)
        service._client = mock_chat_openai
        return service


def llm_reply(content: Any, tokens: int = 120) -> MagicMock:
    """Build a ChatOpenAI-style reply; non-strings are JSON encoded."""
    if not isinstance(content, str):
        content = json.dumps(content)
    return MagicMock(content=content, response_metadata={"token_usage": {"total_tokens": tokens}})


@pytest.fixture
def set_llm_reply(mock_chat_openai):
    """Set what the mocked model answers next."""
    def _set(content: Any, tokens: int = 120) -> None:
        mock_chat_openai.ainvoke.return_value = llm_reply(content, tokens)
    return _set


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def sample_item_record() -> Dict[str, Any]:
    """One AI-shaped line item record."""
    return {
        "category": "Display",
        "itemDescription": "86-inch 4K interactive display",
        "brand": "Samsung",
        "model": "WM85B",
        "quantity": 1,
        "unitPrice": 4999.0,
        "totalPrice": 4999.0,
    }


@pytest.fixture
def sample_rooms_payload(sample_item_record) -> List[Dict[str, Any]]:
    """AI-shaped response covering two rooms."""
    return [
        {
            "name": "Boardroom",
            "items": [
                sample_item_record,
                {
                    "category": "Audio",
                    "itemDescription": "Ceiling microphone array",
                    "brand": "Shure",
                    "model": "MXA920",
                    "quantity": 2,
                    "unitPrice": 3200.0,
                    "totalPrice": 6400.0,
                },
            ],
        },
        {
            "name": "Huddle Room",
            "items": [
                {
                    "category": "Video Conferencing",
                    "itemDescription": "All-in-one video bar",
                    "brand": "Poly",
                    "model": "Studio X50",
                    "quantity": 1,
                    "unitPrice": 2900.0,
                    "totalPrice": 2900.0,
                }
            ],
        },
    ]


@pytest.fixture
def boardroom_item():
    """qty 2 x 100.00 with no margin override."""
    from models.line_item import LineItem

    return LineItem.create(
        category="Display",
        item_description="55-inch display",
        brand="LG",
        model="55UH5N",
        quantity=2,
        unit_price=Decimal("100.00"),
    )


@pytest.fixture
def boardroom(boardroom_item):
    """Room 'Boardroom' holding the single 2 x 100.00 item."""
    from models.room import Room, RoomStatus

    return Room.create(name="Boardroom", items=[boardroom_item], status=RoomStatus.READY)


@pytest.fixture
def make_room():
    """Factory for rooms of (quantity, unit_price, margin) tuples."""
    from models.line_item import LineItem
    from models.room import Room, RoomStatus

    def _make(name: str, *specs) -> Room:
        items = [
            LineItem.create(
                category="Equipment",
                item_description=f"{name} item {index}",
                brand="Crestron",
                model=f"M-{index}",
                quantity=quantity,
                unit_price=Decimal(str(unit_price)),
                margin_percent=None if margin is None else Decimal(str(margin)),
            )
            for index, (quantity, unit_price, margin) in enumerate(specs, start=1)
        ]
        return Room.create(name=name, items=items, status=RoomStatus.READY if items else RoomStatus.IDLE)

    return _make


@pytest.fixture
def client_details():
    """Client details for header sheets."""
    import datetime as dt
    from models.client_details import ClientDetails

    return ClientDetails(
        client_name="Acme Corp",
        project_name="HQ Fit-out",
        prepared_by="J. Doe",
        date=dt.date(2024, 3, 1),
        design_engineer="A. Engineer",
        account_manager="B. Manager",
        key_client_personnel="C. Director",
        location="Mumbai",
        key_comments="Phase 1",
        currency="USD",
    )
