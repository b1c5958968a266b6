"""Client and project metadata used for proposal headers."""

import datetime as dt
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Currencies offered for proposals
CURRENCIES: List[Dict[str, str]] = [
    {"label": "USD - US Dollar", "value": "USD", "symbol": "$"},
    {"label": "EUR - Euro", "value": "EUR", "symbol": "€"},
    {"label": "GBP - British Pound", "value": "GBP", "symbol": "£"},
    {"label": "INR - Indian Rupee", "value": "INR", "symbol": "₹"},
]

SUPPORTED_CURRENCIES = [entry["value"] for entry in CURRENCIES]


def currency_symbol(code: str) -> str:
    """Get the display symbol for a currency code (falls back to the code)."""
    for entry in CURRENCIES:
        if entry["value"] == code.upper():
            return entry["symbol"]
    return code.upper()


def normalize_currency_code(code: str) -> str:
    """Upper-case a currency code.

    Raises:
        ValueError: If the code is not three letters.
    """
    normalized = code.strip().upper() if isinstance(code, str) else ""
    if len(normalized) != 3 or not (normalized.isascii() and normalized.isalpha()):
        raise ValueError(f"Currency must be a three-letter ISO code, got {code!r}")
    return normalized


class ClientDetails(BaseModel):
    """Commercial context of a proposal.

    Read by the layout engine for the version and summary sheets; pricing
    only reads ``currency``.
    """

    model_config = ConfigDict(validate_assignment=True)

    client_name: str = Field(default="", description="Client name")
    project_name: str = Field(default="", description="Project name")
    prepared_by: str = Field(default="", description="Proposal author")
    date: dt.date = Field(default_factory=dt.date.today, description="Date of first draft")
    design_engineer: str = Field(default="", description="Design engineer")
    account_manager: str = Field(default="", description="Account manager")
    key_client_personnel: str = Field(default="", description="Key client personnel")
    location: str = Field(default="", description="Project location")
    key_comments: str = Field(default="", description="Key comments")
    currency: str = Field(default="USD", description="Selected proposal currency")
    budget: Optional[str] = Field(None, description="Indicative budget")

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return normalize_currency_code(v)

    @property
    def display_project_name(self) -> str:
        return self.project_name.strip() or "AV Project"
