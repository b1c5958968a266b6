"""AV BOQ configuration settings.

Loads configuration from environment variables with sensible defaults.
Settings are built explicitly with ``load_settings()`` and handed to the
services that need them.
"""

import os
from typing import List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file for local configuration (API keys, defaults, feature flags)
load_dotenv()


TAX_POLICIES = ("flat", "split")


def _split_labels(value: str) -> List[str]:
    """Parse a comma separated label pair such as 'CGST,SGST'."""
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    # LLM Configuration
    llm_model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o"))
    llm_temperature: float = field(default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.2")))
    openai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"), repr=False)

    # Pricing Configuration
    reference_currency: str = field(default_factory=lambda: os.getenv("REFERENCE_CURRENCY", "USD"))
    default_currency: str = field(default_factory=lambda: os.getenv("DEFAULT_CURRENCY", "USD"))
    default_margin_percent: float = field(default_factory=lambda: float(os.getenv("DEFAULT_MARGIN_PERCENT", "0")))
    tax_rate_percent: float = field(default_factory=lambda: float(os.getenv("TAX_RATE_PERCENT", "18")))
    tax_policy: str = field(default_factory=lambda: os.getenv("TAX_POLICY", "flat").lower())
    tax_split_labels: List[str] = field(
        default_factory=lambda: _split_labels(os.getenv("TAX_SPLIT_LABELS", "CGST,SGST"))
    )

    # Exchange Rate Configuration
    exchange_rate_url: str = field(
        default_factory=lambda: os.getenv("EXCHANGE_RATE_URL", "https://open.er-api.com/v6/latest")
    )
    exchange_rate_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("EXCHANGE_RATE_TIMEOUT_SECONDS", "10"))
    )
    exchange_rate_cache_seconds: int = field(
        default_factory=lambda: int(os.getenv("EXCHANGE_RATE_CACHE_SECONDS", "3600"))
    )

    # Product Search
    serp_api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("SERP_API_KEY") or os.getenv("SERPER_API_KEY"),
        repr=False,
    )

    # Export
    export_dir: str = field(default_factory=lambda: os.getenv("EXPORT_DIR", "."))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def validate(self) -> None:
        """Validate settings values.

        Raises:
            ValueError: If a setting is out of range or unknown.
        """
        if self.tax_policy not in TAX_POLICIES:
            raise ValueError(f"TAX_POLICY must be one of {TAX_POLICIES}, got {self.tax_policy!r}")
        if self.tax_rate_percent < 0:
            raise ValueError("TAX_RATE_PERCENT must be non-negative")
        if self.default_margin_percent < 0:
            raise ValueError("DEFAULT_MARGIN_PERCENT must be non-negative")
        if len(self.tax_split_labels) != 2:
            raise ValueError("TAX_SPLIT_LABELS must name exactly two components")
        for name, code in (("REFERENCE_CURRENCY", self.reference_currency),
                           ("DEFAULT_CURRENCY", self.default_currency)):
            if len(code.strip()) != 3 or not code.strip().isalpha():
                raise ValueError(f"{name} must be a three-letter ISO code, got {code!r}")

    @property
    def has_llm_credentials(self) -> bool:
        """Check whether an API key is configured for the LLM."""
        return bool(self.openai_api_key)


def load_settings(**overrides) -> Settings:
    """Build a validated Settings instance.

    Args:
        **overrides: Field values that take precedence over the environment.

    Returns:
        Validated Settings.
    """
    config = Settings(**overrides)
    config.validate()
    return config
