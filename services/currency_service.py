"""Exchange rate service for proposal currencies.

Fetches a reference-currency rate table from an open exchange rate API.

Architecture:
- httpx async client with tenacity retries on transport/HTTP errors
- In-memory cache with a configurable TTL
- Failures raise ExternalServiceError; ``get_rates_or_empty`` degrades to an
  empty table so pricing falls back to a 1.0 rate instead of blocking

References:
- https://www.exchangerate-api.com/docs/free (open.er-api.com response shape)
"""

import time
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from config.errors import ErrorCode, ExternalServiceError
from config.settings import Settings
from models.pricing import ONE
from services.pricing_engine import to_decimal

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RATES_URL = "https://open.er-api.com/v6/latest"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_CACHE_SECONDS = 3600


class CurrencyRateService:
    """Client for the exchange rate collaborator.

    ``get_rates()`` returns a mapping of currency code to the multiplier
    from the reference currency to that currency.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        base_url: Optional[str] = None,
        reference_currency: Optional[str] = None,
        timeout: Optional[float] = None,
        cache_seconds: Optional[int] = None,
    ):
        """Initialize CurrencyRateService.

        Args:
            settings: Application settings supplying defaults.
            base_url: Rate API base URL; the reference code is appended.
            reference_currency: Currency base prices are held in.
            timeout: Request timeout in seconds.
            cache_seconds: How long a fetched table is reused.
        """
        self.base_url = (base_url or (settings.exchange_rate_url if settings else DEFAULT_RATES_URL)).rstrip("/")
        self.reference_currency = (
            reference_currency or (settings.reference_currency if settings else "USD")
        ).upper()
        self.timeout = timeout or (settings.exchange_rate_timeout_seconds if settings else DEFAULT_TIMEOUT_SECONDS)
        self.cache_seconds = (
            cache_seconds if cache_seconds is not None
            else (settings.exchange_rate_cache_seconds if settings else DEFAULT_CACHE_SECONDS)
        )

        self._cache: Optional[Tuple[Dict[str, Decimal], float]] = None

    def _get_cached(self) -> Optional[Dict[str, Decimal]]:
        """Get cached rates if still valid."""
        if self._cache is None:
            return None
        rates, fetched_at = self._cache
        if time.time() - fetched_at < self.cache_seconds:
            return rates
        self._cache = None
        return None

    def clear_cache(self) -> None:
        self._cache = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((httpx.HTTPError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _fetch(self) -> Dict[str, Any]:
        """Request the rate table with retry logic.

        Raises:
            httpx.HTTPError: On HTTP errors after retries
        """
        url = f"{self.base_url}/{self.reference_currency}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()

    def _parse_rates(self, data: Any) -> Dict[str, Decimal]:
        if not isinstance(data, dict) or data.get("result") == "error":
            raise ExternalServiceError(
                message="Exchange rate API returned an error",
                service="exchange_rates",
                code=ErrorCode.EXCHANGE_RATE_ERROR,
                details={"error": data.get("error-type") if isinstance(data, dict) else None},
            )
        raw_rates = data.get("rates")
        if not isinstance(raw_rates, dict):
            raise ExternalServiceError(
                message="Exchange rate API response has no rate table",
                service="exchange_rates",
                code=ErrorCode.EXCHANGE_RATE_ERROR,
            )

        rates: Dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            rate = to_decimal(value)
            if rate is None or rate < 0:
                logger.warning("exchange_rate_skipped", currency=code, value=value)
                continue
            rates[str(code).upper()] = rate
        rates[self.reference_currency] = ONE
        return rates

    async def get_rates(self, use_cache: bool = True) -> Dict[str, Decimal]:
        """Fetch the reference -> currency rate table.

        Args:
            use_cache: Whether to reuse a recent table.

        Returns:
            Mapping of currency code to rate.

        Raises:
            ExternalServiceError: If the API is unreachable or malformed.
        """
        if use_cache:
            cached = self._get_cached()
            if cached is not None:
                return cached

        start_time = time.time()
        try:
            data = await self._fetch()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "exchange_rate_fetch_failed",
                reference=self.reference_currency,
                error=str(e),
            )
            raise ExternalServiceError(
                message=f"Could not fetch exchange rates: {e}",
                service="exchange_rates",
                code=ErrorCode.EXCHANGE_RATE_ERROR,
                details={"original_error": str(e)},
            ) from e

        rates = self._parse_rates(data)
        self._cache = (rates, time.time())

        logger.info(
            "exchange_rates_fetched",
            reference=self.reference_currency,
            currencies=len(rates),
            fetch_time_ms=round((time.time() - start_time) * 1000, 2),
        )
        return rates

    async def get_rates_or_empty(self) -> Dict[str, Decimal]:
        """Like ``get_rates`` but returns {} on failure (pricing uses 1.0)."""
        try:
            return await self.get_rates()
        except ExternalServiceError as e:
            logger.warning("exchange_rates_unavailable", error=e.message)
            return {}
