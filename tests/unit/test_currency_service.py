"""Unit tests for the exchange rate service."""

import httpx
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from config.errors import ErrorCode, ExternalServiceError
from services.currency_service import CurrencyRateService


RATES_RESPONSE = {
    "result": "success",
    "base_code": "USD",
    "rates": {"USD": 1, "EUR": 0.92, "INR": 83.12, "GBP": "0.79", "XXX": "n/a", "BAD": -1},
}


@pytest.fixture
def service(test_settings):
    return CurrencyRateService(settings=test_settings)


def _mock_async_client(payload=None, error=None):
    """Patchable httpx.AsyncClient whose get() returns ``payload``."""
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None

    client = AsyncMock()
    if error is not None:
        client.get.side_effect = error
    else:
        client.get.return_value = response

    context = AsyncMock()
    context.__aenter__.return_value = client
    context.__aexit__.return_value = False
    return MagicMock(return_value=context), client


class TestCurrencyRateService:
    """Tests for CurrencyRateService."""

    def test_settings_defaults(self, service):
        assert service.base_url == "https://rates.example.com/v6/latest"
        assert service.reference_currency == "USD"
        assert service.timeout == 5.0
        assert service.cache_seconds == 3600

    @pytest.mark.asyncio
    async def test_get_rates_parses_table(self, service):
        async_client, client = _mock_async_client(RATES_RESPONSE)

        with patch("services.currency_service.httpx.AsyncClient", async_client):
            rates = await service.get_rates()

        client.get.assert_awaited_once_with("https://rates.example.com/v6/latest/USD")
        assert rates["EUR"] == Decimal("0.92")
        assert rates["INR"] == Decimal("83.12")
        assert rates["GBP"] == Decimal("0.79")
        assert rates["USD"] == Decimal("1")
        assert "XXX" not in rates
        assert "BAD" not in rates

    @pytest.mark.asyncio
    async def test_rates_cached(self, service):
        service._fetch = AsyncMock(return_value=RATES_RESPONSE)

        await service.get_rates()
        await service.get_rates()

        service._fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cache_bypass_and_clear(self, service):
        service._fetch = AsyncMock(return_value=RATES_RESPONSE)

        await service.get_rates()
        await service.get_rates(use_cache=False)
        service.clear_cache()
        await service.get_rates()

        assert service._fetch.await_count == 3

    @pytest.mark.asyncio
    async def test_http_failure_raises(self, service):
        service._fetch = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ExternalServiceError) as exc_info:
            await service.get_rates()

        assert exc_info.value.code == ErrorCode.EXCHANGE_RATE_ERROR
        assert exc_info.value.service == "exchange_rates"

    @pytest.mark.asyncio
    async def test_api_error_result_raises(self, service):
        service._fetch = AsyncMock(return_value={"result": "error", "error-type": "unsupported-code"})

        with pytest.raises(ExternalServiceError) as exc_info:
            await service.get_rates()

        assert exc_info.value.details["error"] == "unsupported-code"

    @pytest.mark.asyncio
    async def test_missing_table_raises(self, service):
        service._fetch = AsyncMock(return_value={"result": "success"})

        with pytest.raises(ExternalServiceError):
            await service.get_rates()

    @pytest.mark.asyncio
    async def test_get_rates_or_empty_degrades(self, service):
        service._fetch = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

        assert await service.get_rates_or_empty() == {}
