"""Product search service for BOQ items.

Looks up AV products on Google Shopping (via SerpAPI) so a user can view
an image and description of a BOQ line, or add a searched product to a room.

Architecture:
- Google Shopping search with tenacity retries
- Optional LLM summary of the top results into a short technical description
- Caching to minimize API calls

References:
- SerpAPI Google Shopping: https://serpapi.com/google-shopping-api
"""

import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from config.errors import ErrorCode, ExternalServiceError, MalformedResponseError
from config.settings import Settings
from models.product import GroundingSource, ProductDetails
from services.llm_service import LLMService
from services.pricing_engine import to_decimal

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

SERPAPI_BASE_URL = "https://serpapi.com"
SEARCH_TIMEOUT_SECONDS = 30.0
DEFAULT_NUM_RESULTS = 10
MAX_SOURCES = 5

DESCRIPTION_PROMPT = """You write short technical descriptions of professional Audio-Visual products.
Given a product name and shopping search results, return a JSON object {"description": "<one paragraph>"}."""


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class ShoppingResult:
    """Single shopping result."""
    title: str
    source: str  # Retailer name
    link: str
    price: Decimal
    price_str: str  # Original price string
    image_url: Optional[str] = None


@dataclass
class ShoppingResponse:
    """Complete shopping response."""
    query: str
    results: List[ShoppingResult]
    search_time_ms: float
    cached: bool = False


def parse_price(price_str: Any) -> Optional[Decimal]:
    """Parse a price string such as '$1,299.00' into a Decimal."""
    if price_str is None:
        return None
    cleaned = re.sub(r"[^\d.,]", "", str(price_str)).replace(",", "")
    match = re.search(r"\d+(?:\.\d+)?", cleaned)
    if not match:
        return None
    return to_decimal(match.group(0))


class ProductSearchService:
    """Service for product lookups on Google Shopping."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        llm_service: Optional[LLMService] = None,
    ):
        """Initialize ProductSearchService.

        Args:
            settings: Application settings supplying the API key.
            api_key: SerpAPI key (overrides settings).
            llm_service: Optional LLM used to summarise descriptions.
        """
        self.api_key = api_key or (settings.serp_api_key if settings else None)
        if not self.api_key:
            logger.warning("serp_api_key_missing", message="SERP_API_KEY not configured")
        self.llm_service = llm_service

        # Simple in-memory cache (15 min TTL)
        self._cache: Dict[str, tuple] = {}
        self._cache_ttl = 900

    def _get_cached(self, cache_key: str) -> Optional[Any]:
        """Get cached result if still valid."""
        if cache_key in self._cache:
            result, timestamp = self._cache[cache_key]
            if time.time() - timestamp < self._cache_ttl:
                return result
            del self._cache[cache_key]
        return None

    def _set_cached(self, cache_key: str, result: Any) -> None:
        self._cache[cache_key] = (result, time.time())

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.HTTPError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _make_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Make request to SerpAPI with retry logic.

        Raises:
            httpx.HTTPError: On HTTP errors after retries
        """
        async with httpx.AsyncClient(timeout=SEARCH_TIMEOUT_SECONDS) as client:
            response = await client.get(
                f"{SERPAPI_BASE_URL}/search",
                params={**params, "api_key": self.api_key},
            )
            response.raise_for_status()
            return response.json()

    async def search_products(
        self,
        query: str,
        num_results: int = DEFAULT_NUM_RESULTS,
        use_cache: bool = True
    ) -> ShoppingResponse:
        """Google Shopping search.

        Args:
            query: Product search query
            num_results: Number of results to return
            use_cache: Whether to use cached results

        Returns:
            ShoppingResponse with priced results only

        Raises:
            ExternalServiceError: If the key is missing or the search fails.
        """
        if not self.api_key:
            raise ExternalServiceError(
                message="Product search is not configured (SERP_API_KEY missing)",
                service="product_search",
                code=ErrorCode.PRODUCT_SEARCH_ERROR,
            )

        cache_key = f"shopping:{query}:{num_results}"
        if use_cache:
            cached = self._get_cached(cache_key)
            if cached:
                cached.cached = True
                return cached

        start_time = time.time()
        try:
            data = await self._make_request({
                "engine": "google_shopping",
                "q": query,
                "gl": "us",
                "hl": "en",
                "num": min(num_results, 100),
            })
        except (httpx.HTTPError, ValueError) as e:
            logger.error("product_search_error", query=query[:50], error=str(e))
            raise ExternalServiceError(
                message=f"Product search failed: {e}",
                service="product_search",
                code=ErrorCode.PRODUCT_SEARCH_ERROR,
                details={"original_error": str(e)},
            ) from e

        shopping_results = (data.get("shopping_results") or []) if isinstance(data, dict) else None
        if not isinstance(shopping_results, list):
            logger.error("product_search_bad_response", query=query[:50], body_type=type(data).__name__)
            raise ExternalServiceError(
                message="Product search returned an unexpected response",
                service="product_search",
                code=ErrorCode.PRODUCT_SEARCH_ERROR,
                details={"body_type": type(data).__name__},
            )

        results = []
        for item in shopping_results:
            if not isinstance(item, dict):
                continue
            price = to_decimal(item.get("extracted_price"))
            price_str = item.get("price", "")
            if price is None:
                price = parse_price(price_str)
            if price is None or price <= 0:
                continue
            results.append(ShoppingResult(
                title=item.get("title", ""),
                source=item.get("source", ""),
                link=item.get("link", item.get("product_link", "")),
                price=price,
                price_str=price_str or f"${price}",
                image_url=item.get("thumbnail"),
            ))

        search_time = (time.time() - start_time) * 1000
        response = ShoppingResponse(
            query=query,
            results=results[:num_results],
            search_time_ms=round(search_time, 2),
        )
        if use_cache:
            self._set_cached(cache_key, response)

        logger.info(
            "product_search_complete",
            query=query[:50],
            results_count=len(response.results),
            search_time_ms=round(search_time, 2)
        )
        return response

    async def _describe(self, product_name: str, results: List[ShoppingResult]) -> Optional[str]:
        if self.llm_service is None or not results:
            return None
        listing = "\n".join(f"- {r.title} ({r.source}, {r.price_str})" for r in results[:MAX_SOURCES])
        try:
            reply = await self.llm_service.generate_json(
                DESCRIPTION_PROMPT,
                f'Product: "{product_name}"\nSearch results:\n{listing}',
            )
        except (MalformedResponseError, ExternalServiceError) as e:
            # Details still show image and sources without a description
            logger.warning("product_description_failed", product=product_name[:50], error=e.message)
            return None
        content = reply["content"]
        if isinstance(content, dict) and isinstance(content.get("description"), str):
            return content["description"].strip() or None
        return None

    async def fetch_product_details(self, product_name: str) -> ProductDetails:
        """Find an image, a description and sources for a product.

        Raises:
            ExternalServiceError: If the search itself fails.
        """
        response = await self.search_products(product_name, num_results=MAX_SOURCES)
        results = response.results

        image_url = next((r.image_url for r in results if r.image_url), None)
        description = await self._describe(product_name, results)
        if description is None and results:
            top = results[0]
            description = f"{top.title} (from {top.source}, {top.price_str})"

        details = ProductDetails(
            product_name=product_name,
            image_url=image_url,
            sources=[GroundingSource(uri=r.link, title=r.title) for r in results if r.link],
        )
        if description:
            details.description = description
        return details
