"""Best-effort USD price lookups from CoinGecko.

Used to attach a fiat value to BTC deposits. A failed lookup yields None and
never blocks detection.
"""

import logging
import time
from decimal import Decimal
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

COINGECKO_API = "https://api.coingecko.com/api/v3"

# Asset symbol -> CoinGecko coin id
COINGECKO_IDS = {
    "btc": "bitcoin",
}


class PriceOracle:
    """Cached USD price source."""

    def __init__(
        self,
        timeout: float = 5.0,
        cache_ttl: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._client = client
        self._price_cache: dict[str, tuple[Decimal, float]] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def cached_price(self, asset: str) -> Optional[Decimal]:
        """Last known price if it is still fresh, without any network call."""
        cached = self._price_cache.get(asset.lower())
        if cached and time.monotonic() - cached[1] < self.cache_ttl:
            return cached[0]
        return None

    async def get_price_usd(self, asset: str) -> Optional[Decimal]:
        """Get current USD price for an asset, or None if unavailable."""
        normalized = asset.lower()
        coingecko_id = COINGECKO_IDS.get(normalized)
        if not coingecko_id:
            return None

        cached = self.cached_price(normalized)
        if cached is not None:
            return cached

        try:
            client = await self._get_client()
            response = await client.get(
                f"{COINGECKO_API}/simple/price",
                params={"ids": coingecko_id, "vs_currencies": "usd"},
                timeout=self.timeout,
            )

            if response.status_code == 200:
                price = response.json().get(coingecko_id, {}).get("usd")
                if price:
                    price_decimal = Decimal(str(price))
                    self._price_cache[normalized] = (price_decimal, time.monotonic())
                    return price_decimal

            logger.warning(f"CoinGecko returned no {normalized} price (HTTP {response.status_code})")

        except Exception as e:
            logger.warning(f"CoinGecko price fetch failed: {e}")

        return None

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
