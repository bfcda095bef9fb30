"""CoinGecko API client.

Endpoint:
  GET https://api.coingecko.com/api/v3/coins/{platform}/contract/{address}

The response nests the USD price at `market_data.current_price.usd`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from src.core.config import settings
from src.core.errors import SourceUnavailableError
from src.models.price import PriceSourceName, TokenPrice
from src.services.price_source import PriceSource


# Chain id -> CoinGecko asset platform id.
PLATFORMS: dict[int, str] = {
    1: "ethereum",
    137: "polygon-pos",
    42161: "arbitrum-one",
    10: "optimistic-ethereum",
}


class CoinGeckoClient(PriceSource):
    """Async client for CoinGecko contract-address lookups."""

    name = PriceSourceName.COINGECKO
    confidence = 0.95

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.COINGECKO_API_URL).rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds or settings.HTTP_TIMEOUT_SECONDS)
        self._transport = transport

    async def get_price(self, chain_id: int, token_address: str) -> TokenPrice:
        platform = PLATFORMS.get(chain_id)
        if platform is None:
            raise SourceUnavailableError(f"chain {chain_id} not supported by CoinGecko")

        url = f"{self._base_url}/coins/{platform}/contract/{token_address}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailableError(f"CoinGecko request failed for {url}: {exc}") from exc

        price = _extract_usd_price(payload)
        if price is None:
            raise SourceUnavailableError(f"price not found in CoinGecko response for {token_address}")

        symbol = payload.get("symbol") if isinstance(payload, dict) else None
        return TokenPrice(
            token_address=token_address,
            symbol=str(symbol or "").upper(),
            price_usd=price,
            source=self.name,
            confidence=self.confidence,
            timestamp=datetime.now(timezone.utc),
            chain_id=chain_id,
        )


def _extract_usd_price(payload: Any) -> float | None:
    """Return `market_data.current_price.usd` when it is a non-negative number."""
    if not isinstance(payload, dict):
        return None
    market_data = payload.get("market_data")
    if not isinstance(market_data, dict):
        return None
    current_price = market_data.get("current_price")
    if not isinstance(current_price, dict):
        return None
    usd = current_price.get("usd")
    if isinstance(usd, bool) or not isinstance(usd, (int, float)) or usd < 0:
        return None
    return float(usd)
