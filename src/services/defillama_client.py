"""DeFi Llama API client.

This module wraps two DeFi Llama endpoints:

  GET https://coins.llama.fi/prices/current/{chain}:{address}
      Current token price. Used as the lowest-trust price source.

  GET https://yields.llama.fi/pools
      Full yield listing. The payload has a top-level "data" list of pool
      objects with fields like chain, project, symbol, tvlUsd, apy, address.

Both calls translate transport, status and payload problems into
`SourceUnavailableError` so callers can fall through to other sources.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from src.core.config import settings
from src.core.errors import SourceUnavailableError
from src.models.price import PriceSourceName, TokenPrice
from src.services.price_source import PriceSource


# Chain identifiers used in coins.llama.fi keys ("ethereum:0x...").
COIN_CHAIN_NAMES: dict[int, str] = {
    1: "ethereum",
    137: "polygon",
    42161: "arbitrum",
    10: "optimism",
}

# Chain names as they appear in the yields listing "chain" field.
YIELD_CHAIN_NAMES: dict[int, str] = {
    1: "Ethereum",
    137: "Polygon",
    42161: "Arbitrum",
    10: "Optimism",
}


class DefiLlamaClient(PriceSource):
    """Async client for the DeFi Llama coins and yields endpoints."""

    name = PriceSourceName.DEFILLAMA
    confidence = 0.90

    def __init__(
        self,
        *,
        coins_url: str | None = None,
        yields_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create a new client.

        Args:
            coins_url: Base URL of the coins API (defaults to settings).
            yields_url: Base URL of the yields API (defaults to settings).
            timeout_seconds: Request timeout.
            transport: Optional httpx transport override (used for unit tests).
        """
        self._coins_url = (coins_url or settings.DEFILLAMA_COINS_URL).rstrip("/")
        self._yields_url = (yields_url or settings.DEFILLAMA_YIELDS_URL).rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds or settings.HTTP_TIMEOUT_SECONDS)
        self._transport = transport

    async def _get_json(self, url: str) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SourceUnavailableError(f"DeFi Llama request failed for {url}: {exc}") from exc

    async def get_price(self, chain_id: int, token_address: str) -> TokenPrice:
        """Fetch the current USD price of a token.

        Raises:
            SourceUnavailableError: Unsupported chain, request failure, or the
                coin key is missing from the response.
        """
        chain_name = COIN_CHAIN_NAMES.get(chain_id)
        if chain_name is None:
            raise SourceUnavailableError(f"chain {chain_id} not supported by DeFi Llama")

        key = f"{chain_name}:{token_address}"
        payload = await self._get_json(f"{self._coins_url}/prices/current/{key}")

        coins = payload.get("coins") if isinstance(payload, dict) else None
        coin = coins.get(key) if isinstance(coins, dict) else None
        if not isinstance(coin, dict):
            raise SourceUnavailableError(f"price not found for {key}")

        price = coin.get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
            raise SourceUnavailableError(f"malformed price for {key}: {price!r}")

        return TokenPrice(
            token_address=token_address,
            symbol=str(coin.get("symbol") or ""),
            price_usd=float(price),
            source=self.name,
            confidence=self.confidence,
            timestamp=datetime.now(timezone.utc),
            chain_id=chain_id,
        )

    async def get_pools(self) -> list[dict[str, Any]]:
        """Fetch and return the full yield listing.

        Returns:
            The list of pool dicts; non-dict rows are dropped.

        Raises:
            SourceUnavailableError: Request failure or a payload without a
                "data" list.
        """
        payload = await self._get_json(f"{self._yields_url}/pools")

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise SourceUnavailableError("DeFi Llama yields payload has no 'data' list")

        return [item for item in data if isinstance(item, dict)]
