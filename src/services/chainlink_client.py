"""Chainlink price feed source.

Reads USD aggregator feeds (AggregatorV3Interface) directly from chain state
through the network's `ChainClient`. This is the highest-trust source: it is
queried first and only covers tokens listed in `FEEDS`.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from web3 import Web3

from src.core.config import settings
from src.core.errors import NotFoundError, SourceUnavailableError
from src.models.price import PriceSourceName, TokenPrice
from src.services.chain_client import ChainManager
from src.services.price_source import PriceSource

logger = logging.getLogger(__name__)


_AGGREGATOR_V3_ABI: list[dict[str, Any]] = [
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "latestRoundData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
    },
]


# (chain id, token address) -> (symbol, USD feed address)
_RAW_FEEDS: dict[tuple[int, str], tuple[str, str]] = {
    # Ethereum
    (1, "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"): ("WETH", "0x5f4ec3df9cbd43714fe2740f5e3616155c5b8419"),
    (1, "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599"): ("WBTC", "0xf4030086522a5beea4988f8ca5b36dbc97bee88c"),
    (1, "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"): ("USDC", "0x8fffffd4afb6115b954bd326cbe7b4ba576818f6"),
    (1, "0x6b175474e89094c44da98b954eedeac495271d0f"): ("DAI", "0xaed0c38402a5d19df6e4c03f4e2dced6e29c1ee9"),
    (1, "0xdac17f958d2ee523a2206206994597c13d831ec7"): ("USDT", "0x3e7d1eab13ad0104d2750b8863b489d65364e32d"),
    (1, "0x514910771af9ca656af840dff83e8264ecf986ca"): ("LINK", "0x2c1d072e956affc0d435cb7ac38ef18d24d9127c"),
    # Polygon
    (137, "0x7ceb23fd6bc0add59e62ac25578270cff1b9f619"): ("WETH", "0xf9680d99d6c9589e2a93a78a04a279e509205945"),
    (137, "0x0d500b1d8e8ef31e21c99d1db9a6444d3adf1270"): ("WMATIC", "0xab594600376ec9fd91f8e885dadf0ce036862de0"),
    (137, "0x2791bca1f2de4661ed88a30c99a7a9449aa84174"): ("USDC.e", "0xfe4a8cc5b5b2366c1b58bea3858e81843581b2f7"),
    # Arbitrum
    (42161, "0x82af49447d8a07e3bd95bd0d56f35241523fbab1"): ("WETH", "0x639fe6ab55c921f74e7fac1ee960c0b6293ba612"),
    (42161, "0x912ce59144191c1204e64559fe8253a0e49e6548"): ("ARB", "0xb2a824043730fe05f3da2efafa1cbbe83fa548d6"),
    # Optimism
    (10, "0x4200000000000000000000000000000000000006"): ("WETH", "0x13e3ee699d1909e989722e753853ae30b17e08c5"),
    (10, "0x4200000000000000000000000000000000000042"): ("OP", "0x0d276fc14719f9292d5c1ea2198673d1f4269246"),
}

FEEDS: dict[tuple[int, str], tuple[str, str]] = {
    (chain_id, Web3.to_checksum_address(token)): (symbol, Web3.to_checksum_address(feed))
    for (chain_id, token), (symbol, feed) in _RAW_FEEDS.items()
}


class ChainlinkClient(PriceSource):
    name = PriceSourceName.CHAINLINK
    confidence = 0.99

    def __init__(
        self,
        chain_manager: ChainManager,
        *,
        feeds: dict[tuple[int, str], tuple[str, str]] | None = None,
        max_staleness_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chains = chain_manager
        self._feeds = FEEDS if feeds is None else feeds
        self._max_staleness = (
            settings.CHAINLINK_MAX_STALENESS_SECONDS
            if max_staleness_seconds is None
            else max_staleness_seconds
        )
        self._clock = clock

    async def get_price(self, chain_id: int, token_address: str) -> TokenPrice:
        feed = self._feeds.get((chain_id, token_address))
        if feed is None:
            raise SourceUnavailableError(f"no Chainlink feed for {token_address} on chain {chain_id}")
        symbol, feed_address = feed

        try:
            client = self._chains.get_client(chain_id)
        except NotFoundError as exc:
            raise SourceUnavailableError(str(exc)) from exc

        contract = client.contract(feed_address, _AGGREGATOR_V3_ABI)
        decimals = await client.call(contract.functions.decimals())
        round_data = await client.call(contract.functions.latestRoundData())

        try:
            answer = int(round_data[1])
            updated_at = int(round_data[3])
        except (TypeError, ValueError, IndexError) as exc:
            raise SourceUnavailableError(f"malformed round data from feed {feed_address}") from exc

        if answer <= 0:
            raise SourceUnavailableError(f"non-positive answer {answer} from feed {feed_address}")

        age = self._clock() - updated_at
        if age > self._max_staleness:
            raise SourceUnavailableError(
                f"feed {feed_address} is stale: last update {int(age)}s ago"
            )

        price = Decimal(answer) / (Decimal(10) ** Decimal(int(decimals)))
        logger.debug(f"Chainlink {symbol} on chain {chain_id}: {price}")

        return TokenPrice(
            token_address=token_address,
            symbol=symbol,
            price_usd=float(price),
            source=self.name,
            confidence=self.confidence,
            timestamp=datetime.now(timezone.utc),
            chain_id=chain_id,
        )
