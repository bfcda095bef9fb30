from __future__ import annotations

import pytest
from web3 import Web3

from src.core.chains import CHAINS
from src.core.errors import SourceUnavailableError
from src.models.price import PriceSourceName
from src.services.chain_client import ChainManager
from src.services.chainlink_client import FEEDS, ChainlinkClient


TOKEN = "0x" + "7" * 40
FEED = "0x" + "8" * 40
NOW = 1_700_000_000


class FeedClient:
    """Minimal chain client serving one aggregator feed."""

    def __init__(self, chain_id: int, answer: int, updated_at: int, decimals: int = 8) -> None:
        self.chain = CHAINS[chain_id]
        self.round = (1, answer, updated_at, updated_at, 1)
        self.decimals = decimals

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    def contract(self, address, abi):
        class _Functions:
            @staticmethod
            def decimals():
                return "decimals"

            @staticmethod
            def latestRoundData():
                return "latestRoundData"

        assert address == FEED

        class _Contract:
            functions = _Functions()

        return _Contract()

    async def call(self, bound, max_retries: int = 3):
        return self.decimals if bound == "decimals" else self.round


def _source(client: FeedClient | None, **kwargs) -> ChainlinkClient:
    manager = ChainManager(api_key="")
    if client is not None:
        manager.register(client)
    return ChainlinkClient(
        manager,
        feeds={(1, TOKEN): ("WETH", FEED)},
        clock=lambda: NOW,
        **kwargs,
    )


def test_feed_table_keys_are_checksummed() -> None:
    assert FEEDS
    for (_, token), (_, feed) in FEEDS.items():
        assert token == Web3.to_checksum_address(token)
        assert feed == Web3.to_checksum_address(feed)


@pytest.mark.asyncio
async def test_get_price_scales_answer_by_feed_decimals() -> None:
    source = _source(FeedClient(1, answer=180_050_000_000, updated_at=NOW - 60))

    price = await source.get_price(1, TOKEN)

    assert price.price_usd == pytest.approx(1800.5)
    assert price.symbol == "WETH"
    assert price.source == PriceSourceName.CHAINLINK
    assert price.confidence == pytest.approx(0.99)


@pytest.mark.asyncio
async def test_stale_round_is_rejected() -> None:
    source = _source(FeedClient(1, answer=10**8, updated_at=NOW - 7200), max_staleness_seconds=3600)

    with pytest.raises(SourceUnavailableError):
        await source.get_price(1, TOKEN)


@pytest.mark.asyncio
async def test_non_positive_answer_is_rejected() -> None:
    source = _source(FeedClient(1, answer=0, updated_at=NOW))

    with pytest.raises(SourceUnavailableError):
        await source.get_price(1, TOKEN)


@pytest.mark.asyncio
async def test_token_without_feed_is_unavailable() -> None:
    source = _source(FeedClient(1, answer=10**8, updated_at=NOW))

    with pytest.raises(SourceUnavailableError):
        await source.get_price(1, "0x" + "9" * 40)


@pytest.mark.asyncio
async def test_unconnected_network_is_unavailable() -> None:
    source = _source(None)

    with pytest.raises(SourceUnavailableError):
        await source.get_price(1, TOKEN)
