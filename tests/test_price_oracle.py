"""Unit tests for the price oracle: cache freshness, source order and failure policy."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest
from web3 import Web3

from src.core.errors import (
    InvalidInputError,
    NotFoundError,
    PriceUnavailableError,
    SourceUnavailableError,
    YieldUnavailableError,
)
from src.models.price import PriceSourceName, TokenPrice
from src.services.coingecko_client import CoinGeckoClient
from src.services.defillama_client import DefiLlamaClient
from src.services.price_oracle import PriceOracle
from src.services.price_source import PriceSource


TOKEN = Web3.to_checksum_address("0x" + "a" * 40)
POOL = Web3.to_checksum_address("0x" + "b" * 40)


class FakeSource(PriceSource):
    def __init__(
        self,
        name: PriceSourceName,
        confidence: float,
        price: float | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.confidence = confidence
        self.price = price
        self.error = error
        self.delay = delay
        self.calls = 0

    async def get_price(self, chain_id: int, token_address: str) -> TokenPrice:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TokenPrice(
            token_address=token_address,
            symbol="TKN",
            price_usd=self.price,
            source=self.name,
            confidence=self.confidence,
            timestamp=datetime.now(timezone.utc),
            chain_id=chain_id,
        )


def _failing(name: PriceSourceName) -> FakeSource:
    return FakeSource(name, 0.0, error=SourceUnavailableError(f"{name.value} down"))


def _unused_yields() -> DefiLlamaClient:
    def handler(_: httpx.Request) -> httpx.Response:
        raise AssertionError("yields endpoint must not be called")

    return DefiLlamaClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fresh_cache_entry_is_served_without_querying_sources(clock) -> None:
    source = FakeSource(PriceSourceName.COINGECKO, 0.95, price=10.0)
    oracle = PriceOracle([source], yields_client=_unused_yields(), clock=clock)

    assert await oracle.get_token_price(1, TOKEN) == 10.0
    source.price = 99.0
    clock.advance(29.9)

    assert await oracle.get_token_price(1, TOKEN) == 10.0
    assert source.calls == 1


@pytest.mark.asyncio
async def test_lowercase_address_shares_cache_entry_with_checksum(clock) -> None:
    source = FakeSource(PriceSourceName.COINGECKO, 0.95, price=3.0)
    oracle = PriceOracle([source], yields_client=_unused_yields(), clock=clock)

    await oracle.get_token_price(1, TOKEN.lower())
    await oracle.get_token_price(1, TOKEN)

    assert source.calls == 1


@pytest.mark.asyncio
async def test_stale_entry_is_refreshed_and_overwritten(clock) -> None:
    source = FakeSource(PriceSourceName.COINGECKO, 0.95, price=10.0)
    oracle = PriceOracle([source], yields_client=_unused_yields(), cache_ttl_seconds=30, clock=clock)

    await oracle.get_token_price(1, TOKEN)
    source.price = 12.5
    clock.advance(30)

    assert await oracle.get_token_price(1, TOKEN) == 12.5
    assert source.calls == 2
    assert oracle.cached_price(1, TOKEN).price_usd == 12.5


@pytest.mark.asyncio
async def test_sources_are_tried_in_priority_order_and_first_success_wins(clock) -> None:
    chainlink = _failing(PriceSourceName.CHAINLINK)
    coingecko = FakeSource(PriceSourceName.COINGECKO, 0.95, price=2.0)
    defillama = FakeSource(PriceSourceName.DEFILLAMA, 0.90, price=3.0)
    oracle = PriceOracle([chainlink, coingecko, defillama], yields_client=_unused_yields(), clock=clock)

    for _ in range(3):
        price = await oracle.get_token_price_detail(1, TOKEN)
        assert price.source == PriceSourceName.COINGECKO
        clock.advance(31)

    assert chainlink.calls == 3
    assert coingecko.calls == 3
    assert defillama.calls == 0
    assert oracle.cached_price(1, TOKEN).source == PriceSourceName.COINGECKO


@pytest.mark.asyncio
async def test_all_sources_failing_raises_and_leaves_cache_unchanged(clock) -> None:
    good = FakeSource(PriceSourceName.COINGECKO, 0.95, price=5.0)
    oracle = PriceOracle([good], yields_client=_unused_yields(), clock=clock)
    await oracle.get_token_price(1, TOKEN)
    before = oracle.cached_price(1, TOKEN)

    good.error = SourceUnavailableError("down")
    clock.advance(60)

    with pytest.raises(PriceUnavailableError):
        await oracle.get_token_price(1, TOKEN)
    assert oracle.cached_price(1, TOKEN) is before


@pytest.mark.asyncio
async def test_all_sources_failing_with_empty_cache_stores_nothing(clock) -> None:
    oracle = PriceOracle(
        [_failing(PriceSourceName.CHAINLINK), _failing(PriceSourceName.DEFILLAMA)],
        yields_client=_unused_yields(),
        clock=clock,
    )

    with pytest.raises(PriceUnavailableError):
        await oracle.get_token_price(10, TOKEN)
    assert oracle.cached_price(10, TOKEN) is None


@pytest.mark.asyncio
async def test_timed_out_source_is_skipped_without_cache_write(clock) -> None:
    slow = FakeSource(PriceSourceName.CHAINLINK, 0.99, price=1.0, delay=5.0)
    fallback = FakeSource(PriceSourceName.DEFILLAMA, 0.90, price=1.01)
    oracle = PriceOracle(
        [slow, fallback],
        yields_client=_unused_yields(),
        source_timeout_seconds=0.05,
        clock=clock,
    )

    price = await oracle.get_token_price_detail(1, TOKEN)

    assert price.source == PriceSourceName.DEFILLAMA
    assert oracle.cached_price(1, TOKEN).price_usd == 1.01


@pytest.mark.asyncio
async def test_unexpected_source_errors_propagate(clock) -> None:
    broken = FakeSource(PriceSourceName.CHAINLINK, 0.99, error=RuntimeError("bug"))
    oracle = PriceOracle([broken], yields_client=_unused_yields(), clock=clock)

    with pytest.raises(RuntimeError):
        await oracle.get_token_price(1, TOKEN)


@pytest.mark.asyncio
async def test_malformed_token_address_is_invalid_input(clock) -> None:
    source = FakeSource(PriceSourceName.COINGECKO, 0.95, price=1.0)
    oracle = PriceOracle([source], yields_client=_unused_yields(), clock=clock)

    with pytest.raises(InvalidInputError):
        await oracle.get_token_price(1, "0xnot-an-address")
    assert source.calls == 0


@pytest.mark.asyncio
async def test_purge_expired_evicts_only_stale_entries(clock) -> None:
    source = FakeSource(PriceSourceName.COINGECKO, 0.95, price=1.0)
    oracle = PriceOracle([source], yields_client=_unused_yields(), clock=clock)
    await oracle.get_token_price(1, TOKEN)
    clock.advance(20)
    await oracle.get_token_price(137, TOKEN)
    clock.advance(15)

    assert oracle.purge_expired() == 1
    assert oracle.cached_price(1, TOKEN) is None
    assert oracle.cached_price(137, TOKEN) is not None


@pytest.mark.asyncio
async def test_onchain_feed_failure_falls_back_to_coingecko_scenario(clock) -> None:
    """Chainlink fails, CoinGecko answers 1800.5, the value is cached for 30s."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/api/v3/coins/ethereum/contract/{TOKEN}"
        return httpx.Response(200, json={"market_data": {"current_price": {"usd": 1800.5}}})

    coingecko = CoinGeckoClient(
        base_url="https://api.coingecko.com/api/v3",
        transport=httpx.MockTransport(handler),
    )
    defillama = FakeSource(PriceSourceName.DEFILLAMA, 0.90, price=1.0)
    oracle = PriceOracle(
        [_failing(PriceSourceName.CHAINLINK), coingecko, defillama],
        yields_client=_unused_yields(),
        cache_ttl_seconds=30,
        clock=clock,
    )

    assert await oracle.get_token_price(1, "0x" + "a" * 40) == 1800.5

    cached = oracle.cached_price(1, TOKEN)
    assert cached.price_usd == 1800.5
    assert cached.confidence == pytest.approx(0.95)
    assert cached.source == PriceSourceName.COINGECKO
    assert defillama.calls == 0

    clock.advance(29)
    assert await oracle.get_token_price(1, TOKEN) == 1800.5
    assert defillama.calls == 0


def _yields_client(rows: list[dict], calls: list[int] | None = None) -> DefiLlamaClient:
    def handler(_: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(1)
        return httpx.Response(200, json={"data": rows})

    return DefiLlamaClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_apy_matches_chain_name_and_exact_address() -> None:
    calls: list[int] = []
    rows = [
        {"chain": "Ethereum", "project": "aave-v3", "apy": 1.0, "tvlUsd": 1, "address": POOL},
        {"chain": "Polygon", "project": "aave-v3", "apy": 4.2, "tvlUsd": 1, "address": POOL.lower()},
        {"chain": "Polygon", "project": "aave-v3", "apy": 3.3, "tvlUsd": 1, "address": POOL},
    ]
    oracle = PriceOracle([], yields_client=_yields_client(rows, calls))

    assert await oracle.get_apy("aave-v3", POOL, 137) == 3.3
    assert await oracle.get_apy("aave-v3", POOL, 137) == 3.3
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_get_apy_no_matching_row_is_not_found() -> None:
    oracle = PriceOracle([], yields_client=_yields_client([{"chain": "Ethereum", "apy": 1.0, "address": "0x0"}]))

    with pytest.raises(NotFoundError):
        await oracle.get_apy("aave-v3", POOL, 1)


@pytest.mark.asyncio
async def test_get_apy_unsupported_chain_is_not_found() -> None:
    oracle = PriceOracle([], yields_client=_unused_yields())

    with pytest.raises(NotFoundError):
        await oracle.get_apy("aave-v3", POOL, 56)


@pytest.mark.asyncio
async def test_get_apy_fetch_failure_is_yield_unavailable() -> None:
    failing = DefiLlamaClient(transport=httpx.MockTransport(lambda _: httpx.Response(503)))
    oracle = PriceOracle([], yields_client=failing)

    with pytest.raises(YieldUnavailableError):
        await oracle.get_apy("aave-v3", POOL, 1)
