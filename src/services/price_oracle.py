"""Multi-source USD price oracle with a TTL cache.

Sources are consulted strictly in priority order (Chainlink, CoinGecko,
DeFi Llama by default) and the first usable observation wins. Entries are kept
per (chain id, checksum token address); an entry older than the TTL is never
served and is overwritten by the next successful lookup. A lookup where every
source fails leaves the cache untouched.

The cache is guarded by a lock so one oracle can be shared by concurrent tasks
and threads. Concurrent lookups for the same key race and the last writer wins.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from src.core.addresses import to_checksum
from src.core.config import settings
from src.core.errors import (
    NotFoundError,
    PriceUnavailableError,
    SourceUnavailableError,
    YieldUnavailableError,
)
from src.models.price import TokenPrice
from src.services.chain_client import ChainManager
from src.services.chainlink_client import ChainlinkClient
from src.services.coingecko_client import CoinGeckoClient
from src.services.defillama_client import YIELD_CHAIN_NAMES, DefiLlamaClient
from src.services.price_source import PriceSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CacheEntry:
    price: TokenPrice
    stored_at: float  # oracle clock reading at insertion


class PriceOracle:
    def __init__(
        self,
        sources: Sequence[PriceSource],
        *,
        yields_client: DefiLlamaClient | None = None,
        cache_ttl_seconds: float | None = None,
        source_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sources = list(sources)
        self._yields = yields_client or DefiLlamaClient()
        self._ttl = settings.PRICE_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        self._source_timeout = (
            settings.SOURCE_TIMEOUT_SECONDS if source_timeout_seconds is None else source_timeout_seconds
        )
        self._clock = clock
        self._cache: dict[tuple[int, str], _CacheEntry] = {}
        self._lock = threading.Lock()

    @classmethod
    def default(cls, chain_manager: ChainManager, **kwargs) -> "PriceOracle":
        """Build an oracle with the standard source order."""
        defillama = DefiLlamaClient()
        return cls(
            [ChainlinkClient(chain_manager), CoinGeckoClient(), defillama],
            yields_client=defillama,
            **kwargs,
        )

    @property
    def sources(self) -> list[PriceSource]:
        return list(self._sources)

    def _fresh(self, key: tuple[int, str]) -> TokenPrice | None:
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None and self._clock() - entry.stored_at < self._ttl:
                return entry.price
        return None

    async def get_token_price_detail(self, chain_id: int, token_address: str) -> TokenPrice:
        """Resolve the full price observation for a token.

        Raises:
            InvalidInputError: `token_address` is not a valid address.
            PriceUnavailableError: Every source failed or timed out.
        """
        address = to_checksum(token_address)
        key = (chain_id, address)

        cached = self._fresh(key)
        if cached is not None:
            return cached

        for source in self._sources:
            try:
                price = await asyncio.wait_for(
                    source.get_price(chain_id, address),
                    timeout=self._source_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"{source.name.value} timed out after {self._source_timeout}s for {address} on chain {chain_id}"
                )
                continue
            except SourceUnavailableError as e:
                logger.info(f"{source.name.value} unavailable for {address} on chain {chain_id}: {e}")
                continue

            with self._lock:
                self._cache[key] = _CacheEntry(price=price, stored_at=self._clock())
            return price

        raise PriceUnavailableError(f"unable to fetch price for {address} on chain {chain_id}")

    async def get_token_price(self, chain_id: int, token_address: str) -> float:
        """Return the USD price of a token, from cache when fresh."""
        price = await self.get_token_price_detail(chain_id, token_address)
        return price.price_usd

    def cached_price(self, chain_id: int, token_address: str) -> TokenPrice | None:
        """Return the current cache entry for a token regardless of its age."""
        key = (chain_id, to_checksum(token_address))
        with self._lock:
            entry = self._cache.get(key)
        return entry.price if entry is not None else None

    def purge_expired(self) -> int:
        """Evict entries older than the TTL and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._cache.items() if now - e.stored_at >= self._ttl]
            for k in expired:
                del self._cache[k]
        return len(expired)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    async def get_apy(self, protocol: str, pool_address: str, chain_id: int) -> float:
        """Look up a pool's APY in the DeFi Llama yield listing.

        Every call re-fetches the listing. Rows match on the exact chain name
        and the exact checksum pool address. `protocol` is informational only.

        Raises:
            NotFoundError: Unsupported chain or no matching row.
            YieldUnavailableError: The listing could not be fetched.
        """
        chain_name = YIELD_CHAIN_NAMES.get(chain_id)
        if chain_name is None:
            raise NotFoundError(f"unsupported chain ID: {chain_id}")
        address = to_checksum(pool_address)

        try:
            rows = await asyncio.wait_for(self._yields.get_pools(), timeout=self._source_timeout)
        except asyncio.TimeoutError as exc:
            raise YieldUnavailableError(f"yield listing timed out after {self._source_timeout}s") from exc
        except SourceUnavailableError as exc:
            raise YieldUnavailableError(str(exc)) from exc

        for row in rows:
            if row.get("chain") == chain_name and row.get("address") == address:
                apy = row.get("apy")
                if isinstance(apy, bool) or not isinstance(apy, (int, float)):
                    return 0.0
                return float(apy)

        logger.debug(f"No {protocol} pool {address} on {chain_name} in yield listing")
        raise NotFoundError(f"APY not found for {address} on {chain_name}")
