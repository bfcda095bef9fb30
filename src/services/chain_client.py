"""Chain client utilities.

This module provides a thin Web3 wrapper per network (gas price, contract
reads) and a manager that connects to every configured network at startup.

Web3's HTTP provider is blocking, so every read runs in a worker thread under
an explicit timeout. Any failure is reported as `SourceUnavailableError`.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable

from web3 import Web3

from src.core.chains import CHAINS, ChainConfig
from src.core.config import settings
from src.core.errors import NotFoundError, SourceUnavailableError

logger = logging.getLogger(__name__)


class ChainClient:
    def __init__(
        self,
        chain: ChainConfig,
        rpc_url: str,
        request_timeout_seconds: float | None = None,
        w3: Web3 | None = None,
    ) -> None:
        self.chain = chain
        self._timeout = request_timeout_seconds or settings.RPC_TIMEOUT_SECONDS
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(
                rpc_url,
                request_kwargs={"timeout": self._timeout},
            )
        )

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    def is_connected(self) -> bool:
        return bool(self.w3.is_connected())

    def contract(self, address: str, abi: list[dict[str, Any]]):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def _run(self, fn: Callable[[], Any], what: str) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise SourceUnavailableError(
                f"{self.chain.name}: {what} timed out after {self._timeout}s"
            ) from exc
        except Exception as exc:
            raise SourceUnavailableError(f"{self.chain.name}: {what} failed: {exc}") from exc

    async def call(self, contract_func, max_retries: int = 3) -> Any:
        """Execute a bound contract function (`contract.functions.x(...)`) as an eth_call.

        Rate-limited calls are retried with exponential backoff (2, 4, 8s...).
        """
        for attempt in range(max_retries):
            try:
                return await self._run(contract_func.call, "contract call")
            except SourceUnavailableError as e:
                error_str = str(e).lower()
                if "rate limit" not in error_str and "-32005" not in error_str:
                    raise
                if attempt == max_retries - 1:
                    raise
                delay = 2 ** (attempt + 1)
                logger.warning(f"Rate limit hit on {self.chain.name}. Sleeping {delay}s...")
                await asyncio.sleep(delay)
        raise SourceUnavailableError(f"{self.chain.name}: contract call failed after {max_retries} retries")

    async def suggest_gas_price(self) -> int:
        """Return the node's suggested gas price in wei."""
        return int(await self._run(lambda: self.w3.eth.gas_price, "gas price query"))

    async def block_number(self) -> int:
        return int(await self._run(lambda: self.w3.eth.block_number, "block number query"))


class ChainManager:
    """Holds one connected `ChainClient` per reachable network."""

    def __init__(
        self,
        chains: dict[int, ChainConfig] | None = None,
        *,
        api_key: str | None = None,
        client_factory: Callable[[ChainConfig, str], ChainClient] = ChainClient,
    ) -> None:
        self.chains = chains if chains is not None else CHAINS
        self._api_key = settings.ALCHEMY_API_KEY if api_key is None else api_key
        self._client_factory = client_factory
        self._clients: dict[int, ChainClient] = {}

    async def connect_all(self) -> dict[int, bool]:
        """Connect to every configured network.

        A network that fails to connect is logged and left out; the others are
        still initialised.

        Returns:
            Mapping of chain id -> whether a client is now available.
        """

        async def _one(chain: ChainConfig) -> bool:
            rpc_url = chain.rpc_endpoint(self._api_key)
            if not rpc_url:
                logger.warning(f"No RPC URL configured for {chain.name}; skipping")
                return False
            try:
                client = self._client_factory(chain, rpc_url)
                connected = await asyncio.wait_for(
                    asyncio.to_thread(client.is_connected),
                    timeout=settings.RPC_TIMEOUT_SECONDS,
                )
            except Exception as e:
                logger.error(f"Failed to connect to {chain.name} RPC: {e}")
                return False
            if not connected:
                logger.error(f"Failed to connect to {chain.name} RPC")
                return False
            self._clients[chain.chain_id] = client
            logger.info(f"Connected to {chain.name} (chain {chain.chain_id})")
            return True

        chains = list(self.chains.values())
        results = await asyncio.gather(*[_one(c) for c in chains])
        return {c.chain_id: ok for c, ok in zip(chains, results)}

    def register(self, client: ChainClient) -> None:
        self._clients[client.chain_id] = client

    def get_client(self, chain_id: int) -> ChainClient:
        client = self._clients.get(chain_id)
        if client is None:
            raise NotFoundError(f"no client for chain {chain_id}")
        return client

    def has_client(self, chain_id: int) -> bool:
        return chain_id in self._clients

    async def get_gas_price(self, chain_id: int) -> int:
        return await self.get_client(chain_id).suggest_gas_price()

    async def is_gas_price_acceptable(self, chain_id: int) -> bool:
        """Compare the suggested gas price with the network's configured ceiling."""
        client = self.get_client(chain_id)
        gas_price_wei = await client.suggest_gas_price()
        max_wei = int(Decimal(str(client.chain.max_gas_price_gwei)) * Decimal(10**9))
        return gas_price_wei <= max_wei
