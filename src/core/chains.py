"""Static registry of supported EVM networks.

RPC/WS URLs are templates with a single `{api_key}` placeholder. The RPC URL is
filled from `settings.ALCHEMY_API_KEY` when a chain client is created.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from src.core.errors import NotFoundError


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    name: str
    rpc_url: str
    ws_url: str
    block_explorer: str
    native_token: str
    supported_protocols: tuple[str, ...]
    max_gas_price_gwei: float
    average_block_time: timedelta
    confirmations_required: int
    chain_type: str  # EVM, L2, L1

    def rpc_endpoint(self, api_key: str) -> str:
        return self.rpc_url.format(api_key=api_key) if self.rpc_url else ""


CHAINS: dict[int, ChainConfig] = {
    1: ChainConfig(
        chain_id=1,
        name="Ethereum",
        rpc_url="https://eth-mainnet.g.alchemy.com/v2/{api_key}",
        ws_url="wss://eth-mainnet.g.alchemy.com/v2/{api_key}",
        block_explorer="https://etherscan.io",
        native_token="ETH",
        supported_protocols=("Aave", "Compound", "Yearn", "Lido", "RocketPool"),
        max_gas_price_gwei=100,
        average_block_time=timedelta(seconds=12),
        confirmations_required=12,
        chain_type="L1",
    ),
    137: ChainConfig(
        chain_id=137,
        name="Polygon",
        rpc_url="https://polygon-mainnet.g.alchemy.com/v2/{api_key}",
        ws_url="",
        block_explorer="https://polygonscan.com",
        native_token="MATIC",
        supported_protocols=("Aave", "Curve", "Balancer", "QuickSwap"),
        max_gas_price_gwei=500,
        average_block_time=timedelta(seconds=2),
        confirmations_required=64,
        chain_type="L2",
    ),
    42161: ChainConfig(
        chain_id=42161,
        name="Arbitrum",
        rpc_url="https://arb-mainnet.g.alchemy.com/v2/{api_key}",
        ws_url="",
        block_explorer="https://arbiscan.io",
        native_token="ETH",
        supported_protocols=("Aave", "GMX", "Radiant", "JonesDAO", "Socket"),
        max_gas_price_gwei=0.1,
        average_block_time=timedelta(milliseconds=250),
        confirmations_required=20,
        chain_type="L2",
    ),
    10: ChainConfig(
        chain_id=10,
        name="Optimism",
        rpc_url="https://opt-mainnet.g.alchemy.com/v2/{api_key}",
        ws_url="",
        block_explorer="https://optimistic.etherscan.io",
        native_token="ETH",
        supported_protocols=("Aave", "Velodrome", "Beefy", "Stargate"),
        max_gas_price_gwei=0.001,
        average_block_time=timedelta(seconds=2),
        confirmations_required=20,
        chain_type="L2",
    ),
}


def get_chain(chain_id: int) -> ChainConfig:
    chain = CHAINS.get(chain_id)
    if chain is None:
        raise NotFoundError(f"unknown chain id: {chain_id}")
    return chain
