"""Protocol scanners: turn (network, protocol) into a list of pools.

Each scanner exposes `scan(chain_id)`. Protocols without a real integration use
`NotWiredScanner`, which raises `UnimplementedError` so the catalog can tell
"no adapter yet" apart from "the adapter found nothing".
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

from web3 import Web3

from src.core.config import settings
from src.core.errors import NotFoundError, SourceUnavailableError, UnimplementedError
from src.models.pool import Pool, ProtocolType, Token
from src.services.chain_client import ChainClient, ChainManager

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 31536000
RAY = Decimal(10**27)


def risk_score_for(protocol: str) -> int:
    return int(settings.PROTOCOL_RISK_SCORES.get(protocol, settings.DEFAULT_RISK_SCORE))


class ProtocolScanner(ABC):
    protocol: str
    protocol_type: ProtocolType

    @abstractmethod
    async def scan(self, chain_id: int) -> list[Pool]:
        """Return the protocol's current pools on a network.

        Raises:
            UnimplementedError: No integration exists for this protocol.
            SourceUnavailableError: The integration exists but the read failed.
        """


class NotWiredScanner(ProtocolScanner):
    def __init__(self, protocol: str, protocol_type: ProtocolType = ProtocolType.YIELD) -> None:
        self.protocol = protocol
        self.protocol_type = protocol_type

    async def scan(self, chain_id: int) -> list[Pool]:
        raise UnimplementedError(f"no scanner wired for {self.protocol} on chain {chain_id}")


class AaveV3Scanner(ProtocolScanner):
    """Reads every reserve of an Aave V3 market.

    For each reserve: supply rate, aToken supply and the Aave oracle price give
    the supply APY (percent) and TVL (USD).
    """

    protocol = "Aave"
    protocol_type = ProtocolType.LENDING

    # Aave V3 Pool contract per network.
    POOL_ADDRESSES: dict[int, str] = {
        1: "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2",
        137: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
        42161: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
        10: "0x794a61358D6845594F94dc1DB02A252b5b4814aD",
    }

    # --- ABIS ---
    ABI_ERC20 = [
        {"inputs":[],"name":"symbol","outputs":[{"internalType":"string","name":"","type":"string"}],"stateMutability":"view","type":"function"},
        {"inputs":[],"name":"totalSupply","outputs":[{"internalType":"uint256","name":"","type":"uint256"}],"stateMutability":"view","type":"function"}
    ]

    ABI_PROVIDER = [
        {"inputs":[],"name":"getPriceOracle","outputs":[{"internalType":"address","name":"","type":"address"}],"stateMutability":"view","type":"function"}
    ]

    ABI_ORACLE = [
        {"inputs":[{"internalType":"address","name":"asset","type":"address"}],"name":"getAssetPrice","outputs":[{"internalType":"uint256","name":"","type":"uint256"}],"stateMutability":"view","type":"function"}
    ]

    ABI_POOL = [
        {"inputs":[],"name":"ADDRESSES_PROVIDER","outputs":[{"internalType":"address","name":"","type":"address"}],"stateMutability":"view","type":"function"},
        {"inputs":[],"name":"getReservesList","outputs":[{"internalType":"address[]","name":"","type":"address[]"}],"stateMutability":"view","type":"function"},
        {
            "inputs":[{"internalType":"address","name":"asset","type":"address"}],
            "name":"getReserveData",
            "outputs":[{
                "components":[
                    {"components":[{"internalType":"uint256","name":"data","type":"uint256"}],"internalType":"struct DataTypes.ReserveConfigurationMap","name":"configuration","type":"tuple"},
                    {"internalType":"uint128","name":"liquidityIndex","type":"uint128"},
                    {"internalType":"uint128","name":"currentLiquidityRate","type":"uint128"},
                    {"internalType":"uint128","name":"variableBorrowIndex","type":"uint128"},
                    {"internalType":"uint128","name":"currentVariableBorrowRate","type":"uint128"},
                    {"internalType":"uint128","name":"currentStableBorrowRate","type":"uint128"},
                    {"internalType":"uint40","name":"lastUpdateTimestamp","type":"uint40"},
                    {"internalType":"uint16","name":"id","type":"uint16"},
                    {"internalType":"address","name":"aTokenAddress","type":"address"},
                    {"internalType":"address","name":"stableDebtTokenAddress","type":"address"},
                    {"internalType":"address","name":"variableDebtTokenAddress","type":"address"},
                    {"internalType":"address","name":"interestRateStrategyAddress","type":"address"},
                    {"internalType":"uint128","name":"accruedToTreasury","type":"uint128"},
                    {"internalType":"uint128","name":"unbacked","type":"uint128"},
                    {"internalType":"uint128","name":"isolationModeTotalDebt","type":"uint128"}
                ],
                "internalType":"struct DataTypes.ReserveData",
                "name":"","type":"tuple"
            }],
            "stateMutability":"view","type":"function"
        }
    ]

    def __init__(self, chain_manager: ChainManager, pool_addresses: dict[int, str] | None = None) -> None:
        self._chains = chain_manager
        self._pool_addresses = self.POOL_ADDRESSES if pool_addresses is None else pool_addresses

    @staticmethod
    def supply_apy_percent(liquidity_rate_ray: int) -> float:
        """Compound a ray-denominated annual supply rate per second into an APY percent."""
        supply_rate_sec = Decimal(liquidity_rate_ray) / RAY / Decimal(SECONDS_PER_YEAR)
        apy = ((1 + supply_rate_sec) ** SECONDS_PER_YEAR) - 1
        return float(apy) * 100

    @staticmethod
    def _decimals_from_configuration(conf_data: int) -> int:
        return (conf_data >> 48) & 0xFF

    async def scan(self, chain_id: int) -> list[Pool]:
        pool_address = self._pool_addresses.get(chain_id)
        if not pool_address:
            return []

        try:
            client = self._chains.get_client(chain_id)
        except NotFoundError as exc:
            raise SourceUnavailableError(str(exc)) from exc

        pool_contract = client.contract(pool_address, self.ABI_POOL)
        provider_address = await client.call(pool_contract.functions.ADDRESSES_PROVIDER())
        provider_contract = client.contract(provider_address, self.ABI_PROVIDER)
        oracle_address = await client.call(provider_contract.functions.getPriceOracle())
        oracle_contract = client.contract(oracle_address, self.ABI_ORACLE)

        reserves_list = await client.call(pool_contract.functions.getReservesList())
        logger.info(f"Found {len(reserves_list)} assets for {self.protocol} on {client.chain.name}.")

        results: list[Pool] = []
        risk_score = risk_score_for(self.protocol)
        for asset_address in reserves_list:
            try:
                results.append(
                    await self._scan_reserve(client, pool_contract, oracle_contract, asset_address, risk_score)
                )
            except SourceUnavailableError as e:
                logger.error(f"Error processing {asset_address} in {self.protocol}: {e}")
            except Exception:
                logger.exception(f"Unexpected error processing {asset_address} in {self.protocol}")

        return results

    async def _scan_reserve(
        self,
        client: ChainClient,
        pool_contract: Any,
        oracle_contract: Any,
        asset_address: str,
        risk_score: int,
    ) -> Pool:
        asset_address = Web3.to_checksum_address(asset_address)
        reserve_data = await client.call(pool_contract.functions.getReserveData(asset_address))

        conf_data = reserve_data[0][0]
        liquidity_rate_ray = reserve_data[2]
        a_token_address = Web3.to_checksum_address(reserve_data[8])

        decimals = self._decimals_from_configuration(conf_data)

        asset_contract = client.contract(asset_address, self.ABI_ERC20)
        symbol = await client.call(asset_contract.functions.symbol())

        a_token_contract = client.contract(a_token_address, self.ABI_ERC20)
        a_token_symbol = await client.call(a_token_contract.functions.symbol())
        total_supply_raw = await client.call(a_token_contract.functions.totalSupply())

        # Aave V3 oracle quotes in USD with 8 decimals.
        price_raw = await client.call(oracle_contract.functions.getAssetPrice(asset_address))
        price_usd = Decimal(price_raw) / Decimal(10**8)

        tvl_usd = (Decimal(total_supply_raw) / Decimal(10**decimals)) * price_usd

        underlying = Token(
            address=asset_address,
            symbol=str(symbol),
            decimals=decimals,
            chain_id=client.chain_id,
            price_usd=float(price_usd),
        )
        a_token = Token(
            address=a_token_address,
            symbol=str(a_token_symbol),
            decimals=decimals,
            chain_id=client.chain_id,
            price_usd=float(price_usd),
        )

        return Pool(
            id=f"aave-v3:{client.chain_id}:{asset_address}",
            protocol=self.protocol,
            protocol_type=self.protocol_type,
            chain_id=client.chain_id,
            address=a_token_address,
            token0=underlying,
            token1=a_token,
            apy=self.supply_apy_percent(liquidity_rate_ray),
            tvl=float(tvl_usd),
            risk_score=risk_score,
        )
