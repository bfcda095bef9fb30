"""Yield-bearing pools discovered by protocol scanners.

A network's pool list is rebuilt wholesale on every catalog scan, so these
records are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ProtocolType(str, Enum):
    LENDING = "LENDING"
    DEX = "DEX"
    YIELD = "YIELD"
    LIQUID_STAKING = "LIQUID_STAKING"
    DERIVATIVE = "DERIVATIVE"


@dataclass(frozen=True)
class Token:
    address: str
    symbol: str
    decimals: int
    chain_id: int
    price_usd: float = 0.0


@dataclass(frozen=True)
class Pool:
    id: str
    protocol: str
    protocol_type: ProtocolType
    chain_id: int
    address: str
    token0: Token | None
    token1: Token | None
    # Percent; 0 means unknown or inactive.
    apy: float
    tvl: float
    # Lower is safer. Used as the divisor of the risk-adjusted ranking.
    risk_score: int
    deposited_amount: int = 0
    reward_tokens: tuple[Token, ...] = field(default_factory=tuple)

    @property
    def risk_adjusted_apy(self) -> float:
        if self.risk_score <= 0:
            return 0.0
        return self.apy / self.risk_score
