"""User strategies bound to a single pool, and their derived snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class StrategyType(str, Enum):
    AUTO_COMPOUND = "AUTO_COMPOUND"
    YIELD_FARM = "YIELD_FARM"
    LIQUIDITY = "LIQUIDITY"
    STAKING = "STAKING"


class StrategyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


@dataclass
class StrategyParams:
    """Input to `StrategyManager.create_strategy`.

    Deposit bounds are token base units. Fees are fractions (0.002 == 0.2%).
    `expected_apy=None` means "take it from the pool catalog if known".
    `harvest_interval=None` uses the configured default.
    """

    name: str
    type: StrategyType
    chain_id: int
    protocol: str
    pool_address: str
    expected_apy: float | None = None
    risk_tolerance: int = 5
    min_deposit: int = 0
    max_deposit: int | None = None
    withdrawal_fee: float = 0.0
    performance_fee: float = 0.0
    harvest_interval: timedelta | None = None
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class Strategy:
    id: str
    name: str
    type: StrategyType
    chain_id: int
    protocol: str
    pool_address: str
    apy: float
    tvl: float
    risk_score: int
    min_deposit: int
    max_deposit: int | None
    withdrawal_fee: float
    performance_fee: float
    harvest_interval: timedelta
    created_at: datetime
    last_harvest: datetime | None = None
    active: bool = True
    parameters: dict[str, Any] = field(default_factory=dict)
    # Accumulated from execution adapter results, base units.
    total_deposited: int = 0
    total_harvested: int = 0

    @property
    def status(self) -> StrategyStatus:
        return StrategyStatus.ACTIVE if self.active else StrategyStatus.INACTIVE

    def harvest_due(self, now: datetime) -> bool:
        if self.last_harvest is None:
            return True
        return now - self.last_harvest >= self.harvest_interval

    def accepts_deposit(self, amount: int) -> bool:
        if amount <= 0 or amount < self.min_deposit:
            return False
        return self.max_deposit is None or amount <= self.max_deposit


@dataclass(frozen=True)
class StrategyPerformance:
    strategy_id: str
    current_apy: float
    total_deposited: float  # USD
    total_harvested: int
    pending_rewards: int
    profit_loss: int


@dataclass(frozen=True)
class TransactionResult:
    success: bool
    lp_token_amount: int = 0
    # Base units deposited, withdrawn or claimed by the transaction.
    amount: int = 0
    tx_hash: str | None = None
