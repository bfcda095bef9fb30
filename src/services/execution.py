"""Execution adapter interface for on-chain deposits, withdrawals and harvests.

No concrete adapter ships with this package; `NotWiredExecutionAdapter` is the
default and refuses every instruction with `UnimplementedError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.core.errors import UnimplementedError
from src.models.strategy import Strategy, TransactionResult


class ExecutionAdapter(ABC):
    @abstractmethod
    async def deposit(self, strategy: Strategy, amount: int, user_address: str) -> TransactionResult:
        """Deposit `amount` base units into the strategy's pool for `user_address`."""

    @abstractmethod
    async def withdraw(self, strategy: Strategy, amount: int, user_address: str) -> TransactionResult:
        """Withdraw `amount` base units from the strategy's pool to `user_address`."""

    @abstractmethod
    async def harvest(self, strategy: Strategy) -> TransactionResult:
        """Claim and reinvest or realise the strategy's accrued rewards."""


class NotWiredExecutionAdapter(ExecutionAdapter):
    async def deposit(self, strategy: Strategy, amount: int, user_address: str) -> TransactionResult:
        raise UnimplementedError(f"deposit into {strategy.protocol} is not wired")

    async def withdraw(self, strategy: Strategy, amount: int, user_address: str) -> TransactionResult:
        raise UnimplementedError(f"withdrawal from {strategy.protocol} is not wired")

    async def harvest(self, strategy: Strategy) -> TransactionResult:
        raise UnimplementedError(f"harvest on {strategy.protocol} is not wired")
