"""Strategy lifecycle: creation, execution, gated harvesting and monitoring.

Every active strategy owns one asyncio monitoring task. Deactivation, removal
and shutdown cancel that task and wait for it to finish before the strategy is
marked inactive or dropped, so no task outlives its strategy.

The strategy table is guarded by a lock. Harvests of one strategy are
serialised, so concurrent `harvest_all` calls within one interval harvest once.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from src.core.addresses import to_checksum
from src.core.chains import CHAINS, ChainConfig
from src.core.config import settings
from src.core.errors import (
    DataUnavailableError,
    InvalidInputError,
    NotFoundError,
    UnimplementedError,
    YieldAggregatorError,
)
from src.models.strategy import (
    Strategy,
    StrategyParams,
    StrategyPerformance,
    StrategyType,
    TransactionResult,
)
from src.services.execution import ExecutionAdapter, NotWiredExecutionAdapter
from src.services.pool_catalog import PoolCatalog
from src.services.price_oracle import PriceOracle

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_strategy_id() -> str:
    return f"strategy-{uuid.uuid4().hex}"


class StrategyManager:
    def __init__(
        self,
        catalog: PoolCatalog | None = None,
        oracle: PriceOracle | None = None,
        executor: ExecutionAdapter | None = None,
        *,
        chains: dict[int, ChainConfig] | None = None,
        monitor_interval_seconds: float | None = None,
        default_harvest_interval: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._catalog = catalog
        self._oracle = oracle
        self._executor = executor or NotWiredExecutionAdapter()
        if chains is not None:
            self._chains = chains
        else:
            self._chains = catalog.chains if catalog is not None else CHAINS
        self._monitor_interval = (
            settings.STRATEGY_MONITOR_INTERVAL_SECONDS
            if monitor_interval_seconds is None
            else monitor_interval_seconds
        )
        self._default_harvest_interval = default_harvest_interval or timedelta(
            seconds=settings.DEFAULT_HARVEST_INTERVAL_SECONDS
        )
        self._clock = clock

        self._strategies: dict[str, Strategy] = {}
        self._monitors: dict[str, asyncio.Task] = {}
        self._harvest_locks: dict[str, asyncio.Lock] = {}
        self._lock = threading.Lock()

    async def __aenter__(self) -> "StrategyManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    # -- table access -------------------------------------------------------

    def _live(self, strategy_id: str) -> Strategy:
        """Return the stored record. Caller must hold `self._lock`."""
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise NotFoundError(f"strategy not found: {strategy_id}")
        return strategy

    def get_strategy(self, strategy_id: str) -> Strategy:
        """Return a copy of a strategy."""
        with self._lock:
            strategy = self._live(strategy_id)
            return dataclasses.replace(strategy, parameters=dict(strategy.parameters))

    def list_strategies(self, active_only: bool = False) -> list[Strategy]:
        with self._lock:
            records = list(self._strategies.values())
            return [
                dataclasses.replace(s, parameters=dict(s.parameters))
                for s in records
                if s.active or not active_only
            ]

    def is_monitored(self, strategy_id: str) -> bool:
        with self._lock:
            task = self._monitors.get(strategy_id)
        return task is not None and not task.done()

    # -- lifecycle ----------------------------------------------------------

    def _validate(self, params: StrategyParams) -> tuple[StrategyType, str, timedelta]:
        if params.chain_id not in self._chains:
            raise NotFoundError(f"unknown chain id: {params.chain_id}")
        if not params.name or not params.name.strip():
            raise InvalidInputError("strategy name must not be empty")
        try:
            strategy_type = StrategyType(params.type)
        except ValueError:
            raise InvalidInputError(f"unknown strategy type: {params.type!r}") from None

        pool_address = to_checksum(params.pool_address)

        if params.risk_tolerance <= 0:
            raise InvalidInputError(f"risk tolerance must be positive, got {params.risk_tolerance}")
        if params.min_deposit < 0:
            raise InvalidInputError(f"min deposit must not be negative, got {params.min_deposit}")
        if params.max_deposit is not None and params.max_deposit < params.min_deposit:
            raise InvalidInputError(
                f"max deposit {params.max_deposit} is below min deposit {params.min_deposit}"
            )
        for label, fee in (("withdrawal", params.withdrawal_fee), ("performance", params.performance_fee)):
            if not 0.0 <= fee <= 1.0:
                raise InvalidInputError(f"{label} fee must be within [0, 1], got {fee}")

        harvest_interval = params.harvest_interval or self._default_harvest_interval
        if harvest_interval <= timedelta(0):
            raise InvalidInputError(f"harvest interval must be positive, got {harvest_interval}")

        return strategy_type, pool_address, harvest_interval

    async def create_strategy(self, params: StrategyParams) -> str:
        """Store a new active strategy and start its monitoring task.

        TVL, and APY when `expected_apy` is omitted, are seeded from the pool
        catalog if it knows the pool. No network I/O happens here.

        Raises:
            NotFoundError: Unknown network.
            InvalidInputError: Malformed pool address or out-of-range parameter.
        """
        strategy_type, pool_address, harvest_interval = self._validate(params)

        pool = self._catalog.find_pool(params.chain_id, pool_address) if self._catalog else None
        if params.expected_apy is not None:
            apy = float(params.expected_apy)
        else:
            apy = pool.apy if pool is not None else 0.0

        strategy = Strategy(
            id=generate_strategy_id(),
            name=params.name.strip(),
            type=strategy_type,
            chain_id=params.chain_id,
            protocol=params.protocol or (pool.protocol if pool is not None else ""),
            pool_address=pool_address,
            apy=apy,
            tvl=pool.tvl if pool is not None else 0.0,
            risk_score=params.risk_tolerance,
            min_deposit=params.min_deposit,
            max_deposit=params.max_deposit,
            withdrawal_fee=params.withdrawal_fee,
            performance_fee=params.performance_fee,
            harvest_interval=harvest_interval,
            created_at=self._clock(),
            active=True,
            parameters=dict(params.parameters),
        )

        with self._lock:
            self._strategies[strategy.id] = strategy
            self._monitors[strategy.id] = asyncio.create_task(
                self._monitor(strategy.id), name=f"monitor-{strategy.id}"
            )

        logger.info(f"Created strategy {strategy.id} ({strategy.name}) on {strategy.protocol} chain {strategy.chain_id}")
        return strategy.id

    async def _stop_monitor(self, strategy_id: str) -> None:
        with self._lock:
            task = self._monitors.pop(strategy_id, None)
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def deactivate_strategy(self, strategy_id: str) -> None:
        """Stop the monitoring task, then mark the strategy inactive. Idempotent."""
        with self._lock:
            self._live(strategy_id)
        await self._stop_monitor(strategy_id)
        with self._lock:
            strategy = self._live(strategy_id)
            was_active = strategy.active
            strategy.active = False
        if was_active:
            logger.info(f"Deactivated strategy {strategy_id}")

    async def remove_strategy(self, strategy_id: str) -> None:
        await self.deactivate_strategy(strategy_id)
        with self._lock:
            self._strategies.pop(strategy_id, None)
            self._harvest_locks.pop(strategy_id, None)
        logger.info(f"Removed strategy {strategy_id}")

    async def shutdown(self) -> None:
        """Cancel every monitoring task and wait for them to finish."""
        with self._lock:
            tasks = list(self._monitors.values())
            self._monitors.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Stopped {len(tasks)} strategy monitors")

    # -- operations ---------------------------------------------------------

    async def execute_strategy(self, strategy_id: str, amount: int, user_address: str) -> TransactionResult:
        """Deposit `amount` base units through the execution adapter.

        Raises:
            NotFoundError: Unknown strategy.
            InvalidInputError: Inactive strategy, malformed user address, or an
                amount outside the deposit bounds.
            UnimplementedError: No execution adapter is wired.
        """
        strategy = self.get_strategy(strategy_id)
        if not strategy.active:
            raise InvalidInputError(f"strategy {strategy_id} is inactive")
        user = to_checksum(user_address)
        if not strategy.accepts_deposit(amount):
            raise InvalidInputError(
                f"amount {amount} outside deposit bounds [{strategy.min_deposit}, {strategy.max_deposit}]"
            )

        result = await self._executor.deposit(strategy, amount, user)

        if result.success:
            with self._lock:
                live = self._strategies.get(strategy_id)
                if live is not None:
                    live.total_deposited += result.amount or amount
            logger.info(f"Deposited {amount} into strategy {strategy_id} for {user}")
        else:
            logger.warning(f"Deposit into strategy {strategy_id} for {user} did not succeed")
        return result

    def _harvest_lock(self, strategy_id: str) -> asyncio.Lock:
        with self._lock:
            self._live(strategy_id)
            lock = self._harvest_locks.get(strategy_id)
            if lock is None:
                lock = self._harvest_locks[strategy_id] = asyncio.Lock()
            return lock

    async def harvest_all(self, strategy_id: str) -> bool:
        """Harvest a strategy's rewards if its harvest interval has elapsed.

        Returns:
            True when a harvest ran; False for the no-op cases (interval not
            elapsed, strategy inactive, or an unsuccessful transaction).

        Raises:
            NotFoundError: Unknown strategy.
            UnimplementedError: No execution adapter is wired.
        """
        async with self._harvest_lock(strategy_id):
            strategy = self.get_strategy(strategy_id)
            if not strategy.active or not strategy.harvest_due(self._clock()):
                return False

            result = await self._executor.harvest(strategy)
            if not result.success:
                logger.warning(f"Harvest transaction for strategy {strategy_id} did not succeed")
                return False

            with self._lock:
                live = self._live(strategy_id)
                live.last_harvest = self._clock()
                live.total_harvested += result.amount
            logger.info(f"Harvested strategy {strategy_id}: {result.amount}")
            return True

    async def get_strategy_performance(self, strategy_id: str) -> StrategyPerformance:
        """Build a point-in-time performance snapshot.

        Deposits are valued in USD only when the strategy parameters name a
        `deposit_token` and its `decimals` and the oracle can price it.
        Pending rewards need on-chain reads and are reported as 0.

        Raises:
            NotFoundError: Unknown strategy.
        """
        strategy = self.get_strategy(strategy_id)

        deposited_usd = 0.0
        token = strategy.parameters.get("deposit_token")
        decimals = strategy.parameters.get("decimals")
        if self._oracle is not None and token and decimals is not None and strategy.total_deposited:
            try:
                price = await self._oracle.get_token_price(strategy.chain_id, token)
            except DataUnavailableError as e:
                logger.warning(f"Cannot value deposits of strategy {strategy_id}: {e}")
            else:
                units = Decimal(strategy.total_deposited) / (Decimal(10) ** int(decimals))
                deposited_usd = float(units * Decimal(str(price)))

        fee = Decimal(str(strategy.performance_fee))
        profit_loss = int(Decimal(strategy.total_harvested) * (1 - fee))

        return StrategyPerformance(
            strategy_id=strategy.id,
            current_apy=strategy.apy,
            total_deposited=deposited_usd,
            total_harvested=strategy.total_harvested,
            pending_rewards=0,
            profit_loss=profit_loss,
        )

    # -- monitoring ---------------------------------------------------------

    async def _monitor(self, strategy_id: str) -> None:
        logger.debug(f"Monitoring strategy {strategy_id} every {self._monitor_interval}s")
        while True:
            await asyncio.sleep(self._monitor_interval)
            try:
                await self.check_strategy(strategy_id)
            except NotFoundError:
                return
            except YieldAggregatorError as e:
                logger.warning(f"Monitoring pass for strategy {strategy_id} failed: {e}")
            except Exception:
                logger.exception(f"Monitoring pass for strategy {strategy_id} raised unexpectedly")

    async def check_strategy(self, strategy_id: str) -> None:
        """Run one monitoring pass: refresh the APY, then harvest if due."""
        strategy = self.get_strategy(strategy_id)
        if not strategy.active:
            return

        if self._oracle is not None:
            try:
                apy = await self._oracle.get_apy(strategy.protocol, strategy.pool_address, strategy.chain_id)
            except (NotFoundError, DataUnavailableError) as e:
                logger.debug(f"No APY refresh for strategy {strategy_id}: {e}")
            else:
                with self._lock:
                    live = self._live(strategy_id)
                    previous, live.apy = live.apy, apy
                if previous and abs(apy - previous) / previous > 0.25:
                    logger.warning(f"APY of strategy {strategy_id} moved from {previous:.2f}% to {apy:.2f}%")

        try:
            await self.harvest_all(strategy_id)
        except UnimplementedError as e:
            logger.debug(f"Skipping harvest for strategy {strategy_id}: {e}")
