"""Per-network catalog of yield pools and the risk-adjusted ranking query.

A scan rebuilds a network's pool list from its protocol scanners and swaps it
in as one unit; readers always see either the previous or the new list.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Iterable

from src.core.addresses import to_checksum
from src.core.chains import CHAINS, ChainConfig
from src.core.config import settings
from src.core.errors import NotFoundError, SourceUnavailableError, UnimplementedError
from src.models.pool import Pool
from src.services.protocol_scanners import NotWiredScanner, ProtocolScanner

logger = logging.getLogger(__name__)


class PoolCatalog:
    def __init__(
        self,
        scanners: Iterable[ProtocolScanner] = (),
        *,
        chains: dict[int, ChainConfig] | None = None,
        scan_timeout_seconds: float | None = None,
    ) -> None:
        self.chains = chains if chains is not None else CHAINS
        self._scanners: dict[str, ProtocolScanner] = {s.protocol: s for s in scanners}
        self._scan_timeout = (
            settings.SCAN_TIMEOUT_SECONDS if scan_timeout_seconds is None else scan_timeout_seconds
        )
        self._pools: dict[int, tuple[Pool, ...]] = {}
        self._lock = threading.Lock()

    def register_scanner(self, scanner: ProtocolScanner) -> None:
        self._scanners[scanner.protocol] = scanner

    def scanner_for(self, protocol: str) -> ProtocolScanner:
        return self._scanners.get(protocol) or NotWiredScanner(protocol)

    def _chain(self, chain_id: int) -> ChainConfig:
        chain = self.chains.get(chain_id)
        if chain is None:
            raise NotFoundError(f"unknown chain id: {chain_id}")
        return chain

    def set_pools(self, chain_id: int, pools: Iterable[Pool]) -> None:
        """Replace a network's pool list atomically."""
        snapshot = tuple(pools)
        with self._lock:
            self._pools[chain_id] = snapshot

    def pools(self, chain_id: int) -> list[Pool]:
        with self._lock:
            return list(self._pools.get(chain_id, ()))

    def find_pool(self, chain_id: int, address: str) -> Pool | None:
        """Return the pool at `address` on a network, if the last scan saw one."""
        target = to_checksum(address)
        for pool in self.pools(chain_id):
            if pool.address == target:
                return pool
        return None

    async def scan_chain(self, chain_id: int) -> list[Pool]:
        """Collect pools from every protocol the network supports.

        Protocols without a scanner contribute nothing. A failing scanner is
        skipped; the scan only fails when no scanner succeeded and at least
        one failed.

        Raises:
            NotFoundError: Unknown network.
            SourceUnavailableError: Every attempted scanner failed.
        """
        chain = self._chain(chain_id)

        pools: list[Pool] = []
        succeeded = 0
        failed = 0
        for protocol in chain.supported_protocols:
            scanner = self.scanner_for(protocol)
            try:
                found = await asyncio.wait_for(scanner.scan(chain_id), timeout=self._scan_timeout)
            except UnimplementedError as e:
                logger.debug(f"{e}")
                continue
            except asyncio.TimeoutError:
                logger.warning(f"{protocol} scan on {chain.name} timed out after {self._scan_timeout}s")
                failed += 1
                continue
            except SourceUnavailableError as e:
                logger.warning(f"{protocol} scan on {chain.name} failed: {e}")
                failed += 1
                continue
            except Exception:
                logger.exception(f"{protocol} scan on {chain.name} raised unexpectedly")
                failed += 1
                continue
            succeeded += 1
            pools.extend(found)

        if failed and not succeeded:
            raise SourceUnavailableError(f"all {failed} protocol scanners failed on {chain.name}")
        return pools

    async def scan_all_chains(self) -> dict[int, int]:
        """Scan every registered network concurrently.

        A network that fails keeps its previous pool list; the call itself
        never fails because of one network.

        Returns:
            Mapping of chain id -> pool count for the networks that were updated.
        """
        chain_ids = list(self.chains)

        async def _one(chain_id: int) -> int | None:
            try:
                pools = await self.scan_chain(chain_id)
            except (SourceUnavailableError, NotFoundError) as e:
                logger.error(f"Skipping chain {chain_id}: {e}")
                return None
            self.set_pools(chain_id, pools)
            return len(pools)

        counts = await asyncio.gather(*[_one(c) for c in chain_ids])
        out = {c: n for c, n in zip(chain_ids, counts) if n is not None}
        logger.info(f"Scanned {len(out)}/{len(chain_ids)} chains, {sum(out.values())} pools")
        return out

    def get_optimal_yield(self, chain_id: int, amount: int, risk_tolerance: int) -> list[Pool]:
        """Rank a network's pools by risk-adjusted APY.

        Keeps pools with `risk_score <= risk_tolerance` and a positive APY and
        risk score, sorted by `apy / risk_score` descending, ties broken by
        pool id ascending. `amount` is accepted for capacity-aware filtering
        and currently ignored.

        Raises:
            NotFoundError: Unknown network.
        """
        self._chain(chain_id)

        suitable = [
            p for p in self.pools(chain_id)
            if 0 < p.risk_score <= risk_tolerance and p.apy > 0
        ]
        suitable.sort(key=lambda p: (-p.risk_adjusted_apy, p.id))
        return suitable
