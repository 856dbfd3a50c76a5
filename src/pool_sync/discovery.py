"""Pair discovery by bounded sequential probing of the factory registry."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from web3 import Web3

from .constants import MAX_PAIR_PROBES, UNKNOWN_SYMBOL, ZERO_ADDRESS
from .errors import FatalError, InvalidAddressError, PoolSyncError, ValidationError
from .models import HistoricalSample, Pool, TokenInfo
from .rpc.ledger import LedgerReader
from .store import PoolStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProbeStop(str, Enum):
    """Why index probing ended."""

    ZERO_ADDRESS = "zero_address"
    FATAL_ERROR = "fatal_error"
    MAX_PROBES = "max_probes"
    TIME_BUDGET = "time_budget"


@dataclass
class PairFailure:
    index: int | None
    pair_address: str
    error: str


@dataclass
class DiscoveryReport:
    factory_address: str
    pools: list[Pool] = field(default_factory=list)
    failures: list[PairFailure] = field(default_factory=list)
    probed: int = 0
    stopped_by: ProbeStop = ProbeStop.ZERO_ADDRESS
    unexpanded: list[str] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.stopped_by in (ProbeStop.MAX_PROBES, ProbeStop.TIME_BUDGET)

    @property
    def imbalanced_count(self) -> int:
        return sum(1 for pool in self.pools if pool.needs_rebalancing)

    def to_dict(self) -> dict[str, object]:
        return {
            "factory_address": self.factory_address,
            "pools": [pool.to_dict() for pool in self.pools],
            "total_discovered": len(self.pools),
            "imbalanced_count": self.imbalanced_count,
            "failures": [vars(f) for f in self.failures],
            "probed": self.probed,
            "stopped_by": self.stopped_by.value,
            "unexpanded": list(self.unexpanded),
            "truncated": self.truncated,
        }


def is_zero_address(address: str | None) -> bool:
    """True for an empty or all-zero address; malformed input is not zero."""
    return not address or (Web3.is_address(address) and int(address, 16) == 0)


def validate_address(address: str) -> str:
    """Return the checksummed form of ``address`` or raise InvalidAddressError."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddressError(str(address))
    return Web3.to_checksum_address(address)


async def read_or_placeholder(
    read: Awaitable[T], placeholder: T, label: str
) -> T:
    """Await a ledger read, degrading any pool-sync failure to ``placeholder``."""
    try:
        return await read
    except PoolSyncError as exc:
        logger.warning("%s unavailable, using %r: %s", label, placeholder, exc)
        return placeholder


class PairDiscovery:
    """Enumerates factory pairs and writes pool snapshots into the store."""

    def __init__(
        self,
        ledger: LedgerReader,
        store: PoolStore,
        max_probes: int = MAX_PAIR_PROBES,
        time_budget_seconds: float | None = None,
        default_target_ratio: float = 1.0,
    ):
        self.ledger = ledger
        self.store = store
        self.max_probes = min(max_probes, MAX_PAIR_PROBES)
        self.time_budget_seconds = time_budget_seconds
        self.default_target_ratio = default_target_ratio

    async def discover(self, factory_address: str) -> list[Pool]:
        report = await self.discover_with_report(factory_address)
        return report.pools

    async def discover_with_report(self, factory_address: str) -> DiscoveryReport:
        """Probe the factory, expand every pair and record the pools.

        Raises:
            InvalidAddressError: If ``factory_address`` is malformed.
            ValidationError: If no contract is deployed at the address.
            EndpointsExhaustedError: If probing cannot reach any endpoint.
        """
        factory = validate_address(factory_address)
        logger.info("Starting pool discovery on factory %s", factory)
        loop = asyncio.get_running_loop()
        # the time budget covers probing and expansion together
        deadline = (
            loop.time() + self.time_budget_seconds
            if self.time_budget_seconds and self.time_budget_seconds > 0
            else None
        )

        code = await self.ledger.get_code(factory)
        if not code:
            raise ValidationError(f"No contract deployed at factory address {factory}")

        report = DiscoveryReport(factory_address=factory)
        pair_addresses = await self._probe_pairs(factory, report, deadline)
        logger.info(
            "Discovering %d pairs from factory (stopped by %s)",
            len(pair_addresses),
            report.stopped_by.value,
        )

        for index, pair_address in enumerate(pair_addresses):
            try:
                pool = await self._expand_before(pair_address, deadline)
            except TimeoutError:
                report.unexpanded = pair_addresses[index:]
                report.stopped_by = ProbeStop.TIME_BUDGET
                logger.warning(
                    "Discovery time budget of %.1fs exhausted with %d pairs not expanded",
                    self.time_budget_seconds,
                    len(report.unexpanded),
                )
                break
            except PoolSyncError as exc:
                logger.error("Error processing pair %d (%s): %s", index, pair_address, exc)
                report.failures.append(PairFailure(index, pair_address, str(exc)))
                continue
            report.pools.append(self.record_pool(pool))

        logger.info(
            "Successfully discovered %d pools (%d imbalanced, %d failed)",
            len(report.pools),
            report.imbalanced_count,
            len(report.failures),
        )
        return report

    async def _probe_pairs(
        self, factory: str, report: DiscoveryReport, deadline: float | None
    ) -> list[str]:
        loop = asyncio.get_running_loop()
        addresses: list[str] = []
        report.stopped_by = ProbeStop.MAX_PROBES
        for index in range(self.max_probes):
            if deadline is not None and loop.time() >= deadline:
                logger.warning(
                    "Discovery time budget of %.1fs exhausted after %d probes",
                    self.time_budget_seconds,
                    index,
                )
                report.stopped_by = ProbeStop.TIME_BUDGET
                break

            report.probed = index + 1
            try:
                if deadline is None:
                    pair_address = await self.ledger.all_pairs(factory, index)
                else:
                    async with asyncio.timeout_at(deadline):
                        pair_address = await self.ledger.all_pairs(factory, index)
            except FatalError as exc:
                # allPairs(i) reverts past the end of the registry
                logger.debug("allPairs(%d) rejected, treating as end: %s", index, exc)
                report.stopped_by = ProbeStop.FATAL_ERROR
                break
            except TimeoutError:
                logger.warning(
                    "Discovery time budget of %.1fs exhausted at index %d",
                    self.time_budget_seconds,
                    index,
                )
                report.stopped_by = ProbeStop.TIME_BUDGET
                break

            if is_zero_address(pair_address):
                report.stopped_by = ProbeStop.ZERO_ADDRESS
                break
            addresses.append(pair_address)
        else:
            logger.warning("Stopped probing at the %d-index upper bound", self.max_probes)

        return addresses

    async def _expand_before(self, pair_address: str, deadline: float | None) -> Pool:
        if deadline is None:
            return await self.expand_pair(pair_address)
        if asyncio.get_running_loop().time() >= deadline:
            raise TimeoutError(f"No time left to expand {pair_address}")
        async with asyncio.timeout_at(deadline):
            return await self.expand_pair(pair_address)

    async def expand_pair(self, pair_address: str) -> Pool:
        """Read a pair's tokens, reserves and supply into a Pool snapshot."""
        pair = validate_address(pair_address)
        token0, token1, (reserve0, reserve1), total_supply = await asyncio.gather(
            self.ledger.token0(pair),
            self.ledger.token1(pair),
            self.ledger.reserves(pair),
            self.ledger.total_supply(pair),
        )
        symbol0, symbol1 = await asyncio.gather(
            read_or_placeholder(self.ledger.symbol(token0), UNKNOWN_SYMBOL, f"symbol({token0})"),
            read_or_placeholder(self.ledger.symbol(token1), UNKNOWN_SYMBOL, f"symbol({token1})"),
        )

        return Pool(
            address=pair,
            token_a=TokenInfo(address=token0, symbol=symbol0),
            token_b=TokenInfo(address=token1, symbol=symbol1),
            reserve_a=reserve0,
            reserve_b=reserve1,
            total_supply=total_supply,
            target_ratio=self.default_target_ratio,
            created_at=int(time.time()),
        )

    def record_pool(self, pool: Pool) -> Pool:
        """Write a freshly read pool, keeping bookkeeping of a tracked one."""
        existing = self.store.get_pool(pool.address)
        if existing is not None:
            pool = self.store.update_pool(
                pool.address,
                token_a=pool.token_a,
                token_b=pool.token_b,
                reserve_a=pool.reserve_a,
                reserve_b=pool.reserve_b,
                total_supply=pool.total_supply,
            ) or pool
        else:
            self.store.add_pool(pool)

        self.store.add_historical_sample(
            pool.address,
            HistoricalSample(
                timestamp=int(time.time()),
                ratio=pool.current_ratio,
                tvl=pool.tvl,
                volume=pool.volume_24h or 0.0,
                fees=pool.fees_24h,
            ),
        )
        return pool

    async def refresh_pool(self, pair_address: str) -> Pool:
        """Re-read one pair and record it (used by the event feed)."""
        return self.record_pool(await self.expand_pair(pair_address))
