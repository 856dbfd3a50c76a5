"""Facade exposing pool-sync operations to the CLI and other front ends."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, TypeVar

from .analytics import PoolAnalytics, Timeframe
from .discovery import (
    DiscoveryReport,
    PairDiscovery,
    is_zero_address,
    validate_address,
)
from .errors import (
    OperationTimeoutError,
    PoolNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from .estimator import RebalanceEstimator
from .events import LogPollingSource, PoolEventConsumer
from .executor import RebalanceExecutor
from .models import (
    DashboardStats,
    Pool,
    PoolMetrics,
    QuickEstimate,
    RebalanceEstimate,
    RebalanceEvent,
    RebalanceStatus,
    SubmittedRebalance,
)
from .monitor import TransactionMonitor
from .rpc.client import EndpointClient
from .rpc.ledger import LedgerReader
from .store import PoolStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PoolMetricsView:
    """Metrics restricted to one timeframe, plus the window summary."""

    metrics: PoolMetrics
    analytics: PoolAnalytics | None

    def to_dict(self) -> dict[str, Any]:
        data = self.metrics.to_dict()
        data["analytics"] = self.analytics.to_dict() if self.analytics else None
        return data


@dataclass
class TransactionStatus:
    event: RebalanceEvent
    block_number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.event.to_dict()
        data["block_number"] = self.block_number
        return data


class PoolSyncService:
    """Entry point for every user-facing operation.

    Each coroutine runs under ``operation_timeout_seconds``; expiry raises
    ``OperationTimeoutError``. Store reads that need no ledger access are
    plain synchronous methods.
    """

    def __init__(
        self,
        client: EndpointClient,
        ledger: LedgerReader,
        store: PoolStore,
        discovery: PairDiscovery,
        estimator: RebalanceEstimator,
        executor: RebalanceExecutor,
        monitor: TransactionMonitor,
        factory_address: str | None = None,
        rebalancer_address: str | None = None,
        operation_timeout_seconds: float | None = 120.0,
        default_slippage_tolerance: float = 0.5,
    ):
        self.client = client
        self.ledger = ledger
        self.store = store
        self.discovery = discovery
        self.estimator = estimator
        self.executor = executor
        self.monitor = monitor
        self.factory_address = factory_address
        self.rebalancer_address = rebalancer_address
        self.operation_timeout_seconds = operation_timeout_seconds
        self.default_slippage_tolerance = default_slippage_tolerance

    async def _bounded(self, name: str, awaitable: Awaitable[T]) -> T:
        timeout_s = self.operation_timeout_seconds
        if timeout_s is None or timeout_s <= 0:
            return await awaitable
        try:
            async with asyncio.timeout(timeout_s):
                return await awaitable
        except TimeoutError as exc:
            logger.error("%s exceeded operation timeout of %ss", name, timeout_s)
            raise OperationTimeoutError(name, timeout_s) from exc

    # --- discovery and pool reads ---

    async def discover_pairs(self, factory_address: str | None = None) -> DiscoveryReport:
        factory = factory_address or self.factory_address
        if not factory:
            raise ValidationError("factory_address must be configured")
        factory = validate_address(factory)
        if is_zero_address(factory):
            raise ValidationError("factory_address must be configured")
        return await self._bounded(
            "discover_pairs", self.discovery.discover_with_report(factory)
        )

    async def refresh_pool(self, address: str) -> Pool:
        address = validate_address(address)
        return await self._bounded("refresh_pool", self.discovery.refresh_pool(address))

    def get_pool(self, address: str) -> Pool:
        pool = self.store.get_pool(address)
        if pool is None:
            raise PoolNotFoundError(address)
        return pool

    def list_pools(
        self,
        query: str | None = None,
        imbalanced_only: bool = False,
        sort_by: str | None = None,
        limit: int | None = None,
    ) -> list[Pool]:
        """Store-only pool listing with optional search, filter and ordering."""
        if sort_by == "tvl":
            pools = self.store.get_pools_by_tvl(len(self.store.get_all_pools()))
        elif sort_by == "volume":
            pools = self.store.get_pools_by_volume(len(self.store.get_all_pools()))
        elif sort_by is None:
            pools = self.store.get_all_pools()
        else:
            raise ValidationError(f"Unsupported sort key: {sort_by}")

        if query:
            matching = {p.address.lower() for p in self.store.search_pools(query)}
            pools = [p for p in pools if p.address.lower() in matching]
        if imbalanced_only:
            pools = [p for p in pools if p.needs_rebalancing]
        return pools[:limit] if limit else pools

    def get_pool_metrics(
        self, address: str, timeframe: Timeframe | str = Timeframe.DAY
    ) -> PoolMetricsView:
        try:
            timeframe = Timeframe(timeframe)
        except ValueError as exc:
            raise ValidationError(f"Unsupported timeframe: {timeframe}") from exc
        metrics = self.store.get_pool_metrics(address)
        if metrics is None:
            raise PoolNotFoundError(address)

        now = time.time()
        start = timeframe.window_start(now)
        metrics.historical_data = [
            s for s in metrics.historical_data if s.timestamp >= start
        ]
        metrics.rebalance_history = [
            e for e in metrics.rebalance_history if e.timestamp >= start
        ]
        return PoolMetricsView(
            metrics=metrics,
            analytics=self.store.get_pool_analytics(address, timeframe, now=now),
        )

    def get_dashboard_stats(self) -> DashboardStats:
        return self.store.get_dashboard_stats()

    def get_recent_activity(
        self, limit: int = 10, pool_address: str | None = None
    ) -> list[RebalanceEvent]:
        return self.store.get_recent_activity(limit, pool_address)

    def set_target_ratio(self, target_ratio: float, address: str | None = None) -> int:
        """Set the target of one pool, or of every tracked pool when omitted.

        Returns the number of pools updated.
        """
        if target_ratio <= 0:
            raise ValidationError(f"Invalid target ratio: {target_ratio}")
        if address is not None:
            if self.store.update_pool(address, target_ratio=target_ratio) is None:
                raise PoolNotFoundError(address)
            return 1

        updated = 0
        for pool in self.store.get_all_pools():
            if self.store.update_pool(pool.address, target_ratio=target_ratio):
                updated += 1
        logger.info("Target ratio %s applied to %d pools", target_ratio, updated)
        return updated

    # --- estimation and execution ---

    async def estimate_rebalance(
        self,
        address: str,
        target_ratio: float | None = None,
        slippage: float | None = None,
    ) -> RebalanceEstimate:
        slippage = self.default_slippage_tolerance if slippage is None else slippage
        return await self._bounded(
            "estimate_rebalance",
            self.estimator.estimate(address, target_ratio, slippage),
        )

    def quick_estimate(
        self, address: str, target_ratio: float | None = None
    ) -> QuickEstimate:
        return self.estimator.quick_estimate(address, target_ratio)

    async def submit_rebalance(
        self,
        address: str,
        target_ratio: float | None = None,
        max_gas_price: int | None = None,
        force: bool = False,
        slippage: float | None = None,
    ) -> SubmittedRebalance:
        slippage = self.default_slippage_tolerance if slippage is None else slippage
        return await self._bounded(
            "submit_rebalance",
            self.executor.submit(
                address,
                target_ratio=target_ratio,
                max_gas_price=max_gas_price,
                force=force,
                slippage=slippage,
            ),
        )

    async def get_transaction_status(
        self, tx_hash: str, refresh: bool = False
    ) -> TransactionStatus:
        """Return the recorded event; with ``refresh`` re-check a pending receipt."""
        event = self.store.get_rebalance_event(tx_hash)
        if event is None:
            raise TransactionNotFoundError(tx_hash)
        if not refresh or event.status.is_terminal:
            return TransactionStatus(event=event)

        receipt = await self._bounded(
            "get_transaction_status", self.ledger.get_receipt(tx_hash)
        )
        if receipt is None:
            return TransactionStatus(event=event)

        await self._bounded(
            "get_transaction_status",
            self.monitor.apply_receipt(tx_hash, event.pool_address, receipt),
        )
        return TransactionStatus(
            event=self.store.get_rebalance_event(tx_hash) or event,
            block_number=receipt.get("blockNumber"),
        )

    def cancel_transaction(self, tx_hash: str) -> RebalanceEvent:
        """Stop tracking a pending transaction locally by marking it failed.

        Nothing is sent to the ledger; a transaction that still gets mined is
        not reflected in the event.
        """
        event = self.store.get_rebalance_event(tx_hash)
        if event is None:
            raise TransactionNotFoundError(tx_hash)
        if event.status.is_terminal:
            raise ValidationError(
                f"Transaction {tx_hash} is already {event.status.value}"
            )
        self.store.update_rebalance_event(tx_hash, status=RebalanceStatus.FAILED)
        logger.info("Cancelled tracking of %s", tx_hash)
        return self.store.get_rebalance_event(tx_hash) or event

    async def lookup_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        """Read a receipt straight from the ledger, tracked or not."""
        receipt = await self._bounded("lookup_receipt", self.ledger.get_receipt(tx_hash))
        if receipt is None:
            return None
        status = (
            RebalanceStatus.CONFIRMED
            if receipt.get("status") == 1
            else RebalanceStatus.FAILED
        )
        return {
            "tx_hash": tx_hash,
            "status": status.value,
            "block_number": receipt.get("blockNumber"),
            "gas_used": receipt.get("gasUsed"),
        }

    # --- event feed ---

    def event_source(
        self, poll_interval_seconds: float = 5.0, start_block: int | None = None
    ) -> LogPollingSource:
        return LogPollingSource(
            self.ledger,
            factory_address=self.factory_address,
            rebalancer_address=self.rebalancer_address,
            poll_interval_seconds=poll_interval_seconds,
            start_block=start_block,
        )

    async def follow_events(
        self,
        poll_interval_seconds: float = 5.0,
        start_block: int | None = None,
        limit: int | None = None,
    ) -> int:
        """Apply ledger events to the store until cancelled or ``limit`` is hit."""
        consumer = PoolEventConsumer(self.discovery, self.store)
        return await consumer.run(
            self.event_source(poll_interval_seconds, start_block), limit=limit
        )

    # --- lifecycle ---

    async def close(self, wait_for_monitors: bool = False) -> None:
        if wait_for_monitors:
            await self.monitor.drain()
        else:
            await self.monitor.shutdown()
        await self.client.close()
