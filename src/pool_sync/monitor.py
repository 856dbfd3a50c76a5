"""Background confirmation tracking for submitted rebalance transactions."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import backoff

from .errors import EndpointsExhaustedError
from .models import HistoricalSample, RebalanceStatus, ratio_of
from .rpc.ledger import LedgerReader
from .store import PoolStore

logger = logging.getLogger(__name__)

RECEIPT_SUCCESS = 1


class TransactionMonitor:
    """Runs one supervised task per submitted transaction.

    Each task resolves its event to ``confirmed`` or ``failed`` exactly once.
    Errors while observing the transaction resolve it to ``failed``; they are
    logged and never propagate to the submitter.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        store: PoolStore,
        timeout_seconds: float = 600.0,
        poll_interval_seconds: float = 2.0,
    ):
        self.ledger = ledger
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._tasks: dict[str, asyncio.Task[RebalanceStatus]] = {}

    @property
    def active(self) -> list[str]:
        return [tx for tx, task in self._tasks.items() if not task.done()]

    def start(self, tx_hash: str, pool_address: str) -> asyncio.Task[RebalanceStatus]:
        """Spawn the watcher for ``tx_hash``; idempotent per hash."""
        existing = self._tasks.get(tx_hash)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self.watch(tx_hash, pool_address), name=f"monitor-{tx_hash}"
        )
        self._tasks[tx_hash] = task
        task.add_done_callback(self._on_done)
        logger.info("Monitoring transaction %s for pool %s", tx_hash, pool_address)
        return task

    def _on_done(self, task: asyncio.Task[RebalanceStatus]) -> None:
        tx_hash = task.get_name().removeprefix("monitor-")
        self._tasks.pop(tx_hash, None)
        if task.cancelled():
            logger.warning("Monitor for %s cancelled", tx_hash)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Monitor for %s crashed: %s", tx_hash, exc, exc_info=exc)

    async def watch(self, tx_hash: str, pool_address: str) -> RebalanceStatus:
        """Wait for the receipt and apply the terminal update."""
        try:
            async with asyncio.timeout(self.timeout_seconds):
                receipt = await self.ledger.wait_for_receipt(
                    tx_hash,
                    timeout=self.timeout_seconds,
                    poll_latency=self.poll_interval_seconds,
                )
                return await self.apply_receipt(tx_hash, pool_address, receipt)
        except asyncio.CancelledError:
            self._mark_failed(tx_hash, "monitor cancelled")
            raise
        except Exception as exc:
            logger.error("Error monitoring transaction %s: %s", tx_hash, exc)
            self._mark_failed(tx_hash, str(exc))
            return RebalanceStatus.FAILED
        finally:
            # guarantees no event is left pending once its monitor has ended
            event = self.store.get_rebalance_event(tx_hash)
            if event is not None and event.status is RebalanceStatus.PENDING:
                self._mark_failed(tx_hash, "monitor ended without a decision")

    async def apply_receipt(
        self, tx_hash: str, pool_address: str, receipt: Any
    ) -> RebalanceStatus:
        """Apply a mined receipt to the store and return the terminal status.

        Only the caller that moves the event out of ``pending`` writes the
        pool. A second caller for the same receipt, such as a status refresh
        overlapping the monitor, gets the recorded status back and changes
        nothing.
        """
        gas_used = int(receipt.get("gasUsed", 0))
        if receipt.get("status") != RECEIPT_SUCCESS:
            if self.store.update_rebalance_event(
                tx_hash, status=RebalanceStatus.FAILED, gas_used=gas_used
            ):
                logger.error("Transaction %s reverted", tx_hash)
            return self._recorded_status(tx_hash, RebalanceStatus.FAILED)

        recorded = self._recorded_status(tx_hash, RebalanceStatus.PENDING)
        if recorded.is_terminal:
            return recorded

        reserve_a, reserve_b = await self._read_reserves(pool_address)
        new_ratio = float(ratio_of(reserve_a, reserve_b))
        now = int(time.time())

        # no await between the claim and the pool writes
        if not self.store.update_rebalance_event(
            tx_hash,
            status=RebalanceStatus.CONFIRMED,
            gas_used=gas_used,
            to_ratio=new_ratio,
        ):
            logger.debug("Receipt for %s already applied", tx_hash)
            return self._recorded_status(tx_hash, RebalanceStatus.CONFIRMED)
        logger.info(
            "Transaction %s confirmed in block %s", tx_hash, receipt.get("blockNumber")
        )

        pool = self.store.get_pool(pool_address)
        if pool is not None:
            pool = self.store.update_pool(
                pool_address,
                reserve_a=reserve_a,
                reserve_b=reserve_b,
                last_rebalance=now,
                rebalance_count=pool.rebalance_count + 1,
            )
        if pool is not None:
            self.store.add_historical_sample(
                pool_address,
                HistoricalSample(
                    timestamp=now,
                    ratio=new_ratio,
                    tvl=pool.tvl,
                    volume=pool.volume_24h or 0.0,
                    fees=pool.fees_24h,
                ),
            )
        return RebalanceStatus.CONFIRMED

    def _recorded_status(
        self, tx_hash: str, default: RebalanceStatus
    ) -> RebalanceStatus:
        event = self.store.get_rebalance_event(tx_hash)
        return event.status if event is not None else default

    @backoff.on_exception(backoff.expo, EndpointsExhaustedError, max_tries=3)
    async def _read_reserves(self, pool_address: str) -> tuple[int, int]:
        return await self.ledger.reserves(pool_address)

    def _mark_failed(self, tx_hash: str, reason: str) -> None:
        if self.store.update_rebalance_event(tx_hash, status=RebalanceStatus.FAILED):
            logger.warning("Rebalance %s marked failed: %s", tx_hash, reason)

    async def drain(self) -> None:
        """Wait for every running monitor to reach its terminal state."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running monitors; their events resolve to ``failed``."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
