"""Tests for background transaction monitoring."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from pool_sync.errors import EndpointsExhaustedError, RetryableError
from pool_sync.models import Pool, RebalanceEvent, RebalanceStatus, TokenInfo
from pool_sync.monitor import TransactionMonitor
from pool_sync.rpc.ledger import LedgerReader
from pool_sync.store import PoolStore

POOL = "0x" + "11" * 20
TX = "0x" + "ee" * 32


def create_store() -> PoolStore:
    store = PoolStore()
    store.add_pool(
        Pool(
            address=POOL,
            token_a=TokenInfo("0xA", "A"),
            token_b=TokenInfo("0xB", "B"),
            reserve_a=120,
            reserve_b=100,
            total_supply=1000,
        )
    )
    store.add_rebalance_event(
        RebalanceEvent(
            tx_hash=TX,
            pool_address=POOL,
            timestamp=1,
            from_ratio=1.2,
            to_ratio=1.0,
            target_ratio=1.0,
        )
    )
    return store


def create_mock_ledger(receipt=None, reserves=(110, 100)):
    ledger = MagicMock(spec=LedgerReader)
    ledger.wait_for_receipt.return_value = receipt
    ledger.reserves.return_value = reserves
    return ledger


@pytest.mark.asyncio
async def test_successful_receipt_confirms_and_updates_pool():
    store = create_store()
    ledger = create_mock_ledger({"status": 1, "gasUsed": 21_000, "blockNumber": 7})
    monitor = TransactionMonitor(ledger, store, timeout_seconds=5)

    status = await monitor.start(TX, POOL)

    assert status is RebalanceStatus.CONFIRMED
    pool = store.get_pool(POOL)
    assert (pool.reserve_a, pool.reserve_b) == (110, 100)
    assert pool.rebalance_count == 1
    assert pool.last_rebalance is not None

    event = store.get_rebalance_event(TX)
    assert event.status is RebalanceStatus.CONFIRMED
    assert event.gas_used == 21_000
    assert event.to_ratio == pytest.approx(1.1)
    assert len(store.get_pool_metrics(POOL).historical_data) == 1


@pytest.mark.asyncio
async def test_reverted_receipt_fails_without_touching_reserves():
    store = create_store()
    ledger = create_mock_ledger({"status": 0, "gasUsed": 30_000})
    monitor = TransactionMonitor(ledger, store)

    status = await monitor.start(TX, POOL)

    assert status is RebalanceStatus.FAILED
    pool = store.get_pool(POOL)
    assert (pool.reserve_a, pool.reserve_b) == (120, 100)
    assert pool.rebalance_count == 0
    assert store.get_rebalance_event(TX).status is RebalanceStatus.FAILED
    ledger.reserves.assert_not_awaited()


@pytest.mark.asyncio
async def test_rpc_failure_marks_event_failed():
    store = create_store()
    ledger = create_mock_ledger()
    ledger.wait_for_receipt.side_effect = EndpointsExhaustedError(
        RetryableError("connection refused"), 3
    )
    monitor = TransactionMonitor(ledger, store)

    status = await monitor.start(TX, POOL)

    assert status is RebalanceStatus.FAILED
    assert store.get_rebalance_event(TX).status is RebalanceStatus.FAILED


@pytest.mark.asyncio
async def test_monitor_timeout_marks_event_failed():
    store = create_store()
    ledger = create_mock_ledger()

    async def never(*args, **kwargs):
        await asyncio.sleep(10)

    ledger.wait_for_receipt.side_effect = never
    monitor = TransactionMonitor(ledger, store, timeout_seconds=0.05)

    assert await monitor.start(TX, POOL) is RebalanceStatus.FAILED
    assert store.get_rebalance_event(TX).status is RebalanceStatus.FAILED


@pytest.mark.asyncio
async def test_shutdown_cancels_and_fails_pending_events():
    store = create_store()
    ledger = create_mock_ledger()
    started = asyncio.Event()

    async def blocked(*args, **kwargs):
        started.set()
        await asyncio.sleep(10)

    ledger.wait_for_receipt.side_effect = blocked
    monitor = TransactionMonitor(ledger, store)
    monitor.start(TX, POOL)
    await started.wait()

    await monitor.shutdown()

    assert store.get_rebalance_event(TX).status is RebalanceStatus.FAILED
    assert monitor.active == []


@pytest.mark.asyncio
async def test_start_is_idempotent_per_hash():
    store = create_store()
    ledger = create_mock_ledger({"status": 1, "gasUsed": 1})
    monitor = TransactionMonitor(ledger, store)

    first = monitor.start(TX, POOL)
    second = monitor.start(TX, POOL)
    await monitor.drain()

    assert first is second
    ledger.wait_for_receipt.assert_awaited_once()


@pytest.mark.asyncio
async def test_terminal_event_not_overwritten():
    store = create_store()
    store.update_rebalance_event(TX, status=RebalanceStatus.FAILED)
    ledger = create_mock_ledger({"status": 1, "gasUsed": 1})
    monitor = TransactionMonitor(ledger, store)

    await monitor.start(TX, POOL)

    assert store.get_rebalance_event(TX).status is RebalanceStatus.FAILED


@pytest.mark.asyncio
async def test_receipt_applied_once_when_delivered_twice():
    store = create_store()
    ledger = create_mock_ledger()
    monitor = TransactionMonitor(ledger, store)
    receipt = {"status": 1, "gasUsed": 21_000, "blockNumber": 7}

    first = await monitor.apply_receipt(TX, POOL, receipt)
    second = await monitor.apply_receipt(TX, POOL, receipt)

    assert first is second is RebalanceStatus.CONFIRMED
    assert store.get_pool(POOL).rebalance_count == 1
    assert len(store.get_pool_metrics(POOL).historical_data) == 1
    ledger.reserves.assert_awaited_once()


@pytest.mark.asyncio
async def test_overlapping_receipts_update_pool_once():
    store = create_store()
    ledger = create_mock_ledger()

    async def slow_reserves(address):
        await asyncio.sleep(0.05)
        return (110, 100)

    ledger.reserves.side_effect = slow_reserves
    monitor = TransactionMonitor(ledger, store)
    receipt = {"status": 1, "gasUsed": 21_000, "blockNumber": 7}

    results = await asyncio.gather(
        monitor.apply_receipt(TX, POOL, receipt),
        monitor.apply_receipt(TX, POOL, receipt),
    )

    assert results == [RebalanceStatus.CONFIRMED, RebalanceStatus.CONFIRMED]
    pool = store.get_pool(POOL)
    assert pool.rebalance_count == 1
    assert len(store.get_pool_metrics(POOL).historical_data) == 1
