"""Tests for the service facade."""

from __future__ import annotations

import asyncio
import logging
import time
from unittest.mock import MagicMock

import pytest

from pool_sync.discovery import PairDiscovery, ProbeStop
from pool_sync.errors import (
    InvalidAddressError,
    OperationTimeoutError,
    PoolNotFoundError,
    TransactionNotFoundError,
    ValidationError,
    error_payload,
)
from pool_sync.estimator import RebalanceEstimator
from pool_sync.executor import RebalanceExecutor
from pool_sync.models import (
    HistoricalSample,
    Pool,
    RebalanceEvent,
    RebalanceStatus,
    TokenInfo,
)
from pool_sync.monitor import TransactionMonitor
from pool_sync.rpc.client import EndpointClient
from pool_sync.rpc.ledger import LedgerReader
from pool_sync.service import PoolSyncService
from pool_sync.settings import SyncSettings
from pool_sync.state import AppState, build_service
from pool_sync.store import PoolStore

POOL_A = "0x" + "11" * 20
POOL_B = "0x" + "22" * 20
TX = "0x" + "ee" * 32


def make_pool(address: str, reserve_a: int, reserve_b: int) -> Pool:
    return Pool(
        address=address,
        token_a=TokenInfo("0xA", "RBTC"),
        token_b=TokenInfo("0xB", "DOC"),
        reserve_a=reserve_a,
        reserve_b=reserve_b,
        total_supply=1000,
    )


def create_service(store: PoolStore | None = None, timeout: float | None = 1.0):
    store = store or PoolStore()
    ledger = MagicMock(spec=LedgerReader)
    client = MagicMock(spec=EndpointClient)
    monitor = TransactionMonitor(ledger, store)
    return PoolSyncService(
        client=client,
        ledger=ledger,
        store=store,
        discovery=MagicMock(spec=PairDiscovery),
        estimator=MagicMock(spec=RebalanceEstimator),
        executor=MagicMock(spec=RebalanceExecutor),
        monitor=monitor,
        factory_address="0x" + "fa" * 20,
        operation_timeout_seconds=timeout,
    )


def add_pending_event(store: PoolStore) -> None:
    store.add_rebalance_event(
        RebalanceEvent(
            tx_hash=TX,
            pool_address=POOL_A,
            timestamp=int(time.time()),
            from_ratio=1.2,
            to_ratio=1.0,
            target_ratio=1.0,
        )
    )


@pytest.mark.asyncio
async def test_slow_operation_raises_operation_timeout():
    service = create_service(timeout=0.05)

    async def slow(*args, **kwargs):
        await asyncio.sleep(1)

    service.estimator.estimate.side_effect = slow

    with pytest.raises(OperationTimeoutError) as exc_info:
        await service.estimate_rebalance(POOL_A)

    assert error_payload(exc_info.value) == {
        "category": "network",
        "retryable": True,
        "message": str(exc_info.value),
    }


@pytest.mark.asyncio
async def test_estimate_uses_default_slippage():
    service = create_service()
    service.estimator.estimate.return_value = "estimate"

    assert await service.estimate_rebalance(POOL_A, 1.1) == "estimate"
    service.estimator.estimate.assert_awaited_once_with(POOL_A, 1.1, 0.5)


@pytest.mark.asyncio
async def test_discover_requires_factory():
    service = create_service()
    service.factory_address = "0x" + "00" * 20

    with pytest.raises(ValidationError):
        await service.discover_pairs()

    service.discovery.discover_with_report.assert_not_awaited()


@pytest.mark.asyncio
async def test_discover_rejects_malformed_factory():
    service = create_service()

    with pytest.raises(InvalidAddressError) as exc_info:
        await service.discover_pairs("not-an-address")

    assert error_payload(exc_info.value)["category"] == "validation"
    service.discovery.discover_with_report.assert_not_awaited()


@pytest.mark.asyncio
async def test_discovery_budget_ends_before_operation_timeout():
    service = create_service(timeout=0.5)
    service.ledger.get_code.return_value = b"\x60\x80"

    async def slow_all_pairs(factory, index):
        await asyncio.sleep(0.03)
        return "0x" + f"{0x100 + index:040x}"

    service.ledger.all_pairs.side_effect = slow_all_pairs
    service.ledger.token0.return_value = "0x" + "0a" * 20
    service.ledger.token1.return_value = "0x" + "0b" * 20
    service.ledger.reserves.return_value = (120, 100)
    service.ledger.total_supply.return_value = 1000
    service.ledger.symbol.return_value = "TKN"
    service.discovery = PairDiscovery(
        service.ledger, service.store, time_budget_seconds=0.1
    )

    report = await service.discover_pairs()

    assert report.stopped_by is ProbeStop.TIME_BUDGET
    assert report.pools
    assert len(service.store.get_all_pools()) == len(report.pools)


def test_get_pool_unknown():
    with pytest.raises(PoolNotFoundError) as exc_info:
        create_service().get_pool(POOL_A)

    assert error_payload(exc_info.value)["category"] == "validation"


def test_list_pools_filters():
    store = PoolStore()
    store.add_pool(make_pool(POOL_A, 100, 100))
    store.add_pool(make_pool(POOL_B, 300 * 10**18, 100 * 10**18))
    service = create_service(store)

    assert [p.address for p in service.list_pools(imbalanced_only=True)] == [POOL_B]
    assert [p.address for p in service.list_pools(sort_by="tvl", limit=1)] == [POOL_B]
    assert len(service.list_pools(query="rbtc")) == 2
    with pytest.raises(ValidationError):
        service.list_pools(sort_by="apy")


def test_pool_metrics_filtered_to_timeframe():
    store = PoolStore()
    store.add_pool(make_pool(POOL_A, 100, 100))
    now = int(time.time())
    store.add_historical_sample(POOL_A, HistoricalSample(now - 3 * 86400, 1.0, 10.0))
    store.add_historical_sample(POOL_A, HistoricalSample(now - 60, 1.0, 20.0))
    service = create_service(store)

    view = service.get_pool_metrics(POOL_A, "24h")

    assert len(view.metrics.historical_data) == 1
    assert view.analytics.data_points == 1
    assert len(service.get_pool_metrics(POOL_A, "7d").metrics.historical_data) == 2
    with pytest.raises(ValidationError):
        service.get_pool_metrics(POOL_A, "2y")


def test_set_target_ratio_single_and_bulk():
    store = PoolStore()
    store.add_pool(make_pool(POOL_A, 100, 100))
    store.add_pool(make_pool(POOL_B, 100, 100))
    service = create_service(store)

    assert service.set_target_ratio(1.5, POOL_A) == 1
    assert store.get_pool(POOL_A).target_ratio == 1.5
    assert store.get_pool(POOL_A).needs_rebalancing is True

    assert service.set_target_ratio(2.0) == 2
    assert {p.target_ratio for p in store.get_all_pools()} == {2.0}

    with pytest.raises(ValidationError):
        service.set_target_ratio(0)
    with pytest.raises(PoolNotFoundError):
        service.set_target_ratio(1.0, "0x" + "99" * 20)


@pytest.mark.asyncio
async def test_transaction_status_refresh_applies_receipt():
    store = PoolStore()
    store.add_pool(make_pool(POOL_A, 120, 100))
    add_pending_event(store)
    service = create_service(store)
    service.ledger.get_receipt.return_value = {"status": 1, "gasUsed": 5, "blockNumber": 9}
    service.ledger.reserves.return_value = (100, 100)

    status = await service.get_transaction_status(TX, refresh=True)

    assert status.event.status is RebalanceStatus.CONFIRMED
    assert status.block_number == 9
    assert store.get_pool(POOL_A).reserve_a == 100


@pytest.mark.asyncio
async def test_status_refresh_during_monitor_applies_receipt_once():
    store = PoolStore()
    store.add_pool(make_pool(POOL_A, 120, 100))
    add_pending_event(store)
    service = create_service(store)
    receipt = {"status": 1, "gasUsed": 5, "blockNumber": 9}
    service.ledger.wait_for_receipt.return_value = receipt
    service.ledger.get_receipt.return_value = receipt

    async def slow_reserves(address):
        await asyncio.sleep(0.05)
        return (100, 100)

    service.ledger.reserves.side_effect = slow_reserves
    service.monitor.start(TX, POOL_A)

    status = await service.get_transaction_status(TX, refresh=True)
    await service.monitor.drain()

    assert status.event.status is RebalanceStatus.CONFIRMED
    pool = store.get_pool(POOL_A)
    assert pool.rebalance_count == 1
    assert len(store.get_pool_metrics(POOL_A).historical_data) == 1


@pytest.mark.asyncio
async def test_transaction_status_without_receipt_stays_pending():
    store = PoolStore()
    add_pending_event(store)
    service = create_service(store)
    service.ledger.get_receipt.return_value = None

    status = await service.get_transaction_status(TX, refresh=True)

    assert status.event.status is RebalanceStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_transaction_status():
    with pytest.raises(TransactionNotFoundError):
        await create_service().get_transaction_status(TX)


def test_cancel_transaction_marks_failed_once():
    store = PoolStore()
    add_pending_event(store)
    service = create_service(store)

    assert service.cancel_transaction(TX).status is RebalanceStatus.FAILED
    with pytest.raises(ValidationError):
        service.cancel_transaction(TX)


@pytest.mark.asyncio
async def test_lookup_receipt():
    service = create_service()
    service.ledger.get_receipt.return_value = {"status": 0, "blockNumber": 3, "gasUsed": 7}

    result = await service.lookup_receipt(TX)

    assert result["status"] == "failed"
    assert result["block_number"] == 3


@pytest.mark.asyncio
async def test_close_shuts_down_monitors_and_client():
    service = create_service()
    service.monitor = MagicMock(spec=TransactionMonitor)

    await service.close()

    service.monitor.shutdown.assert_awaited_once()
    service.client.close.assert_awaited_once()


def test_build_service_wires_settings(monkeypatch):
    monkeypatch.delenv("POOL_SYNC_PRIVATE_KEY", raising=False)
    settings = SyncSettings(
        rpc_endpoints=["https://a", "https://b"],
        max_retries=1,
        operation_timeout_seconds=9,
        discovery_timeout_seconds=5,
        private_key=None,
    )

    service = build_service(AppState(settings=settings, logger=logging.getLogger("test")))

    assert service.ledger.router.endpoints == ["https://a", "https://b"]
    assert service.ledger.router.max_retries == 1
    assert service.operation_timeout_seconds == 9
    assert service.executor.signer is None
