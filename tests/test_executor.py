"""Tests for rebalance gating and submission."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from pool_sync.errors import (
    CooldownActiveError,
    PoolNotFoundError,
    RebalanceRejectedError,
    ValidationError,
)
from pool_sync.executor import LocalAccountSigner, RebalanceExecutor
from pool_sync.models import Pool, RebalanceStatus, TokenInfo
from pool_sync.monitor import TransactionMonitor
from pool_sync.rpc.ledger import LedgerReader
from pool_sync.store import PoolStore

POOL = "0x" + "11" * 20
REBALANCER = "0x" + "cc" * 20
SENDER = "0x" + "5e" * 20
TX = "0x" + "ab" * 32
PRIVATE_KEY = "0x" + "4c" * 32


def create_mock_ledger(reserves=(120, 100), last_rebalance=0, cooldown=3600, gas_price=10):
    ledger = MagicMock(spec=LedgerReader)
    ledger.gas_price.return_value = gas_price
    ledger.last_rebalance.return_value = last_rebalance
    ledger.cooldown.return_value = cooldown
    ledger.reserves.return_value = reserves
    ledger.build_rebalance_transaction.return_value = {"to": REBALANCER, "data": "0x"}
    ledger.send_raw_transaction.return_value = TX
    return ledger


def create_signer():
    signer = MagicMock()
    signer.address = SENDER
    signer.sign.return_value = b"\x02signed"
    return signer


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
    return store


def create_executor(ledger=None, store=None, signer="default"):
    monitor = MagicMock(spec=TransactionMonitor)
    return RebalanceExecutor(
        ledger or create_mock_ledger(),
        store or create_store(),
        monitor,
        REBALANCER,
        signer=create_signer() if signer == "default" else signer,
    )


@pytest.mark.asyncio
async def test_submit_records_pending_event_and_starts_monitor():
    ledger = create_mock_ledger()
    store = create_store()
    executor = create_executor(ledger, store)

    result = await executor.submit(POOL, target_ratio=1.0)

    assert result.tx_hash == TX
    assert result.status is RebalanceStatus.PENDING
    assert result.estimated_confirmation >= int(time.time())

    event = store.get_rebalance_event(TX)
    assert event.status is RebalanceStatus.PENDING
    assert event.from_ratio == pytest.approx(1.2)
    assert event.swap_amount_0 == 12
    assert event.gas_price == 10
    assert store.get_pool(POOL).last_rebalance is not None

    ledger.build_rebalance_transaction.assert_awaited_once_with(
        REBALANCER, POOL, 10_000, sender=SENDER, gas_price=10
    )
    executor.signer.sign.assert_called_once()
    ledger.send_raw_transaction.assert_awaited_once_with(b"\x02signed")
    executor.monitor.start.assert_called_once_with(TX, POOL)


@pytest.mark.asyncio
async def test_cooldown_blocks_submission():
    ledger = create_mock_ledger(last_rebalance=int(time.time()), cooldown=3600)
    executor = create_executor(ledger)

    with pytest.raises(CooldownActiveError) as exc_info:
        await executor.submit(POOL)

    assert 0 < exc_info.value.seconds_remaining <= 3600
    ledger.send_raw_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_cooldown_boundary_is_still_active():
    now = int(time.time())
    ledger = create_mock_ledger(last_rebalance=now + 5, cooldown=0)

    with pytest.raises(CooldownActiveError):
        await create_executor(ledger).submit(POOL)


@pytest.mark.asyncio
async def test_force_skips_cooldown_and_balance_checks():
    ledger = create_mock_ledger(
        reserves=(100, 100), last_rebalance=int(time.time()), cooldown=3600
    )
    executor = create_executor(ledger)

    result = await executor.submit(POOL, force=True)

    assert result.tx_hash == TX
    ledger.last_rebalance.assert_not_awaited()


@pytest.mark.asyncio
async def test_gas_ceiling_applies_even_when_forced():
    ledger = create_mock_ledger(gas_price=100)

    with pytest.raises(RebalanceRejectedError, match="Gas price too high"):
        await create_executor(ledger).submit(POOL, max_gas_price=50, force=True)

    ledger.reserves.assert_not_awaited()


@pytest.mark.asyncio
async def test_balanced_pool_rejected():
    ledger = create_mock_ledger(reserves=(1005, 1000))

    with pytest.raises(RebalanceRejectedError, match="already balanced"):
        await create_executor(ledger).submit(POOL)

    ledger.build_rebalance_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_signer_rejected_before_ledger_calls():
    ledger = create_mock_ledger()

    with pytest.raises(ValidationError, match="signing key"):
        await create_executor(ledger, signer=None).submit(POOL)

    ledger.gas_price.assert_not_awaited()


@pytest.mark.asyncio
async def test_zero_target_rejected_not_defaulted():
    ledger = create_mock_ledger()

    with pytest.raises(ValidationError, match="target ratio"):
        await create_executor(ledger).submit(POOL, target_ratio=0)

    ledger.gas_price.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_pool_rejected():
    with pytest.raises(PoolNotFoundError):
        await create_executor(store=PoolStore()).submit(POOL)


def test_local_signer_produces_raw_transaction():
    signer = LocalAccountSigner(PRIVATE_KEY)

    raw = signer.sign(
        {
            "to": "0x" + "22" * 20,
            "value": 0,
            "gas": 21_000,
            "gasPrice": 1_000_000_000,
            "nonce": 0,
            "chainId": 31,
        }
    )

    assert signer.address.startswith("0x")
    assert isinstance(raw, bytes)
    assert len(raw) > 0
