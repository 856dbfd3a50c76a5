"""Pre-submission gating and submission of rebalance transactions."""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from eth_account import Account

from .constants import BALANCED_TOLERANCE, ESTIMATED_CONFIRMATION_SECONDS
from .errors import (
    CooldownActiveError,
    PoolNotFoundError,
    RebalanceRejectedError,
    ValidationError,
)
from .estimator import compute_swap_amounts, target_ratio_bps
from .models import (
    Pool,
    RebalanceEvent,
    RebalanceStatus,
    SubmittedRebalance,
    ratio_of,
)
from .monitor import TransactionMonitor
from .rpc.ledger import LedgerReader
from .store import PoolStore

logger = logging.getLogger(__name__)


class TransactionSigner(Protocol):
    @property
    def address(self) -> str: ...

    def sign(self, transaction: dict[str, Any]) -> bytes: ...


class LocalAccountSigner:
    """Signs transactions with a locally held private key."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, transaction: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)


class RebalanceExecutor:
    """Validates a rebalance request against on-chain limits and submits it.

    Gates, in order: gas price ceiling, controller cooldown, already
    balanced. ``force`` skips the cooldown and balance gates but never the
    gas ceiling. A successful submission records a pending event and hands
    the hash to the monitor.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        store: PoolStore,
        monitor: TransactionMonitor,
        rebalancer_address: str,
        signer: TransactionSigner | None = None,
    ):
        self.ledger = ledger
        self.store = store
        self.monitor = monitor
        self.rebalancer_address = rebalancer_address
        self.signer = signer

    async def submit(
        self,
        address: str,
        target_ratio: float | None = None,
        max_gas_price: int | None = None,
        force: bool = False,
        slippage: float = 0.5,
    ) -> SubmittedRebalance:
        """Submit ``rebalance(pair, targetRatioBps)`` for a tracked pool.

        Raises:
            PoolNotFoundError: If the pool is not tracked.
            ValidationError: If no signer is configured or inputs are invalid.
            RebalanceRejectedError: If a gate refuses the request.
        """
        pool = self.store.get_pool(address)
        if pool is None:
            raise PoolNotFoundError(address)
        if self.signer is None:
            raise ValidationError("No signing key configured; cannot submit rebalance")

        target = pool.target_ratio if target_ratio is None else target_ratio
        if target <= 0:
            raise ValidationError(f"Invalid target ratio: {target}")

        gas_price = await self.ledger.gas_price()
        if max_gas_price is not None and gas_price > max_gas_price:
            raise RebalanceRejectedError(
                f"Gas price too high: {gas_price} > {max_gas_price}"
            )

        if not force:
            await self._check_cooldown(pool)

        reserve_a, reserve_b = await self.ledger.reserves(pool.address)
        current_ratio = float(ratio_of(reserve_a, reserve_b))
        if not force and abs(current_ratio - target) < BALANCED_TOLERANCE:
            raise RebalanceRejectedError(
                f"Pool already balanced (ratio {current_ratio:.6f}, target {target})"
            )

        bps = target_ratio_bps(target)
        tx = await self.ledger.build_rebalance_transaction(
            self.rebalancer_address,
            pool.address,
            bps,
            sender=self.signer.address,
            gas_price=gas_price,
        )
        tx_hash = await self.ledger.send_raw_transaction(self.signer.sign(tx))
        logger.info(
            "Submitted rebalance %s for %s (ratio %.6f -> %s, %d bps)",
            tx_hash,
            pool.address,
            current_ratio,
            target,
            bps,
        )

        now = int(time.time())
        swap_0, swap_1 = compute_swap_amounts(reserve_a, reserve_b, target)
        self.store.add_rebalance_event(
            RebalanceEvent(
                tx_hash=tx_hash,
                pool_address=pool.address,
                timestamp=now,
                from_ratio=current_ratio,
                to_ratio=target,
                target_ratio=target,
                gas_price=gas_price,
                status=RebalanceStatus.PENDING,
                swap_amount_0=swap_0,
                swap_amount_1=swap_1,
                slippage=slippage,
            )
        )
        self.store.update_pool(pool.address, last_rebalance=now)
        self.monitor.start(tx_hash, pool.address)

        return SubmittedRebalance(
            tx_hash=tx_hash,
            status=RebalanceStatus.PENDING,
            estimated_confirmation=now + ESTIMATED_CONFIRMATION_SECONDS,
        )

    async def _check_cooldown(self, pool: Pool) -> None:
        last = await self.ledger.last_rebalance(self.rebalancer_address, pool.address)
        cooldown = await self.ledger.cooldown(self.rebalancer_address)
        now = int(time.time())
        if now <= last + cooldown:
            raise CooldownActiveError(last + cooldown - now)
