"""Rebalance sizing, gas and slippage estimation."""

from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal

from .constants import (
    BALANCED_TOLERANCE,
    BASIS_POINTS,
    DEFAULT_REBALANCE_GAS,
    NO_SWAP_TOLERANCE,
)
from .errors import PoolNotFoundError, PoolSyncError, ValidationError
from .models import Pool, QuickEstimate, RebalanceEstimate, ratio_of
from .rpc.ledger import LedgerReader
from .store import PoolStore

logger = logging.getLogger(__name__)

HALF = Decimal("0.5")


def to_decimal(value: float | int | Decimal) -> Decimal:
    # str() keeps 1.0 as Decimal("1.0") rather than its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def target_ratio_bps(target_ratio: float) -> int:
    """Encode a ratio as integer basis points, truncating."""
    return int((to_decimal(target_ratio) * BASIS_POINTS).to_integral_value(ROUND_DOWN))


def compute_swap_amounts(
    reserve_a: int, reserve_b: int, target_ratio: float
) -> tuple[int, int]:
    """Return ``(swap_amount_0, swap_amount_1)`` moving the pool toward target.

    Selling token A when the ratio is above target, token B when below; at
    most one side is non-zero. Within the no-swap tolerance both are zero.
    """
    current = ratio_of(reserve_a, reserve_b)
    target = to_decimal(target_ratio)
    if abs(current - target) <= to_decimal(NO_SWAP_TOLERANCE):
        return 0, 0
    if current > target:
        amount = (current - target) * reserve_a * HALF
        return int(amount.to_integral_value(ROUND_DOWN)), 0
    amount = (target - current) * reserve_b * HALF
    return 0, int(amount.to_integral_value(ROUND_DOWN))


def expected_output(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Constant-product output for ``amount_in`` (no fee)."""
    if amount_in <= 0 or reserve_in + amount_in <= 0:
        return 0
    return amount_in * reserve_out // (reserve_in + amount_in)


def minimum_received(expected_out: int, slippage_tolerance: float) -> int:
    multiplier = (Decimal(100) - to_decimal(slippage_tolerance)) / Decimal(100)
    return int((Decimal(expected_out) * multiplier).to_integral_value(ROUND_DOWN))


def price_impact(amount_in: int, reserve_in: int, reserve_out: int) -> float:
    """Swap size as a percentage of the input reserve.

    NOTE: ``reserve_out`` is accepted but unused, unlike ``expected_output``.
    Which formula is intended has not been confirmed; keep both as they are
    until it is.
    """
    if amount_in <= 0 or reserve_in <= 0:
        return 0.0
    return float(Decimal(amount_in * 100) / Decimal(reserve_in))


class RebalanceEstimator:
    """Estimates what a rebalance would swap and cost."""

    def __init__(
        self,
        ledger: LedgerReader,
        store: PoolStore,
        rebalancer_address: str,
        default_gas: int = DEFAULT_REBALANCE_GAS,
        sender: str | None = None,
    ):
        self.ledger = ledger
        self.store = store
        self.rebalancer_address = rebalancer_address
        self.default_gas = default_gas
        self.sender = sender

    def _require_pool(self, address: str) -> Pool:
        pool = self.store.get_pool(address)
        if pool is None:
            raise PoolNotFoundError(address)
        return pool

    @staticmethod
    def _validate_inputs(target_ratio: float, slippage_tolerance: float) -> None:
        if target_ratio <= 0:
            raise ValidationError(f"Invalid target ratio: {target_ratio}")
        if not 0 <= slippage_tolerance < 100:
            raise ValidationError(
                f"Slippage tolerance must be in [0, 100): {slippage_tolerance}"
            )

    async def estimate(
        self,
        address: str,
        target_ratio: float | None = None,
        slippage_tolerance: float = 0.5,
    ) -> RebalanceEstimate:
        """Estimate a rebalance of ``address`` toward ``target_ratio``.

        Args:
            address: Pool address; must already be tracked by the store
            target_ratio: Desired reserve_a / reserve_b (defaults to the pool's)
            slippage_tolerance: Percent reduction accepted on the output

        Raises:
            PoolNotFoundError: If the pool is not tracked (no ledger call made).
            ValidationError: If the ratio or slippage is out of range.
        """
        pool = self._require_pool(address)
        target = pool.target_ratio if target_ratio is None else target_ratio
        self._validate_inputs(target, slippage_tolerance)

        reserve_a, reserve_b = await self.ledger.reserves(pool.address)
        current_ratio = float(ratio_of(reserve_a, reserve_b))
        swap_0, swap_1 = compute_swap_amounts(reserve_a, reserve_b, target)

        if swap_0 > 0:
            route = (pool.token_a.address, pool.token_b.address)
            amount_in, reserve_in, reserve_out = swap_0, reserve_a, reserve_b
        elif swap_1 > 0:
            route = (pool.token_b.address, pool.token_a.address)
            amount_in, reserve_in, reserve_out = swap_1, reserve_b, reserve_a
        else:
            route = (pool.token_a.address, pool.token_b.address)
            amount_in, reserve_in, reserve_out = 0, reserve_a, reserve_b

        estimated_gas = (
            await self._estimate_gas(pool.address, target) if amount_in > 0 else 0
        )
        gas_price = await self.ledger.gas_price()

        out = expected_output(amount_in, reserve_in, reserve_out)
        estimate = RebalanceEstimate(
            pool_address=pool.address,
            current_ratio=current_ratio,
            target_ratio=target,
            swap_amount_0=swap_0,
            swap_amount_1=swap_1,
            estimated_gas=estimated_gas,
            gas_price=gas_price,
            estimated_cost=estimated_gas * gas_price,
            slippage_impact=slippage_tolerance,
            price_impact=price_impact(amount_in, reserve_in, reserve_out),
            expected_out=out,
            minimum_received=minimum_received(out, slippage_tolerance),
            route=route,
        )
        logger.debug(
            "Estimate for %s: ratio %.6f -> %.6f swap0=%d swap1=%d gas=%d",
            pool.address,
            current_ratio,
            target,
            swap_0,
            swap_1,
            estimated_gas,
        )
        return estimate

    async def _estimate_gas(self, pool_address: str, target_ratio: float) -> int:
        try:
            return await self.ledger.estimate_rebalance_gas(
                self.rebalancer_address,
                pool_address,
                target_ratio_bps(target_ratio),
                sender=self.sender,
            )
        except PoolSyncError as exc:
            logger.warning(
                "Gas estimation failed for %s, using default %d: %s",
                pool_address,
                self.default_gas,
                exc,
            )
            return self.default_gas

    def quick_estimate(
        self, address: str, target_ratio: float | None = None
    ) -> QuickEstimate:
        """Estimate from the cached pool only, without ledger calls."""
        pool = self._require_pool(address)
        target = pool.target_ratio if target_ratio is None else target_ratio
        if target <= 0:
            raise ValidationError(f"Invalid target ratio: {target}")
        current = pool.current_ratio
        deviation = abs(current - target)
        return QuickEstimate(
            pool_address=pool.address,
            current_ratio=current,
            target_ratio=target,
            is_rebalance_needed=deviation > BALANCED_TOLERANCE,
            estimated_impact=(deviation / current * 100) if current > 0 else 0.0,
        )
