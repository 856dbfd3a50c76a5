"""Pool, metrics and rebalance records held by the pool store."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum

from .constants import (
    BALANCED_TOLERANCE,
    MAX_PRICE_IMPACT_PERCENT,
    REBALANCE_THRESHOLD,
    TOKEN_DECIMALS,
)


class RebalanceStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RebalanceStatus.PENDING


def ratio_of(reserve_a: int, reserve_b: int) -> Decimal:
    """Exact reserve_a / reserve_b, zero for an empty B side."""
    if reserve_b <= 0:
        return Decimal(0)
    return Decimal(reserve_a) / Decimal(reserve_b)


def to_token_units(amount: int, decimals: int = TOKEN_DECIMALS) -> float:
    return float(Decimal(amount) / (Decimal(10) ** decimals))


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str


@dataclass(frozen=True)
class Pool:
    """Snapshot of a trading pair.

    ``current_ratio``, ``tvl`` and ``needs_rebalancing`` are derived from the
    stored reserves and target so they cannot drift from them.
    """

    address: str
    token_a: TokenInfo
    token_b: TokenInfo
    reserve_a: int
    reserve_b: int
    total_supply: int
    target_ratio: float = 1.0
    is_active: bool = True
    last_rebalance: int | None = None
    rebalance_count: int = 0
    created_at: int | None = None
    volume_24h: float | None = None
    fees_24h: float = 0.0
    apy: float | None = None

    @property
    def current_ratio(self) -> float:
        return float(ratio_of(self.reserve_a, self.reserve_b))

    @property
    def tvl(self) -> float:
        # 1:1 valuation of both sides
        return to_token_units(self.reserve_a) + to_token_units(self.reserve_b)

    @property
    def needs_rebalancing(self) -> bool:
        return abs(self.current_ratio - self.target_ratio) > REBALANCE_THRESHOLD

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["reserve_a"] = str(self.reserve_a)
        data["reserve_b"] = str(self.reserve_b)
        data["total_supply"] = str(self.total_supply)
        data["current_ratio"] = self.current_ratio
        data["tvl"] = self.tvl
        data["needs_rebalancing"] = self.needs_rebalancing
        return data


@dataclass(frozen=True)
class HistoricalSample:
    timestamp: int
    ratio: float
    tvl: float
    volume: float = 0.0
    fees: float = 0.0


@dataclass
class RebalanceEvent:
    """A submitted rebalance transaction and its outcome."""

    tx_hash: str
    pool_address: str
    timestamp: int
    from_ratio: float
    to_ratio: float
    target_ratio: float
    gas_used: int = 0
    gas_price: int = 0
    status: RebalanceStatus = RebalanceStatus.PENDING
    swap_amount_0: int = 0
    swap_amount_1: int = 0
    slippage: float = 0.0

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("gas_used", "gas_price", "swap_amount_0", "swap_amount_1"):
            data[key] = str(data[key])
        return data


@dataclass
class PerformanceSummary:
    total_rebalances: int = 0
    avg_time_between_rebalances: float = 0.0
    total_volume: float = 0.0
    total_fees: float = 0.0
    impermanent_loss: float = 0.0


@dataclass
class PoolMetrics:
    address: str
    historical_data: list[HistoricalSample] = field(default_factory=list)
    rebalance_history: list[RebalanceEvent] = field(default_factory=list)
    performance: PerformanceSummary = field(default_factory=PerformanceSummary)

    def to_dict(self) -> dict[str, object]:
        return {
            "address": self.address,
            "historical_data": [asdict(s) for s in self.historical_data],
            "rebalance_history": [e.to_dict() for e in self.rebalance_history],
            "performance": asdict(self.performance),
        }


@dataclass(frozen=True)
class DashboardStats:
    total_pools: int = 0
    total_tvl: float = 0.0
    total_volume_24h: float = 0.0
    average_apy: float = 0.0
    active_pools: int = 0
    imbalanced_pools: int = 0

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class RebalanceEstimate:
    pool_address: str
    current_ratio: float
    target_ratio: float
    swap_amount_0: int
    swap_amount_1: int
    estimated_gas: int
    gas_price: int
    estimated_cost: int
    slippage_impact: float
    price_impact: float
    expected_out: int
    minimum_received: int
    route: tuple[str, ...]

    @property
    def swap_needed(self) -> bool:
        return self.swap_amount_0 > 0 or self.swap_amount_1 > 0

    @property
    def can_rebalance(self) -> bool:
        """Deviation is worth acting on and the swap would not move price too far."""
        deviation = abs(self.current_ratio - self.target_ratio)
        return (
            deviation > BALANCED_TOLERANCE
            and self.price_impact < MAX_PRICE_IMPACT_PERCENT
        )

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        for key in (
            "swap_amount_0",
            "swap_amount_1",
            "estimated_gas",
            "gas_price",
            "estimated_cost",
            "expected_out",
            "minimum_received",
        ):
            data[key] = str(data[key])
        data["route"] = list(self.route)
        data["can_rebalance"] = self.can_rebalance
        return data


@dataclass(frozen=True)
class QuickEstimate:
    pool_address: str
    current_ratio: float
    target_ratio: float
    is_rebalance_needed: bool
    estimated_impact: float

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class SubmittedRebalance:
    tx_hash: str
    status: RebalanceStatus
    estimated_confirmation: int

    def to_dict(self) -> dict[str, object]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "estimated_confirmation": self.estimated_confirmation,
        }
