"""Pure functions over pools and metrics: dashboard fold, performance, windows."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .models import (
    DashboardStats,
    HistoricalSample,
    PerformanceSummary,
    Pool,
    RebalanceEvent,
)


class Timeframe(str, Enum):
    HOUR = "1h"
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"

    @property
    def seconds(self) -> int:
        return {
            Timeframe.HOUR: 60 * 60,
            Timeframe.DAY: 24 * 60 * 60,
            Timeframe.WEEK: 7 * 24 * 60 * 60,
            Timeframe.MONTH: 30 * 24 * 60 * 60,
        }[self]

    def window_start(self, now: float) -> float:
        return now - self.seconds


@dataclass(frozen=True)
class PoolAnalytics:
    timeframe: Timeframe
    data_points: int
    tvl_change: float
    tvl_change_percent: float
    volume_total: float
    fees_total: float
    ratio_volatility: float
    rebalance_count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "timeframe": self.timeframe.value,
            "data_points": self.data_points,
            "tvl_change": self.tvl_change,
            "tvl_change_percent": self.tvl_change_percent,
            "volume_total": self.volume_total,
            "fees_total": self.fees_total,
            "ratio_volatility": self.ratio_volatility,
            "rebalance_count": self.rebalance_count,
        }


def compute_dashboard_stats(pools: Iterable[Pool]) -> DashboardStats:
    """Fold the current pool set into dashboard aggregates."""
    pool_list = list(pools)
    if not pool_list:
        return DashboardStats()

    return DashboardStats(
        total_pools=len(pool_list),
        total_tvl=sum(pool.tvl for pool in pool_list),
        total_volume_24h=sum(pool.volume_24h or 0.0 for pool in pool_list),
        average_apy=sum(pool.apy or 0.0 for pool in pool_list) / len(pool_list),
        active_pools=sum(1 for pool in pool_list if pool.is_active),
        imbalanced_pools=sum(1 for pool in pool_list if pool.needs_rebalancing),
    )


def volatility(values: list[float]) -> float:
    """Population standard deviation; zero for fewer than two values."""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    return math.sqrt(variance)


def impermanent_loss(ratio_initial: float, ratio_current: float) -> float:
    """V2 impermanent loss in percent (negative is a loss versus holding).

    IL = 2 * sqrt(r) / (1 + r) - 1 with r = ratio_current / ratio_initial.
    """
    if ratio_initial <= 0 or ratio_current <= 0:
        return 0.0
    r = ratio_current / ratio_initial
    return round((2 * math.sqrt(r) / (1 + r) - 1) * 100, 4)


def summarize_performance(
    samples: list[HistoricalSample], rebalances: list[RebalanceEvent]
) -> PerformanceSummary:
    timestamps = sorted(event.timestamp for event in rebalances)
    if len(timestamps) >= 2:
        gaps = [b - a for a, b in zip(timestamps, timestamps[1:])]
        avg_gap = sum(gaps) / len(gaps)
    else:
        avg_gap = 0.0

    il = (
        impermanent_loss(samples[0].ratio, samples[-1].ratio)
        if len(samples) >= 2
        else 0.0
    )

    return PerformanceSummary(
        total_rebalances=len(rebalances),
        avg_time_between_rebalances=avg_gap,
        total_volume=sum(sample.volume for sample in samples),
        total_fees=sum(sample.fees for sample in samples),
        impermanent_loss=il,
    )


def analyze_window(
    samples: list[HistoricalSample],
    rebalances: list[RebalanceEvent],
    timeframe: Timeframe,
    now: float,
) -> PoolAnalytics | None:
    """Summarize the samples inside ``timeframe``; None when the window is empty."""
    start = timeframe.window_start(now)
    window = [sample for sample in samples if sample.timestamp >= start]
    if not window:
        return None

    earliest, latest = window[0], window[-1]
    tvl_change = latest.tvl - earliest.tvl
    return PoolAnalytics(
        timeframe=timeframe,
        data_points=len(window),
        tvl_change=tvl_change,
        tvl_change_percent=(tvl_change / earliest.tvl * 100) if earliest.tvl > 0 else 0.0,
        volume_total=sum(sample.volume for sample in window),
        fees_total=sum(sample.fees for sample in window),
        ratio_volatility=volatility([sample.ratio for sample in window]),
        rebalance_count=sum(1 for event in rebalances if event.timestamp >= start),
    )
