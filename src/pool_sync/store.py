"""In-memory pool store with derived dashboard aggregates.

All state lives in process memory and is lost on restart. Every mutation
applies its change and recomputes ``DashboardStats`` while holding a single
lock, so a reader never sees stats computed from a different pool set than
the one stored. Readers receive copies.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import threading
import time
from typing import Any

from .analytics import (
    PoolAnalytics,
    Timeframe,
    analyze_window,
    compute_dashboard_stats,
    summarize_performance,
)
from .constants import MAX_HISTORICAL_SAMPLES
from .models import (
    DashboardStats,
    HistoricalSample,
    Pool,
    PoolMetrics,
    RebalanceEvent,
    RebalanceStatus,
)

logger = logging.getLogger(__name__)


class PoolStore:
    """Process-wide cache of pools, metrics and rebalance events."""

    def __init__(self, max_samples: int = MAX_HISTORICAL_SAMPLES):
        self._lock = threading.RLock()
        self._max_samples = max_samples
        self._pools: dict[str, Pool] = {}
        self._metrics: dict[str, PoolMetrics] = {}
        self._events: dict[str, RebalanceEvent] = {}
        self._stats = DashboardStats()

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def _recompute_stats(self) -> None:
        self._stats = compute_dashboard_stats(self._pools.values())

    def _refresh_performance(self, metrics: PoolMetrics) -> None:
        metrics.performance = summarize_performance(
            metrics.historical_data, metrics.rebalance_history
        )

    # --- pools ---

    def add_pool(self, pool: Pool) -> None:
        """Insert or replace a pool; creates empty metrics if untracked."""
        key = self._key(pool.address)
        with self._lock:
            self._pools[key] = pool
            self._metrics.setdefault(key, PoolMetrics(address=pool.address))
            self._recompute_stats()

    def get_pool(self, address: str) -> Pool | None:
        with self._lock:
            return self._pools.get(self._key(address))

    def has_pool(self, address: str) -> bool:
        with self._lock:
            return self._key(address) in self._pools

    def get_all_pools(self) -> list[Pool]:
        with self._lock:
            return list(self._pools.values())

    def update_pool(self, address: str, **updates: Any) -> Pool | None:
        """Apply a partial update; returns the new pool or None if untracked.

        Raises:
            TypeError: If ``updates`` names a field Pool does not have.
        """
        key = self._key(address)
        with self._lock:
            pool = self._pools.get(key)
            if pool is None:
                logger.debug("Ignoring update for untracked pool %s", address)
                return None
            updated = dataclasses.replace(pool, **updates)
            self._pools[key] = updated
            self._recompute_stats()
            return updated

    def remove_pool(self, address: str) -> bool:
        key = self._key(address)
        with self._lock:
            removed = self._pools.pop(key, None)
            self._metrics.pop(key, None)
            self._recompute_stats()
            return removed is not None

    def search_pools(self, query: str) -> list[Pool]:
        needle = query.lower()
        return [
            pool
            for pool in self.get_all_pools()
            if needle in pool.address.lower()
            or needle in pool.token_a.symbol.lower()
            or needle in pool.token_b.symbol.lower()
        ]

    def get_imbalanced_pools(self) -> list[Pool]:
        return [pool for pool in self.get_all_pools() if pool.needs_rebalancing]

    def get_pools_by_tvl(self, limit: int = 10) -> list[Pool]:
        return sorted(self.get_all_pools(), key=lambda p: p.tvl, reverse=True)[:limit]

    def get_pools_by_volume(self, limit: int = 10) -> list[Pool]:
        return sorted(
            self.get_all_pools(), key=lambda p: p.volume_24h or 0.0, reverse=True
        )[:limit]

    # --- metrics ---

    def get_pool_metrics(self, address: str) -> PoolMetrics | None:
        with self._lock:
            metrics = self._metrics.get(self._key(address))
            return copy.deepcopy(metrics) if metrics else None

    def add_historical_sample(self, address: str, sample: HistoricalSample) -> bool:
        """Append a sample, evicting the oldest beyond the retention cap."""
        with self._lock:
            metrics = self._metrics.get(self._key(address))
            if metrics is None:
                return False
            metrics.historical_data.append(sample)
            metrics.historical_data.sort(key=lambda s: s.timestamp)
            overflow = len(metrics.historical_data) - self._max_samples
            if overflow > 0:
                del metrics.historical_data[:overflow]
            self._refresh_performance(metrics)
            return True

    def get_pool_analytics(
        self,
        address: str,
        timeframe: Timeframe = Timeframe.DAY,
        now: float | None = None,
    ) -> PoolAnalytics | None:
        metrics = self.get_pool_metrics(address)
        if metrics is None:
            return None
        return analyze_window(
            metrics.historical_data,
            metrics.rebalance_history,
            timeframe,
            time.time() if now is None else now,
        )

    # --- rebalance events ---

    def add_rebalance_event(self, event: RebalanceEvent) -> None:
        event = copy.copy(event)
        with self._lock:
            if event.tx_hash in self._events:
                raise ValueError(f"Rebalance event {event.tx_hash} already recorded")
            self._events[event.tx_hash] = event
            metrics = self._metrics.get(self._key(event.pool_address))
            if metrics is not None:
                metrics.rebalance_history.append(event)
                self._refresh_performance(metrics)
            self._recompute_stats()

    def get_rebalance_event(self, tx_hash: str) -> RebalanceEvent | None:
        with self._lock:
            event = self._events.get(tx_hash)
            return copy.copy(event) if event else None

    def get_rebalance_events(self, pool_address: str | None = None) -> list[RebalanceEvent]:
        with self._lock:
            events = list(self._events.values())
            if pool_address is not None:
                key = self._key(pool_address)
                events = [e for e in events if self._key(e.pool_address) == key]
            return [copy.copy(e) for e in events]

    def get_recent_activity(
        self, limit: int = 10, pool_address: str | None = None
    ) -> list[RebalanceEvent]:
        events = sorted(
            self.get_rebalance_events(pool_address),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        return events[:limit] if limit > 0 else events

    def update_rebalance_event(self, tx_hash: str, **updates: Any) -> bool:
        """Apply a partial update to a pending event.

        Terminal events (confirmed/failed) are never modified; the call is a
        no-op returning False. Unknown hashes also return False.
        """
        with self._lock:
            event = self._events.get(tx_hash)
            if event is None:
                logger.debug("Ignoring update for unknown event %s", tx_hash)
                return False
            if event.status.is_terminal:
                logger.debug(
                    "Ignoring update for %s: already %s", tx_hash, event.status.value
                )
                return False

            status = updates.get("status")
            if status is not None:
                updates["status"] = RebalanceStatus(status)

            updated = dataclasses.replace(event, **updates)
            self._events[tx_hash] = updated

            metrics = self._metrics.get(self._key(event.pool_address))
            if metrics is not None:
                metrics.rebalance_history = [
                    updated if h.tx_hash == tx_hash else h
                    for h in metrics.rebalance_history
                ]
                self._refresh_performance(metrics)
            self._recompute_stats()
            return True

    # --- aggregates ---

    def get_dashboard_stats(self) -> DashboardStats:
        with self._lock:
            return self._stats

    def clear(self) -> None:
        with self._lock:
            self._pools.clear()
            self._metrics.clear()
            self._events.clear()
            self._recompute_stats()
