"""Ledger event feed: PairCreated and Rebalance logs applied to the store.

The feed is the push counterpart of discovery. Both end in
``PairDiscovery.refresh_pool`` so a pool observed through either path is
written the same way.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Union

import backoff

from .constants import BASIS_POINTS
from .discovery import PairDiscovery, is_zero_address
from .errors import EndpointsExhaustedError, PoolSyncError
from .models import Pool
from .rpc.ledger import LedgerReader
from .store import PoolStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_BLOCK_RANGE = 1_000


@dataclass(frozen=True)
class PairCreatedEvent:
    token0: str
    token1: str
    pair: str
    index: int
    block_number: int
    log_index: int = 0


@dataclass(frozen=True)
class RebalanceObservedEvent:
    pair: str
    old_ratio: float
    new_ratio: float
    target_ratio: float
    tx_hash: str
    block_number: int
    log_index: int = 0


PoolEvent = Union[PairCreatedEvent, RebalanceObservedEvent]


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if hasattr(value, "to_0x_hex"):
        return value.to_0x_hex()
    return str(value)


def decode_pair_created(log: Mapping[str, Any]) -> PairCreatedEvent:
    args = log["args"]
    return PairCreatedEvent(
        token0=args["token0"],
        token1=args["token1"],
        pair=args["pair"],
        index=int(args["index"]),
        block_number=int(log["blockNumber"]),
        log_index=int(log.get("logIndex", 0)),
    )


def decode_rebalance(log: Mapping[str, Any]) -> RebalanceObservedEvent:
    """Decode a controller Rebalance log; ratios are emitted in basis points."""
    args = log["args"]
    return RebalanceObservedEvent(
        pair=args["pair"],
        old_ratio=int(args["oldRatio"]) / BASIS_POINTS,
        new_ratio=int(args["newRatio"]) / BASIS_POINTS,
        target_ratio=int(args["targetRatio"]) / BASIS_POINTS,
        tx_hash=_hex(log.get("transactionHash", "")),
        block_number=int(log["blockNumber"]),
        log_index=int(log.get("logIndex", 0)),
    )


class LogPollingSource:
    """Polls ledger logs block range by block range.

    Starts at ``start_block`` or, when omitted, at the head seen on the first
    poll. Each poll covers at most ``max_block_range`` blocks and events are
    yielded in ledger order.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        factory_address: str | None = None,
        rebalancer_address: str | None = None,
        poll_interval_seconds: float = 5.0,
        start_block: int | None = None,
        max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
    ):
        self.ledger = ledger
        self.factory_address = None if is_zero_address(factory_address) else factory_address
        self.rebalancer_address = (
            None if is_zero_address(rebalancer_address) else rebalancer_address
        )
        self.poll_interval_seconds = poll_interval_seconds
        self.max_block_range = max_block_range
        self._next_block = start_block

    @property
    def next_block(self) -> int | None:
        return self._next_block

    async def poll_once(self) -> list[PoolEvent]:
        latest = await self.ledger.block_number()
        if self._next_block is None:
            self._next_block = latest
        if latest < self._next_block:
            return []

        from_block = self._next_block
        to_block = min(latest, from_block + self.max_block_range - 1)
        events = await self._fetch_range(from_block, to_block)
        self._next_block = to_block + 1
        logger.debug(
            "Fetched %d events from blocks %d-%d", len(events), from_block, to_block
        )
        return events

    @backoff.on_exception(
        backoff.expo,
        EndpointsExhaustedError,
        max_tries=5,
        jitter=backoff.full_jitter,
    )
    async def _fetch_range(self, from_block: int, to_block: int) -> list[PoolEvent]:
        events: list[PoolEvent] = []
        if self.factory_address:
            logs = await self.ledger.pair_created_logs(
                self.factory_address, from_block, to_block
            )
            events.extend(decode_pair_created(log) for log in logs)
        if self.rebalancer_address:
            logs = await self.ledger.rebalance_logs(
                self.rebalancer_address, from_block, to_block
            )
            events.extend(decode_rebalance(log) for log in logs)
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    async def stream(self) -> AsyncIterator[PoolEvent]:
        while True:
            for event in await self.poll_once():
                yield event
            await asyncio.sleep(self.poll_interval_seconds)


class PoolEventConsumer:
    """Applies feed events to the store through discovery's refresh path."""

    def __init__(self, discovery: PairDiscovery, store: PoolStore):
        self.discovery = discovery
        self.store = store
        self.applied = 0

    async def handle(self, event: PoolEvent) -> Pool | None:
        if isinstance(event, PairCreatedEvent):
            logger.info("New pair %s (index %d)", event.pair, event.index)
            pool = await self.discovery.refresh_pool(event.pair)
        elif isinstance(event, RebalanceObservedEvent):
            if not self.store.has_pool(event.pair):
                logger.debug("Rebalance on untracked pair %s ignored", event.pair)
                return None
            logger.info(
                "Observed rebalance of %s: %.4f -> %.4f (target %.4f)",
                event.pair,
                event.old_ratio,
                event.new_ratio,
                event.target_ratio,
            )
            pool = await self.discovery.refresh_pool(event.pair)
        else:
            raise TypeError(f"Unsupported event {event!r}")
        self.applied += 1
        return pool

    async def run(self, source: LogPollingSource, limit: int | None = None) -> int:
        """Consume ``source`` until cancelled or ``limit`` events were seen."""
        seen = 0
        async with aclosing(source.stream()) as events:
            async for event in events:
                try:
                    await self.handle(event)
                except PoolSyncError as exc:
                    logger.error("Failed to apply %s: %s", type(event).__name__, exc)
                seen += 1
                if limit is not None and seen >= limit:
                    break
        return seen
