"""Application state container and service wiring."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .discovery import PairDiscovery
from .estimator import RebalanceEstimator
from .executor import LocalAccountSigner, RebalanceExecutor
from .monitor import TransactionMonitor
from .rpc.client import EndpointClient
from .rpc.ledger import LedgerReader
from .rpc.router import FailoverRouter
from .service import PoolSyncService
from .settings import SyncSettings
from .store import PoolStore


@dataclass
class AppState:
    """Container for application-wide state and dependencies.

    Passed to ``build_service`` to avoid global state and enable testing.
    """

    settings: SyncSettings
    logger: logging.Logger


def build_service(state: AppState, store: PoolStore | None = None) -> PoolSyncService:
    """Wire client, router, store and workers into a ``PoolSyncService``."""
    s = state.settings
    client = EndpointClient(default_timeout=s.call_timeout_seconds)
    router = FailoverRouter(client, s.rpc_endpoints, max_retries=s.max_retries)
    ledger = LedgerReader(router, chain_id=s.chain_id)
    store = store if store is not None else PoolStore()

    signer = LocalAccountSigner(s.private_key_required) if s.can_sign else None
    monitor = TransactionMonitor(
        ledger,
        store,
        timeout_seconds=s.monitor_timeout_seconds,
        poll_interval_seconds=s.receipt_poll_interval_seconds,
    )
    service = PoolSyncService(
        client=client,
        ledger=ledger,
        store=store,
        discovery=PairDiscovery(
            ledger,
            store,
            max_probes=s.discovery_max_pairs,
            time_budget_seconds=s.discovery_timeout_seconds,
            default_target_ratio=s.default_target_ratio,
        ),
        estimator=RebalanceEstimator(
            ledger,
            store,
            s.rebalancer_address,
            default_gas=s.default_rebalance_gas,
            sender=signer.address if signer else None,
        ),
        executor=RebalanceExecutor(
            ledger, store, monitor, s.rebalancer_address, signer=signer
        ),
        monitor=monitor,
        factory_address=s.factory_address,
        rebalancer_address=s.rebalancer_address,
        operation_timeout_seconds=s.operation_timeout_seconds,
        default_slippage_tolerance=s.default_slippage_tolerance,
    )
    state.logger.debug(
        "Service wired with %d endpoint(s), signer=%s",
        len(s.rpc_endpoints),
        signer.address if signer else None,
    )
    return service
