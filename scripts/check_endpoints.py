#!/usr/bin/env python3
"""Standalone probe of RPC endpoint health and failover order."""

from __future__ import annotations

import asyncio
import sys
import time
from argparse import ArgumentParser

from pool_sync.constants import DEFAULT_RPC_ENDPOINTS
from pool_sync.errors import PoolSyncError
from pool_sync.logger import get_logger, setup_logging
from pool_sync.rpc import EndpointClient, FailoverRouter, LedgerReader

setup_logging()
logger = get_logger(__name__)


async def check_endpoints(endpoints: list[str], timeout: float) -> int:
    """Query each endpoint alone, then once through the failover router.

    Args:
        endpoints: RPC URLs in failover order
        timeout: Per-call deadline in seconds
    """
    client = EndpointClient(default_timeout=timeout)
    healthy = 0

    logger.info("=== RPC Endpoint Check ===")
    try:
        for endpoint in endpoints:
            ledger = LedgerReader(FailoverRouter(client, [endpoint], max_retries=0))
            started = time.monotonic()
            try:
                block = await ledger.block_number()
            except PoolSyncError as e:
                logger.warning("%s: unavailable (%s)", endpoint, e)
                continue
            healthy += 1
            logger.info(
                "%s: block %d in %.0f ms",
                endpoint,
                block,
                (time.monotonic() - started) * 1000,
            )

        router = FailoverRouter(client, endpoints, max_retries=len(endpoints) - 1)
        block = await LedgerReader(router).block_number()
        logger.info("Failover read: block %d via %s", block, router.preferred_endpoint)
    except PoolSyncError as e:
        logger.error("Failover read failed: %s", e)
    finally:
        await client.close()

    logger.info("%d of %d endpoints healthy", healthy, len(endpoints))
    return 0 if healthy else 1


def main() -> int:
    """Parse arguments and run the check."""
    parser = ArgumentParser(description="Check RPC endpoint health")
    parser.add_argument(
        "endpoints",
        nargs="*",
        default=list(DEFAULT_RPC_ENDPOINTS),
        help="RPC URLs in failover order (defaults to the public testnet nodes)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Per-call timeout in seconds",
    )

    args = parser.parse_args()

    try:
        return asyncio.run(check_endpoints(args.endpoints, args.timeout))
    except KeyboardInterrupt:
        logger.info("Check interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
