"""Endpoint failover across an ordered list of RPC endpoints."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TypeVar

from ..errors import EndpointsExhaustedError, FatalError, RetryableError
from ..logger import TRACE
from .client import EndpointClient, Operation

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailoverRouter:
    """Tries endpoints in order until one succeeds.

    Retryable failures advance to the next endpoint; Fatal failures stop
    immediately. At most ``max_retries + 1`` endpoints are attempted per
    operation. The endpoint that last succeeded is tried first next time.
    """

    def __init__(
        self,
        client: EndpointClient,
        endpoints: Sequence[str],
        max_retries: int = 2,
        sticky: bool = True,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.client = client
        self.endpoints = list(endpoints)
        self.max_retries = max_retries
        self.sticky = sticky
        self._preferred: str | None = None

    @property
    def preferred_endpoint(self) -> str | None:
        return self._preferred

    def ordered_endpoints(self, endpoints: Sequence[str] | None = None) -> list[str]:
        candidates = list(self.endpoints if endpoints is None else endpoints)
        if self.sticky and self._preferred in candidates:
            candidates.remove(self._preferred)
            candidates.insert(0, self._preferred)
        return candidates

    async def execute(
        self,
        operation: Operation[T],
        endpoints: Sequence[str] | None = None,
        timeout: float | None = None,
        description: str = "rpc call",
    ) -> T:
        """Run ``operation`` with failover.

        Args:
            operation: Async callable receiving an ``AsyncWeb3`` instance
            endpoints: Override of the configured endpoint order
            timeout: Per-call deadline (defaults to the client's)
            description: Label used in log messages

        Raises:
            FatalError: From the first endpoint that rejected the call.
            EndpointsExhaustedError: If every attempted endpoint failed.
        """
        ordered = self.ordered_endpoints(endpoints)
        budget = min(len(ordered), self.max_retries + 1)
        last_error: RetryableError | None = None

        for attempt, endpoint in enumerate(ordered[:budget], start=1):
            logger.log(
                TRACE, "%s -> %s (attempt %d of %d)", description, endpoint, attempt, budget
            )
            try:
                result = await self.client.call(endpoint, operation, timeout)
            except FatalError:
                logger.debug("%s rejected by %s; not retrying", description, endpoint)
                raise
            except RetryableError as exc:
                last_error = exc
                logger.warning(
                    "%s failed on %s (attempt %d of %d, %s): %s",
                    description,
                    endpoint,
                    attempt,
                    budget,
                    exc.kind.value,
                    exc,
                )
                continue

            if attempt > 1:
                logger.info("%s succeeded on fallback endpoint %s", description, endpoint)
            if self.sticky:
                self._preferred = endpoint
            return result

        raise EndpointsExhaustedError(last_error, budget)
