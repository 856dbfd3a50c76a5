"""Single-endpoint ledger calls with a deadline and failure classification."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3RPCError,
    Web3ValidationError,
)

from ..errors import ErrorKind, FatalError, PoolSyncError, RetryableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[AsyncWeb3], Awaitable[T]]
Web3Factory = Callable[[str, float], AsyncWeb3]

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429", "-32005")


def default_web3_factory(endpoint: str, timeout: float) -> AsyncWeb3:
    return AsyncWeb3(
        AsyncWeb3.AsyncHTTPProvider(endpoint, request_kwargs={"timeout": timeout})
    )


def _looks_rate_limited(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def classify_error(exc: BaseException, endpoint: str | None = None) -> PoolSyncError:
    """Map a raw call failure onto the Retryable/Fatal split.

    Contract-level rejections (reverts, undecodable call output, invalid call
    arguments, JSON-RPC errors that are not rate limits) are Fatal. Timeouts,
    connection failures, HTTP errors and anything unrecognised are Retryable.
    """
    if isinstance(exc, PoolSyncError):
        return exc

    where = f" ({endpoint})" if endpoint else ""

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, TimeExhausted)):
        return RetryableError(f"Call timed out{where}", ErrorKind.TIMEOUT, endpoint)

    if isinstance(exc, aiohttp.ClientResponseError):
        kind = ErrorKind.RATE_LIMIT if exc.status == 429 else ErrorKind.TRANSPORT
        return RetryableError(
            f"HTTP {exc.status} from endpoint{where}: {exc.message}", kind, endpoint
        )

    if isinstance(exc, (ContractLogicError, BadFunctionCallOutput, Web3ValidationError)):
        return FatalError(f"Call rejected{where}: {exc}", ErrorKind.CONTRACT, endpoint)

    if isinstance(exc, Web3RPCError):
        if _looks_rate_limited(exc):
            return RetryableError(
                f"Rate limited{where}: {exc}", ErrorKind.RATE_LIMIT, endpoint
            )
        return FatalError(f"RPC error{where}: {exc}", ErrorKind.CONTRACT, endpoint)

    if isinstance(
        exc, (ProviderConnectionError, aiohttp.ClientError, ConnectionError, OSError)
    ):
        return RetryableError(
            f"Connection failed{where}: {exc}", ErrorKind.CONNECTION, endpoint
        )

    logger.warning(
        "Unrecognised failure from %s treated as retryable: %r", endpoint, exc
    )
    return RetryableError(f"Call failed{where}: {exc}", ErrorKind.TRANSPORT, endpoint)


class EndpointClient:
    """Executes one operation against one endpoint under a deadline.

    One ``AsyncWeb3`` instance is kept per endpoint URL.
    """

    def __init__(
        self,
        default_timeout: float = 30.0,
        web3_factory: Web3Factory = default_web3_factory,
    ):
        self.default_timeout = default_timeout
        self._web3_factory = web3_factory
        self._connections: dict[str, AsyncWeb3] = {}

    def web3_for(self, endpoint: str) -> AsyncWeb3:
        w3 = self._connections.get(endpoint)
        if w3 is None:
            w3 = self._web3_factory(endpoint, self.default_timeout)
            self._connections[endpoint] = w3
        return w3

    async def call(
        self,
        endpoint: str,
        operation: Operation[T],
        timeout: float | None = None,
    ) -> T:
        """Run ``operation`` against ``endpoint``.

        Raises:
            RetryableError: Timeout, connection failure or rate limit.
            FatalError: The remote logic rejected the call.
        """
        deadline = self.default_timeout if timeout is None else timeout
        w3 = self.web3_for(endpoint)
        try:
            async with asyncio.timeout(deadline):
                return await operation(w3)
        except Exception as exc:
            raise classify_error(exc, endpoint) from exc

    async def close(self) -> None:
        connections, self._connections = self._connections, {}
        for endpoint, w3 in connections.items():
            try:
                await w3.provider.disconnect()  # type: ignore[union-attr]
            except AttributeError as e:
                logger.debug(
                    "Provider disconnect expected (no disconnect method) for %s: %s",
                    endpoint,
                    e,
                )
