import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    ProviderConnectionError,
    Web3RPCError,
)

from pool_sync.errors import ErrorKind, FatalError, RetryableError
from pool_sync.rpc.client import EndpointClient, classify_error


def create_mock_web3():
    """Helper to create a mock AsyncWeb3 instance."""
    mock = MagicMock()
    mock.provider = MagicMock()
    mock.provider.disconnect = AsyncMock()
    return mock


def _http_error(status: int) -> aiohttp.ClientResponseError:
    return aiohttp.ClientResponseError(
        request_info=MagicMock(), history=(), status=status, message="boom"
    )


@pytest.mark.parametrize(
    "exc, expected_kind",
    [
        (TimeoutError(), ErrorKind.TIMEOUT),
        (asyncio.TimeoutError(), ErrorKind.TIMEOUT),
        (ConnectionError("reset"), ErrorKind.CONNECTION),
        (ProviderConnectionError("down"), ErrorKind.CONNECTION),
        (_http_error(429), ErrorKind.RATE_LIMIT),
        (_http_error(503), ErrorKind.TRANSPORT),
        (Web3RPCError("rate limit exceeded"), ErrorKind.RATE_LIMIT),
        (RuntimeError("something odd"), ErrorKind.TRANSPORT),
    ],
)
def test_classify_retryable(exc, expected_kind):
    classified = classify_error(exc, "https://rpc.example")

    assert isinstance(classified, RetryableError)
    assert classified.kind is expected_kind
    assert classified.endpoint == "https://rpc.example"
    assert classified.retry_recommended is True


@pytest.mark.parametrize(
    "exc",
    [
        ContractLogicError("execution reverted"),
        BadFunctionCallOutput("empty output"),
        Web3RPCError("invalid opcode"),
    ],
)
def test_classify_fatal(exc):
    classified = classify_error(exc, "https://rpc.example")

    assert isinstance(classified, FatalError)
    assert classified.kind is ErrorKind.CONTRACT
    assert classified.retry_recommended is False


def test_classify_passes_through_pool_sync_errors():
    original = FatalError("already classified")
    assert classify_error(original) is original


@pytest.mark.asyncio
async def test_call_returns_operation_result():
    w3 = create_mock_web3()
    client = EndpointClient(default_timeout=1.0, web3_factory=lambda e, t: w3)

    async def op(web3):
        assert web3 is w3
        return 42

    assert await client.call("https://a", op) == 42


@pytest.mark.asyncio
async def test_call_times_out_as_retryable():
    client = EndpointClient(
        default_timeout=1.0, web3_factory=lambda e, t: create_mock_web3()
    )

    async def slow(_w3):
        await asyncio.sleep(1)

    with pytest.raises(RetryableError) as exc_info:
        await client.call("https://slow", slow, timeout=0.01)

    assert exc_info.value.kind is ErrorKind.TIMEOUT
    assert exc_info.value.endpoint == "https://slow"


@pytest.mark.asyncio
async def test_call_wraps_revert_as_fatal():
    client = EndpointClient(web3_factory=lambda e, t: create_mock_web3())

    async def reverts(_w3):
        raise ContractLogicError("execution reverted")

    with pytest.raises(FatalError) as exc_info:
        await client.call("https://a", reverts)

    assert isinstance(exc_info.value.__cause__, ContractLogicError)


@pytest.mark.asyncio
async def test_web3_instances_cached_and_disconnected_on_close():
    created: list[MagicMock] = []

    def factory(endpoint, timeout):
        w3 = create_mock_web3()
        created.append(w3)
        return w3

    client = EndpointClient(web3_factory=factory)
    assert client.web3_for("https://a") is client.web3_for("https://a")
    client.web3_for("https://b")

    await client.close()

    assert len(created) == 2
    for w3 in created:
        w3.provider.disconnect.assert_awaited_once()
