import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from pool_sync.errors import (
    EndpointsExhaustedError,
    ErrorKind,
    FatalError,
    RetryableError,
)
from pool_sync.rpc.client import EndpointClient
from pool_sync.rpc.router import FailoverRouter

ENDPOINTS = ["https://e1", "https://e2", "https://e3"]


def create_client(outcomes: dict[str, object]) -> MagicMock:
    """Mock client whose call() raises or returns per endpoint."""
    client = MagicMock(spec=EndpointClient)

    async def call(endpoint, operation, timeout=None):
        outcome = outcomes[endpoint]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    client.call = AsyncMock(side_effect=call)
    return client


def _timeout(endpoint: str) -> RetryableError:
    return RetryableError("timed out", ErrorKind.TIMEOUT, endpoint)


def _attempted(client: MagicMock) -> list[str]:
    return [c.args[0] for c in client.call.await_args_list]


@pytest.mark.asyncio
async def test_falls_through_timeouts_to_third_endpoint():
    client = create_client(
        {
            "https://e1": _timeout("https://e1"),
            "https://e2": _timeout("https://e2"),
            "https://e3": 42,
        }
    )
    router = FailoverRouter(client, ENDPOINTS, max_retries=2)

    assert await router.execute(AsyncMock()) == 42
    assert _attempted(client) == ENDPOINTS


@pytest.mark.asyncio
async def test_fatal_error_stops_failover():
    fatal = FatalError("execution reverted", endpoint="https://e2")
    client = create_client(
        {"https://e1": _timeout("https://e1"), "https://e2": fatal, "https://e3": 1}
    )
    router = FailoverRouter(client, ENDPOINTS, max_retries=2)

    with pytest.raises(FatalError) as exc_info:
        await router.execute(AsyncMock())

    assert exc_info.value is fatal
    assert _attempted(client) == ["https://e1", "https://e2"]


@pytest.mark.asyncio
async def test_all_endpoints_failing_raises_exhausted():
    client = create_client({e: _timeout(e) for e in ENDPOINTS})
    router = FailoverRouter(client, ENDPOINTS, max_retries=2)

    with pytest.raises(EndpointsExhaustedError) as exc_info:
        await router.execute(AsyncMock())

    err = exc_info.value
    assert err.attempts == 3
    assert err.last_error.endpoint == "https://e3"
    assert err.kind is ErrorKind.TIMEOUT
    assert err.retry_recommended is True


@pytest.mark.asyncio
async def test_attempts_bounded_by_max_retries():
    client = create_client({e: _timeout(e) for e in ENDPOINTS})
    router = FailoverRouter(client, ENDPOINTS, max_retries=0)

    with pytest.raises(EndpointsExhaustedError) as exc_info:
        await router.execute(AsyncMock())

    assert exc_info.value.attempts == 1
    assert _attempted(client) == ["https://e1"]


@pytest.mark.asyncio
async def test_no_endpoints_raises_exhausted():
    router = FailoverRouter(create_client({}), [], max_retries=2)

    with pytest.raises(EndpointsExhaustedError) as exc_info:
        await router.execute(AsyncMock())

    assert exc_info.value.attempts == 0


@pytest.mark.asyncio
async def test_successful_endpoint_is_tried_first_next_time():
    outcomes = {
        "https://e1": _timeout("https://e1"),
        "https://e2": "ok",
        "https://e3": "ok",
    }
    client = create_client(outcomes)
    router = FailoverRouter(client, ENDPOINTS)

    await router.execute(AsyncMock())
    assert router.preferred_endpoint == "https://e2"
    assert router.ordered_endpoints() == ["https://e2", "https://e1", "https://e3"]

    client.call.reset_mock()
    await router.execute(AsyncMock())
    assert _attempted(client) == ["https://e2"]


@pytest.mark.asyncio
async def test_explicit_endpoints_override_configuration():
    client = create_client({"https://x": 7})
    router = FailoverRouter(client, ENDPOINTS)

    assert await router.execute(AsyncMock(), endpoints=["https://x"]) == 7


@pytest.mark.asyncio
async def test_real_client_timeouts_fail_over():
    """The client deadline drives failover end to end."""

    def factory(endpoint, timeout):
        w3 = MagicMock()
        w3.endpoint = endpoint
        return w3

    async def operation(w3):
        if w3.endpoint != "https://e3":
            await asyncio.sleep(1)
        return w3.endpoint

    router = FailoverRouter(
        EndpointClient(default_timeout=0.02, web3_factory=factory), ENDPOINTS
    )

    assert await router.execute(operation) == "https://e3"


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        FailoverRouter(create_client({}), ENDPOINTS, max_retries=-1)
