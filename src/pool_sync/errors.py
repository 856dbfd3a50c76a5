"""Error taxonomy shared by the RPC layer, discovery, estimation and execution."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """What the caller should do about a failure."""

    NETWORK = "network"  # try again later
    VALIDATION = "validation"  # the pool/address/input is invalid
    REJECTED = "rejected"  # the operation itself was refused


class ErrorKind(str, Enum):
    """Fine-grained cause of a single endpoint call failure."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    RATE_LIMIT = "rate_limit"
    TRANSPORT = "transport"
    CONTRACT = "contract"


class PoolSyncError(Exception):
    """Base class for all errors raised by pool-sync."""

    category: ErrorCategory = ErrorCategory.REJECTED

    @property
    def retry_recommended(self) -> bool:
        return self.category is ErrorCategory.NETWORK


class RetryableError(PoolSyncError):
    """An endpoint call failed in a way another endpoint might not."""

    category = ErrorCategory.NETWORK

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.CONNECTION,
        endpoint: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.endpoint = endpoint


class FatalError(PoolSyncError):
    """The remote logic rejected the call; retrying elsewhere cannot help."""

    category = ErrorCategory.REJECTED

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.CONTRACT,
        endpoint: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.endpoint = endpoint


class EndpointsExhaustedError(RetryableError):
    """Every attempted endpoint failed with a retryable error."""

    def __init__(self, last_error: RetryableError | None, attempts: int):
        detail = str(last_error) if last_error else "no endpoints configured"
        super().__init__(
            f"All {attempts} RPC endpoint(s) failed; last error: {detail}",
            kind=last_error.kind if last_error else ErrorKind.CONNECTION,
            endpoint=last_error.endpoint if last_error else None,
        )
        self.last_error = last_error
        self.attempts = attempts


class OperationTimeoutError(RetryableError):
    """A whole service operation exceeded its deadline."""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            f"{operation} exceeded its {timeout_seconds}s deadline",
            kind=ErrorKind.TIMEOUT,
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class ValidationError(PoolSyncError):
    """Invalid input detected before any ledger call is attempted."""

    category = ErrorCategory.VALIDATION


class InvalidAddressError(ValidationError):
    def __init__(self, address: str, reason: str = "not a valid address"):
        super().__init__(f"Invalid address {address!r}: {reason}")
        self.address = address


class PoolNotFoundError(ValidationError):
    def __init__(self, address: str):
        super().__init__(f"Pool not found: {address}")
        self.address = address


class TransactionNotFoundError(ValidationError):
    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction not found: {tx_hash}")
        self.tx_hash = tx_hash


class RebalanceRejectedError(PoolSyncError):
    """A rebalance request failed a pre-submission gate."""

    category = ErrorCategory.REJECTED


class CooldownActiveError(RebalanceRejectedError):
    def __init__(self, seconds_remaining: int):
        super().__init__(
            f"Cooldown period active. {seconds_remaining} seconds remaining"
        )
        self.seconds_remaining = seconds_remaining


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Render an exception as the structured error returned to callers."""
    if isinstance(exc, PoolSyncError):
        return {
            "category": exc.category.value,
            "retryable": exc.retry_recommended,
            "message": str(exc),
        }
    return {
        "category": ErrorCategory.REJECTED.value,
        "retryable": False,
        "message": str(exc) or exc.__class__.__name__,
    }
