"""
Error taxonomy shared by the ingestion, execution and core layers.

Every error carries a ``retryable`` flag so the retry policy can classify it
without knowing which adapter raised it:

    - Transient (retried): RateLimitError, ServiceTimeoutError,
      ServiceError(retryable=True) for 5xx responses
    - Validation (never retried): InvalidConfigError, ServiceError for 4xx
    - Execution: ExecutionFailedError, counted against a position's budget
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    WALLET_NOT_INITIALIZED = "WALLET_NOT_INITIALIZED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    INVALID_CONFIG = "INVALID_CONFIG"
    NFT_NOT_FOUND = "NFT_NOT_FOUND"
    PRICE_FETCH_FAILED = "PRICE_FETCH_FAILED"


class KizunaError(Exception):
    """Base exception for all bot errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NETWORK_ERROR,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.retryable = retryable


class InvalidConfigError(KizunaError, ValueError):
    """Malformed configuration. Raised synchronously, never retried."""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.INVALID_CONFIG)


class ServiceError(KizunaError):
    """An external HTTP service returned an error."""

    pass


class RateLimitError(ServiceError):
    """Service answered 429."""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(
            message, code=ErrorCode.RATE_LIMITED, status_code=429, retryable=True
        )


class ServiceTimeoutError(ServiceError):
    """An external call exceeded its timeout."""

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message, code=ErrorCode.TIMEOUT, retryable=True)


class ExecutionFailedError(KizunaError):
    """The wallet reported a submission that did not confirm."""

    def __init__(
        self,
        message: str = "Transaction failed",
        tx_hash: Optional[str] = None,
        status: Optional[str] = None,
    ):
        super().__init__(message, code=ErrorCode.TRANSACTION_FAILED)
        self.tx_hash = tx_hash
        self.status = status
