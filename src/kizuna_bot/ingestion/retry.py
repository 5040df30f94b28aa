"""
Retry with classified, capped exponential backoff.

Only transient failures are retried: rate limiting (429), connection
refusal and timeouts, plus anything an adapter explicitly flags as
retryable. Every other error aborts the operation on the spot and is
re-raised unchanged.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

from kizuna_bot.errors import InvalidConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Default retry classifier."""
    if getattr(error, "retryable", False):
        return True
    if getattr(error, "status_code", None) == 429 or getattr(error, "status", None) == 429:
        return True
    if isinstance(error, (ConnectionRefusedError, asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, (aiohttp.ServerTimeoutError, aiohttp.ClientConnectorError)):
        return True
    return False


@dataclass
class RetryOptions:
    """Backoff settings. Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    should_retry: Callable[[BaseException], bool] = is_retryable

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise InvalidConfigError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise InvalidConfigError("retry delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise InvalidConfigError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: Optional[RetryOptions] = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """
    Run ``operation`` with up to ``max_retries`` retries.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        options: Backoff settings (defaults to RetryOptions())
        sleep: Coroutine used for backoff waits
        on_retry: Optional hook called as (attempt, error, delay) before each wait

    Returns:
        The first successful result

    Raises:
        The last error once retries are exhausted, or the first
        non-retryable error immediately.
    """
    opts = options or RetryOptions()
    delay = opts.initial_delay
    attempt = 0

    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if attempt >= opts.max_retries:
                raise

            if not opts.should_retry(e):
                raise

            attempt += 1
            logger.warning(
                f"Retry attempt {attempt}/{opts.max_retries} after {delay:.2f}s: {e}"
            )
            if on_retry:
                on_retry(attempt, e, delay)
            await sleep(delay)
            delay = min(delay * opts.backoff_multiplier, opts.max_delay)


class RetryPolicy:
    """
    Reusable binding of RetryOptions.

    Usage:
        policy = RetryPolicy(RetryOptions(max_retries=2))
        result = await policy.run(lambda: wallet.transfer(to, amount, "eth"))
    """

    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.options = options or RetryOptions()
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(operation, self.options, sleep=self._sleep)
