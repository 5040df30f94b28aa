"""
Sliding-window rate limiting for outbound service calls.

Each limiter keeps an ordered log of admission timestamps per key. A request
is admitted while fewer than ``max_requests`` admissions are younger than the
window; otherwise the caller sleeps until the oldest admission ages out and
then re-evaluates (other callers or a config update may have changed the
picture in the meantime).

Waiters on the same key are admitted in arrival order: every key has its own
asyncio.Lock, which hands ownership to waiters FIFO. Keys never share a lock,
so a saturated key cannot delay another one.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Deque, Dict, Optional

from kizuna_bot.errors import InvalidConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimiterConfig:
    """Admission budget: at most ``max_requests`` per ``window_seconds``."""

    max_requests: int = 10
    window_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise InvalidConfigError(
                f"max_requests must be >= 1, got {self.max_requests}"
            )
        if self.window_seconds <= 0:
            raise InvalidConfigError(
                f"window_seconds must be > 0, got {self.window_seconds}"
            )


# Per-service defaults for the marketplaces and RPC endpoints we talk to
DEFAULT_SERVICE_LIMITS: Dict[str, RateLimiterConfig] = {
    "opensea": RateLimiterConfig(max_requests=2, window_seconds=1.0),
    "blur": RateLimiterConfig(max_requests=5, window_seconds=1.0),
    "tensor": RateLimiterConfig(max_requests=3, window_seconds=1.0),
    "rpc": RateLimiterConfig(max_requests=10, window_seconds=1.0),
    "dexscreener": RateLimiterConfig(max_requests=10, window_seconds=1.0),
}


class WindowedRateLimiter:
    """
    Per-key sliding-window limiter.

    Usage:
        limiter = WindowedRateLimiter(RateLimiterConfig(max_requests=2, window_seconds=1.0))

        await limiter.acquire("0xcollection")   # waits if the window is full
        if limiter.try_acquire("0xcollection"):  # never waits
            ...
    """

    def __init__(
        self,
        config: Optional[RateLimiterConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the limiter.

        Args:
            config: Admission budget (defaults to 10 requests per second)
            clock: Monotonic time source in seconds
            sleep: Coroutine used to wait for a slot
        """
        self._config = config or RateLimiterConfig()
        self._clock = clock
        self._sleep = sleep
        self._requests: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        # callers inside acquire() per key, queued or admitting
        self._waiting: Dict[str, int] = {}

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _prune(self, key: str, now: float) -> Deque[float]:
        log = self._requests.setdefault(key, deque())
        window = self._config.window_seconds
        while log and now - log[0] >= window:
            log.popleft()
        return log

    def _compute_wait(self, key: str, now: float) -> float:
        log = self._prune(key, now)
        if len(log) < self._config.max_requests:
            return 0.0
        return max(self._config.window_seconds - (now - log[0]), 0.0)

    async def acquire(self, key: str = "default") -> bool:
        """
        Wait until a slot is free for ``key``, then record the admission.

        Never fails; always returns True once admitted.
        """
        self._waiting[key] = self._waiting.get(key, 0) + 1
        try:
            async with self._lock_for(key):
                while True:
                    wait = self._compute_wait(key, self._clock())
                    if wait <= 0:
                        break
                    logger.debug(f"Rate limit reached for {key}, waiting {wait:.3f}s")
                    await self._sleep(wait)

                self._requests.setdefault(key, deque()).append(self._clock())
        finally:
            remaining = self._waiting[key] - 1
            if remaining:
                self._waiting[key] = remaining
            else:
                del self._waiting[key]
        return True

    def try_acquire(self, key: str = "default") -> bool:
        """
        Admit immediately if possible.

        Returns False whenever acquire() would have to wait, including when
        another caller is already queued on the same key. A woken waiter that
        has not run yet still counts as queued.
        """
        if self._waiting.get(key) or self._lock_for(key).locked():
            return False

        now = self._clock()
        if self._compute_wait(key, now) > 0:
            return False

        self._requests[key].append(now)
        return True

    def get_wait_time(self, key: str = "default") -> float:
        """Seconds until the next slot for ``key`` opens (0.0 if free now)."""
        return self._compute_wait(key, self._clock())

    def current_count(self, key: str = "default") -> int:
        """Number of admissions for ``key`` inside the trailing window."""
        return len(self._prune(key, self._clock()))

    def reset(self, key: Optional[str] = None) -> None:
        """Forget admissions for one key, or for every key."""
        if key is not None:
            self._requests.pop(key, None)
        else:
            self._requests.clear()

    def update_config(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ) -> RateLimiterConfig:
        """
        Replace the admission budget for subsequent evaluations.

        Already-recorded admissions are kept and judged against the new
        window width on the next access.
        """
        changes = {}
        if max_requests is not None:
            changes["max_requests"] = max_requests
        if window_seconds is not None:
            changes["window_seconds"] = window_seconds
        self._config = replace(self._config, **changes)
        return self._config


class RateLimiterManager:
    """
    Named limiters, one per external service.

    Services without a registered limiter are not gated.

    Usage:
        limits = RateLimiterManager({"opensea": RateLimiterConfig(4, 1.0)})
        await limits.acquire("opensea", key=collection_address)
    """

    def __init__(
        self,
        overrides: Optional[Dict[str, RateLimiterConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        include_defaults: bool = True,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._limiters: Dict[str, WindowedRateLimiter] = {}

        configs: Dict[str, RateLimiterConfig] = (
            dict(DEFAULT_SERVICE_LIMITS) if include_defaults else {}
        )
        configs.update(overrides or {})
        for service, config in configs.items():
            self.register(service, config)

    def register(self, service: str, config: RateLimiterConfig) -> WindowedRateLimiter:
        """Create (or replace) the limiter for a service."""
        limiter = WindowedRateLimiter(config, clock=self._clock, sleep=self._sleep)
        self._limiters[service] = limiter
        return limiter

    def get_limiter(self, service: str) -> Optional[WindowedRateLimiter]:
        return self._limiters.get(service)

    async def acquire(self, service: str, key: str = "default") -> bool:
        limiter = self._limiters.get(service)
        if limiter is None:
            return True
        return await limiter.acquire(key)

    def try_acquire(self, service: str, key: str = "default") -> bool:
        limiter = self._limiters.get(service)
        if limiter is None:
            return True
        return limiter.try_acquire(key)

    def get_wait_time(self, service: str, key: str = "default") -> float:
        limiter = self._limiters.get(service)
        if limiter is None:
            return 0.0
        return limiter.get_wait_time(key)

    def update_config(
        self,
        service: str,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ) -> Optional[RateLimiterConfig]:
        limiter = self._limiters.get(service)
        if limiter is None:
            return None
        return limiter.update_config(max_requests=max_requests, window_seconds=window_seconds)

    def reset(self, service: Optional[str] = None) -> None:
        if service is not None:
            limiter = self._limiters.get(service)
            if limiter:
                limiter.reset()
            return
        for limiter in self._limiters.values():
            limiter.reset()

    def get_config(self, service: str) -> Optional[RateLimiterConfig]:
        limiter = self._limiters.get(service)
        return limiter.config if limiter else None

    def get_all_configs(self) -> Dict[str, RateLimiterConfig]:
        return {name: limiter.config for name, limiter in self._limiters.items()}


def parse_rate_limit(value: str) -> RateLimiterConfig:
    """
    Parse ``"<requests>/<seconds>"`` (e.g. ``"2/1.0"``) into a config.

    Raises:
        InvalidConfigError: If the value is malformed
    """
    requests_part, sep, window_part = value.strip().partition("/")
    if not sep:
        raise InvalidConfigError(f"Bad rate limit '{value}', expected '<requests>/<seconds>'")
    try:
        return RateLimiterConfig(
            max_requests=int(requests_part),
            window_seconds=float(window_part),
        )
    except ValueError as e:
        if isinstance(e, InvalidConfigError):
            raise
        raise InvalidConfigError(f"Bad rate limit '{value}': {e}") from e
