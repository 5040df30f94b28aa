"""
TTL cache for market data.

Expiry is lazy: nothing runs in the background. An expired entry is treated
as absent by every reader and removed the next time it is observed
(get/has), and size() sweeps the whole store before counting.

get_or_set() is single-flight: concurrent misses for the same key share one
factory call, so a metered fetch is charged to the rate limiter only once.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A cached value and its lifetime (monotonic seconds)."""

    value: T
    created_at: float
    expires_at: float


class TTLCache(Generic[T]):
    """
    Key/value store with per-entry or default expiry.

    Usage:
        cache: TTLCache[list] = TTLCache(default_ttl=60)
        cache.set("floor:0xabc", price, ttl=10)
        listings = await cache.get_or_set(key, fetch_listings)
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            default_ttl: Lifetime in seconds for entries stored without a ttl
            clock: Monotonic time source in seconds
        """
        self._default_ttl = default_ttl
        self._clock = clock
        self._store: Dict[str, CacheEntry[T]] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def set(self, key: str, value: T, ttl: Optional[float] = None) -> None:
        now = self._clock()
        lifetime = self._default_ttl if ttl is None else ttl
        self._store[key] = CacheEntry(value=value, created_at=now, expires_at=now + lifetime)

    def _live_entry(self, key: str) -> Optional[CacheEntry[T]]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._store[key]
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live_entry(key)
        return entry.value if entry is not None else default

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        self._store.clear()

    def size(self) -> int:
        """Number of live entries. Sweeps expired entries first (O(n))."""
        self._cleanup()
        return len(self._store)

    def keys(self) -> List[str]:
        self._cleanup()
        return list(self._store.keys())

    def _cleanup(self) -> None:
        now = self._clock()
        expired = [k for k, entry in self._store.items() if now > entry.expires_at]
        for key in expired:
            del self._store[key]

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """
        Return the cached value, or compute it once and cache it.

        If the factory raises, the error propagates to every caller waiting
        on this key and nothing is stored.
        """
        entry = self._live_entry(key)
        if entry is not None:
            return entry.value

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so a miss without concurrent waiters doesn't warn
            future.exception()
            raise
        else:
            self.set(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
