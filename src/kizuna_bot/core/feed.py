"""
ListingFeed - Gated, cached access to the market data port.

Both engines read listings through a feed over one shared cache and rate
limiter. Each engine keys its entries under its own prefix so a long-lived
alert entry never serves stale listings to auto-buy:

    cache hit  -> listings
    cache miss -> limiter.acquire(service, collection) -> port call (timeout)
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from kizuna_bot.errors import ServiceTimeoutError
from kizuna_bot.ingestion.cache import TTLCache
from kizuna_bot.ingestion.models import Listing
from kizuna_bot.ingestion.rate_limiter import RateLimiterManager

from .ports import MarketDataPort

logger = logging.getLogger(__name__)


class ListingFeed:
    """
    Usage:
        feed = ListingFeed(OpenSeaClient(api_key), RateLimiterManager(), TTLCache())
        listings = await feed.get_listings("0xabc...", ttl=2.0)
    """

    def __init__(
        self,
        market_data: MarketDataPort,
        rate_limiter: Optional[RateLimiterManager] = None,
        cache: Optional[TTLCache] = None,
        service_name: str = "opensea",
        fetch_timeout_seconds: float = 10.0,
        key_prefix: str = "listings",
    ) -> None:
        self._market_data = market_data
        self._rate_limiter = rate_limiter or RateLimiterManager()
        self._cache = cache or TTLCache()
        self._service = service_name
        self._fetch_timeout = fetch_timeout_seconds
        self._key_prefix = key_prefix

    @property
    def service_name(self) -> str:
        return self._service

    @property
    def rate_limiter(self) -> RateLimiterManager:
        return self._rate_limiter

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def cache_key(self, collection_address: str) -> str:
        return f"{self._key_prefix}:{self._service}:{collection_address}"

    async def get_listings(
        self,
        collection_address: str,
        ttl: Optional[float] = None,
    ) -> List[Listing]:
        """
        Listings for a collection, from cache or a rate-limited fetch.

        Raises:
            ServiceTimeoutError: The port call exceeded fetch_timeout_seconds
            Whatever the port raises (rate limit, network, 4xx)
        """

        async def fetch() -> List[Listing]:
            await self._rate_limiter.acquire(self._service, collection_address)
            try:
                return await asyncio.wait_for(
                    self._market_data.fetch_listings(collection_address),
                    timeout=self._fetch_timeout,
                )
            except asyncio.TimeoutError as e:
                raise ServiceTimeoutError(
                    f"Listing fetch for {collection_address} timed out "
                    f"after {self._fetch_timeout}s"
                ) from e

        return await self._cache.get_or_set(self.cache_key(collection_address), fetch, ttl)
