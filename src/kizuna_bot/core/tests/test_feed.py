"""
Tests for the cached, rate-limited listing feed.
"""
import asyncio

import pytest

from kizuna_bot.core.feed import ListingFeed
from kizuna_bot.errors import RateLimitError, ServiceTimeoutError
from kizuna_bot.ingestion.cache import TTLCache
from kizuna_bot.ingestion.rate_limiter import RateLimiterConfig, RateLimiterManager

COLLECTION = "0xcollection"


class TestListingFeed:
    """Tests for get_listings()."""

    @pytest.mark.asyncio
    async def test_fetch_is_cached_within_ttl(self, market_data, listing_factory):
        market_data.listings[COLLECTION] = [listing_factory("0.3")]
        feed = ListingFeed(market_data, RateLimiterManager(include_defaults=False), TTLCache())

        first = await feed.get_listings(COLLECTION, ttl=60)
        second = await feed.get_listings(COLLECTION, ttl=60)

        assert first == second
        assert market_data.calls == [COLLECTION]

    @pytest.mark.asyncio
    async def test_prefixes_keep_entries_apart(self, market_data, listing_factory):
        market_data.listings[COLLECTION] = [listing_factory("0.3")]
        cache = TTLCache()
        limiter = RateLimiterManager(include_defaults=False)
        autobuy = ListingFeed(market_data, limiter, cache, key_prefix="listings")
        alerts = ListingFeed(market_data, limiter, cache, key_prefix="prices")

        await alerts.get_listings(COLLECTION, ttl=60)
        await autobuy.get_listings(COLLECTION, ttl=60)

        assert len(market_data.calls) == 2
        assert autobuy.cache_key(COLLECTION) == f"listings:opensea:{COLLECTION}"
        assert alerts.cache_key(COLLECTION) == f"prices:opensea:{COLLECTION}"

    @pytest.mark.asyncio
    async def test_misses_pass_through_the_limiter(self, market_data):
        limiter = RateLimiterManager(
            {"opensea": RateLimiterConfig(max_requests=5, window_seconds=60)},
            include_defaults=False,
        )
        feed = ListingFeed(market_data, limiter, TTLCache())

        await feed.get_listings(COLLECTION, ttl=60)

        assert limiter.get_limiter("opensea").current_count(COLLECTION) == 1

    @pytest.mark.asyncio
    async def test_port_errors_propagate_and_are_not_cached(self, market_data, listing_factory):
        market_data.errors[COLLECTION] = RateLimitError()
        feed = ListingFeed(market_data, RateLimiterManager(include_defaults=False), TTLCache())

        with pytest.raises(RateLimitError):
            await feed.get_listings(COLLECTION, ttl=60)

        del market_data.errors[COLLECTION]
        market_data.listings[COLLECTION] = [listing_factory("1")]
        assert len(await feed.get_listings(COLLECTION, ttl=60)) == 1

    @pytest.mark.asyncio
    async def test_slow_port_times_out(self):
        class SlowMarket:
            async def fetch_listings(self, collection_address):
                await asyncio.sleep(10)
                return []

        feed = ListingFeed(
            SlowMarket(),
            RateLimiterManager(include_defaults=False),
            TTLCache(),
            fetch_timeout_seconds=0.05,
        )

        with pytest.raises(ServiceTimeoutError):
            await feed.get_listings(COLLECTION)
