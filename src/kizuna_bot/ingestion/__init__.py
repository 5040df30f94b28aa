"""
Ingestion Layer - Outbound call gating and market data.

This module provides:
    - WindowedRateLimiter: Per-key sliding-window admission control
    - RateLimiterManager: Named limiters, one per external service
    - RateLimiterConfig: Admission budget (max_requests per window_seconds)
    - TTLCache: Lazily-expiring cache with single-flight get_or_set
    - RetryOptions / with_retry / RetryPolicy: Classified capped backoff
    - OpenSeaClient: Market data client (listings, floor price)
    - Listing: Normalised marketplace listing

Every call to a rate-limited service goes:
    cache hit?  -> return
    cache miss  -> limiter.acquire(service, key) -> client call (with timeout)
"""

from .cache import CacheEntry, TTLCache
from .client import OpenSeaClient, floor_price
from .http import JsonHttpClient
from .models import Listing, normalize_price
from .rate_limiter import (
    DEFAULT_SERVICE_LIMITS,
    RateLimiterConfig,
    RateLimiterManager,
    WindowedRateLimiter,
    parse_rate_limit,
)
from .retry import RetryOptions, RetryPolicy, is_retryable, with_retry

__all__ = [
    # Rate limiting
    "WindowedRateLimiter",
    "RateLimiterManager",
    "RateLimiterConfig",
    "DEFAULT_SERVICE_LIMITS",
    "parse_rate_limit",
    # Caching
    "TTLCache",
    "CacheEntry",
    # Retry
    "RetryOptions",
    "RetryPolicy",
    "with_retry",
    "is_retryable",
    # Market data
    "JsonHttpClient",
    "OpenSeaClient",
    "Listing",
    "normalize_price",
    "floor_price",
]
