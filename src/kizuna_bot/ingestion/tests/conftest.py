"""
Test fixtures for ingestion layer.

IMPORTANT: All external API calls must be mocked.
Never hit real marketplace APIs in tests.
"""
import asyncio
from typing import Any, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest


# =============================================================================
# Time Fixtures
# =============================================================================


class FakeClock:
    """Manually advanced monotonic clock with a sleep that advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Let other tasks run, as a real sleep would
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    """Controllable clock; clock.sleep advances it instead of waiting."""
    return FakeClock()


@pytest.fixture
def recorded_sleeps():
    """A sleep stand-in that records requested delays without waiting."""
    delays: List[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


# =============================================================================
# HTTP Fixtures
# =============================================================================


class FakeResponse:
    """Minimal stand-in for aiohttp.ClientResponse used as a context manager."""

    def __init__(self, status: int = 200, payload: Any = None, text: str = ""):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self) -> Any:
        return self._payload

    async def text(self) -> str:
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return False


def make_session(*responses) -> MagicMock:
    """
    Mock aiohttp ClientSession whose request() yields the given responses
    (or raises them, for exception instances) in order.
    """
    session = MagicMock()
    session.request = MagicMock(side_effect=list(responses))
    session.close = AsyncMock()
    return session


@pytest.fixture
def sample_listing_payload():
    """One OpenSea v2 listing as returned by /v2/listings."""
    return {
        "order_hash": "0xorder1",
        "maker": {"address": "0xseller1"},
        "base_price": "300000000000000000",
        "payment_token": {"symbol": "ETH", "decimals": 18},
        "maker_asset_bundle": {"assets": [{"token_id": "42"}]},
    }


@pytest.fixture
def sample_listings_response(sample_listing_payload):
    """A listings page: a valid 0.3 ETH listing, a 1.5 ETH one, and junk."""
    return {
        "listings": [
            sample_listing_payload,
            {
                "order_hash": "0xorder2",
                "maker": "0xseller2",
                "base_price": "1500000000000000000",
                "payment_token": {"symbol": "ETH", "decimals": 18},
                "maker_asset_bundle": {"assets": [{"token_id": "7"}]},
            },
            {"order_hash": "0xbroken", "base_price": "not-a-number"},
            "garbage",
        ]
    }


@pytest.fixture
def fake_response():
    """FakeResponse class, for building canned HTTP responses."""
    return FakeResponse


@pytest.fixture
def fake_session():
    """Factory for mock sessions: fake_session(response1, response2, ...)."""
    return make_session
