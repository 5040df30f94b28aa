"""
Shared test fixtures for cross-layer tests.

This file provides fixtures that span multiple components,
unlike component-specific fixtures in src/kizuna_bot/{component}/tests/conftest.py
"""
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest


class CannedResponse:
    """aiohttp response stand-in returning a fixed JSON payload."""

    def __init__(self, payload: Any, status: int = 200):
        self.status = status
        self._payload = payload

    async def json(self) -> Any:
        return self._payload

    async def text(self) -> str:
        return ""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return False


def wei(amount: str) -> str:
    return str(int(Decimal(amount) * 10**18))


def opensea_listing(order_hash: str, token_id: str, price: str, seller: str = "0xseller") -> dict:
    return {
        "order_hash": order_hash,
        "maker": {"address": seller},
        "base_price": wei(price),
        "payment_token": {"symbol": "ETH", "decimals": 18},
        "maker_asset_bundle": {"assets": [{"token_id": token_id}]},
    }


@pytest.fixture
def opensea_session():
    """
    Mock aiohttp session serving a mutable listings page.

    Set ``session.pages[collection] = [listing, ...]`` to change what the
    marketplace returns.
    """
    session = MagicMock()
    session.pages = {}

    def request(method, url, **kwargs):
        collection = kwargs["params"]["asset_contract_address"]
        return CannedResponse({"listings": session.pages.get(collection, [])})

    session.request = MagicMock(side_effect=request)
    session.close = AsyncMock()
    return session


@pytest.fixture
def listing_payload():
    return opensea_listing


@pytest.fixture
def mock_telegram_api():
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api
