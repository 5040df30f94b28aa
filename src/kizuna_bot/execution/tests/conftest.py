"""
Test fixtures for execution layer.

IMPORTANT: All wallet relay calls must be mocked.
Never submit real transfers in tests.
"""
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest


class RelayResponse:
    """Canned relay response, usable as ``async with session.request(...)``."""

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


@pytest.fixture
def relay_response():
    return RelayResponse


@pytest.fixture
def relay_session():
    """Factory for mock sessions replaying the given responses in order."""

    def build(*responses) -> MagicMock:
        session = MagicMock()
        session.request = MagicMock(side_effect=list(responses))
        session.close = AsyncMock()
        return session

    return build
