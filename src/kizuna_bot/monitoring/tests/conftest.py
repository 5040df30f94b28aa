"""
Monitoring layer test fixtures.

Tests Telegram alerting. Telegram is always mocked.
"""
from unittest.mock import MagicMock

import pytest

from kizuna_bot.ingestion.cache import TTLCache
from kizuna_bot.monitoring.alerting import AlertManager


class ManualClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def mock_telegram_api():
    """Mock Telegram API client."""
    api = MagicMock()
    api.send_message = MagicMock(return_value={"ok": True})
    return api


@pytest.fixture
def dedup_clock():
    return ManualClock()


@pytest.fixture
def alert_manager(mock_telegram_api, dedup_clock):
    """AlertManager with mocked Telegram and a controllable dedup clock."""
    return AlertManager(
        telegram_chat_id="12345",
        default_cooldown=300,
        _telegram_api=mock_telegram_api,
        _dedup_cache=TTLCache(default_ttl=300, clock=dedup_clock),
    )
