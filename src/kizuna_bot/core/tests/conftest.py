"""
Core layer test fixtures.

Core tests verify orchestration logic, so the market data and wallet
ports are replaced with in-memory fakes.
"""
from decimal import Decimal
from typing import Dict, List

import pytest

from kizuna_bot.core import (
    AcquisitionScheduler,
    AlertEngine,
    AutoBuyConfig,
    SchedulerConfig,
)
from kizuna_bot.execution.models import TransactionResult, TxStatus
from kizuna_bot.ingestion.models import Listing
from kizuna_bot.ingestion.rate_limiter import RateLimiterManager
from kizuna_bot.ingestion.retry import RetryOptions

COLLECTION = "0xcollection"


# =============================================================================
# Port Fakes
# =============================================================================


class FakeMarketData:
    """Market data port returning configured listings per collection."""

    def __init__(self) -> None:
        self.listings: Dict[str, List[Listing]] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []

    async def fetch_listings(self, collection_address: str) -> List[Listing]:
        self.calls.append(collection_address)
        if collection_address in self.errors:
            raise self.errors[collection_address]
        return list(self.listings.get(collection_address, []))


class FakeWallet:
    """
    Wallet port with scripted transfer outcomes.

    ``outcomes`` is consumed per transfer call: a TxStatus yields a result
    with that status, an exception is raised. Once exhausted, transfers
    confirm.
    """

    def __init__(self, address: str = "0xbuyer") -> None:
        self._address = address
        self.outcomes: List = []
        self.transfers: List[tuple] = []
        self.statuses: Dict[str, TxStatus] = {}
        self.balance = Decimal("0")

    @property
    def address(self) -> str:
        return self._address

    async def transfer(self, destination, amount, payment_token="eth") -> TransactionResult:
        self.transfers.append((destination, amount, payment_token))
        outcome = self.outcomes.pop(0) if self.outcomes else TxStatus.CONFIRMED
        if isinstance(outcome, BaseException):
            raise outcome
        return TransactionResult(tx_hash=f"0xtx{len(self.transfers)}", status=outcome)

    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        return self.statuses.get(tx_hash, TxStatus.PENDING)

    async def get_balance(self, payment_token: str = "eth") -> Decimal:
        if isinstance(self.balance, BaseException):
            raise self.balance
        return self.balance


def make_listing(price, listing_id="l1", token_id="1", seller="0xseller", token="ETH") -> Listing:
    return Listing(
        listing_id=listing_id,
        token_id=token_id,
        seller=seller,
        price=Decimal(str(price)),
        payment_token=token,
        contract_address=COLLECTION,
    )


@pytest.fixture
def market_data():
    return FakeMarketData()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def listing_factory():
    return make_listing


@pytest.fixture
def no_sleep():
    """Sleep stand-in that returns immediately and records delays."""
    delays: List[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def scheduler_config():
    """Fast config: no listing cache, quick retries."""
    return SchedulerConfig(
        tick_interval_seconds=0.01,
        listing_cache_ttl_seconds=0,
        retry=RetryOptions(max_retries=0),
        shutdown_grace_seconds=1.0,
    )


@pytest.fixture
def scheduler(market_data, wallet, scheduler_config, no_sleep):
    return AcquisitionScheduler(
        market_data=market_data,
        wallet=wallet,
        rate_limiter=RateLimiterManager(include_defaults=False),
        config=scheduler_config,
        sleep=no_sleep,
    )


@pytest.fixture
def autobuy_config():
    return AutoBuyConfig(collection_address=COLLECTION, max_price=Decimal("0.3"))


@pytest.fixture
def alert_engine(market_data):
    return AlertEngine(
        market_data=market_data,
        rate_limiter=RateLimiterManager(include_defaults=False),
    )
