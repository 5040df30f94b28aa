"""
Wallet-side monitors.

TransactionMonitor polls the status of submitted transactions until they
settle. Its loop runs only while something is being watched.

BalanceMonitor polls the wallet balance and reports changes.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Union

from kizuna_bot.errors import InvalidConfigError
from kizuna_bot.execution.models import TxStatus
from kizuna_bot.ingestion.retry import RetryOptions, with_retry

from .events import EventBus, EventType
from .polling import PollingEngine
from .ports import WalletPort

logger = logging.getLogger(__name__)


_STATUS_EVENTS = {
    TxStatus.PENDING: EventType.TRANSACTION_PENDING,
    TxStatus.CONFIRMED: EventType.TRANSACTION_CONFIRMED,
    TxStatus.FAILED: EventType.TRANSACTION_FAILED,
}


@dataclass
class MonitorConfig:
    """
    Attributes:
        tx_interval_seconds: Transaction status poll interval
        balance_interval_seconds: Balance poll interval
        call_timeout_seconds: Timeout for each wallet query
        retry: Backoff for status queries
    """

    tx_interval_seconds: float = 5.0
    balance_interval_seconds: float = 30.0
    call_timeout_seconds: float = 10.0
    retry: RetryOptions = field(
        default_factory=lambda: RetryOptions(max_retries=2, initial_delay=1.0)
    )

    def __post_init__(self) -> None:
        for name in ("tx_interval_seconds", "balance_interval_seconds", "call_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise InvalidConfigError(f"{name} must be > 0, got {getattr(self, name)}")


@dataclass
class MonitoredTransaction:
    tx_hash: str
    status: TxStatus = TxStatus.PENDING
    watched_at: float = field(default_factory=time.time)
    last_checked_at: Optional[float] = None

    @property
    def settled(self) -> bool:
        return self.status != TxStatus.PENDING


TransactionCallback = Callable[[MonitoredTransaction], Union[None, Awaitable[None]]]
BalanceCallback = Callable[[Decimal], Union[None, Awaitable[None]]]


async def _call(callback, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class TransactionMonitor(PollingEngine):
    """
    Watches pending transactions until they confirm or fail.

    Usage:
        monitor = TransactionMonitor(wallet)
        await monitor.watch(result.tx_hash, on_update=lambda tx: print(tx.status))
    """

    name = "tx_monitor"

    def __init__(
        self,
        wallet: WalletPort,
        config: Optional[MonitorConfig] = None,
        event_bus: Optional[EventBus] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or MonitorConfig()
        super().__init__(self.config.tx_interval_seconds)
        self._wallet = wallet
        self._bus = event_bus or EventBus()
        self._sleep = sleep
        self._pending: Dict[str, MonitoredTransaction] = {}
        self._callbacks: Dict[str, List[TransactionCallback]] = {}

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    async def watch(
        self,
        tx_hash: str,
        on_update: Optional[TransactionCallback] = None,
    ) -> MonitoredTransaction:
        """Start watching a hash. The polling loop starts with the first watch."""
        tx = self._pending.get(tx_hash)
        if tx is None:
            tx = MonitoredTransaction(tx_hash=tx_hash)
            self._pending[tx_hash] = tx
            logger.info(f"Watching transaction {tx_hash}")

        if on_update is not None:
            self._callbacks.setdefault(tx_hash, []).append(on_update)

        if not self.is_running:
            await self.start()
        return replace(tx)

    async def stop_watching(self, tx_hash: str) -> bool:
        removed = self._pending.pop(tx_hash, None) is not None
        self._callbacks.pop(tx_hash, None)
        if not self._pending:
            await self.stop()
        return removed

    async def stop_all(self) -> None:
        self._pending.clear()
        self._callbacks.clear()
        await self.stop()

    def pending_transactions(self) -> List[MonitoredTransaction]:
        return [replace(tx) for tx in self._pending.values()]

    def set_polling_interval(self, seconds: float) -> None:
        self.set_interval(seconds)

    async def _query_status(self, tx_hash: str) -> TxStatus:
        return await with_retry(
            lambda: asyncio.wait_for(
                self._wallet.get_transaction_status(tx_hash),
                timeout=self.config.call_timeout_seconds,
            ),
            self.config.retry,
            sleep=self._sleep,
        )

    async def _tick(self) -> None:
        for tx_hash in list(self._pending):
            try:
                status = await self._query_status(tx_hash)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error checking transaction {tx_hash}: {e}")
                continue

            tx = self._pending.get(tx_hash)
            if tx is None:
                continue  # stop_watching() while we were asking

            tx.status = status
            tx.last_checked_at = time.time()
            snapshot = replace(tx)
            callbacks = list(self._callbacks.get(tx_hash, []))

            if tx.settled:
                logger.info(f"Transaction {tx_hash} {status.value}")
                del self._pending[tx_hash]
                self._callbacks.pop(tx_hash, None)

            for callback in callbacks:
                try:
                    await _call(callback, snapshot)
                except Exception as e:
                    logger.error(f"Transaction callback failed for {tx_hash}: {e}", exc_info=True)

            await self._bus.publish(_STATUS_EVENTS[status], {"transaction": snapshot})

        if not self._pending:
            await self.stop()


class BalanceMonitor(PollingEngine):
    """
    Reports wallet balance changes.

    Checks once on start, then every ``balance_interval_seconds``. The last
    known balance starts at zero, so the first non-zero reading is a change.
    """

    name = "balance_monitor"

    def __init__(
        self,
        wallet: WalletPort,
        payment_token: str = "eth",
        config: Optional[MonitorConfig] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or MonitorConfig()
        super().__init__(self.config.balance_interval_seconds)
        self._wallet = wallet
        self._payment_token = payment_token
        self._bus = event_bus or EventBus()
        self._last_known = Decimal("0")
        self._callbacks: List[BalanceCallback] = []

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def current_balance(self) -> Decimal:
        return self._last_known

    def on_balance_change(self, callback: BalanceCallback) -> None:
        self._callbacks.append(callback)

    async def start(self, interval: Optional[float] = None) -> None:
        await super().start(interval_seconds=interval, run_immediately=True)

    async def check_balance(self) -> bool:
        """Poll once now. Returns True if the balance changed."""
        try:
            balance = await asyncio.wait_for(
                self._wallet.get_balance(self._payment_token),
                timeout=self.config.call_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error checking balance: {e}")
            return False

        if balance == self._last_known:
            return False

        previous, self._last_known = self._last_known, balance
        logger.info(f"Balance changed: {previous} -> {balance} {self._payment_token}")

        for callback in list(self._callbacks):
            try:
                await _call(callback, balance)
            except Exception as e:
                logger.error(f"Balance callback failed: {e}", exc_info=True)

        await self._bus.publish(
            EventType.BALANCE_CHANGED,
            {"balance": balance, "previous": previous, "payment_token": self._payment_token},
        )
        return True

    async def _tick(self) -> None:
        await self.check_balance()
