"""
AcquisitionScheduler - Auto-buy polling engine.

Each tick visits every active position concurrently:

    1. stamp last_checked_at
    2. listings via the feed (cache -> rate limiter -> market data, with timeout)
    3. first listing with price <= max_price is the trigger
    4. transfer to the seller under the retry policy, each call with a timeout
    5. confirmed -> PURCHASED + NFT_BOUGHT; anything else -> attempt counted + ERROR

A submission that comes back pending holds its position: later ticks only
ask the wallet about that hash (confirmed -> PURCHASED, failed -> released)
and never send a second transfer while it is unsettled.

A market data failure only means "no trigger this tick"; it never spends an
attempt. Positions are isolated from each other: one position's failure,
or a raising subscriber, never touches another.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from kizuna_bot.errors import (
    ExecutionFailedError,
    InvalidConfigError,
    ServiceTimeoutError,
)
from kizuna_bot.execution.models import TransactionResult, TxStatus
from kizuna_bot.ingestion.cache import TTLCache
from kizuna_bot.ingestion.rate_limiter import RateLimiterManager
from kizuna_bot.ingestion.retry import RetryOptions, with_retry

from .events import Event, EventBus, EventType
from .feed import ListingFeed
from .polling import PollingEngine
from .ports import MarketDataPort, WalletPort
from .positions import (
    AutoBuyConfig,
    AutoBuyPosition,
    Fulfillment,
    PositionStatus,
    TriggerPositionStore,
)
from .triggers import PurchaseTrigger, find_purchase_trigger

logger = logging.getLogger(__name__)


FulfilledCallback = Callable[[AutoBuyPosition, PurchaseTrigger], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[AutoBuyPosition, BaseException], Union[None, Awaitable[None]]]


@dataclass
class SchedulerConfig:
    """
    Auto-buy engine settings.

    Attributes:
        tick_interval_seconds: Time between ticks
        service_name: Rate limiter service the market data port is gated by
        fetch_timeout_seconds: Per-call timeout for listing fetches
        submit_timeout_seconds: Per-call timeout for wallet transfers
        listing_cache_ttl_seconds: Positions on one collection share a fetch
            for this long
        retry: Backoff for transfer submission (timeouts are retried)
        shutdown_grace_seconds: How long stop() lets an in-flight tick finish
    """

    tick_interval_seconds: float = 5.0
    service_name: str = "opensea"
    fetch_timeout_seconds: float = 10.0
    submit_timeout_seconds: float = 30.0
    listing_cache_ttl_seconds: float = 2.0
    retry: RetryOptions = field(
        default_factory=lambda: RetryOptions(max_retries=2, initial_delay=1.0, max_delay=10.0)
    )
    shutdown_grace_seconds: float = 5.0

    def __post_init__(self) -> None:
        for name in (
            "tick_interval_seconds",
            "fetch_timeout_seconds",
            "submit_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise InvalidConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.listing_cache_ttl_seconds < 0:
            raise InvalidConfigError(
                f"listing_cache_ttl_seconds must be >= 0, got {self.listing_cache_ttl_seconds}"
            )


@dataclass(frozen=True)
class UnsettledSubmission:
    """A transfer that came back pending, holding its position."""

    tx_hash: str
    trigger: PurchaseTrigger
    trade_id: Optional[str] = None


class AcquisitionScheduler(PollingEngine):
    """
    Auto-buy engine.

    Usage:
        scheduler = AcquisitionScheduler(market_data=opensea, wallet=wallet)
        scheduler.on_trigger_fulfilled(lambda pos, trig: print(pos.fulfillment))
        position = scheduler.create_position(AutoBuyConfig("0xabc", Decimal("0.3")))
        await scheduler.start(interval=5.0)
    """

    name = "autobuy"

    def __init__(
        self,
        market_data: MarketDataPort,
        wallet: WalletPort,
        rate_limiter: Optional[RateLimiterManager] = None,
        cache: Optional[TTLCache] = None,
        config: Optional[SchedulerConfig] = None,
        store: Optional[TriggerPositionStore] = None,
        event_bus: Optional[EventBus] = None,
        trade_log: Optional[Any] = None,
        feed: Optional[ListingFeed] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or SchedulerConfig()
        super().__init__(
            self.config.tick_interval_seconds,
            shutdown_grace_seconds=self.config.shutdown_grace_seconds,
        )
        self._wallet = wallet
        self._feed = feed or ListingFeed(
            market_data,
            rate_limiter=rate_limiter,
            cache=cache,
            service_name=self.config.service_name,
            fetch_timeout_seconds=self.config.fetch_timeout_seconds,
        )
        self._store = store or TriggerPositionStore()
        self._bus = event_bus or EventBus()
        self._trade_log = trade_log
        self._sleep = sleep
        self._unsettled: Dict[str, UnsettledSubmission] = {}

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> TriggerPositionStore:
        return self._store

    # =========================================================================
    # Position lifecycle
    # =========================================================================

    def create_position(self, config: AutoBuyConfig) -> AutoBuyPosition:
        position = self._store.create(config)
        logger.info(
            f"Created auto-buy {position.id}: {config.collection_address} "
            f"<= {config.max_price} {config.payment_token}"
        )
        return position

    def pause_position(self, position_id: str) -> bool:
        paused = self._store.pause(position_id)
        if paused:
            logger.info(f"Paused auto-buy {position_id}")
        return paused

    def resume_position(self, position_id: str) -> bool:
        resumed = self._store.resume(position_id)
        if resumed:
            logger.info(f"Resumed auto-buy {position_id}")
        return resumed

    def remove_position(self, position_id: str) -> bool:
        removed = self._store.remove(position_id)
        self._unsettled.pop(position_id, None)
        if removed:
            logger.info(f"Removed auto-buy {position_id}")
        return removed

    def get_position(self, position_id: str) -> Optional[AutoBuyPosition]:
        return self._store.get(position_id)

    def get_active_positions(self) -> List[AutoBuyPosition]:
        return self._store.list_active()

    def get_all_positions(self) -> List[AutoBuyPosition]:
        return self._store.list_all()

    def clear_all_positions(self) -> None:
        count = self._store.clear()
        self._unsettled.clear()
        logger.info(f"Cleared {count} auto-buy positions")

    # =========================================================================
    # Observers
    # =========================================================================

    def on_trigger_fulfilled(self, callback: FulfilledCallback) -> None:
        """Called as (position, trigger) after each confirmed purchase."""

        def handler(event: Event):
            return callback(event.data["position"], event.data["trigger"])

        self._bus.subscribe(EventType.NFT_BOUGHT, handler)

    def on_error(self, callback: ErrorCallback) -> None:
        """Called as (position, error) after each failed purchase attempt."""

        def handler(event: Event):
            if "position" not in event.data:
                return None
            return callback(event.data["position"], event.data["error"])

        self._bus.subscribe(EventType.ERROR, handler)

    # =========================================================================
    # Engine
    # =========================================================================

    async def start(self, interval: Optional[float] = None) -> None:
        await super().start(interval_seconds=interval)

    async def _tick(self) -> None:
        positions = self._store.list_active()
        if not positions:
            return

        await asyncio.gather(*(self._process_position(p) for p in positions))

    async def _process_position(self, position: AutoBuyPosition) -> None:
        try:
            checked = self._store.mark_checked(position.id, time.time())
            if checked is None or not checked.is_active:
                return

            if checked.id in self._unsettled:
                if not await self._poll_unsettled(checked.id):
                    return
                checked = self._store.get(checked.id)
                if checked is None or not checked.is_active:
                    return

            collection = checked.config.collection_address
            try:
                listings = await self._feed.get_listings(
                    collection, ttl=self.config.listing_cache_ttl_seconds
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"No listings for {collection} this tick: {e}")
                return

            trigger = find_purchase_trigger(
                listings, checked.config.max_price, checked.config.payment_token
            )
            if trigger is None:
                return

            logger.info(
                f"Auto-buy {checked.id} triggered: token {trigger.token_id} "
                f"at {trigger.price} (max {checked.config.max_price})"
            )
            await self._execute_purchase(checked.id, trigger)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error processing auto-buy {position.id}: {e}", exc_info=True)

    async def _poll_unsettled(self, position_id: str) -> bool:
        """
        Ask the wallet about a position's pending submission.

        Returns True once the position is free to trade again.
        """
        tx_hash = self._unsettled[position_id].tx_hash
        try:
            status = await asyncio.wait_for(
                self._wallet.get_transaction_status(tx_hash),
                timeout=self.config.submit_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Auto-buy {position_id} still waiting on {tx_hash}: {e}")
            return False

        await self.settle_transaction(tx_hash, status)
        return status == TxStatus.FAILED

    async def settle_transaction(self, tx_hash: str, status: TxStatus) -> bool:
        """
        Apply the final status of a submission that first came back pending.

        A confirmation completes the position that sent it (at most once);
        a failure releases the position for new triggers. Returns True if
        the hash belonged to a held position and the status was final.
        """
        position_id = next(
            (pid for pid, held in self._unsettled.items() if held.tx_hash == tx_hash),
            None,
        )
        if position_id is None or status == TxStatus.PENDING:
            return False

        held = self._unsettled.pop(position_id)
        self._update_trade_status(held.trade_id, status)
        if status == TxStatus.FAILED:
            logger.info(f"Auto-buy {position_id} released: {tx_hash} failed")
            return True

        await self._complete_purchase(
            position_id,
            held.trigger,
            TransactionResult(tx_hash=tx_hash, status=TxStatus.CONFIRMED),
            log_trade=False,
        )
        return True

    def is_unsettled(self, position_id: str) -> bool:
        return position_id in self._unsettled

    async def _submit(self, trigger: PurchaseTrigger, payment_token: str) -> TransactionResult:
        timeout = self.config.submit_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self._wallet.transfer(trigger.seller, trigger.price, payment_token),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ServiceTimeoutError(
                f"Transfer to {trigger.seller} timed out after {timeout}s"
            ) from e

        if not result.confirmed:
            raise ExecutionFailedError(
                f"Transaction {result.tx_hash} {result.status.value}",
                tx_hash=result.tx_hash,
                status=result.status.value,
            )
        return result

    async def _execute_purchase(self, position_id: str, trigger: PurchaseTrigger) -> None:
        # Paused or removed since the fetch started
        current = self._store.get(position_id)
        if current is None or not current.is_active:
            return

        payment_token = current.config.payment_token
        try:
            result = await with_retry(
                lambda: self._submit(trigger, payment_token),
                self.config.retry,
                sleep=self._sleep,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_failure(current, trigger, e)
            return

        await self._complete_purchase(position_id, trigger, result)

    async def _complete_purchase(
        self,
        position_id: str,
        trigger: PurchaseTrigger,
        result: TransactionResult,
        log_trade: bool = True,
    ) -> None:
        fulfillment = Fulfillment(
            asset_id=trigger.token_id,
            price=trigger.price,
            tx_hash=result.tx_hash,
            listing_id=trigger.listing_id,
        )
        updated = self._store.record_purchase(position_id, fulfillment)
        if updated is None:
            logger.warning(
                f"Auto-buy {position_id} gone or finished before purchase {result.tx_hash} landed"
            )
            return

        logger.info(
            f"Auto-buy {position_id} purchased token {trigger.token_id} "
            f"for {trigger.price} {updated.config.payment_token}: {result.tx_hash}"
        )
        if log_trade:
            self._log_trade(updated, trigger, result.tx_hash, TxStatus.CONFIRMED)
        await self._bus.publish(
            EventType.NFT_BOUGHT,
            {"position": updated, "trigger": trigger, "result": result},
        )

    async def _handle_failure(
        self,
        position: AutoBuyPosition,
        trigger: PurchaseTrigger,
        error: Exception,
    ) -> None:
        message = str(error) or type(error).__name__
        tx_hash = getattr(error, "tx_hash", None) or ""
        pending = bool(tx_hash) and getattr(error, "status", None) == TxStatus.PENDING.value
        trade_id = self._log_trade(
            position,
            trigger,
            tx_hash,
            TxStatus.PENDING if pending else TxStatus.FAILED,
            notes=message,
        )

        updated = self._store.record_failure(position.id, message)
        if updated is None:
            logger.warning(f"Auto-buy {position.id} removed, dropping failure: {message}")
            return

        if pending:
            # May still land; no new transfer for this position until it settles
            self._unsettled[position.id] = UnsettledSubmission(tx_hash, trigger, trade_id)

        if updated.status == PositionStatus.ACTIVE:
            logger.warning(
                f"Auto-buy {position.id} attempt {updated.attempts}/"
                f"{updated.config.max_retries} failed: {message}"
            )
        else:
            logger.error(
                f"Auto-buy {position.id} gave up after {updated.attempts} attempts "
                f"({updated.status.value}): {message}"
            )

        await self._bus.publish(
            EventType.ERROR,
            {"position": updated, "trigger": trigger, "error": error},
        )

    def _log_trade(
        self,
        position: AutoBuyPosition,
        trigger: PurchaseTrigger,
        tx_hash: str,
        status: TxStatus,
        notes: Optional[str] = None,
    ) -> Optional[str]:
        if self._trade_log is None:
            return None
        try:
            trade = self._trade_log.log_buy(
                wallet_address=self._wallet.address,
                seller=trigger.seller,
                collection_address=position.config.collection_address,
                token_id=trigger.token_id,
                amount=trigger.price,
                payment_token=position.config.payment_token,
                tx_hash=tx_hash,
                status=status,
                notes=notes,
            )
        except Exception as e:
            logger.error(f"Failed to write trade log for {tx_hash or trigger.token_id}: {e}")
            return None
        return getattr(trade, "id", None)

    def _update_trade_status(self, trade_id: Optional[str], status: TxStatus) -> None:
        if self._trade_log is None or trade_id is None:
            return
        try:
            self._trade_log.update_status(trade_id, status)
        except Exception as e:
            logger.error(f"Failed to update trade {trade_id}: {e}")
