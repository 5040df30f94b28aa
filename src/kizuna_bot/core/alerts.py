"""
Price alerts and the engine that evaluates them.

An alert fires every tick its condition holds and stays active; it never
retires itself. Prices come from an injected ``price_fetcher`` or, by
default, the floor (lowest listing) read through the shared ListingFeed.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from kizuna_bot.errors import InvalidConfigError
from kizuna_bot.ingestion.cache import TTLCache
from kizuna_bot.ingestion.client import floor_price
from kizuna_bot.ingestion.rate_limiter import RateLimiterManager

from .events import Event, EventBus, EventType
from .feed import ListingFeed
from .polling import PollingEngine
from .ports import MarketDataPort
from .positions import generate_id, to_decimal
from .triggers import AlertCondition, crosses_threshold

logger = logging.getLogger(__name__)


AlertCallback = Callable[["PriceAlert", Decimal], Union[None, Awaitable[None]]]
PriceFetcher = Callable[[List[str]], Awaitable[Mapping[str, Decimal]]]


class AlertStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class PriceAlert:
    """An alert record. Instances handed out by the store are copies."""

    id: str
    collection_address: str
    target_price: Decimal
    condition: AlertCondition
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: float = field(default_factory=time.time)
    last_checked_at: Optional[float] = None
    last_triggered_at: Optional[float] = None
    trigger_count: int = 0
    last_price: Optional[Decimal] = None

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE


@dataclass
class AlertEngineConfig:
    """
    Alert engine settings.

    Attributes:
        tick_interval_seconds: Time between ticks
        service_name: Rate limiter service for the default floor-price path
        fetch_timeout_seconds: Timeout for a price fetch
        price_cache_ttl_seconds: How long a fetched listing set is reused
        shutdown_grace_seconds: How long stop() lets an in-flight tick finish
    """

    tick_interval_seconds: float = 60.0
    service_name: str = "opensea"
    fetch_timeout_seconds: float = 10.0
    price_cache_ttl_seconds: float = 30.0
    shutdown_grace_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.tick_interval_seconds <= 0:
            raise InvalidConfigError(
                f"tick_interval_seconds must be > 0, got {self.tick_interval_seconds}"
            )
        if self.fetch_timeout_seconds <= 0:
            raise InvalidConfigError(
                f"fetch_timeout_seconds must be > 0, got {self.fetch_timeout_seconds}"
            )
        if self.price_cache_ttl_seconds < 0:
            raise InvalidConfigError(
                f"price_cache_ttl_seconds must be >= 0, got {self.price_cache_ttl_seconds}"
            )


class AlertStore:
    """In-memory alert store, keyed by id, iterated in insertion order."""

    def __init__(self) -> None:
        self._alerts: Dict[str, PriceAlert] = {}

    def __len__(self) -> int:
        return len(self._alerts)

    def __contains__(self, alert_id: str) -> bool:
        return alert_id in self._alerts

    def create(
        self,
        collection_address: str,
        target_price: Union[Decimal, str, float],
        condition: Union[AlertCondition, str],
    ) -> PriceAlert:
        if not collection_address or not collection_address.strip():
            raise InvalidConfigError("collection_address is required")
        target = to_decimal(target_price, "target_price")
        if target < 0:
            raise InvalidConfigError(f"target_price must be >= 0, got {target}")
        try:
            condition = AlertCondition(condition)
        except ValueError as e:
            raise InvalidConfigError(f"condition must be 'above' or 'below', got {condition!r}") from e

        alert = PriceAlert(
            id=generate_id("alert"),
            collection_address=collection_address,
            target_price=target,
            condition=condition,
        )
        self._alerts[alert.id] = alert
        return replace(alert)

    def get(self, alert_id: str) -> Optional[PriceAlert]:
        alert = self._alerts.get(alert_id)
        return replace(alert) if alert else None

    def list(self, collection_address: Optional[str] = None) -> List[PriceAlert]:
        return [
            replace(a)
            for a in self._alerts.values()
            if collection_address is None or a.collection_address == collection_address
        ]

    def list_active(self, collection_address: Optional[str] = None) -> List[PriceAlert]:
        return [a for a in self.list(collection_address) if a.is_active]

    def set_active(self, alert_id: str, active: bool) -> bool:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return False
        alert.status = AlertStatus.ACTIVE if active else AlertStatus.INACTIVE
        return True

    def remove(self, alert_id: str) -> bool:
        return self._alerts.pop(alert_id, None) is not None

    def clear(self) -> int:
        count = len(self._alerts)
        self._alerts.clear()
        return count

    def record_check(
        self,
        alert_id: str,
        price: Decimal,
        triggered: bool,
        when: Optional[float] = None,
    ) -> Optional[PriceAlert]:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return None
        now = when if when is not None else time.time()
        alert.last_checked_at = now
        alert.last_price = price
        if triggered:
            alert.last_triggered_at = now
            alert.trigger_count += 1
        return replace(alert)


class AlertEngine(PollingEngine):
    """
    Price alert engine.

    Usage:
        engine = AlertEngine(market_data=opensea)
        alert = engine.create_alert("0xabc", Decimal("2.0"), "above")
        engine.on_alert_triggered(alert.id, lambda a, price: print(price))
        await engine.start(interval=60.0)
    """

    name = "alerts"

    def __init__(
        self,
        market_data: Optional[MarketDataPort] = None,
        price_fetcher: Optional[PriceFetcher] = None,
        rate_limiter: Optional[RateLimiterManager] = None,
        cache: Optional[TTLCache] = None,
        config: Optional[AlertEngineConfig] = None,
        store: Optional[AlertStore] = None,
        event_bus: Optional[EventBus] = None,
        feed: Optional[ListingFeed] = None,
    ) -> None:
        self.config = config or AlertEngineConfig()
        super().__init__(
            self.config.tick_interval_seconds,
            shutdown_grace_seconds=self.config.shutdown_grace_seconds,
        )
        if feed is None and market_data is not None:
            feed = ListingFeed(
                market_data,
                rate_limiter=rate_limiter,
                cache=cache,
                service_name=self.config.service_name,
                fetch_timeout_seconds=self.config.fetch_timeout_seconds,
                key_prefix="prices",
            )
        if feed is None and price_fetcher is None:
            raise InvalidConfigError("AlertEngine needs market_data or a price_fetcher")

        self._feed = feed
        self._price_fetcher = price_fetcher
        self._store = store or AlertStore()
        self._bus = event_bus or EventBus()
        self._callbacks: Dict[str, List[AlertCallback]] = {}

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    # =========================================================================
    # Alert lifecycle
    # =========================================================================

    def create_alert(
        self,
        collection_address: str,
        target_price: Union[Decimal, str, float],
        condition: Union[AlertCondition, str],
    ) -> PriceAlert:
        alert = self._store.create(collection_address, target_price, condition)
        logger.info(
            f"Created alert {alert.id}: {collection_address} "
            f"{alert.condition.value} {alert.target_price}"
        )
        return alert

    def get_alerts(self, collection_address: Optional[str] = None) -> List[PriceAlert]:
        return self._store.list(collection_address)

    def get_active_alerts(self, collection_address: Optional[str] = None) -> List[PriceAlert]:
        return self._store.list_active(collection_address)

    def get_alert(self, alert_id: str) -> Optional[PriceAlert]:
        return self._store.get(alert_id)

    def remove_alert(self, alert_id: str) -> bool:
        self._callbacks.pop(alert_id, None)
        return self._store.remove(alert_id)

    def toggle_alert(self, alert_id: str, active: bool) -> bool:
        return self._store.set_active(alert_id, active)

    def clear_all_alerts(self) -> None:
        count = self._store.clear()
        self._callbacks.clear()
        logger.info(f"Cleared {count} alerts")

    # =========================================================================
    # Observers
    # =========================================================================

    def on_alert_triggered(self, alert_id: str, callback: AlertCallback) -> None:
        """Called as (alert, price) each time this alert fires."""
        self._callbacks.setdefault(alert_id, []).append(callback)

    def remove_callback(self, alert_id: str, callback: AlertCallback) -> bool:
        callbacks = self._callbacks.get(alert_id)
        if not callbacks or callback not in callbacks:
            return False
        callbacks.remove(callback)
        return True

    def on_triggered(self, callback: AlertCallback) -> None:
        """Called as (alert, price) each time any alert fires."""

        def handler(event: Event):
            return callback(event.data["alert"], event.data["price"])

        self._bus.subscribe(EventType.PRICE_ALERT, handler)

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def check_alerts(self, prices: Mapping[str, Union[Decimal, str, float]]) -> List[PriceAlert]:
        """
        Evaluate every active alert against ``prices`` (collection -> price).

        Collections missing from ``prices`` are skipped. Returns the alerts
        that fired, as updated snapshots.
        """
        triggered: List[PriceAlert] = []
        now = time.time()

        for alert in self._store.list_active():
            raw = prices.get(alert.collection_address)
            if raw is None:
                continue
            try:
                price = to_decimal(raw, "price")
            except InvalidConfigError:
                logger.warning(f"Ignoring bad price for {alert.collection_address}: {raw!r}")
                continue

            fired = crosses_threshold(price, alert.target_price, alert.condition)
            updated = self._store.record_check(alert.id, price, fired, now)
            if updated is None or not fired:
                continue

            logger.info(
                f"Alert {alert.id} fired: {alert.collection_address} at {price} "
                f"({alert.condition.value} {alert.target_price})"
            )
            triggered.append(updated)
            await self._notify(updated, price)

        return triggered

    async def _notify(self, alert: PriceAlert, price: Decimal) -> None:
        for callback in list(self._callbacks.get(alert.id, [])):
            try:
                result = callback(alert, price)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Alert callback failed for {alert.id}: {e}", exc_info=True)

        await self._bus.publish(EventType.PRICE_ALERT, {"alert": alert, "price": price})

    async def fetch_prices(self, collections: Iterable[str]) -> Dict[str, Decimal]:
        """Current price per collection. Collections that fail are left out."""
        collections = list(dict.fromkeys(collections))
        if not collections:
            return {}

        if self._price_fetcher is not None:
            try:
                prices = await asyncio.wait_for(
                    self._price_fetcher(collections),
                    timeout=self.config.fetch_timeout_seconds,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Price fetch failed: {e}")
                return {}
            return dict(prices or {})

        results = await asyncio.gather(
            *(self._floor_for(c) for c in collections),
            return_exceptions=True,
        )
        prices: Dict[str, Decimal] = {}
        for collection, result in zip(collections, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"Floor price fetch failed for {collection}: {result}")
            elif result is not None:
                prices[collection] = result
        return prices

    async def _floor_for(self, collection_address: str) -> Optional[Decimal]:
        listings = await self._feed.get_listings(
            collection_address, ttl=self.config.price_cache_ttl_seconds
        )
        return floor_price(listings)

    async def start(self, interval: Optional[float] = None) -> None:
        await super().start(interval_seconds=interval)

    async def _tick(self) -> None:
        active = self._store.list_active()
        if not active:
            return
        prices = await self.fetch_prices(a.collection_address for a in active)
        await self.check_alerts(prices)
