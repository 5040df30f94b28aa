"""
Alert Manager for Telegram notifications.

Sends alerts with deduplication to prevent spam. attach() wires it to an
engine's event bus so purchases, exhausted positions and price alerts are
forwarded without the engines knowing about Telegram.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from kizuna_bot.core.events import Event, EventBus, EventType
from kizuna_bot.ingestion.cache import TTLCache

logger = logging.getLogger(__name__)


class AlertManager:
    """
    Manages alerts with deduplication.

    Sends alerts via Telegram and drops duplicates (same dedup key) within a
    cooldown window.

    Usage:
        manager = AlertManager(
            telegram_bot_token="...",
            telegram_chat_id="...",
        )
        manager.attach(scheduler.event_bus)
        manager.attach(alert_engine.event_bus)

        # Or directly
        manager.send_alert(title="Hello", message="...", dedup_key="hello")
    """

    DEFAULT_COOLDOWN = 300  # 5 minutes

    def __init__(
        self,
        telegram_bot_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        default_cooldown: int = DEFAULT_COOLDOWN,
        _telegram_api: Optional[Any] = None,  # For testing
        _dedup_cache: Optional[TTLCache] = None,  # For testing
    ) -> None:
        """
        Initialize the alert manager.

        Args:
            telegram_bot_token: Bot token from @BotFather
            telegram_chat_id: Chat ID to send messages to
            default_cooldown: Default cooldown between duplicate alerts
            _telegram_api: Injected API client for testing
            _dedup_cache: Injected cache (controllable clock) for testing
        """
        self._bot_token = telegram_bot_token
        self._chat_id = telegram_chat_id
        self._default_cooldown = default_cooldown
        self._telegram_api = _telegram_api

        # Keys live exactly as long as their cooldown
        self._recent = _dedup_cache or TTLCache(default_ttl=default_cooldown)
        self._sent_counts: Counter = Counter()

    @property
    def enabled(self) -> bool:
        return self._telegram_api is not None or bool(self._bot_token and self._chat_id)

    def send_alert(
        self,
        title: str,
        message: str,
        dedup_key: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
        priority: str = "normal",
    ) -> bool:
        """
        Send an alert via Telegram.

        Args:
            title: Alert title
            message: Alert message body
            dedup_key: Key for deduplication (None to skip dedup)
            cooldown_seconds: Cooldown for this specific alert
            priority: Priority level ("low", "normal", "high", "critical")

        Returns:
            True if alert was sent, False if deduplicated or failed
        """
        if dedup_key and self._recent.has(dedup_key):
            logger.debug(f"Deduplicated alert: {dedup_key}")
            return False

        formatted = self._format_message(title, message, priority)
        success = self._send_telegram(formatted)

        if dedup_key and success:
            self._recent.set(dedup_key, True, ttl=cooldown_seconds or self._default_cooldown)
            self._sent_counts[dedup_key] += 1

        return success

    def alert_purchase(
        self,
        position_id: str,
        collection_address: str,
        token_id: str,
        price: Decimal,
        payment_token: str,
        tx_hash: str,
    ) -> bool:
        """Auto-buy position filled."""
        message = f"""
Position: {position_id}
Collection: {collection_address}
Token: {token_id}
Price: {price} {payment_token.upper()}
Tx: {tx_hash}
"""
        return self.send_alert(
            title="🟢 NFT Purchased",
            message=message,
            dedup_key=f"purchase_{position_id}",
            cooldown_seconds=60,
            priority="normal",
        )

    def alert_position_failed(
        self,
        position_id: str,
        collection_address: str,
        attempts: int,
        status: str,
        error: str,
    ) -> bool:
        """Auto-buy position gave up after exhausting its attempts."""
        message = f"""
Position: {position_id}
Collection: {collection_address}
Attempts: {attempts}
Status: {status}
Last Error: {error}
"""
        return self.send_alert(
            title="🔴 Auto-Buy Gave Up",
            message=message,
            dedup_key=f"failed_{position_id}",
            cooldown_seconds=300,
            priority="high",
        )

    def alert_price(
        self,
        alert_id: str,
        collection_address: str,
        condition: str,
        target_price: Decimal,
        current_price: Decimal,
    ) -> bool:
        """Price alert fired. Repeats for the same alert inside the cooldown are dropped."""
        arrow = "📈" if condition == "above" else "📉"
        message = f"""
Collection: {collection_address}
Condition: {condition} {target_price}
Current: {current_price}
"""
        return self.send_alert(
            title=f"{arrow} Price Alert",
            message=message,
            dedup_key=f"price_{alert_id}",
        )

    # =========================================================================
    # Event bus wiring
    # =========================================================================

    def attach(self, bus: EventBus) -> None:
        """Forward purchase, exhaustion and price-alert events from ``bus``."""
        bus.subscribe(EventType.NFT_BOUGHT, self._on_purchase)
        bus.subscribe(EventType.ERROR, self._on_error)
        bus.subscribe(EventType.PRICE_ALERT, self._on_price_alert)

    async def _on_purchase(self, event: Event) -> None:
        position = event.data["position"]
        trigger = event.data["trigger"]
        await asyncio.to_thread(
            self.alert_purchase,
            position.id,
            position.config.collection_address,
            trigger.token_id,
            trigger.price,
            position.config.payment_token,
            position.fulfillment.tx_hash if position.fulfillment else "",
        )

    async def _on_error(self, event: Event) -> None:
        position = event.data.get("position")
        # Only exhausted positions are worth a message
        if position is None or position.is_active:
            return
        await asyncio.to_thread(
            self.alert_position_failed,
            position.id,
            position.config.collection_address,
            position.attempts,
            position.status.value,
            position.last_error or "",
        )

    async def _on_price_alert(self, event: Event) -> None:
        alert = event.data["alert"]
        await asyncio.to_thread(
            self.alert_price,
            alert.id,
            alert.collection_address,
            alert.condition.value,
            alert.target_price,
            event.data["price"],
        )

    def _format_message(
        self,
        title: str,
        message: str,
        priority: str,
    ) -> str:
        """Format alert message for Telegram."""
        priority_markers = {
            "critical": "🚨🚨🚨",
            "high": "⚠️",
            "normal": "",
            "low": "ℹ️",
        }

        marker = priority_markers.get(priority, "")
        header = f"{marker} *{title}*" if marker else f"*{title}*"

        return f"{header}\n\n{message.strip()}"

    def _send_telegram(self, text: str) -> bool:
        """Send message via Telegram API."""
        if self._telegram_api:
            try:
                self._telegram_api.send_message(
                    chat_id=self._chat_id,
                    text=text,
                    parse_mode="Markdown",
                )
                return True
            except Exception as e:
                logger.error(f"Telegram API error: {e}")
                return False

        if not self._bot_token or not self._chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": text,
            "parse_mode": "Markdown",
        }
        try:
            response = requests.post(url, json=payload, timeout=10)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send Telegram alert: {e}")
            return False

        logger.info(f"Sent Telegram alert: {text[:50]}...")
        return True

    def clear_dedup_cache(self) -> None:
        """Clear the deduplication cache."""
        self._recent.clear()
        self._sent_counts.clear()

    def get_alert_stats(self) -> Dict[str, int]:
        """Get statistics about sent alerts."""
        return {
            "unique_alerts": len(self._sent_counts),
            "total_sent": sum(self._sent_counts.values()),
        }
