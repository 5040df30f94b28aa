"""
Event bus for engine notifications.

Each engine owns a bus; there is no process-wide emitter. Subscribers may be
plain functions or coroutines. A subscriber that raises is logged and
skipped, so one bad callback never prevents the others from running or
aborts the tick that published the event.
"""
from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event categories."""

    TRANSACTION_PENDING = "transaction.pending"
    TRANSACTION_CONFIRMED = "transaction.confirmed"
    TRANSACTION_FAILED = "transaction.failed"
    BALANCE_CHANGED = "balance.changed"
    PRICE_ALERT = "price.alert"
    NFT_BOUGHT = "nft.bought"
    NFT_SOLD = "nft.sold"
    ERROR = "error"


@dataclass
class Event:
    """A published event."""

    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """
    Typed publish/subscribe with per-subscriber failure isolation.

    Usage:
        bus = EventBus()
        bus.subscribe(EventType.NFT_BOUGHT, lambda e: print(e.data["position"]))
        await bus.publish(EventType.NFT_BOUGHT, {"position": snapshot})
    """

    def __init__(self) -> None:
        self._handlers: Dict[EventType, List[EventHandler]] = {}
        self._any_handlers: List[EventHandler] = []

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Add a handler. Registrations are additive."""
        self._handlers.setdefault(event_type, []).append(handler)

    def once(self, event_type: EventType, handler: EventHandler) -> EventHandler:
        """Add a handler that unsubscribes itself after its first event."""

        async def wrapper(event: Event) -> None:
            self.unsubscribe(event_type, wrapper)
            result = handler(event)
            if inspect.isawaitable(result):
                await result

        self.subscribe(event_type, wrapper)
        return wrapper

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> bool:
        handlers = self._handlers.get(event_type)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def subscribe_all(self, handler: EventHandler) -> None:
        """Receive every event regardless of type."""
        self._any_handlers.append(handler)

    async def publish(self, event_type: EventType, data: Optional[Dict[str, Any]] = None) -> Event:
        """
        Deliver an event to typed handlers, then catch-all handlers.

        Returns the event. Handler failures are logged, never raised.
        """
        event = Event(type=event_type, data=data or {})
        # Copy: handlers may unsubscribe while we iterate
        handlers = list(self._handlers.get(event_type, [])) + list(self._any_handlers)

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event handler failed for {event_type.value}: {e}", exc_info=True)

        return event

    def remove_all(self, event_type: Optional[EventType] = None) -> None:
        if event_type is not None:
            self._handlers.pop(event_type, None)
        else:
            self._handlers.clear()
            self._any_handlers.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(h) for h in self._handlers.values()) + len(self._any_handlers)
