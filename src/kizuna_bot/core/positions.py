"""
Auto-buy positions and their store.

A position watches one collection and buys the first listing at or below its
max price. Lifecycle:

    active --(confirmed purchase)--> purchased          (terminal)
    active --(pause / exhausted, stop_on_error)--> stopped
    active --(exhausted, not stop_on_error)--> error    (terminal)
    stopped --(resume, attempts reset)--> active

The store owns the records. Reads hand out snapshot copies, and every
mutation goes through a store method that returns None when the record is
gone, so results that arrive after a remove/clear are dropped.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional

from kizuna_bot.errors import InvalidConfigError

logger = logging.getLogger(__name__)


def generate_id(prefix: str) -> str:
    """Random id like ``autobuy_1718000000000_3f9a1c2b7``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def to_decimal(value, field_name: str) -> Decimal:
    """Coerce a user-supplied price to Decimal, rejecting garbage."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise InvalidConfigError(f"{field_name} is not a number: {value!r}") from e
    if not result.is_finite():
        raise InvalidConfigError(f"{field_name} must be finite, got {value!r}")
    return result


class PositionStatus(str, Enum):
    ACTIVE = "active"
    PURCHASED = "purchased"
    STOPPED = "stopped"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({PositionStatus.PURCHASED, PositionStatus.ERROR})


@dataclass(frozen=True)
class AutoBuyConfig:
    """
    What to buy and how hard to try.

    Attributes:
        collection_address: Contract address of the watched collection
        max_price: Inclusive price ceiling, whole units of payment_token
        payment_token: Currency symbol the price is quoted in
        max_retries: Failed purchase attempts allowed before giving up
        stop_on_error: On exhaustion go to STOPPED (resumable) instead of ERROR
    """

    collection_address: str
    max_price: Decimal
    payment_token: str = "eth"
    max_retries: int = 5
    stop_on_error: bool = True

    def __post_init__(self) -> None:
        if not self.collection_address or not self.collection_address.strip():
            raise InvalidConfigError("collection_address is required")
        price = to_decimal(self.max_price, "max_price")
        if price < 0:
            raise InvalidConfigError(f"max_price must be >= 0, got {price}")
        object.__setattr__(self, "max_price", price)
        if not self.payment_token:
            raise InvalidConfigError("payment_token is required")
        if self.max_retries < 1:
            raise InvalidConfigError(f"max_retries must be >= 1, got {self.max_retries}")


@dataclass(frozen=True)
class Fulfillment:
    """The purchase that completed a position."""

    asset_id: str
    price: Decimal
    tx_hash: str
    listing_id: str = ""
    purchased_at: float = field(default_factory=time.time)


@dataclass
class AutoBuyPosition:
    """A position record. Instances handed out by the store are copies."""

    id: str
    config: AutoBuyConfig
    status: PositionStatus = PositionStatus.ACTIVE
    created_at: float = field(default_factory=time.time)
    last_checked_at: Optional[float] = None
    attempts: int = 0
    last_error: Optional[str] = None
    fulfillment: Optional[Fulfillment] = None

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TriggerPositionStore:
    """
    In-memory position store, keyed by id, iterated in insertion order.
    """

    def __init__(self) -> None:
        self._positions: Dict[str, AutoBuyPosition] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, position_id: str) -> bool:
        return position_id in self._positions

    def create(self, config: AutoBuyConfig) -> AutoBuyPosition:
        position = AutoBuyPosition(id=generate_id("autobuy"), config=config)
        position.last_checked_at = position.created_at
        self._positions[position.id] = position
        return replace(position)

    def get(self, position_id: str) -> Optional[AutoBuyPosition]:
        position = self._positions.get(position_id)
        return replace(position) if position else None

    def list_active(self) -> List[AutoBuyPosition]:
        return [replace(p) for p in self._positions.values() if p.is_active]

    def list_all(self) -> List[AutoBuyPosition]:
        return [replace(p) for p in self._positions.values()]

    def pause(self, position_id: str) -> bool:
        position = self._positions.get(position_id)
        if position is None or not position.is_active:
            return False
        position.status = PositionStatus.STOPPED
        return True

    def resume(self, position_id: str) -> bool:
        position = self._positions.get(position_id)
        if position is None or position.status != PositionStatus.STOPPED:
            return False
        position.status = PositionStatus.ACTIVE
        position.attempts = 0
        return True

    def remove(self, position_id: str) -> bool:
        return self._positions.pop(position_id, None) is not None

    def clear(self) -> int:
        count = len(self._positions)
        self._positions.clear()
        return count

    def update_config(self, position_id: str, **changes) -> Optional[AutoBuyPosition]:
        """Replace config fields (validated). Terminal positions are left alone."""
        position = self._positions.get(position_id)
        if position is None or position.is_terminal:
            return None
        position.config = replace(position.config, **changes)
        return replace(position)

    def mark_checked(self, position_id: str, when: Optional[float] = None) -> Optional[AutoBuyPosition]:
        position = self._positions.get(position_id)
        if position is None:
            return None
        position.last_checked_at = when if when is not None else time.time()
        return replace(position)

    def record_purchase(
        self,
        position_id: str,
        fulfillment: Fulfillment,
    ) -> Optional[AutoBuyPosition]:
        """
        Move a position to PURCHASED.

        Returns None if the position is gone or already terminal, so a
        purchase is recorded at most once.
        """
        position = self._positions.get(position_id)
        if position is None or position.is_terminal:
            return None
        position.status = PositionStatus.PURCHASED
        position.fulfillment = fulfillment
        position.last_error = None
        return replace(position)

    def record_failure(self, position_id: str, error: str) -> Optional[AutoBuyPosition]:
        """
        Count a failed attempt and escalate once the budget is spent.

        A position paused while its attempt was in flight keeps its STOPPED
        status; the attempt still counts.
        """
        position = self._positions.get(position_id)
        if position is None or position.is_terminal:
            return None

        position.attempts += 1
        position.last_error = error

        if position.is_active and position.attempts >= position.config.max_retries:
            position.status = (
                PositionStatus.STOPPED if position.config.stop_on_error else PositionStatus.ERROR
            )
            logger.warning(
                f"Position {position_id} exhausted after {position.attempts} attempts "
                f"-> {position.status.value}"
            )
        return replace(position)
