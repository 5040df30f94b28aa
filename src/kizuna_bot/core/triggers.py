"""
Trigger predicates.

Both predicates are inclusive at the threshold: a listing priced exactly at
max_price buys, and a price exactly at an alert's target fires it.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from kizuna_bot.ingestion.models import Listing

# Wrapped ether is quoted the same as ether
_TOKEN_ALIASES = {"weth": "eth"}


class AlertCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"


@dataclass(frozen=True)
class PurchaseTrigger:
    """The listing that satisfied a position's predicate."""

    listing_id: str
    token_id: str
    price: Decimal
    seller: str
    payment_token: str
    url: str = ""

    @classmethod
    def from_listing(cls, listing: Listing) -> "PurchaseTrigger":
        return cls(
            listing_id=listing.listing_id,
            token_id=listing.token_id,
            price=listing.price,
            seller=listing.seller,
            payment_token=listing.payment_token,
            url=listing.url,
        )


def _unit(token: str) -> str:
    token = (token or "").lower()
    return _TOKEN_ALIASES.get(token, token)


def same_unit(a: str, b: str) -> bool:
    return _unit(a) == _unit(b)


def find_purchase_trigger(
    listings: Iterable[Listing],
    max_price: Decimal,
    payment_token: Optional[str] = None,
) -> Optional[PurchaseTrigger]:
    """
    First listing, in the order given, priced at or below max_price.

    Listings quoted in a different currency than payment_token, or with a
    non-finite price, are skipped.
    """
    for listing in listings:
        if payment_token and not same_unit(listing.payment_token, payment_token):
            continue
        if not listing.price.is_finite():
            continue
        if listing.price <= max_price:
            return PurchaseTrigger.from_listing(listing)
    return None


def crosses_threshold(price: Decimal, target: Decimal, condition: AlertCondition) -> bool:
    if condition == AlertCondition.ABOVE:
        return price >= target
    return price <= target
