"""
Market data models.

Prices are carried as Decimal in whole units of the payment token
(e.g. 0.3 ETH), so they compare directly against configured thresholds.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class Listing:
    """An active marketplace listing."""

    listing_id: str
    token_id: str
    seller: str
    price: Decimal
    payment_token: str = "ETH"
    contract_address: str = ""
    marketplace: str = "opensea"
    url: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def normalize_price(base_price: Union[str, int], decimals: Any = 18) -> Optional[Decimal]:
    """
    Convert an integer on-chain amount (wei-style) to whole units.

    Returns None unless the amount is a finite, non-negative number and
    decimals is a non-negative integer. NaN and Infinity are rejected.
    """
    if base_price is None or isinstance(base_price, bool):
        return None
    try:
        amount = Decimal(str(base_price))
        places = int(decimals)
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite() or amount < 0 or places < 0:
        return None
    return amount.scaleb(-places)
