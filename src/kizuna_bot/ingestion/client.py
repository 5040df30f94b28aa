"""
OpenSea market data client.

Implements the market-data port used by the acquisition and alert engines:
fetch the current listings of a collection, with prices normalised to whole
units of the payment token.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from .http import JsonHttpClient
from .models import Listing, normalize_price
from .retry import RetryOptions

logger = logging.getLogger(__name__)


class OpenSeaClient(JsonHttpClient):
    """
    Async client for OpenSea listings.

    Usage:
        async with OpenSeaClient(api_key="...") as client:
            listings = await client.fetch_listings("0xcollection")
            floor = await client.get_floor_price("0xcollection")
    """

    SERVICE_NAME = "opensea"
    API_BASE = "https://api.opensea.io"
    LISTINGS_PATH = "/v2/listings"

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = API_BASE,
        timeout: float = 10.0,
        listing_limit: int = 10,
        retry_options: Optional[RetryOptions] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            api_key: OpenSea API key (sent as X-API-KEY)
            session: Optional aiohttp session
            base_url: API root
            timeout: Request timeout in seconds
            listing_limit: Listings requested per fetch
            retry_options: Retry transient failures (None = single attempt)
        """
        headers = {"X-API-KEY": api_key} if api_key else {}
        super().__init__(
            base_url=base_url,
            session=session,
            timeout=timeout,
            headers=headers,
            retry_options=retry_options,
        )
        self._listing_limit = listing_limit

    async def fetch_listings(
        self,
        collection_address: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Listing]:
        """
        Fetch active listings for a collection, in API order.

        Entries that can't be parsed are skipped.
        """
        payload = await self._request(
            "GET",
            self.LISTINGS_PATH,
            params={
                "asset_contract_address": collection_address,
                "limit": max(1, limit or self._listing_limit),
                "offset": max(0, offset),
            },
        )

        raw_listings = payload.get("listings") if isinstance(payload, dict) else None
        if not isinstance(raw_listings, list):
            return []

        listings = []
        for item in raw_listings:
            if not isinstance(item, dict):
                continue
            listing = self._parse_listing(item, collection_address)
            if listing is not None:
                listings.append(listing)
        return listings

    async def get_floor_price(self, collection_address: str) -> Optional[Decimal]:
        """Lowest listed price for a collection, or None if nothing is listed."""
        listings = await self.fetch_listings(collection_address)
        return floor_price(listings)

    def _parse_listing(self, data: Dict[str, Any], collection_address: str) -> Optional[Listing]:
        payment = data.get("payment_token") or {}
        if not isinstance(payment, dict):
            payment = {}
        decimals = payment.get("decimals")
        if decimals is None:
            decimals = 18
        symbol = payment.get("symbol") or "ETH"

        price = normalize_price(data.get("base_price"), decimals)
        if price is None:
            logger.debug(f"Skipping listing without usable price: {data.get('order_hash')}")
            return None

        bundle = data.get("maker_asset_bundle") or {}
        assets = bundle.get("assets") if isinstance(bundle, dict) else None
        token_id = ""
        if isinstance(assets, list) and assets and isinstance(assets[0], dict):
            token_id = str(assets[0].get("token_id") or "")

        maker = data.get("maker") or ""
        if isinstance(maker, dict):
            maker = maker.get("address", "")

        contract = str(data.get("asset_contract_address") or collection_address)

        return Listing(
            listing_id=str(data.get("order_hash") or ""),
            token_id=token_id,
            seller=str(maker),
            price=price,
            payment_token=str(symbol),
            contract_address=contract,
            marketplace="opensea",
            url=f"https://opensea.io/assets/{contract}/{token_id}",
            raw=data,
        )


def floor_price(listings: List[Listing]) -> Optional[Decimal]:
    """Lowest finite price among listings, or None if there is none."""
    prices = [listing.price for listing in listings if listing.price.is_finite()]
    return min(prices) if prices else None
