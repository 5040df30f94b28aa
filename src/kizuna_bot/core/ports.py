"""
Ports consumed by the core engines.

The engines only depend on these contracts; OpenSeaClient, WalletRelayClient
and DryRunWallet are the shipped adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, List, Protocol, runtime_checkable

if TYPE_CHECKING:
    from kizuna_bot.execution.models import TransactionResult, TxStatus
    from kizuna_bot.ingestion.models import Listing


@runtime_checkable
class MarketDataPort(Protocol):
    """Source of current listings for a collection."""

    async def fetch_listings(self, collection_address: str) -> List["Listing"]:
        """Current listings in marketplace order. May raise network/rate-limit errors."""
        ...


@runtime_checkable
class WalletPort(Protocol):
    """Submits transfers and reports on them."""

    @property
    def address(self) -> str:
        ...

    async def transfer(
        self,
        destination: str,
        amount: Decimal,
        payment_token: str = "eth",
    ) -> "TransactionResult":
        ...

    async def get_transaction_status(self, tx_hash: str) -> "TxStatus":
        ...

    async def get_balance(self, payment_token: str = "eth") -> Decimal:
        ...
