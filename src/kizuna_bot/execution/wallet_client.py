"""
Wallet adapters implementing the execution port.

WalletRelayClient talks JSON over HTTP to an external wallet/signing relay;
key management and transaction construction live on the relay side.
DryRunWallet is the paper-trading stand-in used when DRY_RUN=true.
"""
from __future__ import annotations

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from kizuna_bot.errors import ErrorCode, KizunaError, ServiceError
from kizuna_bot.ingestion.http import JsonHttpClient

from .models import TransactionResult, TxStatus

logger = logging.getLogger(__name__)


def _validate_transfer(destination: str, amount: Decimal) -> None:
    if not destination or not destination.strip():
        raise KizunaError("Destination address is required", code=ErrorCode.INVALID_ADDRESS)
    if amount <= 0:
        raise KizunaError(
            f"Transfer amount must be positive, got {amount}",
            code=ErrorCode.TRANSACTION_FAILED,
        )


def _parse_status(value: Any) -> TxStatus:
    try:
        return TxStatus(str(value).lower())
    except ValueError:
        return TxStatus.PENDING


class WalletRelayClient(JsonHttpClient):
    """
    Execution port backed by an HTTP wallet relay.

    Relay contract:
        POST /transfers              {"to", "amount", "token"} -> {"hash", "status", "blockNumber"}
        GET  /transactions/{hash}    -> {"hash", "status"}
        GET  /balance?token=eth      -> {"address", "balance"}

    Usage:
        async with WalletRelayClient(base_url, token="...") as wallet:
            result = await wallet.transfer("0xseller", Decimal("0.3"), "eth")
    """

    SERVICE_NAME = "wallet"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        address: str = "",
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        super().__init__(base_url=base_url, session=session, timeout=timeout, headers=headers)
        self._address = address

    @property
    def address(self) -> str:
        return self._address

    async def transfer(
        self,
        destination: str,
        amount: Decimal,
        payment_token: str = "eth",
    ) -> TransactionResult:
        """Submit a transfer of ``amount`` ``payment_token`` to ``destination``."""
        _validate_transfer(destination, amount)

        payload = await self._request(
            "POST",
            "/transfers",
            json={"to": destination, "amount": str(amount), "token": payment_token},
        )
        if not isinstance(payload, dict) or not payload.get("hash"):
            raise ServiceError(f"Malformed transfer response: {payload!r}", retryable=False)

        block = payload.get("blockNumber")
        return TransactionResult(
            tx_hash=str(payload["hash"]),
            status=_parse_status(payload.get("status")),
            block_number=int(block) if block is not None else None,
        )

    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        payload = await self._request("GET", f"/transactions/{tx_hash}")
        if not isinstance(payload, dict):
            return TxStatus.PENDING
        return _parse_status(payload.get("status"))

    async def get_balance(self, payment_token: str = "eth") -> Decimal:
        payload = await self._request("GET", "/balance", params={"token": payment_token})
        if not isinstance(payload, dict):
            raise ServiceError(f"Malformed balance response: {payload!r}", retryable=False)
        if payload.get("address") and not self._address:
            self._address = str(payload["address"])
        try:
            return Decimal(str(payload.get("balance", "0")))
        except InvalidOperation as e:
            raise ServiceError(f"Bad balance value: {payload.get('balance')!r}") from e


class DryRunWallet:
    """
    Paper-trading wallet.

    Transfers confirm immediately against an in-memory balance and are
    recorded in ``transfers`` for inspection.
    """

    def __init__(
        self,
        balance: Decimal = Decimal("10"),
        address: str = "0x00000000000000000000000000000000000d0d0d",
    ) -> None:
        self._balance = balance
        self._address = address
        self._transactions: Dict[str, TxStatus] = {}
        self.transfers: List[Dict[str, Any]] = []

    @property
    def address(self) -> str:
        return self._address

    async def transfer(
        self,
        destination: str,
        amount: Decimal,
        payment_token: str = "eth",
    ) -> TransactionResult:
        _validate_transfer(destination, amount)
        if amount > self._balance:
            raise KizunaError(
                f"Insufficient balance: {self._balance} < {amount}",
                code=ErrorCode.INSUFFICIENT_BALANCE,
            )

        tx_hash = "0x" + uuid.uuid4().hex + uuid.uuid4().hex
        self._balance -= amount
        self._transactions[tx_hash] = TxStatus.CONFIRMED
        self.transfers.append(
            {"to": destination, "amount": amount, "token": payment_token, "hash": tx_hash}
        )
        logger.info(f"[DRY RUN] Transfer {amount} {payment_token} to {destination}: {tx_hash}")
        return TransactionResult(tx_hash=tx_hash, status=TxStatus.CONFIRMED)

    async def get_transaction_status(self, tx_hash: str) -> TxStatus:
        return self._transactions.get(tx_hash, TxStatus.FAILED)

    async def get_balance(self, payment_token: str = "eth") -> Decimal:
        return self._balance
