"""
Trade log - Append-only record of trades.

Trades are kept in memory and, when a path is given, mirrored to a JSON-lines
file: one line appended per new trade, the whole file rewritten on status
updates, clear and import. An existing file is loaded on construction.
"""
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from kizuna_bot.execution.models import TxStatus

logger = logging.getLogger(__name__)


class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    TRANSFER = "transfer"
    SWAP = "swap"


@dataclass
class LoggedTrade:
    """One trade record."""

    id: str
    timestamp: float
    type: TradeType
    wallet_address: str
    amount: Decimal
    payment_token: str
    tx_hash: str
    status: TxStatus
    collection_address: Optional[str] = None
    token_id: Optional[str] = None
    counterparty: Optional[str] = None
    gas_used: Optional[str] = None
    gas_fee: Optional[Decimal] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def date(self) -> str:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "date": self.date,
            "type": self.type.value,
            "wallet_address": self.wallet_address,
            "amount": str(self.amount),
            "payment_token": self.payment_token,
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "collection_address": self.collection_address,
            "token_id": self.token_id,
            "counterparty": self.counterparty,
            "gas_used": self.gas_used,
            "gas_fee": str(self.gas_fee) if self.gas_fee is not None else None,
            "notes": self.notes,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggedTrade":
        gas_fee = data.get("gas_fee")
        return cls(
            id=str(data["id"]),
            timestamp=float(data["timestamp"]),
            type=TradeType(data["type"]),
            wallet_address=str(data.get("wallet_address", "")),
            amount=Decimal(str(data.get("amount", "0"))),
            payment_token=str(data.get("payment_token", "eth")),
            tx_hash=str(data.get("tx_hash", "")),
            status=TxStatus(data.get("status", "pending")),
            collection_address=data.get("collection_address"),
            token_id=data.get("token_id"),
            counterparty=data.get("counterparty"),
            gas_used=data.get("gas_used"),
            gas_fee=Decimal(str(gas_fee)) if gas_fee is not None else None,
            notes=data.get("notes"),
            metadata=data.get("metadata") or {},
        )


@dataclass
class TradeLogSummary:
    total_trades: int
    buys: int
    sells: int
    transfers: int
    swaps: int
    total_volume: Decimal
    total_gas_fees: Decimal
    success_rate: Decimal  # percent of trades confirmed, 2 dp
    period_start: float
    period_end: float


class TradeLog:
    """
    Usage:
        log = TradeLog("trades.jsonl")
        trade = log.log_buy(
            wallet_address="0xme", collection_address="0xabc", token_id="42",
            amount=Decimal("0.3"), tx_hash="0x..",
        )
        log.summary().success_rate
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self._path = Path(path) if path else None
        self._trades: List[LoggedTrade] = []
        if self._path is not None and self._path.exists():
            self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def __len__(self) -> int:
        return len(self._trades)

    # =========================================================================
    # Writing
    # =========================================================================

    def log_trade(
        self,
        trade_type: TradeType,
        wallet_address: str,
        amount: Union[Decimal, str],
        payment_token: str = "eth",
        tx_hash: str = "",
        status: TxStatus = TxStatus.CONFIRMED,
        collection_address: Optional[str] = None,
        token_id: Optional[str] = None,
        counterparty: Optional[str] = None,
        gas_used: Optional[str] = None,
        gas_fee: Optional[Decimal] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> LoggedTrade:
        trade = LoggedTrade(
            id=f"trade_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=time.time(),
            type=TradeType(trade_type),
            wallet_address=wallet_address,
            amount=Decimal(str(amount)),
            payment_token=payment_token,
            tx_hash=tx_hash,
            status=TxStatus(status),
            collection_address=collection_address,
            token_id=token_id,
            counterparty=counterparty,
            gas_used=gas_used,
            gas_fee=gas_fee,
            notes=notes,
            metadata=metadata or {},
        )
        self._trades.append(trade)
        self._append(trade)
        return trade

    def log_buy(
        self,
        wallet_address: str,
        collection_address: str,
        token_id: str,
        amount: Union[Decimal, str],
        payment_token: str = "eth",
        tx_hash: str = "",
        status: TxStatus = TxStatus.CONFIRMED,
        seller: Optional[str] = None,
        **extra,
    ) -> LoggedTrade:
        return self.log_trade(
            TradeType.BUY,
            wallet_address,
            amount,
            payment_token,
            tx_hash,
            status,
            collection_address=collection_address,
            token_id=token_id,
            counterparty=seller,
            **extra,
        )

    def log_sell(
        self,
        wallet_address: str,
        collection_address: str,
        token_id: str,
        amount: Union[Decimal, str],
        payment_token: str = "eth",
        tx_hash: str = "",
        status: TxStatus = TxStatus.CONFIRMED,
        buyer: Optional[str] = None,
        **extra,
    ) -> LoggedTrade:
        return self.log_trade(
            TradeType.SELL,
            wallet_address,
            amount,
            payment_token,
            tx_hash,
            status,
            collection_address=collection_address,
            token_id=token_id,
            counterparty=buyer,
            **extra,
        )

    def log_transfer(
        self,
        wallet_address: str,
        amount: Union[Decimal, str],
        payment_token: str = "eth",
        tx_hash: str = "",
        status: TxStatus = TxStatus.CONFIRMED,
        to: Optional[str] = None,
        **extra,
    ) -> LoggedTrade:
        return self.log_trade(
            TradeType.TRANSFER,
            wallet_address,
            amount,
            payment_token,
            tx_hash,
            status,
            counterparty=to,
            **extra,
        )

    def update_status(self, trade_id: str, status: TxStatus) -> bool:
        trade = self._find(trade_id)
        if trade is None:
            return False
        trade.status = TxStatus(status)
        self._rewrite()
        return True

    def clear(self) -> None:
        self._trades = []
        self._rewrite()

    # =========================================================================
    # Reading
    # =========================================================================

    def get(self, trade_id: str) -> Optional[LoggedTrade]:
        return self._find(trade_id)

    def all_trades(self) -> List[LoggedTrade]:
        """Every trade, newest first."""
        return self._newest_first(self._trades)

    def by_wallet(self, address: str) -> List[LoggedTrade]:
        address = address.lower()
        return self._newest_first(t for t in self._trades if t.wallet_address.lower() == address)

    def by_collection(self, address: str) -> List[LoggedTrade]:
        address = address.lower()
        return self._newest_first(
            t for t in self._trades if (t.collection_address or "").lower() == address
        )

    def by_type(self, trade_type: TradeType) -> List[LoggedTrade]:
        trade_type = TradeType(trade_type)
        return self._newest_first(t for t in self._trades if t.type == trade_type)

    def by_status(self, status: TxStatus) -> List[LoggedTrade]:
        status = TxStatus(status)
        return self._newest_first(t for t in self._trades if t.status == status)

    def in_range(self, start: float, end: float) -> List[LoggedTrade]:
        """Trades with start <= timestamp <= end, newest first."""
        return self._newest_first(t for t in self._trades if start <= t.timestamp <= end)

    def search(self, query: str) -> List[LoggedTrade]:
        """Case-insensitive substring match on hash, collection, token id and notes."""
        query = query.lower()
        results = []
        for trade in self._trades:
            fields = (trade.tx_hash, trade.collection_address, trade.token_id, trade.notes)
            if any(value and query in value.lower() for value in fields):
                results.append(trade)
        return results

    def summary(self, start: Optional[float] = None, end: Optional[float] = None) -> TradeLogSummary:
        """Counts and volume, optionally restricted to a time range."""
        if start is not None or end is not None:
            trades = self.in_range(start if start is not None else 0.0, end if end is not None else time.time())
        else:
            trades = list(self._trades)

        confirmed = [t for t in trades if t.status == TxStatus.CONFIRMED]
        counts = {trade_type: 0 for trade_type in TradeType}
        for trade in trades:
            counts[trade.type] += 1

        if trades:
            rate = (Decimal(len(confirmed)) * 100 / Decimal(len(trades))).quantize(Decimal("0.01"))
        else:
            rate = Decimal("0")

        now = time.time()
        return TradeLogSummary(
            total_trades=len(trades),
            buys=counts[TradeType.BUY],
            sells=counts[TradeType.SELL],
            transfers=counts[TradeType.TRANSFER],
            swaps=counts[TradeType.SWAP],
            total_volume=sum((t.amount for t in confirmed), Decimal("0")),
            total_gas_fees=sum((t.gas_fee or Decimal("0") for t in trades), Decimal("0")),
            success_rate=rate,
            period_start=start if start is not None else min((t.timestamp for t in trades), default=now),
            period_end=end if end is not None else now,
        )

    # =========================================================================
    # Import / export
    # =========================================================================

    def export_json(self) -> str:
        return json.dumps([t.to_dict() for t in self._trades], indent=2)

    def import_json(self, text: str) -> int:
        """
        Replace the log with trades from a JSON array.

        Raises:
            ValueError: Not a JSON array of trade objects
        """
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError("Trade import must be a JSON array")
        try:
            trades = [LoggedTrade.from_dict(item) for item in data]
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ValueError(f"Malformed trade record: {e}") from e

        self._trades = trades
        self._rewrite()
        return len(trades)

    # =========================================================================
    # Internals
    # =========================================================================

    def _find(self, trade_id: str) -> Optional[LoggedTrade]:
        for trade in self._trades:
            if trade.id == trade_id:
                return trade
        return None

    @staticmethod
    def _newest_first(trades) -> List[LoggedTrade]:
        return sorted(trades, key=lambda t: t.timestamp, reverse=True)

    def _load(self) -> None:
        with open(self._path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self._trades.append(LoggedTrade.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError, ArithmeticError) as e:
                    logger.warning(f"Skipping bad trade log line {line_no} in {self._path}: {e}")
        logger.info(f"Loaded {len(self._trades)} trades from {self._path}")

    def _append(self, trade: LoggedTrade) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(json.dumps(trade.to_dict()) + "\n")

    def _rewrite(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            for trade in self._trades:
                f.write(json.dumps(trade.to_dict()) + "\n")
        os.replace(tmp, self._path)
