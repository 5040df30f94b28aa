"""
Execution models.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TxStatus(str, Enum):
    """Lifecycle of a submitted transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransactionResult:
    """What the wallet reports after a submission."""

    tx_hash: str
    status: TxStatus
    block_number: Optional[int] = None

    @property
    def confirmed(self) -> bool:
        return self.status == TxStatus.CONFIRMED
