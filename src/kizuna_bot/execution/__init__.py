"""
Execution Layer - Wallet adapters for the execution port.

This module provides:
    - WalletRelayClient: HTTP wallet relay adapter (live trading)
    - DryRunWallet: In-memory paper-trading wallet
    - TransactionResult: Result of a submission (hash, status, block)
    - TxStatus: pending / confirmed / failed

Only a CONFIRMED result counts as a successful purchase. Submission errors
are classified by the shared taxonomy in kizuna_bot.errors so the retry
policy knows which ones to retry.

Usage:
    from kizuna_bot.execution import DryRunWallet

    wallet = DryRunWallet(balance=Decimal("5"))
    result = await wallet.transfer("0xseller", Decimal("0.3"), "eth")
"""

from .models import TransactionResult, TxStatus
from .wallet_client import DryRunWallet, WalletRelayClient

__all__ = [
    "WalletRelayClient",
    "DryRunWallet",
    "TransactionResult",
    "TxStatus",
]
