"""
Storage Layer - Optional trade log.

Positions and alerts live in memory; the only persisted state is the
JSON-lines trade log.

Public API:
    TradeLog - Append log with filters, summary, search, import/export
    LoggedTrade, TradeType, TradeLogSummary - Records
"""
from kizuna_bot.storage.trade_log import LoggedTrade, TradeLog, TradeLogSummary, TradeType

__all__ = [
    "TradeLog",
    "LoggedTrade",
    "TradeType",
    "TradeLogSummary",
]
