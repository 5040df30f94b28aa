"""
Core Layer - Polling state machines.

This module provides:
    - AcquisitionScheduler: Auto-buy engine (listings -> trigger -> transfer)
    - SchedulerConfig: Configuration for the auto-buy engine
    - TriggerPositionStore: Owns auto-buy positions, hands out snapshots
    - AutoBuyConfig / AutoBuyPosition / PositionStatus / Fulfillment
    - AlertEngine: Price alert engine (floor price -> predicate -> callbacks)
    - AlertEngineConfig, AlertStore, PriceAlert, AlertStatus
    - TransactionMonitor / BalanceMonitor: Wallet-side pollers
    - EventBus / EventType / Event: Per-engine publish/subscribe
    - PollingEngine: Non-overlapping periodic driver shared by all engines
    - ListingFeed: Cached, rate-limited market data reads
    - MarketDataPort / WalletPort: Contracts the engines consume

Data Flow:
    1. Tick wakes up (stop event wait timed out)
    2. ListingFeed serves listings from cache or a gated fetch
    3. Trigger predicate picks the first qualifying listing
    4. Wallet transfer under the retry policy
    5. Store update, then event published to subscribers
"""

# Engines
from .acquisition import AcquisitionScheduler, SchedulerConfig
from .alerts import AlertEngine, AlertEngineConfig, AlertStatus, AlertStore, PriceAlert
from .monitors import BalanceMonitor, MonitorConfig, MonitoredTransaction, TransactionMonitor
from .polling import PollingEngine

# Positions and predicates
from .positions import (
    AutoBuyConfig,
    AutoBuyPosition,
    Fulfillment,
    PositionStatus,
    TriggerPositionStore,
)
from .triggers import AlertCondition, PurchaseTrigger, crosses_threshold, find_purchase_trigger

# Plumbing
from .events import Event, EventBus, EventType
from .feed import ListingFeed
from .ports import MarketDataPort, WalletPort

__all__ = [
    # Auto-buy
    "AcquisitionScheduler",
    "SchedulerConfig",
    "TriggerPositionStore",
    "AutoBuyConfig",
    "AutoBuyPosition",
    "PositionStatus",
    "Fulfillment",
    "PurchaseTrigger",
    "find_purchase_trigger",
    # Alerts
    "AlertEngine",
    "AlertEngineConfig",
    "AlertStore",
    "AlertStatus",
    "AlertCondition",
    "PriceAlert",
    "crosses_threshold",
    # Monitors
    "TransactionMonitor",
    "BalanceMonitor",
    "MonitorConfig",
    "MonitoredTransaction",
    # Plumbing
    "PollingEngine",
    "EventBus",
    "EventType",
    "Event",
    "ListingFeed",
    "MarketDataPort",
    "WalletPort",
]
