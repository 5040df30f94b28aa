"""
Monitoring Layer - Operator notifications.

This module provides:
    - AlertManager: Telegram alerts with cooldown-based deduplication,
      attachable to any engine's EventBus
"""

from .alerting import AlertManager

__all__ = [
    "AlertManager",
]
