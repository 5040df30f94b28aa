"""
Kizuna Bot - Trigger-driven NFT acquisition engine.

Watches marketplace listings for configured collections, buys the first
listing that satisfies a price trigger, and raises recurring price alerts.
Outbound calls are gated by per-service sliding-window rate limiters,
deduplicated through a TTL cache, and retried with classified backoff.
"""

__version__ = "0.1.0"
