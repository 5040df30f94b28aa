"""
Kizuna Bot - Main Entry Point

Runs the auto-buy and price-alert engines against OpenSea listings.

Usage:
    kizuna-bot [--dry-run] [--positions positions.json]
    kizuna-bot --mode autobuy     # Run only the auto-buy engine
    kizuna-bot --mode alerts      # Run only the price-alert engine
    kizuna-bot --mode all         # Run everything (default)

Configuration:
    The bot reads configuration from:
    1. Environment variables (a .env file in the working directory is loaded first)
    2. A JSON positions file seeding auto-buy positions and alerts
    3. Command line arguments

Environment Variables:
    DRY_RUN                    "true" for paper trading (default: true)
    LOG_LEVEL                  Logging level (DEBUG/INFO/WARNING/ERROR)
    OPENSEA_API_KEY            OpenSea API key
    OPENSEA_RATE_LIMIT         Override as "requests/seconds" (default: 2/1)
    WALLET_RELAY_URL           Wallet relay base URL (required when DRY_RUN=false)
    WALLET_RELAY_TOKEN         Bearer token for the wallet relay
    AUTOBUY_INTERVAL_SECONDS   Auto-buy tick interval (default: 5)
    ALERT_INTERVAL_SECONDS     Price alert tick interval (default: 60)
    FETCH_TIMEOUT_SECONDS      Listing fetch timeout (default: 10)
    SUBMIT_TIMEOUT_SECONDS     Transfer submit timeout (default: 30)
    LISTING_CACHE_TTL_SECONDS  Listing cache lifetime for auto-buy (default: 2)
    TRADE_LOG_PATH             JSON-lines trade log (optional)
    TELEGRAM_BOT_TOKEN         Telegram bot token for alerts
    TELEGRAM_CHAT_ID           Telegram chat ID for alerts
    POSITIONS_FILE             Positions file (default: positions.json)

Positions file:
    {
      "autobuy": [{"collection_address": "0x..", "max_price": "0.3",
                   "max_retries": 5, "stop_on_error": true}],
      "alerts":  [{"collection_address": "0x..", "target_price": "2.0",
                   "condition": "above"}]
    }

Live Mode Requirements:
    When DRY_RUN=false the bot requires WALLET_RELAY_URL and fails fast
    without it.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from kizuna_bot.core import (
    AcquisitionScheduler,
    AlertEngine,
    AlertEngineConfig,
    AutoBuyConfig,
    BalanceMonitor,
    Event,
    EventType,
    MonitoredTransaction,
    SchedulerConfig,
    TransactionMonitor,
)
from kizuna_bot.errors import InvalidConfigError
from kizuna_bot.execution import DryRunWallet, TxStatus, WalletRelayClient
from kizuna_bot.ingestion import (
    OpenSeaClient,
    RateLimiterConfig,
    RateLimiterManager,
    TTLCache,
    parse_rate_limit,
)
from kizuna_bot.monitoring import AlertManager
from kizuna_bot.storage import TradeLog

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


@dataclass
class BotConfig:
    """Complete bot configuration."""

    # Trading
    dry_run: bool = True
    positions_file: str = "positions.json"

    # Market data
    opensea_api_key: Optional[str] = None
    opensea_rate_limit: Optional[RateLimiterConfig] = None
    fetch_timeout_seconds: float = 10.0
    listing_cache_ttl_seconds: float = 2.0

    # Execution
    wallet_relay_url: Optional[str] = None
    wallet_relay_token: Optional[str] = None
    submit_timeout_seconds: float = 30.0

    # Engines
    autobuy_interval_seconds: float = 5.0
    alert_interval_seconds: float = 60.0

    # Storage
    trade_log_path: Optional[str] = None

    # Alerts
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    @classmethod
    def from_env(cls) -> "BotConfig":
        """
        Load configuration from environment variables.

        Raises:
            InvalidConfigError: A numeric or rate limit value doesn't parse
        """
        rate_limit = os.environ.get("OPENSEA_RATE_LIMIT")
        try:
            return cls(
                dry_run=_env_bool("DRY_RUN", "true"),
                positions_file=os.environ.get("POSITIONS_FILE", "positions.json"),
                opensea_api_key=os.environ.get("OPENSEA_API_KEY"),
                opensea_rate_limit=parse_rate_limit(rate_limit) if rate_limit else None,
                fetch_timeout_seconds=float(os.environ.get("FETCH_TIMEOUT_SECONDS", "10")),
                listing_cache_ttl_seconds=float(os.environ.get("LISTING_CACHE_TTL_SECONDS", "2")),
                wallet_relay_url=os.environ.get("WALLET_RELAY_URL"),
                wallet_relay_token=os.environ.get("WALLET_RELAY_TOKEN"),
                submit_timeout_seconds=float(os.environ.get("SUBMIT_TIMEOUT_SECONDS", "30")),
                autobuy_interval_seconds=float(os.environ.get("AUTOBUY_INTERVAL_SECONDS", "5")),
                alert_interval_seconds=float(os.environ.get("ALERT_INTERVAL_SECONDS", "60")),
                trade_log_path=os.environ.get("TRADE_LOG_PATH") or None,
                telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN"),
                telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID"),
            )
        except ValueError as e:
            if isinstance(e, InvalidConfigError):
                raise
            raise InvalidConfigError(f"Bad numeric setting: {e}") from e

    def validate(self) -> None:
        """Raises InvalidConfigError for settings that can't run."""
        if not self.dry_run and not self.wallet_relay_url:
            raise InvalidConfigError("Live trading requires WALLET_RELAY_URL")


def load_positions_file(path: str) -> Dict[str, Any]:
    """
    Read the positions file. A missing file means no seeded positions.

    Raises:
        InvalidConfigError: File exists but isn't valid JSON of the expected shape
    """
    positions_path = Path(path)
    if not positions_path.exists():
        return {"autobuy": [], "alerts": []}

    try:
        with open(positions_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InvalidConfigError(f"{path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfigError(f"{path} must contain a JSON object")
    for section in ("autobuy", "alerts"):
        if not isinstance(data.get(section, []), list):
            raise InvalidConfigError(f"{path}: '{section}' must be a list")

    logger.info(f"Loaded positions from {positions_path}")
    return {"autobuy": data.get("autobuy", []), "alerts": data.get("alerts", [])}


class KizunaBot:
    """
    Main bot orchestrator.

    Manages the lifecycle of all components:
    - Market data client and wallet adapter
    - Auto-buy scheduler and price alert engine
    - Transaction and balance monitors
    - Trade log and Telegram alerts
    """

    STATS_INTERVAL = 60  # seconds

    def __init__(self, config: BotConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Shared between engines so they share fetches and rate budget
        self.rate_limiter = RateLimiterManager()
        if config.opensea_rate_limit is not None:
            self.rate_limiter.register(OpenSeaClient.SERVICE_NAME, config.opensea_rate_limit)
        self.cache = TTLCache()

        self.market_data = OpenSeaClient(
            api_key=config.opensea_api_key,
            timeout=config.fetch_timeout_seconds,
        )
        if config.dry_run:
            self.wallet = DryRunWallet()
        else:
            self.wallet = WalletRelayClient(
                config.wallet_relay_url,
                token=config.wallet_relay_token,
                timeout=config.submit_timeout_seconds,
            )

        self.trade_log = TradeLog(config.trade_log_path) if config.trade_log_path else None
        self.alert_manager = AlertManager(
            telegram_bot_token=config.telegram_bot_token,
            telegram_chat_id=config.telegram_chat_id,
        )

        self.scheduler = AcquisitionScheduler(
            market_data=self.market_data,
            wallet=self.wallet,
            rate_limiter=self.rate_limiter,
            cache=self.cache,
            config=SchedulerConfig(
                tick_interval_seconds=config.autobuy_interval_seconds,
                service_name=OpenSeaClient.SERVICE_NAME,
                fetch_timeout_seconds=config.fetch_timeout_seconds,
                submit_timeout_seconds=config.submit_timeout_seconds,
                listing_cache_ttl_seconds=config.listing_cache_ttl_seconds,
            ),
            trade_log=self.trade_log,
        )
        self.alert_engine = AlertEngine(
            market_data=self.market_data,
            rate_limiter=self.rate_limiter,
            cache=self.cache,
            config=AlertEngineConfig(
                tick_interval_seconds=config.alert_interval_seconds,
                service_name=OpenSeaClient.SERVICE_NAME,
                fetch_timeout_seconds=config.fetch_timeout_seconds,
            ),
        )
        self.tx_monitor = TransactionMonitor(self.wallet)
        self.balance_monitor = BalanceMonitor(self.wallet)

        if self.alert_manager.enabled:
            self.alert_manager.attach(self.scheduler.event_bus)
            self.alert_manager.attach(self.alert_engine.event_bus)
        self.scheduler.event_bus.subscribe(EventType.ERROR, self._on_purchase_error)

    def seed(self, positions: Dict[str, Any]) -> None:
        """Create the positions and alerts described by a positions file."""
        for entry in positions.get("autobuy", []):
            try:
                self.scheduler.create_position(AutoBuyConfig(**entry))
            except (TypeError, InvalidConfigError) as e:
                raise InvalidConfigError(f"Bad auto-buy entry {entry!r}: {e}") from e

        for entry in positions.get("alerts", []):
            try:
                self.alert_engine.create_alert(
                    entry["collection_address"],
                    Decimal(str(entry["target_price"])),
                    entry["condition"],
                )
            except (KeyError, ArithmeticError) as e:
                raise InvalidConfigError(f"Bad alert entry {entry!r}: {e}") from e

    async def start(self, mode: str = "all") -> None:
        """
        Start the bot and run until shutdown.

        Args:
            mode: "all", "autobuy", or "alerts"
        """
        logger.info("=" * 60)
        logger.info("KIZUNA BOT")
        logger.info("=" * 60)
        logger.info(f"Mode: {mode.upper()}")
        logger.info(f"Trading: {'DRY RUN' if self.config.dry_run else 'LIVE'}")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            if mode in ("all", "autobuy"):
                await self.scheduler.start(interval=self.config.autobuy_interval_seconds)
                await self.balance_monitor.start()

            if mode in ("all", "alerts"):
                await self.alert_engine.start(interval=self.config.alert_interval_seconds)

            logger.info("Bot started successfully")
            logger.info("Press Ctrl+C to stop")

            await self._run_loop()

        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the bot gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        # Stop components in reverse order
        for component in (self.tx_monitor, self.balance_monitor, self.alert_engine, self.scheduler):
            try:
                await component.stop()
            except Exception as e:
                logger.warning(f"Error stopping {component.name}: {e}")

        for client in (self.market_data, self.wallet):
            close = getattr(client, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {type(client).__name__}: {e}")

        logger.info("Shutdown complete")

    async def request_shutdown(self, reason: str = "manual") -> None:
        if not self._running:
            return
        logger.warning(f"Shutdown requested: {reason}")
        self._running = False
        self._shutdown_event.set()

    async def _on_purchase_error(self, event: Event) -> None:
        # A submission that didn't confirm in time may still land on chain
        tx_hash = getattr(event.data.get("error"), "tx_hash", None)
        if tx_hash:
            await self.tx_monitor.watch(tx_hash, on_update=self._on_late_settlement)

    async def _on_late_settlement(self, tx: MonitoredTransaction) -> None:
        applied = await self.scheduler.settle_transaction(tx.tx_hash, tx.status)
        if tx.status != TxStatus.CONFIRMED:
            return
        logger.warning(
            f"Transaction {tx.tx_hash} confirmed after its attempt was counted as failed"
            f" (purchase {'recorded' if applied else 'already settled'})"
        )
        if self.alert_manager.enabled:
            self.alert_manager.send_alert(
                title="Late Confirmation",
                message=f"Tx {tx.tx_hash} confirmed after being counted as failed",
                dedup_key=f"late_{tx.tx_hash}",
                priority="high",
            )

    async def _run_loop(self) -> None:
        """Wait for shutdown, logging stats periodically."""
        while self._running:
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.STATS_INTERVAL,
                )
                break  # Shutdown requested
            except asyncio.TimeoutError:
                pass

            positions = self.scheduler.get_all_positions()
            active = sum(1 for p in positions if p.is_active)
            logger.info(
                f"Stats: positions={len(positions)} active={active}, "
                f"alerts={len(self.alert_engine.get_active_alerts())}, "
                f"pending_tx={len(self.tx_monitor.pending_transactions())}, "
                f"balance={self.balance_monitor.current_balance}"
            )

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def handle_signal(sig):
            logger.info(f"Received signal {sig}")
            self._running = False
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def load_env_file(path: str = ".env") -> None:
    """Load environment variables from .env file if it exists."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Kizuna NFT auto-buy and price alert bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run in paper trading mode (no real transfers)",
    )
    parser.add_argument(
        "--mode",
        choices=["all", "autobuy", "alerts"],
        default="all",
        help="Which engines to run (default: all)",
    )
    parser.add_argument(
        "--positions",
        type=str,
        help="Path to positions file (overrides POSITIONS_FILE)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    try:
        config = BotConfig.from_env()
        if args.dry_run:
            config.dry_run = True
        if args.positions:
            config.positions_file = args.positions
        config.validate()
        positions = load_positions_file(config.positions_file)
    except InvalidConfigError as e:
        logger.error(str(e))
        return 1

    bot = KizunaBot(config)
    try:
        bot.seed(positions)
    except InvalidConfigError as e:
        logger.error(str(e))
        return 1

    try:
        await bot.start(mode=args.mode)
        return 0
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
        return 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    logging.basicConfig(
        level=getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )

    load_env_file()
    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
