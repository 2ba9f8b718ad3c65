"""
Coin Trader - Main Entry Point

Each service runs as its own process and they coordinate only through
PostgreSQL (LISTEN/NOTIFY channels and session advisory locks).

Usage:
    python -m coin_trader.main --service candle-save  # Candle ingestion
    python -m coin_trader.main --service analysis     # Signal pipeline
    python -m coin_trader.main --service trading      # Order execution
    python -m coin_trader.main --service manager      # Notifications, maintenance

Environment Variables:
    DATABASE_URL              PostgreSQL connection string
    LOG_LEVEL                 Logging level (DEBUG/INFO/WARNING/ERROR)
    CRYPTO_CODE               Market symbol (default: KRW-BTC)
    STRATEGIES                Comma list of buy-path strategies
    SELL_STRATEGIES           Comma list of sell-path strategies (default: STRATEGIES)
    STRATEGY_WEIGHTS          Weight overrides, e.g. "RSI=0.8,MACD=1.0"
    BUY_THRESHOLD             Score quantized to BUY at or above (default: 0.3)
    SELL_THRESHOLD            Score quantized to SELL at or below (default: -0.3)
    TAKE_PROFIT               Profit rate (%) that forces a sell (default: 5)
    STOP_LOSS                 Profit rate (%) that forces a sell (default: -3)
    MIN_HOLDING_VALUE         Holding value above which we are holding (default: 100)
    MIN_ORDER_AMOUNT          Minimum quote amount for a buy (default: 10000)
    MAX_RECONNECT_ATTEMPTS    Session reconnect attempts (default: 5)
    RECONNECT_DELAY           Seconds between reconnect attempts (default: 5)
    ORDER_POLL_ATTEMPTS       Fill polls per order (default: 3)
    ORDER_POLL_DELAY          Seconds between fill polls (default: 3)
    CANDLE_INTERVAL_SECONDS   Ingestion interval (default: 60)
    CANDLE_RETENTION_HOURS    Candle retention for daily cleanup (default: 48)
    QUIET_WINDOW              HH:MM-HH:MM with no analyze events (default: 00:00-00:15)
    UPBIT_API_URL             Exchange REST base URL
    UPBIT_OPEN_API_ACCESS_KEY Exchange access key
    UPBIT_OPEN_API_SECRET_KEY Exchange secret key
    DISCORD_WEBHOOK_URL       Operator notification webhook
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import fcntl
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, Generator, List, Optional

# Configure logging before imports
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

from coin_trader.core.pipeline import PipelineConfig
from coin_trader.core.service import TraderService
from coin_trader.core.supervisor import SupervisorConfig
from coin_trader.execution.order_coordinator import OrderConfig
from coin_trader.ingestion.client import UpbitClient
from coin_trader.ingestion.service import IngestionConfig, parse_quiet_window
from coin_trader.monitoring.alerting import DiscordNotifier
from coin_trader.storage.database import Database, DatabaseConfig
from coin_trader.strategies.ensemble import EnsembleConfig

SERVICES = ("candle-save", "analysis", "trading", "manager")
DEFAULT_STRATEGIES = "RSI,MACD,BOLLINGER,STOCHASTIC,MA,VOLUME"


class SingletonServiceError(Exception):
    """Raised when another instance of the same service is already running."""
    pass


def pid_file_for(service: str) -> str:
    return f"/tmp/coin-trader-{service}.pid"


@contextmanager
def singleton_lock(pid_file: str) -> Generator[None, None, None]:
    """
    Ensure only one instance of a service runs at a time.

    Uses fcntl.LOCK_EX | fcntl.LOCK_NB on the PID file; the lock is released
    when the process exits.

    Raises:
        SingletonServiceError: If another instance is already running
    """
    pid_path = Path(pid_file)

    # Read existing PID before opening (which would truncate)
    existing_pid = None
    try:
        existing_pid = pid_path.read_text().strip()
    except FileNotFoundError:
        pass

    fp = open(pid_path, "a+")

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fp.close()
        if existing_pid:
            raise SingletonServiceError(
                f"Another instance is already running (PID: {existing_pid}). "
                f"Kill it with: kill {existing_pid}"
            )
        raise SingletonServiceError(f"Another instance holds {pid_file}")

    fp.seek(0)
    fp.truncate()
    fp.write(str(os.getpid()))
    fp.flush()

    def cleanup():
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
            fp.close()
            pid_path.unlink(missing_ok=True)
        except OSError:
            pass

    atexit.register(cleanup)

    try:
        yield
    finally:
        cleanup()
        atexit.unregister(cleanup)


def _split_list(value: str) -> List[str]:
    return [item.strip().upper() for item in value.split(",") if item.strip()]


def parse_weights(value: str) -> Dict[str, float]:
    """Parse "RSI=0.8,MACD=1.0" into {"RSI": 0.8, "MACD": 1.0}."""
    weights: Dict[str, float] = {}
    for item in value.split(","):
        if not item.strip():
            continue
        name, sep, weight = item.partition("=")
        if not sep:
            raise ValueError(f"Invalid strategy weight {item!r}, expected NAME=WEIGHT")
        weights[name.strip().upper()] = float(weight)
    return weights


@dataclass
class TraderConfig:
    """Process configuration, read from the environment."""

    database_url: str = DatabaseConfig().url
    symbol: str = "KRW-BTC"
    strategies: List[str] = field(default_factory=lambda: _split_list(DEFAULT_STRATEGIES))
    sell_strategies: List[str] = field(default_factory=lambda: _split_list(DEFAULT_STRATEGIES))
    strategy_weights: Dict[str, float] = field(default_factory=dict)
    buy_threshold: float = 0.3
    sell_threshold: float = -0.3
    take_profit: float = 5.0
    stop_loss: float = -3.0
    min_holding_value: Decimal = Decimal("100")
    min_order_amount: Decimal = Decimal("10000")
    max_reconnect_attempts: int = 5
    reconnect_delay: float = 5.0
    order_poll_attempts: int = 3
    order_poll_delay: float = 3.0
    candle_interval_seconds: float = 60.0
    candle_retention_hours: int = 48
    quiet_window: str = "00:00-00:15"
    discord_webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "TraderConfig":
        strategies = _split_list(os.environ.get("STRATEGIES", DEFAULT_STRATEGIES))
        sell_strategies = os.environ.get("SELL_STRATEGIES")
        return cls(
            database_url=os.environ.get("DATABASE_URL", cls.database_url),
            symbol=os.environ.get("CRYPTO_CODE", "KRW-BTC").upper(),
            strategies=strategies,
            sell_strategies=_split_list(sell_strategies) if sell_strategies else list(strategies),
            strategy_weights=parse_weights(os.environ.get("STRATEGY_WEIGHTS", "")),
            buy_threshold=float(os.environ.get("BUY_THRESHOLD", "0.3")),
            sell_threshold=float(os.environ.get("SELL_THRESHOLD", "-0.3")),
            take_profit=float(os.environ.get("TAKE_PROFIT", "5")),
            stop_loss=float(os.environ.get("STOP_LOSS", "-3")),
            min_holding_value=Decimal(os.environ.get("MIN_HOLDING_VALUE", "100")),
            min_order_amount=Decimal(os.environ.get("MIN_ORDER_AMOUNT", "10000")),
            max_reconnect_attempts=int(os.environ.get("MAX_RECONNECT_ATTEMPTS", "5")),
            reconnect_delay=float(os.environ.get("RECONNECT_DELAY", "5")),
            order_poll_attempts=int(os.environ.get("ORDER_POLL_ATTEMPTS", "3")),
            order_poll_delay=float(os.environ.get("ORDER_POLL_DELAY", "3")),
            candle_interval_seconds=float(os.environ.get("CANDLE_INTERVAL_SECONDS", "60")),
            candle_retention_hours=int(os.environ.get("CANDLE_RETENTION_HOURS", "48")),
            quiet_window=os.environ.get("QUIET_WINDOW", "00:00-00:15"),
            discord_webhook_url=os.environ.get("DISCORD_WEBHOOK_URL") or None,
        )


def build_service(name: str, config: TraderConfig) -> TraderService:
    """Construct the service process called `name`."""
    db = Database(DatabaseConfig(url=config.database_url))
    notifier = DiscordNotifier(webhook_url=config.discord_webhook_url)
    common = dict(
        supervisor_config=SupervisorConfig(
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_delay_seconds=config.reconnect_delay,
        ),
        fallback_notifier=notifier,
    )

    if name == "candle-save":
        from coin_trader.ingestion.service import CandleSaveService

        return CandleSaveService(
            db,
            UpbitClient.from_env(),
            config=IngestionConfig(
                symbol=config.symbol,
                interval_seconds=config.candle_interval_seconds,
                quiet_window=parse_quiet_window(config.quiet_window),
            ),
            **common,
        )

    if name == "analysis":
        from coin_trader.core.analysis_service import AnalysisService
        from coin_trader.strategies.builtin import build_default_registry

        return AnalysisService(
            db,
            UpbitClient.from_env(),
            build_default_registry(config.strategy_weights),
            pipeline_config=PipelineConfig(
                symbol=config.symbol,
                buy_strategies=config.strategies,
                sell_strategies=config.sell_strategies,
                take_profit=config.take_profit,
                stop_loss=config.stop_loss,
                min_holding_value=config.min_holding_value,
                min_order_amount=config.min_order_amount,
            ),
            ensemble_config=EnsembleConfig(
                buy_threshold=config.buy_threshold,
                sell_threshold=config.sell_threshold,
                weights=config.strategy_weights,
            ),
            **common,
        )

    if name == "trading":
        from coin_trader.execution.service import TradingService

        return TradingService(
            db,
            UpbitClient.from_env(),
            order_config=OrderConfig(
                poll_attempts=config.order_poll_attempts,
                poll_delay_seconds=config.order_poll_delay,
                min_order_amount=config.min_order_amount,
            ),
            **common,
        )

    if name == "manager":
        from coin_trader.monitoring.manager import ManagerConfig, ManagerService

        return ManagerService(
            db,
            notifier,
            config=ManagerConfig(
                symbol=config.symbol,
                retention_hours=config.candle_retention_hours,
            ),
            supervisor_config=common["supervisor_config"],
        )

    raise ValueError(f"Unknown service: {name}")


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


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Coin Trader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--service",
        choices=SERVICES,
        required=True,
        help="Which service process to run",
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
        config = TraderConfig.from_env()
        service = build_service(args.service, config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        return await service.run()
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


def main() -> int:
    """Main entry point."""
    load_env_file()
    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        with singleton_lock(pid_file_for(args.service)):
            try:
                return asyncio.run(main_async(args))
            except KeyboardInterrupt:
                return 0
    except SingletonServiceError as e:
        logger.error(str(e))
        print(f"\n{e}\n", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
