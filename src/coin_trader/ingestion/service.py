"""
Candle ingestion.

Every interval: fetch the last closed one-minute candle, upsert it into
Market_Data, then announce the symbol on the analyze channel, except inside
the daily quiet window. Errors are notified at most once per error window so a
long exchange outage does not flood the operator.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from coin_trader.core.channels import Channel, tick_event
from coin_trader.core.errors import get_message
from coin_trader.core.event_bus import EventBus
from coin_trader.core.service import TraderService
from coin_trader.ingestion.client import UpbitClient
from coin_trader.storage.database import Database
from coin_trader.storage.repositories import CandleRepository

logger = logging.getLogger(__name__)


def parse_quiet_window(value: str) -> Optional[tuple[time, time]]:
    """'00:00-00:15' -> (time(0, 0), time(0, 15)). Empty disables the window."""
    if not value:
        return None
    start, _, end = value.partition("-")
    return time.fromisoformat(start.strip()), time.fromisoformat(end.strip())


@dataclass
class IngestionConfig:
    """Configuration for candle ingestion."""

    symbol: str = "KRW-BTC"
    interval_seconds: float = 60.0
    quiet_window: Optional[tuple[time, time]] = (time(0, 0), time(0, 15))
    exchange_timezone: str = "Asia/Seoul"
    error_reset_seconds: float = 300.0


class CandleIngestor:
    """One ingestion tick, independent of scheduling."""

    def __init__(
        self,
        exchange: UpbitClient,
        candles: CandleRepository,
        bus: EventBus,
        notify: Callable[[str], Awaitable[None]],
        config: Optional[IngestionConfig] = None,
    ) -> None:
        self._exchange = exchange
        self._candles = candles
        self._bus = bus
        self._notify = notify
        self._config = config or IngestionConfig()
        self._tz = ZoneInfo(self._config.exchange_timezone)
        self._error_notified_at: Optional[datetime] = None

    def in_quiet_window(self, now: datetime) -> bool:
        window = self._config.quiet_window
        if window is None:
            return False
        local = now.astimezone(self._tz).time()
        start, end = window
        if start <= end:
            return start <= local < end
        # window wraps midnight
        return local >= start or local < end

    async def tick(self, now: Optional[datetime] = None) -> bool:
        """
        Store the latest closed candle and publish a tick.

        Returns True if an analyze event was published. Never raises.
        """
        now = now or datetime.now(timezone.utc)
        symbol = self._config.symbol
        try:
            # the candle for the current minute is still open
            to = (now - timedelta(minutes=1)).strftime("%Y-%m-%d %H:%M:%S")
            candles = await self._exchange.get_candles(symbol, count=1, to=to)
            stored = await self._candles.upsert_many(c.to_market_candle() for c in candles)
            logger.debug(f"Stored {stored} candle(s) for {symbol}")

            if self.in_quiet_window(now):
                logger.info(f"Quiet window, not publishing tick for {symbol}")
                return False

            await self._bus.publish(Channel.ANALYZE, tick_event(symbol))
            return True

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{get_message('CANDLE_SAVE_ERROR')}: {e}")
            await self._report_error(now, str(e))
            return False

    async def _report_error(self, now: datetime, detail: str) -> None:
        last = self._error_notified_at
        if last is not None and (now - last).total_seconds() < self._config.error_reset_seconds:
            return
        self._error_notified_at = now
        await self._notify(f"[candle-save] {get_message('CANDLE_SAVE_ERROR')}: {detail}")


class CandleSaveService(TraderService):
    """Process that runs the ingestion tick on a fixed interval."""

    name = "candle-save"

    def __init__(
        self,
        db: Database,
        exchange: UpbitClient,
        config: Optional[IngestionConfig] = None,
        **kwargs,
    ) -> None:
        super().__init__(db, **kwargs)
        self._exchange = exchange
        self._config = config or IngestionConfig()
        self.ingestor = CandleIngestor(
            exchange=exchange,
            candles=CandleRepository(db),
            bus=self.bus,
            notify=self.notify,
            config=self._config,
        )
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def on_started(self) -> None:
        self._stop_event.clear()
        self._task = asyncio.create_task(self._ingest_loop(), name="candle_ingest")
        logger.info(
            f"Started candle ingestion for {self._config.symbol} "
            f"(interval={self._config.interval_seconds}s)"
        )

    async def on_stopping(self) -> None:
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        await self._exchange.close()

    async def _ingest_loop(self) -> None:
        interval = self._config.interval_seconds

        while not self._stop_event.is_set():
            await self.ingestor.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break  # Stop requested
            except asyncio.TimeoutError:
                pass
