"""
ManagerService - operator-facing process.

    - Ensures the schema at startup.
    - Forwards SEND:<text> from the manager channel to the notifier.
    - Runs daily maintenance at local midnight: deletes old candles and
      reports the previous day's market summary.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from coin_trader.core.channels import SEND, Channel, EventEnvelope
from coin_trader.core.errors import TraderError, get_message
from coin_trader.core.service import TraderService
from coin_trader.monitoring.alerting import DiscordNotifier
from coin_trader.storage.database import Database
from coin_trader.storage.repositories import CandleRepository
from coin_trader.storage.schema import ensure_schema

logger = logging.getLogger(__name__)


@dataclass
class ManagerConfig:
    """Configuration for the manager process."""

    symbol: str = "KRW-BTC"
    retention_hours: int = 48
    maintenance_time: time = time(0, 0)
    exchange_timezone: str = "Asia/Seoul"


def seconds_until(target: time, now: datetime) -> float:
    """Seconds from `now` until the next occurrence of `target` in now's timezone."""
    candidate = now.replace(
        hour=target.hour, minute=target.minute, second=0, microsecond=0
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return (candidate - now).total_seconds()


class ManagerService(TraderService):
    name = "manager"

    def __init__(
        self,
        db: Database,
        notifier: DiscordNotifier,
        config: Optional[ManagerConfig] = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("fallback_notifier", notifier)
        super().__init__(db, **kwargs)
        self._notifier = notifier
        self._config = config or ManagerConfig()
        self._tz = ZoneInfo(self._config.exchange_timezone)
        self._candles = CandleRepository(db)
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def setup(self) -> None:
        await ensure_schema(self.db)
        self.bus.subscribe(Channel.MANAGER, self.handle_event)

    async def on_started(self) -> None:
        self._stop_event.clear()
        self._task = asyncio.create_task(self._maintenance_loop(), name="daily_maintenance")

    async def on_stopping(self) -> None:
        self._stop_event.set()
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def handle_event(self, channel: Channel, payload: str) -> None:
        """Bus handler for the manager channel. Never raises."""
        try:
            envelope = EventEnvelope.parse(payload)
        except TraderError as e:
            logger.warning(f"Ignoring manager event: {e}")
            return

        if envelope.verb != SEND:
            logger.warning(f"Unknown manager verb {envelope.verb!r} ignored")
            return

        delivered = await asyncio.to_thread(self._notifier.send, envelope.argument)
        if not delivered:
            logger.warning(f"{get_message('NOTIFIER_ERROR')}: {envelope.argument[:80]}")

    async def _maintenance_loop(self) -> None:
        while not self._stop_event.is_set():
            delay = seconds_until(self._config.maintenance_time, datetime.now(self._tz))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break  # Stop requested
            except asyncio.TimeoutError:
                pass
            await self.run_maintenance()

    async def run_maintenance(self, now: Optional[datetime] = None) -> None:
        """Delete expired candles and send the previous day's summary. Never raises."""
        now = now or datetime.now(self._tz)

        try:
            deleted = await self._candles.delete_older_than(self._config.retention_hours)
            logger.info(f"Deleted {deleted} candles older than {self._config.retention_hours}h")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{get_message('DELETE_OLD_DATA_ERROR')}: {e}")
            await self._deliver(f"[manager] {get_message('DELETE_OLD_DATA_ERROR')}: {e}")

        try:
            end = now.replace(hour=0, minute=0, second=0, microsecond=0)
            start = end - timedelta(days=1)
            summary = await self._candles.daily_summary(
                self._config.symbol, start.astimezone(timezone.utc), end.astimezone(timezone.utc)
            )
            await self._deliver(
                f"[manager] {summary.symbol} {start.date()}: "
                f"avg close={summary.avg_close} total volume={summary.total_volume} "
                f"candles={summary.candle_count}"
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{get_message('DAILY_SUMMARY_ERROR')}: {e}")
            await self._deliver(f"[manager] {get_message('DAILY_SUMMARY_ERROR')}: {e}")

    async def _deliver(self, text: str) -> None:
        await asyncio.to_thread(self._notifier.send, text)
