"""Tests for ManagerService."""
from datetime import datetime, time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from coin_trader.core.channels import Channel
from coin_trader.monitoring.manager import ManagerConfig, ManagerService, seconds_until
from coin_trader.storage.models import DailySummary
from coin_trader.storage.schema import SCHEMA_STATEMENTS

SEOUL = ZoneInfo("Asia/Seoul")


@pytest.fixture
def sink():
    notifier = MagicMock()
    notifier.send.return_value = True
    return notifier


@pytest.fixture
def manager(mock_db, sink):
    service = ManagerService(mock_db, sink, ManagerConfig(symbol="KRW-BTC", retention_hours=48))
    service._candles = AsyncMock()
    service._candles.delete_older_than = AsyncMock(return_value=120)
    service._candles.daily_summary = AsyncMock(
        return_value=DailySummary(
            symbol="KRW-BTC",
            candle_count=1440,
            avg_close=Decimal("95000000"),
            total_volume=Decimal("321.5"),
        )
    )
    return service


class TestSchedule:
    def test_seconds_until_later_today(self):
        now = datetime(2026, 1, 5, 23, 0, tzinfo=SEOUL)
        assert seconds_until(time(23, 30), now) == 1800

    def test_seconds_until_wraps_to_tomorrow(self):
        now = datetime(2026, 1, 5, 0, 0, 30, tzinfo=SEOUL)
        assert seconds_until(time(0, 0), now) == 24 * 3600 - 30


@pytest.mark.asyncio
class TestForwarding:
    """Manager channel handling."""

    async def test_send_forwarded_verbatim(self, manager, sink):
        await manager.handle_event(Channel.MANAGER, "SEND:[trading] BUY KRW-BTC: price=1:2")

        sink.send.assert_called_once_with("[trading] BUY KRW-BTC: price=1:2")

    async def test_unknown_verb_ignored(self, manager, sink):
        await manager.handle_event(Channel.MANAGER, "PING:x")

        sink.send.assert_not_called()

    async def test_malformed_payload_ignored(self, manager, sink):
        await manager.handle_event(Channel.MANAGER, "")

        sink.send.assert_not_called()


@pytest.mark.asyncio
class TestMaintenance:
    """Daily cleanup and summary."""

    async def test_cleans_up_and_reports_previous_day(self, manager, sink):
        await manager.run_maintenance(datetime(2026, 1, 6, 0, 0, 5, tzinfo=SEOUL))

        manager._candles.delete_older_than.assert_awaited_once_with(48)
        symbol, start, end = manager._candles.daily_summary.await_args.args
        assert symbol == "KRW-BTC"
        assert start == datetime(2026, 1, 5, 0, 0, tzinfo=SEOUL)
        assert end == datetime(2026, 1, 6, 0, 0, tzinfo=SEOUL)
        text = sink.send.call_args.args[0]
        assert "2026-01-05" in text
        assert "321.5" in text

    async def test_cleanup_failure_still_reports_summary(self, manager, sink):
        manager._candles.delete_older_than.side_effect = ConnectionError("db down")

        await manager.run_maintenance(datetime(2026, 1, 6, 0, 0, 5, tzinfo=SEOUL))

        assert sink.send.call_count == 2
        manager._candles.daily_summary.assert_awaited_once()

    async def test_setup_ensures_schema_and_subscribes(self, manager, mock_db):
        conn = AsyncMock()
        transaction = MagicMock()
        transaction.__aenter__.return_value = conn
        mock_db.transaction = MagicMock(return_value=transaction)

        await manager.setup()

        assert conn.execute.await_count == len(SCHEMA_STATEMENTS)
        assert Channel.MANAGER in manager.bus.channels
