"""Tests for the TraderService lifecycle."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from coin_trader.core.channels import Channel
from coin_trader.core.service import TraderService
from coin_trader.core.supervisor import SupervisorConfig, SupervisorState


class RecordingService(TraderService):
    name = "recording"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def setup(self):
        self.calls.append("setup")
        self.bus.subscribe(Channel.ANALYZE, AsyncMock())

    async def on_started(self):
        self.calls.append("on_started")

    async def on_stopping(self):
        self.calls.append("on_stopping")


def published(fake_db):
    return [
        call.args[2]
        for call in fake_db.execute.await_args_list
        if "pg_notify" in call.args[0]
    ]


@pytest.mark.asyncio
class TestNotify:
    async def test_notify_publishes_on_manager_channel(self, fake_db):
        service = TraderService(fake_db)

        await service.notify("hello: there")

        fake_db.execute.assert_awaited_once_with(
            "SELECT pg_notify($1, $2)", "manager_channel", "SEND:hello: there"
        )

    async def test_falls_back_when_store_unreachable(self, fake_db):
        fake_db.execute.side_effect = ConnectionError("pool closed")
        fallback = MagicMock()
        service = TraderService(fake_db, fallback_notifier=fallback)

        await service.notify("store is down")

        fallback.send.assert_called_once_with("store is down")

    async def test_never_raises_without_fallback(self, fake_db):
        fake_db.execute.side_effect = ConnectionError("pool closed")
        service = TraderService(fake_db)

        await service.notify("lost")


@pytest.mark.asyncio
class TestRun:
    async def test_exits_nonzero_when_reconnect_exhausted(self, fake_db, lock_server):
        lock_server.fail_connects = 100
        service = RecordingService(
            fake_db,
            supervisor_config=SupervisorConfig(max_reconnect_attempts=2, reconnect_delay_seconds=0),
        )

        code = await service.run()

        assert code == 1
        assert service.supervisor.state == SupervisorState.TERMINATED
        assert "on_started" not in service.calls
        assert sum("reconnect" in p.lower() for p in published(fake_db)) == 1
        fake_db.close.assert_awaited()

    async def test_graceful_shutdown(self, fake_db, lock_server):
        service = RecordingService(fake_db)
        task = asyncio.create_task(service.run())
        while "on_started" not in service.calls:
            await asyncio.sleep(0)

        service.request_shutdown("test")
        code = await task

        assert code == 0
        assert service.calls == ["setup", "on_started", "on_stopping"]
        assert lock_server.sessions[0].closed
        payloads = published(fake_db)
        assert payloads[0].startswith("SEND:[recording]")
        assert len(payloads) == 2
        fake_db.initialize.assert_awaited_once()
