"""
Cross-process coordination against a real PostgreSQL.

Each session stands for one service process.
"""
import asyncio
import uuid
from decimal import Decimal

import pytest

from coin_trader.core.channels import Channel
from coin_trader.core.event_bus import EventBus
from coin_trader.core.locks import AdvisoryLock
from coin_trader.storage.models import Trade
from coin_trader.storage.repositories import TradeRepository

pytestmark = pytest.mark.integration

# key outside the well-known range so a running system is never disturbed
TEST_KEY = 987_654_321


@pytest.mark.asyncio
class TestAdvisoryLockHandoff:
    async def test_second_session_cannot_take_held_lock(self, open_session):
        first = await open_session()
        second = await open_session()
        analysis = AdvisoryLock(lambda: first)
        other = AdvisoryLock(lambda: second)

        assert await analysis.try_acquire(TEST_KEY)
        assert not await other.try_acquire(TEST_KEY)

        await analysis.release(TEST_KEY)
        assert await other.try_acquire(TEST_KEY)
        await other.release(TEST_KEY)

    async def test_terminated_session_releases_lock(self, db, open_session):
        holder_session = await open_session()
        holder = AdvisoryLock(lambda: holder_session)
        contender_session = await open_session()
        contender = AdvisoryLock(lambda: contender_session)
        assert await holder.try_acquire(TEST_KEY)

        pid = holder_session.get_server_pid()
        await db.fetchval("SELECT pg_terminate_backend($1)", pid)
        for _ in range(50):
            if await contender.try_acquire(TEST_KEY):
                break
            await asyncio.sleep(0.1)

        assert contender.is_held(TEST_KEY)
        await contender.release(TEST_KEY)

    async def test_release_when_not_held_is_noop(self, open_session):
        session = await open_session()
        lock = AdvisoryLock(lambda: session)

        await lock.release(TEST_KEY)


@pytest.mark.asyncio
class TestNotifyRoundTrip:
    async def test_publish_reaches_listening_session(self, db, open_session):
        received = asyncio.Queue()

        async def handler(channel, payload):
            await received.put((channel, payload))

        listener = EventBus(db)
        listener.subscribe(Channel.MANAGER, handler)
        await listener.attach(await open_session())

        publisher = EventBus(db)
        await publisher.publish(Channel.MANAGER, "SEND:integration: ok")

        channel, payload = await asyncio.wait_for(received.get(), timeout=5)
        assert channel == Channel.MANAGER
        assert payload == "SEND:integration: ok"


@pytest.mark.asyncio
class TestTradeSettlement:
    async def test_fill_applies_once(self, db):
        repo = TradeRepository(db)
        row_id = uuid.uuid4()
        await repo.create_provisional(
            Trade(uuid=row_id, type="BUY", symbol="KRW-TEST", order_uuid="it-order")
        )

        first = await repo.apply_fill(
            row_id, "BUY", "KRW-TEST", Decimal("100"), Decimal("2"), Decimal("0.1")
        )
        second = await repo.apply_fill(
            row_id, "BUY", "KRW-TEST", Decimal("100"), Decimal("2"), Decimal("0.1")
        )

        assert first is not None and first.settled and first.sequence == 1
        assert second is None
        stored = await repo.get(row_id, "BUY")
        assert stored.sequence == 1
        await db.execute("DELETE FROM Trades WHERE uuid = $1", row_id)
