"""
Core layer test fixtures.

FakeLockServer stands in for PostgreSQL: it tracks advisory lock ownership
per session (with stacking, like the real server), delivers NOTIFY payloads to
listening sessions and drops a session's locks when it terminates.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest


class FakeSession:
    """Minimal asyncpg.Connection surface used by the core layer."""

    def __init__(self, server: "FakeLockServer", pid: int) -> None:
        self.server = server
        self.pid = pid
        self.listeners = {}
        self.termination_listeners = []
        self.closed = False
        self.queries = []

    async def fetchval(self, query: str, *args):
        self.queries.append((query, args))
        # a round trip suspends the caller, as a real query does
        await asyncio.sleep(0)
        if self.closed:
            raise ConnectionError("connection is closed")
        if "pg_try_advisory_lock" in query:
            return self.server.try_lock(self, args[0])
        if "pg_advisory_unlock" in query:
            return self.server.unlock(self, args[0])
        raise AssertionError(f"unexpected query: {query}")

    async def add_listener(self, channel, callback):
        self.listeners[channel] = callback

    def add_termination_listener(self, callback):
        self.termination_listeners.append(callback)

    async def close(self):
        self.closed = True
        self.server.drop_session(self)

    def is_closed(self) -> bool:
        return self.closed

    def terminate(self):
        """Simulate the backend killing this session."""
        self.closed = True
        self.server.drop_session(self)
        for callback in self.termination_listeners:
            callback(self)


class FakeLockServer:
    def __init__(self) -> None:
        self.locks = {}  # key -> (session, depth)
        self.sessions = []
        self.fail_connects = 0
        self.connect_calls = 0

    async def connect(self) -> FakeSession:
        self.connect_calls += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectionRefusedError("store unreachable")
        session = FakeSession(self, pid=1000 + len(self.sessions))
        self.sessions.append(session)
        return session

    def try_lock(self, session: FakeSession, key: int) -> bool:
        holder = self.locks.get(key)
        if holder is None:
            self.locks[key] = (session, 1)
            return True
        if holder[0] is session:
            self.locks[key] = (session, holder[1] + 1)
            return True
        return False

    def unlock(self, session: FakeSession, key: int) -> bool:
        holder = self.locks.get(key)
        if holder is None or holder[0] is not session:
            return False
        if holder[1] == 1:
            del self.locks[key]
        else:
            self.locks[key] = (session, holder[1] - 1)
        return True

    def holder(self, key: int):
        entry = self.locks.get(key)
        return entry[0] if entry else None

    def depth(self, key: int) -> int:
        entry = self.locks.get(key)
        return entry[1] if entry else 0

    def drop_session(self, session: FakeSession) -> None:
        for key in [k for k, (s, _) in self.locks.items() if s is session]:
            del self.locks[key]

    def notify(self, channel: str, payload: str) -> None:
        for session in self.sessions:
            if session.closed:
                continue
            callback = session.listeners.get(channel)
            if callback is not None:
                callback(session, 42, channel, payload)


@pytest.fixture
def lock_server():
    return FakeLockServer()


@pytest.fixture
def fake_db(lock_server):
    """Pool stand-in whose pg_notify reaches the fake server."""
    db = AsyncMock()

    async def execute(query, *args):
        if "pg_notify" in query:
            lock_server.notify(args[0], args[1])
        return "SELECT 1"

    db.execute = AsyncMock(side_effect=execute)
    db.connect_session = lock_server.connect
    return db


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep that records delays and returns at once."""
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep
