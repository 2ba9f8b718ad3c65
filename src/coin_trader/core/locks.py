"""
Cross-process mutual exclusion via PostgreSQL session advisory locks.

Advisory locks belong to the backend session that took them, so every call
goes through the supervisor's dedicated session connection. If that session
dies, the server releases its locks; `forget_all` keeps the local view in step.

PostgreSQL advisory locks are re-entrant per session and stack. This wrapper
never stacks: a key the session already holds is reported as acquired without
touching the server, so one release always frees it.
"""
from __future__ import annotations

import asyncio
import logging
from enum import IntEnum
from typing import Callable, Optional

import asyncpg

logger = logging.getLogger(__name__)

SessionProvider = Callable[[], Optional[asyncpg.Connection]]


class LockKey(IntEnum):
    """Well-known advisory lock keys shared by every process."""

    ANALYZE = 1
    TRADING = 2


class AdvisoryLock:
    """Non-blocking try-acquire / release on integer keys."""

    def __init__(self, session_provider: SessionProvider) -> None:
        self._session = session_provider
        self._held: set[int] = set()
        # one asyncpg connection cannot run two queries at once
        self._guard = asyncio.Lock()

    def is_held(self, key: int) -> bool:
        return int(key) in self._held

    @property
    def held_keys(self) -> set[int]:
        return set(self._held)

    async def try_acquire(self, key: int) -> bool:
        """Return True if this session now holds `key`. Never blocks on contention."""
        key = int(key)

        # checked under the guard so concurrent callers cannot both reach the server
        async with self._guard:
            if key in self._held:
                return True

            conn = self._session()
            if conn is None:
                logger.warning(f"No session for advisory lock {key}; treating as unavailable")
                return False

            acquired = bool(await conn.fetchval("SELECT pg_try_advisory_lock($1)", key))
            if acquired:
                self._held.add(key)

        if acquired:
            logger.debug(f"Advisory lock {key} acquired")
        else:
            logger.debug(f"Advisory lock {key} held elsewhere")
        return acquired

    async def release(self, key: int) -> None:
        """Release `key`. A no-op if this session does not hold it."""
        key = int(key)

        async with self._guard:
            self._held.discard(key)

            conn = self._session()
            if conn is None:
                # session gone, the server already dropped its locks
                return

            released = await conn.fetchval("SELECT pg_advisory_unlock($1)", key)

        if released:
            logger.debug(f"Advisory lock {key} released")
        else:
            logger.debug(f"Advisory lock {key} was not held; release ignored")

    def forget_all(self) -> None:
        """Drop local bookkeeping after the session was lost."""
        if self._held:
            logger.info(f"Session lost; advisory locks {sorted(self._held)} released by server")
        self._held.clear()
