"""
Event bus over PostgreSQL LISTEN/NOTIFY.

Publishing goes through the connection pool (`SELECT pg_notify`). Subscribing
needs a long-lived session connection, which the ConnectionSupervisor owns and
hands to `attach` every time it (re)connects. Registered handlers survive
reconnects because they live here, not on the connection.

Delivery is at-least-once to every session listening at the time of the
NOTIFY. Notifications sent while a process is disconnected are lost; the next
tick starts a fresh cycle.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import asyncpg

from coin_trader.core.channels import Channel
from coin_trader.core.errors import PublishError
from coin_trader.storage.database import Database

logger = logging.getLogger(__name__)

# handler(channel, payload)
EventHandler = Callable[[Channel, str], Awaitable[None]]


class EventBus:
    """
    Publish/subscribe on named channels.

    Usage:
        bus = EventBus(db)
        bus.subscribe(Channel.TRADING, handle_trade)
        await bus.attach(session_conn)      # done by the supervisor
        await bus.publish(Channel.ANALYZE, "TICK:KRW-BTC")
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._handlers: dict[Channel, list[EventHandler]] = {}
        self._session: Optional[asyncpg.Connection] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def channels(self) -> list[Channel]:
        return list(self._handlers)

    async def publish(self, channel: Channel, payload: str) -> None:
        """Fire-and-forget notify. Raises PublishError if the store rejects it."""
        try:
            await self._db.execute("SELECT pg_notify($1, $2)", channel.value, payload)
        except Exception as e:
            raise PublishError(detail=f"{channel.value}: {e}") from e
        logger.debug(f"Published {channel.value}: {payload}")

    def subscribe(self, channel: Channel, handler: EventHandler) -> None:
        """Register a handler. Takes effect on the next attach()."""
        self._handlers.setdefault(channel, []).append(handler)

    async def attach(self, session: asyncpg.Connection) -> None:
        """LISTEN on every registered channel using the given session."""
        self._session = session
        for channel in self._handlers:
            await session.add_listener(channel.value, self._on_notification)
            logger.info(f"Listening on {channel.value}")

    def detach(self) -> None:
        """Forget the current session (it is gone or being closed)."""
        self._session = None

    def _on_notification(
        self,
        connection: asyncpg.Connection,
        pid: int,
        channel: str,
        payload: str,
    ) -> None:
        # asyncpg invokes listeners synchronously; handlers run as tasks
        task = asyncio.get_running_loop().create_task(self.dispatch(channel, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def dispatch(self, channel: str, payload: str) -> None:
        """Run every handler for a channel. Handler errors are logged, never raised."""
        try:
            resolved = Channel(channel)
        except ValueError:
            logger.warning(f"Notification on unknown channel {channel!r} ignored")
            return

        for handler in self._handlers.get(resolved, []):
            try:
                await handler(resolved, payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Handler error on {channel} ({payload!r}): {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight handler tasks. Used at shutdown."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
