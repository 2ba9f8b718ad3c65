"""
ConnectionSupervisor - keeps one process's session connection alive.

State machine:
    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED    -> ERROR        (session terminated)
    ERROR        -> RECONNECTING -> CONNECTING -> CONNECTED
    RECONNECTING -> TERMINATED   (attempt budget exhausted)

Reconnects use a fixed delay and a bounded attempt counter that resets on every
successful connect. On success all bus subscriptions are re-attached. On
exhaustion the manager is notified exactly once and `terminated` is set so the
owning service can exit.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import asyncpg

from coin_trader.core.errors import ReconnectExhaustedError, get_message
from coin_trader.core.event_bus import EventBus
from coin_trader.core.locks import AdvisoryLock

logger = logging.getLogger(__name__)

Connector = Callable[[], Awaitable[asyncpg.Connection]]
Notifier = Callable[[str], Awaitable[None]]


class SupervisorState(str, Enum):
    """Session connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


@dataclass
class SupervisorConfig:
    """Reconnect policy."""

    max_reconnect_attempts: int = 5
    reconnect_delay_seconds: float = 5.0


class ConnectionSupervisor:
    """
    Owns the dedicated session connection of one service process.

    Usage:
        supervisor = ConnectionSupervisor(
            name="analysis",
            connect=db.connect_session,
            bus=bus,
            locks=locks,
            notify=service.notify,
        )
        await supervisor.start()
        await supervisor.terminated.wait()
    """

    def __init__(
        self,
        name: str,
        connect: Connector,
        bus: EventBus,
        notify: Notifier,
        locks: Optional[AdvisoryLock] = None,
        config: Optional[SupervisorConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._name = name
        self._connect = connect
        self._bus = bus
        self._notify = notify
        self._locks = locks
        self._config = config or SupervisorConfig()
        self._sleep = sleep

        self._state = SupervisorState.DISCONNECTED
        self._conn: Optional[asyncpg.Connection] = None
        self._attempts = 0
        self._stopping = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self.terminated = asyncio.Event()
        self.error: Optional[ReconnectExhaustedError] = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def attempts(self) -> int:
        """Consecutive failed reconnect attempts since the last success."""
        return self._attempts

    @property
    def connection(self) -> Optional[asyncpg.Connection]:
        """The live session connection, or None while disconnected."""
        if self._state != SupervisorState.CONNECTED:
            return None
        return self._conn

    def _set_state(self, state: SupervisorState) -> None:
        if self._state != state:
            old_state = self._state
            self._state = state
            logger.info(f"[{self._name}] session state: {old_state.value} -> {state.value}")

    async def start(self) -> None:
        """Connect for the first time. Failures enter the reconnect loop."""
        if self._state != SupervisorState.DISCONNECTED:
            logger.warning(f"Cannot start: already in state {self._state.value}")
            return

        self._stopping = False
        self._set_state(SupervisorState.CONNECTING)
        try:
            await self._establish()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self._name}] initial connect failed: {e}")
            self._set_state(SupervisorState.ERROR)
            await self._reconnect_loop()

    async def stop(self) -> None:
        """Close the session without triggering reconnect."""
        self._stopping = True

        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass

        conn, self._conn = self._conn, None
        self._bus.detach()
        if conn is not None:
            try:
                await conn.close()
            except Exception as e:
                logger.warning(f"[{self._name}] error closing session: {e}")

        if self._locks is not None:
            self._locks.forget_all()
        if self._state != SupervisorState.TERMINATED:
            self._set_state(SupervisorState.DISCONNECTED)

    async def _establish(self) -> None:
        conn = await self._connect()
        try:
            conn.add_termination_listener(self._on_terminated)
            self._conn = conn
            self._set_state(SupervisorState.CONNECTED)
            await self._bus.attach(conn)
        except Exception:
            self._conn = None
            await conn.close()
            raise
        self._attempts = 0

    def _on_terminated(self, conn: asyncpg.Connection) -> None:
        """asyncpg termination listener; runs synchronously on the loop."""
        if self._stopping or conn is not self._conn:
            return

        logger.error(f"[{self._name}] {get_message('DB_CONNECTION_ERROR')}")
        self.connection_lost()

    def connection_lost(self) -> None:
        """Move to ERROR and schedule the reconnect loop (once)."""
        if self._state in (SupervisorState.TERMINATED, SupervisorState.RECONNECTING):
            return

        self._conn = None
        self._bus.detach()
        if self._locks is not None:
            self._locks.forget_all()
        self._set_state(SupervisorState.ERROR)

        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.get_running_loop().create_task(
                self._reconnect_loop(), name=f"{self._name}_reconnect"
            )

    async def _reconnect_loop(self) -> None:
        """Bounded fixed-delay reconnect. Ends CONNECTED or TERMINATED."""
        self._set_state(SupervisorState.RECONNECTING)

        while not self._stopping:
            if self._attempts >= self._config.max_reconnect_attempts:
                await self._terminate()
                return

            self._attempts += 1
            logger.warning(
                f"[{self._name}] reconnecting in {self._config.reconnect_delay_seconds}s "
                f"(attempt {self._attempts}/{self._config.max_reconnect_attempts})"
            )
            await self._sleep(self._config.reconnect_delay_seconds)

            self._set_state(SupervisorState.CONNECTING)
            try:
                await self._establish()
                logger.info(f"[{self._name}] reconnected, subscriptions restored")
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self._name}] reconnect attempt {self._attempts} failed: {e}")
                self._set_state(SupervisorState.RECONNECTING)

    async def _terminate(self) -> None:
        if self._state == SupervisorState.TERMINATED:
            return

        self._set_state(SupervisorState.TERMINATED)
        self.error = ReconnectExhaustedError(detail=f"gave up after {self._attempts} attempts")
        message = f"[{self._name}] {self.error}"
        logger.critical(message)
        try:
            await self._notify(message)
        except Exception as e:
            logger.error(f"[{self._name}] could not deliver termination notice: {e}")
        self.terminated.set()
