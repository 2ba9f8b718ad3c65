"""
TraderService - lifecycle shared by every process.

Each process (ingestion, analysis, trading, manager) is one TraderService
subclass. The base class owns the pool, the event bus, the supervised session
connection and the advisory lock, and runs until SIGINT/SIGTERM or until the
supervisor gives up reconnecting.
"""
from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional, Protocol

from coin_trader.core.channels import Channel, manager_message
from coin_trader.core.errors import get_message
from coin_trader.core.event_bus import EventBus
from coin_trader.core.locks import AdvisoryLock
from coin_trader.core.supervisor import ConnectionSupervisor, SupervisorConfig
from coin_trader.storage.database import Database

logger = logging.getLogger(__name__)


class FallbackNotifier(Protocol):
    """Anything with a blocking send(text) -> bool, e.g. the Discord notifier."""

    def send(self, message: str, dedup_key: Optional[str] = None) -> bool:
        ...


class TraderService:
    """
    Base class for service processes.

    Subclasses set `name` and override `setup` (subscribe handlers, build
    collaborators) and optionally `on_started` / `on_stopping` (background
    loops).
    """

    name = "service"

    def __init__(
        self,
        db: Database,
        supervisor_config: Optional[SupervisorConfig] = None,
        fallback_notifier: Optional[FallbackNotifier] = None,
    ) -> None:
        self.db = db
        self.bus = EventBus(db)
        self.locks = AdvisoryLock(lambda: self.supervisor.connection)
        self.supervisor = ConnectionSupervisor(
            name=self.name,
            connect=db.connect_session,
            bus=self.bus,
            notify=self.notify,
            locks=self.locks,
            config=supervisor_config,
        )
        self._fallback = fallback_notifier
        self._running = False
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    async def notify(self, text: str) -> None:
        """
        Send an operator message through the manager channel.

        If the store is unreachable and a fallback notifier is configured, the
        message is delivered directly instead. Never raises.
        """
        try:
            await self.bus.publish(Channel.MANAGER, manager_message(text))
            return
        except Exception as e:
            logger.error(f"Manager notification failed: {e}")

        if self._fallback is not None:
            try:
                await asyncio.to_thread(self._fallback.send, text)
            except Exception as e:
                logger.error(f"Fallback notification failed: {e}")

    async def setup(self) -> None:
        """Register bus handlers and build collaborators. Runs before connect."""

    async def on_started(self) -> None:
        """Start background loops. Runs once the session is connected."""

    async def on_stopping(self) -> None:
        """Stop background loops. Runs before the session is closed."""

    async def run(self) -> int:
        """Run until shutdown. Returns the process exit code."""
        logger.info("=" * 60)
        logger.info(f"COIN TRADER - {self.name.upper()}")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            await self.db.initialize()
            await self.setup()
            await self.supervisor.start()
            if self.supervisor.terminated.is_set():
                return 1

            await self.on_started()
            await self.notify(f"[{self.name}] {get_message('SERVICE_START')}")

            await self._wait_for_exit()
            return 1 if self.supervisor.terminated.is_set() else 0
        finally:
            await self.stop()

    async def _wait_for_exit(self) -> None:
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        terminated = asyncio.create_task(self.supervisor.terminated.wait())
        try:
            await asyncio.wait({shutdown, terminated}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (shutdown, terminated):
                task.cancel()

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if not self._running:
            return

        logger.info("Shutting down...")
        self._running = False
        self._shutdown_event.set()

        try:
            await self.on_stopping()
        except Exception as e:
            logger.warning(f"Error stopping {self.name} loops: {e}")

        if not self.supervisor.terminated.is_set():
            await self.notify(f"[{self.name}] {get_message('SERVICE_SHUTDOWN')}")

        await self.bus.drain()

        try:
            await self.supervisor.stop()
        except Exception as e:
            logger.warning(f"Error closing session: {e}")

        try:
            await self.db.close()
        except Exception as e:
            logger.warning(f"Error closing database: {e}")

        logger.info("Shutdown complete")

    def request_shutdown(self, reason: str = "manual") -> None:
        logger.warning(f"Shutdown requested: {reason}")
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(
                    sig, lambda s=sig: self.request_shutdown(f"signal {s.name}")
                )
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass
