"""
TradingService - the process that executes trade decisions.
"""
from __future__ import annotations

import logging
from typing import Optional

from coin_trader.core.channels import Channel
from coin_trader.core.service import TraderService
from coin_trader.execution.order_coordinator import OrderConfig, OrderExecutionCoordinator
from coin_trader.ingestion.client import UpbitClient
from coin_trader.storage.database import Database
from coin_trader.storage.repositories import TradeRepository

logger = logging.getLogger(__name__)


class TradingService(TraderService):
    name = "trading"

    def __init__(
        self,
        db: Database,
        exchange: UpbitClient,
        order_config: Optional[OrderConfig] = None,
        **kwargs,
    ) -> None:
        super().__init__(db, **kwargs)
        self._exchange = exchange
        self.coordinator = OrderExecutionCoordinator(
            exchange=exchange,
            trades=TradeRepository(db),
            config=order_config,
            notify=self.notify,
        )

    async def setup(self) -> None:
        self.bus.subscribe(Channel.TRADING, self.coordinator.handle_event)

    async def on_stopping(self) -> None:
        await self._exchange.close()
