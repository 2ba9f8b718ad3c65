"""
AnalysisService - the process that turns analyze ticks into trade decisions.
"""
from __future__ import annotations

import logging
from typing import Optional

from coin_trader.core.channels import Channel
from coin_trader.core.pipeline import PipelineConfig, SignalPipeline
from coin_trader.core.service import TraderService
from coin_trader.ingestion.client import UpbitClient
from coin_trader.storage.database import Database
from coin_trader.storage.repositories import CandleRepository, SignalRepository
from coin_trader.strategies.ensemble import EnsembleConfig, StrategyEnsemble
from coin_trader.strategies.registry import StrategyRegistry

logger = logging.getLogger(__name__)


class AnalysisService(TraderService):
    name = "analysis"

    def __init__(
        self,
        db: Database,
        exchange: UpbitClient,
        registry: StrategyRegistry,
        pipeline_config: Optional[PipelineConfig] = None,
        ensemble_config: Optional[EnsembleConfig] = None,
        **kwargs,
    ) -> None:
        super().__init__(db, **kwargs)
        self._exchange = exchange
        self.pipeline = SignalPipeline(
            exchange=exchange,
            locks=self.locks,
            bus=self.bus,
            ensemble=StrategyEnsemble(db, ensemble_config),
            registry=registry,
            signals=SignalRepository(db),
            candles=CandleRepository(db),
            config=pipeline_config,
            notify=self.notify,
        )

    async def setup(self) -> None:
        self.bus.subscribe(Channel.ANALYZE, self.pipeline.handle_event)

    async def on_stopping(self) -> None:
        await self._exchange.close()
