"""
StrategyEnsemble - runs the configured strategies for one signal run.

Strategies run one after another. A failing strategy is logged, scored 0 and
reported in the result; it never aborts the run. The combined score is the
mean of weighted scores, clamped to [-1, 1] and rounded to 2 decimals.

The consensus gates used by the analysis pipeline live here too:
    - buy needs every strategy to say BUY
    - sell needs a strict majority to say SELL (ties hold)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Sequence
from uuid import UUID

from coin_trader.core.errors import TraderError
from coin_trader.storage.database import Database
from coin_trader.strategies.protocol import Strategy
from coin_trader.strategies.scoring import apply_weight, clamp_score, combine_weighted
from coin_trader.strategies.signals import (
    Decision,
    EnsembleResult,
    StrategyResult,
    quantize,
)

logger = logging.getLogger(__name__)


@dataclass
class EnsembleConfig:
    """Quantization thresholds and per-strategy weight overrides."""

    buy_threshold: float = 0.3
    sell_threshold: float = -0.3
    weights: Dict[str, float] = field(default_factory=dict)

    def weight_for(self, strategy: Strategy) -> float:
        return self.weights.get(strategy.name.upper(), strategy.weight)


def unanimous_buy(decisions: Sequence[Decision]) -> Decision:
    if decisions and all(d == Decision.BUY for d in decisions):
        return Decision.BUY
    return Decision.HOLD


def majority_sell(decisions: Sequence[Decision]) -> Decision:
    sells = sum(1 for d in decisions if d == Decision.SELL)
    if sells * 2 > len(decisions):
        return Decision.SELL
    return Decision.HOLD


class StrategyEnsemble:
    """
    Usage:
        ensemble = StrategyEnsemble(db, EnsembleConfig())
        result = await ensemble.execute(run.id, "KRW-BTC", registry.resolve(["RSI", "MACD"]))
    """

    def __init__(self, db: Database, config: EnsembleConfig | None = None) -> None:
        self._db = db
        self._config = config or EnsembleConfig()

    @property
    def config(self) -> EnsembleConfig:
        return self._config

    async def execute(
        self,
        signal_id: UUID,
        symbol: str,
        strategies: Sequence[Strategy],
    ) -> EnsembleResult:
        if not strategies:
            raise TraderError("NOT_FOUND_STRATEGY")

        results = []
        for strategy in strategies:
            results.append(await self._run_one(strategy, signal_id, symbol))

        score = combine_weighted([r.weighted_score for r in results])
        decision = quantize(score, self._config.buy_threshold, self._config.sell_threshold)
        errors = tuple(f"{r.name}: {r.error}" for r in results if r.failed)

        logger.info(
            f"Ensemble {symbol} run={signal_id}: score={score} decision={decision.value} "
            + " ".join(f"{r.name}={r.weighted_score}" for r in results)
        )
        return EnsembleResult(
            signal_id=signal_id,
            symbol=symbol,
            results=tuple(results),
            score=score,
            decision=decision,
            errors=errors,
        )

    async def _run_one(self, strategy: Strategy, signal_id: UUID, symbol: str) -> StrategyResult:
        weight = self._config.weight_for(strategy)
        course = "fetch_data"
        try:
            data = await strategy.fetch_data(self._db, symbol)

            course = "calculate_score"
            score = clamp_score(strategy.calculate_score(data))
            weighted = apply_weight(score, weight)

            course = "persist"
            await strategy.persist(self._db, signal_id, data, weighted)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Strategy {strategy.name} failed in {course}: {e}")
            return StrategyResult(
                name=strategy.name,
                weight=weight,
                score=0.0,
                weighted_score=0.0,
                decision=Decision.HOLD,
                error=str(e),
            )

        return StrategyResult(
            name=strategy.name,
            weight=weight,
            score=score,
            weighted_score=weighted,
            decision=quantize(weighted, self._config.buy_threshold, self._config.sell_threshold),
        )
