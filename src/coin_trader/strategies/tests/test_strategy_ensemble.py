"""Tests for StrategyEnsemble and the consensus gates."""
import uuid
from unittest.mock import AsyncMock

import pytest

from coin_trader.core.errors import StrategyDataError, TraderError
from coin_trader.strategies.ensemble import (
    EnsembleConfig,
    StrategyEnsemble,
    majority_sell,
    unanimous_buy,
)
from coin_trader.strategies.signals import Decision


class StubStrategy:
    def __init__(self, name, score, weight=1.0, fail_in=None):
        self.name = name
        self.weight = weight
        self.score = score
        self.fail_in = fail_in
        self.persisted = []

    async def fetch_data(self, db, symbol):
        if self.fail_in == "fetch_data":
            raise StrategyDataError("MA_DATA_NOT_FOUND", detail=symbol)
        return self.score

    def calculate_score(self, data):
        return data

    async def persist(self, db, signal_id, data, score):
        if self.fail_in == "persist":
            raise ConnectionError("insert failed")
        self.persisted.append((signal_id, score))


class TestGates:
    def test_unanimous_buy(self):
        assert unanimous_buy([Decision.BUY] * 3) == Decision.BUY

    def test_one_hold_blocks_buy(self):
        assert unanimous_buy([Decision.BUY, Decision.BUY, Decision.HOLD]) == Decision.HOLD

    def test_no_decisions_hold(self):
        assert unanimous_buy([]) == Decision.HOLD
        assert majority_sell([]) == Decision.HOLD

    def test_strict_majority_sell(self):
        decisions = [Decision.SELL] * 3 + [Decision.HOLD] * 2
        assert majority_sell(decisions) == Decision.SELL

    def test_tie_holds(self):
        decisions = [Decision.SELL, Decision.SELL, Decision.BUY, Decision.HOLD]
        assert majority_sell(decisions) == Decision.HOLD


@pytest.mark.asyncio
class TestStrategyEnsemble:
    """Tests for running strategies in one signal run."""

    async def test_combined_score_and_per_strategy_decisions(self):
        ensemble = StrategyEnsemble(AsyncMock())
        strategies = [StubStrategy("A", 0.6), StubStrategy("B", 0.4), StubStrategy("C", -0.4)]

        result = await ensemble.execute(uuid.uuid4(), "KRW-BTC", strategies)

        assert result.score == 0.2
        assert result.decision == Decision.HOLD
        assert result.decisions == [Decision.BUY, Decision.BUY, Decision.SELL]

    async def test_weight_applied_before_quantizing(self):
        ensemble = StrategyEnsemble(AsyncMock())

        result = await ensemble.execute(uuid.uuid4(), "KRW-BTC", [StubStrategy("A", 0.4, weight=0.5)])

        only = result.results[0]
        assert only.score == 0.4
        assert only.weighted_score == 0.2
        assert only.decision == Decision.HOLD

    async def test_config_weight_overrides_strategy_weight(self):
        ensemble = StrategyEnsemble(AsyncMock(), EnsembleConfig(weights={"A": 0.5}))
        strategy = StubStrategy("A", 0.8, weight=0.9)

        result = await ensemble.execute(uuid.uuid4(), "KRW-BTC", [strategy])

        assert result.results[0].weight == 0.5
        assert result.results[0].weighted_score == 0.4

    async def test_persists_weighted_score_with_run_id(self):
        ensemble = StrategyEnsemble(AsyncMock())
        strategy = StubStrategy("A", 0.5, weight=0.9)
        signal_id = uuid.uuid4()

        await ensemble.execute(signal_id, "KRW-BTC", [strategy])

        assert strategy.persisted == [(signal_id, 0.45)]

    @pytest.mark.parametrize("stage", ["fetch_data", "persist"])
    async def test_failure_scores_zero_and_continues(self, stage):
        ensemble = StrategyEnsemble(AsyncMock())
        strategies = [StubStrategy("A", 0.9, fail_in=stage), StubStrategy("B", 0.9)]

        result = await ensemble.execute(uuid.uuid4(), "KRW-BTC", strategies)

        failed, ok = result.results
        assert failed.failed and failed.weighted_score == 0.0
        assert failed.decision == Decision.HOLD
        assert not ok.failed
        assert result.errors and result.errors[0].startswith("A:")
        assert result.score == 0.45

    async def test_custom_thresholds(self):
        ensemble = StrategyEnsemble(AsyncMock(), EnsembleConfig(buy_threshold=0.5, sell_threshold=-0.5))

        result = await ensemble.execute(uuid.uuid4(), "KRW-BTC", [StubStrategy("A", 0.4)])

        assert result.decision == Decision.HOLD

    async def test_no_strategies_is_an_error(self):
        ensemble = StrategyEnsemble(AsyncMock())

        with pytest.raises(TraderError):
            await ensemble.execute(uuid.uuid4(), "KRW-BTC", [])
