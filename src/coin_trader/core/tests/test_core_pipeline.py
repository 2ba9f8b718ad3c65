"""
Tests for SignalPipeline.

Strategies are fixed-score stand-ins; the lock is a real AdvisoryLock on a fake
session so lock ownership is observable from a second "process".
"""
import asyncio
import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from coin_trader.core.channels import Channel
from coin_trader.core.errors import AmbiguousPostureError, StrategyDataError
from coin_trader.core.event_bus import EventBus
from coin_trader.core.locks import AdvisoryLock, LockKey
from coin_trader.core.pipeline import PipelineConfig, PipelineStage, SignalPipeline
from coin_trader.core.posture import Posture
from coin_trader.ingestion.models import Account
from coin_trader.strategies.ensemble import StrategyEnsemble
from coin_trader.strategies.registry import StrategyRegistry
from coin_trader.strategies.signals import Decision


class FixedStrategy:
    """Strategy whose score is set by the test."""

    def __init__(self, name: str, score: float = 0.0, weight: float = 1.0) -> None:
        self.name = name
        self.weight = weight
        self.score = score
        self.fail = False

    async def fetch_data(self, db, symbol):
        if self.fail:
            raise StrategyDataError("RSI_DATA_ERROR", detail=symbol)
        return self.score

    def calculate_score(self, data) -> float:
        return data

    async def persist(self, db, signal_id, data, score) -> None:
        pass


def accounts(krw="1000000", btc="0", avg="0"):
    return [
        Account(currency="KRW", balance=Decimal(krw), locked=Decimal("0"), avg_buy_price=Decimal("0")),
        Account(currency="BTC", balance=Decimal(btc), locked=Decimal("0"), avg_buy_price=Decimal(avg)),
    ]


HOLDING = dict(krw="5000", btc="0.01", avg="90000000")


@pytest.fixture
def strategies():
    return {name: FixedStrategy(name) for name in ("A", "B", "C", "D", "E")}


@pytest.fixture
def exchange():
    client = AsyncMock()
    client.get_accounts = AsyncMock(return_value=accounts())
    client.get_candles = AsyncMock(return_value=[])
    return client


@pytest.fixture
def candles():
    repo = AsyncMock()
    repo.get_latest_close = AsyncMock(return_value=Decimal("91000000"))
    return repo


@pytest.fixture
def signals():
    repo = AsyncMock()
    repo.create_run = AsyncMock(side_effect=lambda symbol: SimpleNamespace(id=uuid.uuid4()))
    return repo


@pytest.fixture
async def session(lock_server):
    return await lock_server.connect()


@pytest.fixture
def locks(session):
    return AdvisoryLock(lambda: session)


@pytest.fixture
def notify():
    return AsyncMock()


@pytest.fixture
def make_pipeline(exchange, locks, fake_db, strategies, signals, candles, notify):
    def factory(buy=("A", "B", "C"), sell=("A", "B", "C", "D", "E"), lock=None):
        registry = StrategyRegistry()
        for strategy in strategies.values():
            registry.register(strategy)
        return SignalPipeline(
            exchange=exchange,
            locks=lock or locks,
            bus=EventBus(fake_db),
            ensemble=StrategyEnsemble(AsyncMock()),
            registry=registry,
            signals=signals,
            candles=candles,
            config=PipelineConfig(symbol="KRW-BTC", buy_strategies=list(buy), sell_strategies=list(sell)),
            notify=notify,
        )

    return factory


def trading_publishes(fake_db):
    return [
        call.args[2]
        for call in fake_db.execute.await_args_list
        if call.args[1] == Channel.TRADING.value
    ]


@pytest.mark.asyncio
class TestBuyPath:
    """Ready-to-buy posture: unanimity required."""

    async def test_unanimous_buy_publishes_and_keeps_lock(
        self, make_pipeline, strategies, locks, fake_db
    ):
        for name in ("A", "B", "C"):
            strategies[name].score = 0.5
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.posture == Posture.READY_TO_BUY
        assert outcome.decision == Decision.BUY
        assert trading_publishes(fake_db) == ["BUY:KRW-BTC"]
        assert locks.is_held(LockKey.TRADING)

    async def test_one_hold_vetoes_buy(self, make_pipeline, strategies, locks, fake_db, notify):
        strategies["A"].score = 0.5
        strategies["B"].score = 0.5
        strategies["C"].score = 0.1
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.decision == Decision.HOLD
        assert trading_publishes(fake_db) == []
        assert not locks.is_held(LockKey.TRADING)
        notify.assert_awaited()

    async def test_failed_strategy_scores_zero_and_vetoes(self, make_pipeline, strategies):
        for name in ("A", "B", "C"):
            strategies[name].score = 0.9
        strategies["B"].fail = True
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.decision == Decision.HOLD
        failed = [r for r in outcome.ensemble.results if r.failed]
        assert [r.name for r in failed] == ["B"]
        assert failed[0].weighted_score == 0.0
        assert outcome.ensemble.errors


@pytest.mark.asyncio
class TestSellPath:
    """Holding posture: thresholds short-circuit, else strict majority."""

    async def test_take_profit_skips_ensemble(self, make_pipeline, exchange, candles, signals, fake_db):
        exchange.get_accounts.return_value = accounts(**HOLDING)
        candles.get_latest_close.return_value = Decimal("95000000")
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.decision == Decision.SELL
        assert outcome.reason == "take_profit"
        assert outcome.profit_rate == pytest.approx(5.555, rel=1e-3)
        signals.create_run.assert_not_awaited()
        assert trading_publishes(fake_db) == ["SELL:KRW-BTC"]

    async def test_stop_loss_skips_ensemble(self, make_pipeline, exchange, candles, signals):
        exchange.get_accounts.return_value = accounts(**HOLDING)
        candles.get_latest_close.return_value = Decimal("87000000")
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.decision == Decision.SELL
        assert outcome.reason == "stop_loss"
        signals.create_run.assert_not_awaited()

    async def test_majority_sell(self, make_pipeline, exchange, strategies):
        exchange.get_accounts.return_value = accounts(**HOLDING)
        for name in ("A", "B", "C"):
            strategies[name].score = -0.6
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.posture == Posture.HOLDING
        assert outcome.decision == Decision.SELL
        assert outcome.reason == "majority"

    async def test_tie_holds(self, make_pipeline, exchange, strategies, locks):
        exchange.get_accounts.return_value = accounts(**HOLDING)
        strategies["A"].score = -0.6
        strategies["B"].score = -0.6
        pipeline = make_pipeline(sell=("A", "B", "C", "D"))

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.decision == Decision.HOLD
        assert not locks.is_held(LockKey.TRADING)

    async def test_price_falls_back_to_exchange(self, make_pipeline, exchange, candles):
        exchange.get_accounts.return_value = accounts(**HOLDING)
        candles.get_latest_close.return_value = None
        exchange.get_candles.return_value = [SimpleNamespace(trade_price=Decimal("95000000"))]
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.reason == "take_profit"
        exchange.get_candles.assert_awaited_once_with("KRW-BTC", count=1)


@pytest.mark.asyncio
class TestLockDiscipline:
    """Lock held across the decision boundary."""

    async def test_lock_held_elsewhere_skips_cycle(self, make_pipeline, lock_server, exchange):
        other = await lock_server.connect()
        await AdvisoryLock(lambda: other).try_acquire(LockKey.TRADING)
        pipeline = make_pipeline()

        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome is None
        exchange.get_accounts.assert_not_awaited()

    async def test_holder_keeps_running_until_hold(
        self, make_pipeline, strategies, exchange, locks, lock_server, fake_db
    ):
        for name in ("A", "B", "C"):
            strategies[name].score = 0.5
        pipeline = make_pipeline()

        await pipeline.run_cycle("KRW-BTC")
        assert locks.is_held(LockKey.TRADING)

        # position opened; next cycle evaluates selling and holds
        exchange.get_accounts.return_value = accounts(**HOLDING)
        outcome = await pipeline.run_cycle("KRW-BTC")

        assert outcome.decision == Decision.HOLD
        assert not locks.is_held(LockKey.TRADING)
        assert lock_server.holder(LockKey.TRADING) is None
        assert trading_publishes(fake_db) == ["BUY:KRW-BTC"]

    async def test_error_releases_newly_taken_lock(self, make_pipeline, exchange, locks):
        exchange.get_accounts.return_value = accounts(krw="5000")
        pipeline = make_pipeline()

        with pytest.raises(AmbiguousPostureError):
            await pipeline.run_cycle("KRW-BTC")

        assert not locks.is_held(LockKey.TRADING)
        assert pipeline.state("KRW-BTC").stage == PipelineStage.IDLE

    async def test_error_keeps_previously_held_lock(self, make_pipeline, exchange, locks):
        await locks.try_acquire(LockKey.TRADING)
        exchange.get_accounts.side_effect = ConnectionError("exchange down")
        pipeline = make_pipeline()

        with pytest.raises(ConnectionError):
            await pipeline.run_cycle("KRW-BTC")

        assert locks.is_held(LockKey.TRADING)

    async def test_concurrent_symbols_share_one_server_lock(
        self, make_pipeline, locks, lock_server
    ):
        pipeline = make_pipeline()

        outcomes = await asyncio.gather(
            pipeline.run_cycle("KRW-BTC"),
            pipeline.run_cycle("KRW-ETH"),
        )

        assert [o.decision for o in outcomes] == [Decision.HOLD, Decision.HOLD]
        assert not locks.is_held(LockKey.TRADING)
        assert lock_server.depth(LockKey.TRADING) == 0

        other_session = await lock_server.connect()
        assert await AdvisoryLock(lambda: other_session).try_acquire(LockKey.TRADING) is True

    async def test_in_flight_cycle_ignores_duplicate(self, make_pipeline, exchange):
        pipeline = make_pipeline()
        pipeline.state("KRW-BTC").stage = PipelineStage.RUNNING

        assert await pipeline.run_cycle("KRW-BTC") is None
        exchange.get_accounts.assert_not_awaited()


@pytest.mark.asyncio
class TestHandleEvent:
    """Bus entry point."""

    async def test_error_is_reported_not_raised(self, make_pipeline, exchange, notify):
        exchange.get_accounts.return_value = accounts(krw="5000")
        pipeline = make_pipeline()

        await pipeline.handle_event(Channel.ANALYZE, "TICK:KRW-BTC")

        notify.assert_awaited_once()
        assert "KRW-BTC" in notify.await_args.args[0]

    async def test_unknown_verb_ignored(self, make_pipeline, exchange):
        pipeline = make_pipeline()

        await pipeline.handle_event(Channel.ANALYZE, "PING:KRW-BTC")

        exchange.get_accounts.assert_not_awaited()

    async def test_bare_tick_uses_configured_symbol(self, make_pipeline, exchange, strategies):
        pipeline = make_pipeline()

        await pipeline.handle_event(Channel.ANALYZE, "TICK")

        exchange.get_accounts.assert_awaited_once()
        assert pipeline.state("KRW-BTC").cycles == 1


@pytest.mark.asyncio
class TestCrossProcessHandoff:
    """Two analysis processes, each on its own session."""

    async def test_decision_blocks_other_process_until_session_dies(
        self, make_pipeline, strategies, lock_server, session, exchange, fake_db
    ):
        for name in ("A", "B", "C"):
            strategies[name].score = 0.5
        first = make_pipeline()
        other_session = await lock_server.connect()
        other_lock = AdvisoryLock(lambda: other_session)
        second = make_pipeline(lock=other_lock)

        assert (await first.run_cycle("KRW-BTC")).decision == Decision.BUY
        assert await second.run_cycle("KRW-BTC") is None

        # first process crashes mid-flight; the server drops its lock
        session.terminate()

        outcome = await second.run_cycle("KRW-BTC")
        assert outcome is not None
        assert lock_server.holder(LockKey.TRADING) is other_session
        assert trading_publishes(fake_db) == ["BUY:KRW-BTC", "BUY:KRW-BTC"]
