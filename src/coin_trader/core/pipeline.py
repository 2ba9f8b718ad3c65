"""
SignalPipeline - one analysis cycle per analyze event.

    IDLE -> LOCK_PENDING -> RUNNING -> DECIDED -> IDLE

A cycle runs only if this process holds (or can take) the TRADING advisory
lock. Buy or sell decisions are published on the trading channel and the lock
stays held across that boundary; a HOLD releases it. A duplicate event for a
symbol whose cycle is still in flight is ignored.

On the sell path, take-profit and stop-loss thresholds short-circuit the
ensemble entirely.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence
from uuid import UUID

from coin_trader.core.channels import TICK, Channel, EventEnvelope, trade_event
from coin_trader.core.errors import TraderError, get_message
from coin_trader.core.event_bus import EventBus
from coin_trader.core.locks import AdvisoryLock, LockKey
from coin_trader.core.posture import Posture, determine_posture, profit_rate
from coin_trader.ingestion.client import UpbitClient
from coin_trader.ingestion.models import AccountSnapshot
from coin_trader.storage.repositories import CandleRepository, SignalRepository
from coin_trader.strategies.ensemble import StrategyEnsemble, majority_sell, unanimous_buy
from coin_trader.strategies.registry import StrategyRegistry
from coin_trader.strategies.signals import Decision, EnsembleResult

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    IDLE = "idle"
    LOCK_PENDING = "lock_pending"
    RUNNING = "running"
    DECIDED = "decided"


@dataclass
class PipelineState:
    """Per-symbol cycle bookkeeping."""

    symbol: str
    stage: PipelineStage = PipelineStage.IDLE
    cycles: int = 0
    last_decision: Optional[Decision] = None
    last_signal_id: Optional[UUID] = None

    @property
    def in_flight(self) -> bool:
        return self.stage in (PipelineStage.LOCK_PENDING, PipelineStage.RUNNING)


@dataclass
class PipelineConfig:
    """Configuration for the analysis pipeline."""

    symbol: str = "KRW-BTC"
    buy_strategies: list[str] = field(
        default_factory=lambda: ["RSI", "MACD", "BOLLINGER", "STOCHASTIC", "MA", "VOLUME"]
    )
    sell_strategies: list[str] = field(
        default_factory=lambda: ["RSI", "MACD", "BOLLINGER", "STOCHASTIC", "MA", "VOLUME"]
    )
    take_profit: float = 5.0
    stop_loss: float = -3.0
    min_holding_value: Decimal = Decimal("100")
    min_order_amount: Decimal = Decimal("10000")
    lock_key: LockKey = LockKey.TRADING


@dataclass(frozen=True)
class CycleOutcome:
    """What one analysis cycle decided and why."""

    symbol: str
    posture: Posture
    decision: Decision
    reason: str
    ensemble: Optional[EnsembleResult] = None
    profit_rate: Optional[float] = None


class SignalPipeline:
    """
    Usage:
        pipeline = SignalPipeline(exchange, locks, bus, ensemble, registry, signals, candles, config)
        bus.subscribe(Channel.ANALYZE, pipeline.handle_event)
    """

    def __init__(
        self,
        exchange: UpbitClient,
        locks: AdvisoryLock,
        bus: EventBus,
        ensemble: StrategyEnsemble,
        registry: StrategyRegistry,
        signals: SignalRepository,
        candles: CandleRepository,
        config: Optional[PipelineConfig] = None,
        notify: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> None:
        self._exchange = exchange
        self._locks = locks
        self._bus = bus
        self._ensemble = ensemble
        self._registry = registry
        self._signals = signals
        self._candles = candles
        self._config = config or PipelineConfig()
        self._notify = notify
        self._states: dict[str, PipelineState] = {}

        # fail at startup, not on the first tick
        self._buy_strategies = registry.resolve(self._config.buy_strategies)
        self._sell_strategies = registry.resolve(self._config.sell_strategies)

    def state(self, symbol: str) -> PipelineState:
        if symbol not in self._states:
            self._states[symbol] = PipelineState(symbol=symbol)
        return self._states[symbol]

    async def handle_event(self, channel: Channel, payload: str) -> None:
        """Bus handler for the analyze channel. Never raises."""
        try:
            envelope = EventEnvelope.parse(payload) if payload else EventEnvelope(TICK)
        except TraderError as e:
            logger.warning(f"Ignoring analyze event: {e}")
            return

        if envelope.verb != TICK:
            logger.warning(f"Unknown analyze verb {envelope.verb!r} ignored")
            return

        symbol = envelope.argument or self._config.symbol
        try:
            await self.run_cycle(symbol)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{get_message('ANALYSIS_ERROR')} ({symbol}): {e}", exc_info=True)
            await self._send(f"[analysis] {symbol}: {e}")

    async def run_cycle(self, symbol: str) -> Optional[CycleOutcome]:
        """
        Run one analysis cycle.

        Returns None when skipped (cycle already in flight or lock taken
        elsewhere). Errors propagate after the lock is restored to its prior
        state.
        """
        state = self.state(symbol)
        if state.in_flight:
            logger.info(f"Cycle for {symbol} already {state.stage.value}, event ignored")
            return None

        key = self._config.lock_key
        state.stage = PipelineStage.LOCK_PENDING
        held_before = self._locks.is_held(key)
        try:
            if not await self._locks.try_acquire(key):
                logger.info(f"Lock {key.name} held elsewhere, skipping {symbol}")
                return None

            state.stage = PipelineStage.RUNNING
            try:
                outcome = await self._evaluate(symbol)
                await self._apply(outcome)
            except Exception:
                if not held_before:
                    await self._locks.release(key)
                raise

            state.stage = PipelineStage.DECIDED
            state.cycles += 1
            state.last_decision = outcome.decision
            state.last_signal_id = outcome.ensemble.signal_id if outcome.ensemble else None
            return outcome
        finally:
            state.stage = PipelineStage.IDLE

    async def _evaluate(self, symbol: str) -> CycleOutcome:
        accounts = await self._exchange.get_accounts()
        snapshot = AccountSnapshot.from_accounts(accounts, symbol)
        posture = determine_posture(
            snapshot, self._config.min_holding_value, self._config.min_order_amount
        )
        logger.info(
            f"{symbol} posture={posture.value} holding={snapshot.holding_value} "
            f"quote={snapshot.quote_balance}"
        )

        if posture == Posture.HOLDING:
            return await self._evaluate_sell(symbol, snapshot)
        return await self._evaluate_buy(symbol)

    async def _evaluate_buy(self, symbol: str) -> CycleOutcome:
        ensemble = await self._run_ensemble(symbol, self._buy_strategies)
        decision = unanimous_buy(ensemble.decisions)
        return CycleOutcome(
            symbol=symbol,
            posture=Posture.READY_TO_BUY,
            decision=decision,
            reason="unanimous" if decision == Decision.BUY else "no consensus",
            ensemble=ensemble,
        )

    async def _evaluate_sell(self, symbol: str, snapshot: AccountSnapshot) -> CycleOutcome:
        rate = await self._current_profit_rate(symbol, snapshot)
        if rate is not None:
            if rate >= self._config.take_profit:
                return CycleOutcome(symbol, Posture.HOLDING, Decision.SELL, "take_profit", profit_rate=rate)
            if rate <= self._config.stop_loss:
                return CycleOutcome(symbol, Posture.HOLDING, Decision.SELL, "stop_loss", profit_rate=rate)

        ensemble = await self._run_ensemble(symbol, self._sell_strategies)
        decision = majority_sell(ensemble.decisions)
        return CycleOutcome(
            symbol=symbol,
            posture=Posture.HOLDING,
            decision=decision,
            reason="majority" if decision == Decision.SELL else "no consensus",
            ensemble=ensemble,
            profit_rate=rate,
        )

    async def _current_profit_rate(self, symbol: str, snapshot: AccountSnapshot) -> Optional[float]:
        price = await self._candles.get_latest_close(symbol)
        if price is None:
            candles = await self._exchange.get_candles(symbol, count=1)
            price = candles[0].trade_price if candles else None
        if price is None:
            return None
        return profit_rate(Decimal(price), snapshot.avg_buy_price)

    async def _run_ensemble(self, symbol: str, strategies: Sequence) -> EnsembleResult:
        try:
            run = await self._signals.create_run(symbol)
        except Exception as e:
            raise TraderError("SIGNAL_LOG_ERROR", detail=str(e)) from e
        return await self._ensemble.execute(run.id, symbol, strategies)

    async def _apply(self, outcome: CycleOutcome) -> None:
        key = self._config.lock_key
        summary = self._describe(outcome)
        logger.info(summary)

        if outcome.decision == Decision.HOLD:
            await self._locks.release(key)
        else:
            await self._bus.publish(Channel.TRADING, trade_event(outcome.decision.value, outcome.symbol))

        await self._send(summary)

    @staticmethod
    def _describe(outcome: CycleOutcome) -> str:
        parts = [
            f"[analysis] {outcome.symbol} {outcome.decision.value} ({outcome.reason})",
        ]
        if outcome.profit_rate is not None:
            parts.append(f"profit={outcome.profit_rate:.2f}%")
        if outcome.ensemble is not None:
            parts.append(f"score={outcome.ensemble.score}")
            parts.append(
                " ".join(f"{r.name}={r.weighted_score}" for r in outcome.ensemble.results)
            )
            if outcome.ensemble.errors:
                parts.append("errors: " + "; ".join(outcome.ensemble.errors))
        return " | ".join(parts)

    async def _send(self, text: str) -> None:
        if self._notify is not None:
            await self._notify(text)
