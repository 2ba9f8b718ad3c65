"""
Decision and result types produced by strategies and the ensemble.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from uuid import UUID


class Decision(str, Enum):
    """Quantized trading decision."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


def quantize(score: float, buy_threshold: float, sell_threshold: float) -> Decision:
    """Map a score onto BUY / SELL / HOLD. Thresholds are inclusive."""
    if score >= buy_threshold:
        return Decision.BUY
    if score <= sell_threshold:
        return Decision.SELL
    return Decision.HOLD


@dataclass(frozen=True)
class StrategyResult:
    """Outcome of one strategy in one run. Failed strategies score 0."""

    name: str
    weight: float
    score: float
    weighted_score: float
    decision: Decision
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class EnsembleResult:
    """Combined outcome of all strategies evaluated in one run."""

    signal_id: UUID
    symbol: str
    results: tuple[StrategyResult, ...]
    score: float
    decision: Decision
    errors: tuple[str, ...] = field(default=())

    @property
    def decisions(self) -> list[Decision]:
        return [r.decision for r in self.results]
