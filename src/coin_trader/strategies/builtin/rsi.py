"""
RSI strategy.

Hourly RSI over the lookback window. Oversold readings score positive,
overbought negative, and the change against the previous few hours adds a
momentum term.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from coin_trader.core.errors import StrategyDataError
from coin_trader.storage.database import Database
from coin_trader.strategies.builtin.base import IndicatorStrategy
from coin_trader.strategies.scoring import clamp_score, rsi_base_score, rsi_momentum_score

GET_RSI_QUERY = """
WITH hourly AS (
    SELECT
        date_trunc('hour', timestamp) AS hour,
        (array_agg(close_price ORDER BY timestamp DESC))[1] AS close_price
    FROM Market_Data
    WHERE symbol = $1
      AND timestamp >= NOW() - make_interval(hours => $2)
    GROUP BY 1
),
changes AS (
    SELECT
        hour,
        close_price - LAG(close_price) OVER (ORDER BY hour) AS change
    FROM hourly
),
averages AS (
    SELECT
        hour,
        AVG(GREATEST(change, 0)) OVER w AS avg_gain,
        AVG(GREATEST(-change, 0)) OVER w AS avg_loss
    FROM changes
    WINDOW w AS (ORDER BY hour ROWS BETWEEN $3::integer - 1 PRECEDING AND CURRENT ROW)
)
SELECT
    hour,
    CASE
        WHEN avg_gain = 0 AND avg_loss = 0 THEN 50
        WHEN avg_loss = 0 THEN 100
        WHEN avg_gain = 0 THEN 0
        ELSE ROUND(100 - (100 / (1 + avg_gain / avg_loss)), 2)
    END AS rsi
FROM averages
WHERE avg_gain IS NOT NULL
ORDER BY hour DESC
LIMIT $4
"""

INSERT_RSI_SIGNAL = """
INSERT INTO RsiSignal (signal_id, current_rsi, prev_rsi, score)
VALUES ($1, $2, $3, $4)
"""


@dataclass(frozen=True)
class RsiParams:
    period: int = 14
    lookback_hours: int = 24
    oversold: float = 30.0
    overbought: float = 70.0
    momentum_weight: float = 0.3
    momentum_window: int = 3


@dataclass(frozen=True)
class RsiData:
    current: float
    previous: tuple[float, ...] = ()


class RsiStrategy(IndicatorStrategy):
    name = "RSI"
    default_weight = 0.9
    data_error_key = "RSI_DATA_ERROR"

    def __init__(self, params: Optional[RsiParams] = None, weight: Optional[float] = None) -> None:
        super().__init__(weight)
        self.params = params or RsiParams()

    async def fetch_data(self, db: Database, symbol: str) -> RsiData:
        rows = await db.fetch(
            GET_RSI_QUERY,
            symbol,
            self.params.lookback_hours,
            self.params.period,
            self.params.momentum_window + 1,
        )
        values = [float(r["rsi"]) for r in rows if r["rsi"] is not None]
        if not values:
            raise StrategyDataError(self.data_error_key, detail=symbol)
        return RsiData(current=values[0], previous=tuple(values[1:]))

    def calculate_score(self, data: RsiData) -> float:
        base = rsi_base_score(data.current, self.params.oversold, self.params.overbought)
        momentum = rsi_momentum_score(data.current, data.previous, self.params.momentum_weight)
        return clamp_score(base + momentum)

    async def persist(self, db: Database, signal_id: UUID, data: RsiData, score: float) -> None:
        await db.execute(INSERT_RSI_SIGNAL, signal_id, data.current, list(data.previous), score)
