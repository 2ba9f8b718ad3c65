"""
MACD strategy.

Hourly candles, EMA(short) - EMA(long) against a signal line. The score sums
the signal-line crossover, histogram change and zero-line terms, scaled by
trend strength.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from coin_trader.storage.database import Database
from coin_trader.strategies.builtin.base import IndicatorStrategy
from coin_trader.strategies.scoring import (
    clamp_score,
    macd_crossover_score,
    macd_histogram_score,
    macd_trend_strength,
    macd_zero_line_score,
)

GET_MACD_QUERY = """
WITH RECURSIVE intervals AS (
    SELECT NOW() AS interval_start
    UNION ALL
    SELECT interval_start - INTERVAL '60 minutes'
    FROM intervals
    WHERE interval_start > NOW() - make_interval(hours => $2)
),
hourly AS (
    SELECT
        i.interval_start,
        (array_agg(md.close_price ORDER BY md.timestamp DESC))[1] AS close_price
    FROM intervals i
    JOIN Market_Data md
        ON md.symbol = $1
        AND md.timestamp > i.interval_start - INTERVAL '60 minutes'
        AND md.timestamp <= i.interval_start
    GROUP BY i.interval_start
),
ema AS (
    SELECT
        interval_start,
        AVG(close_price) OVER (ORDER BY interval_start ROWS BETWEEN $3::integer - 1 PRECEDING AND CURRENT ROW) AS ema_short,
        AVG(close_price) OVER (ORDER BY interval_start ROWS BETWEEN $4::integer - 1 PRECEDING AND CURRENT ROW) AS ema_long
    FROM hourly
),
macd AS (
    SELECT interval_start, ema_short - ema_long AS macd_line
    FROM ema
),
signal AS (
    SELECT
        interval_start,
        macd_line,
        AVG(macd_line) OVER (ORDER BY interval_start ROWS BETWEEN $5::integer - 1 PRECEDING AND CURRENT ROW) AS signal_line
    FROM macd
),
history AS (
    SELECT
        interval_start,
        macd_line AS current_macd,
        signal_line AS current_signal,
        LAG(macd_line) OVER (ORDER BY interval_start) AS prev_macd,
        LAG(signal_line) OVER (ORDER BY interval_start) AS prev_signal,
        macd_line - signal_line AS histogram,
        LAG(macd_line - signal_line) OVER (ORDER BY interval_start) AS prev_histogram
    FROM signal
)
SELECT current_macd, current_signal, prev_macd, prev_signal, histogram, prev_histogram
FROM history
ORDER BY interval_start DESC
LIMIT 1
"""

INSERT_MACD_SIGNAL = """
INSERT INTO MacdSignal (
    signal_id, macd_line, signal_line, histogram,
    zero_cross, trend_strength, score
) VALUES ($1, $2, $3, $4, $5, $6, $7)
"""


@dataclass(frozen=True)
class MacdParams:
    lookback_hours: int = 24
    short_period: int = 6
    long_period: int = 13
    signal_period: int = 5


@dataclass(frozen=True)
class MacdData:
    current_macd: float
    current_signal: float
    prev_macd: float
    prev_signal: float
    histogram: float
    prev_histogram: float

    @property
    def zero_cross(self) -> bool:
        return (self.current_macd > 0) != (self.prev_macd > 0)

    @property
    def trend_strength(self) -> float:
        if self.current_signal == 0:
            return 0.0
        return abs(self.histogram) / abs(self.current_signal)


class MacdStrategy(IndicatorStrategy):
    name = "MACD"
    default_weight = 0.95
    data_error_key = "MACD_DATA_ERROR"

    def __init__(self, params: Optional[MacdParams] = None, weight: Optional[float] = None) -> None:
        super().__init__(weight)
        self.params = params or MacdParams()

    async def fetch_data(self, db: Database, symbol: str) -> MacdData:
        record = await self._fetch_required_row(
            db,
            GET_MACD_QUERY,
            symbol,
            self.params.lookback_hours,
            self.params.short_period,
            self.params.long_period,
            self.params.signal_period,
        )
        return MacdData(**{key: float(value) for key, value in dict(record).items()})

    def calculate_score(self, data: MacdData) -> float:
        total = (
            macd_crossover_score(
                data.current_macd, data.current_signal, data.prev_macd, data.prev_signal
            )
            + macd_histogram_score(data.histogram, data.prev_histogram)
            + macd_zero_line_score(data.current_macd, data.prev_macd)
        )
        total *= macd_trend_strength(data.histogram, data.current_signal)
        return clamp_score(total)

    async def persist(self, db: Database, signal_id: UUID, data: MacdData, score: float) -> None:
        await db.execute(
            INSERT_MACD_SIGNAL,
            signal_id,
            data.current_macd,
            data.current_signal,
            data.histogram,
            data.zero_cross,
            data.trend_strength,
            score,
        )
