"""
Stochastic oscillator strategy on 15-minute buckets.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from coin_trader.storage.database import Database
from coin_trader.strategies.builtin.base import IndicatorStrategy
from coin_trader.strategies.scoring import stochastic_score

GET_STOCHASTIC_QUERY = """
WITH RECURSIVE buckets AS (
    SELECT date_trunc('minute', NOW()) AS ts
    UNION ALL
    SELECT ts - INTERVAL '15 minutes'
    FROM buckets
    WHERE ts > NOW() - INTERVAL '4 hours'
),
ohlc AS (
    SELECT
        b.ts AS bucket,
        MAX(md.high_price) AS high,
        MIN(md.low_price) AS low,
        (array_agg(md.close_price ORDER BY md.timestamp DESC))[1] AS close
    FROM buckets b
    JOIN Market_Data md
        ON md.symbol = $1
        AND md.timestamp >= b.ts - INTERVAL '15 minutes'
        AND md.timestamp < b.ts
    GROUP BY b.ts
),
raw_k AS (
    SELECT
        bucket,
        (close - MIN(low) OVER w) / NULLIF(MAX(high) OVER w - MIN(low) OVER w, 0) * 100 AS percent_k
    FROM ohlc
    WINDOW w AS (ORDER BY bucket ROWS BETWEEN $2::integer - 1 PRECEDING AND CURRENT ROW)
)
SELECT
    ROUND(percent_k::numeric, 2) AS k_value,
    ROUND(AVG(percent_k) OVER (ORDER BY bucket ROWS BETWEEN $3::integer - 1 PRECEDING AND CURRENT ROW)::numeric, 2) AS d_value
FROM raw_k
ORDER BY bucket DESC
LIMIT 1
"""

INSERT_STOCHASTIC_SIGNAL = """
INSERT INTO StochasticSignal (signal_id, k_value, d_value, score)
VALUES ($1, $2, $3, $4)
"""


@dataclass(frozen=True)
class StochasticParams:
    k_period: int = 10
    d_period: int = 3


@dataclass(frozen=True)
class StochasticData:
    k_value: float
    d_value: float


class StochasticStrategy(IndicatorStrategy):
    name = "STOCHASTIC"
    default_weight = 0.8
    data_error_key = "STOCHASTIC_DATA_ERROR"

    def __init__(self, params: Optional[StochasticParams] = None, weight: Optional[float] = None) -> None:
        super().__init__(weight)
        self.params = params or StochasticParams()

    async def fetch_data(self, db: Database, symbol: str) -> StochasticData:
        record = await self._fetch_required_row(
            db, GET_STOCHASTIC_QUERY, symbol, self.params.k_period, self.params.d_period
        )
        return StochasticData(k_value=float(record["k_value"]), d_value=float(record["d_value"]))

    def calculate_score(self, data: StochasticData) -> float:
        return stochastic_score(data.k_value, data.d_value)

    async def persist(self, db: Database, signal_id: UUID, data: StochasticData, score: float) -> None:
        await db.execute(INSERT_STOCHASTIC_SIGNAL, signal_id, data.k_value, data.d_value, score)
