"""
Moving average crossover strategy on 15-minute average closes over 6 hours.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from coin_trader.core.errors import StrategyDataError
from coin_trader.storage.database import Database
from coin_trader.strategies.builtin.base import IndicatorStrategy
from coin_trader.strategies.scoring import ma_crossover_score

GET_MA_QUERY = """
WITH RECURSIVE buckets AS (
    SELECT date_trunc('minute', NOW()) AS ts
    UNION ALL
    SELECT ts - INTERVAL '15 minutes'
    FROM buckets
    WHERE ts > NOW() - INTERVAL '6 hours'
),
averages AS (
    SELECT b.ts AS bucket, AVG(md.close_price) AS avg_close
    FROM buckets b
    JOIN Market_Data md
        ON md.symbol = $1
        AND md.timestamp >= b.ts - INTERVAL '15 minutes'
        AND md.timestamp < b.ts
    GROUP BY b.ts
),
moving AS (
    SELECT
        bucket,
        AVG(avg_close) OVER (ORDER BY bucket ROWS BETWEEN $2::integer - 1 PRECEDING AND CURRENT ROW) AS short_ma,
        AVG(avg_close) OVER (ORDER BY bucket ROWS BETWEEN $3::integer - 1 PRECEDING AND CURRENT ROW) AS long_ma
    FROM averages
)
SELECT
    short_ma,
    long_ma,
    COALESCE(LAG(short_ma) OVER (ORDER BY bucket), 0) AS prev_short_ma
FROM moving
ORDER BY bucket DESC
LIMIT 1
"""

INSERT_MA_SIGNAL = """
INSERT INTO MaSignal (signal_id, short_ma, long_ma, prev_short_ma, score)
VALUES ($1, $2, $3, $4, $5)
"""


@dataclass(frozen=True)
class MaParams:
    short_period: int = 10
    long_period: int = 20


@dataclass(frozen=True)
class MaData:
    short_ma: float
    long_ma: float
    prev_short_ma: float


class MaStrategy(IndicatorStrategy):
    name = "MA"
    default_weight = 0.9
    data_error_key = "MA_DATA_NOT_FOUND"

    def __init__(self, params: Optional[MaParams] = None, weight: Optional[float] = None) -> None:
        super().__init__(weight)
        self.params = params or MaParams()

    async def fetch_data(self, db: Database, symbol: str) -> MaData:
        record = await self._fetch_required_row(
            db, GET_MA_QUERY, symbol, self.params.short_period, self.params.long_period
        )
        data = MaData(
            short_ma=float(record["short_ma"]),
            long_ma=float(record["long_ma"]),
            prev_short_ma=float(record["prev_short_ma"]),
        )
        if data.short_ma <= 0 or data.long_ma <= 0 or data.prev_short_ma <= 0:
            raise StrategyDataError("MA_INVALID_DATA", detail=f"{symbol} {data}")
        return data

    def calculate_score(self, data: MaData) -> float:
        return ma_crossover_score(data.short_ma, data.long_ma, data.prev_short_ma)

    async def persist(self, db: Database, signal_id: UUID, data: MaData, score: float) -> None:
        await db.execute(
            INSERT_MA_SIGNAL, signal_id, data.short_ma, data.long_ma, data.prev_short_ma, score
        )
