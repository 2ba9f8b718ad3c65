"""
Bollinger band strategy (mean reversion on 20-minute closes).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from coin_trader.storage.database import Database
from coin_trader.strategies.builtin.base import IndicatorStrategy
from coin_trader.strategies.scoring import bollinger_score

GET_BOLLINGER_QUERY = """
WITH RECURSIVE buckets AS (
    SELECT date_trunc('minute', NOW()) AS ts
    UNION ALL
    SELECT ts - INTERVAL '20 minutes'
    FROM buckets
    WHERE ts > NOW() - make_interval(hours => $3)
),
closes AS (
    SELECT
        b.ts AS bucket,
        (array_agg(md.close_price ORDER BY md.timestamp DESC))[1] AS close_price
    FROM buckets b
    JOIN Market_Data md
        ON md.symbol = $1
        AND md.timestamp >= b.ts - INTERVAL '20 minutes'
        AND md.timestamp < b.ts
    GROUP BY b.ts
),
bands AS (
    SELECT
        bucket,
        close_price,
        AVG(close_price) OVER w AS moving_avg,
        STDDEV(close_price) OVER w AS moving_stddev
    FROM closes
    WINDOW w AS (ORDER BY bucket ROWS BETWEEN $2::integer - 1 PRECEDING AND CURRENT ROW)
)
SELECT
    close_price,
    ROUND((moving_avg + 2 * moving_stddev)::numeric, 5) AS upper_band,
    ROUND(moving_avg::numeric, 5) AS middle_band,
    ROUND((moving_avg - 2 * moving_stddev)::numeric, 5) AS lower_band
FROM bands
WHERE moving_stddev IS NOT NULL
ORDER BY bucket DESC
LIMIT 1
"""

INSERT_BOLLINGER_SIGNAL = """
INSERT INTO BollingerSignal (
    signal_id, upper_band, middle_band, lower_band,
    close_price, band_width, score
) VALUES ($1, $2, $3, $4, $5, $6, $7)
"""


@dataclass(frozen=True)
class BollingerParams:
    period: int = 20
    lookback_hours: int = 24


@dataclass(frozen=True)
class BollingerData:
    close_price: float
    upper_band: float
    middle_band: float
    lower_band: float

    @property
    def band_width(self) -> float:
        return self.upper_band - self.lower_band


class BollingerStrategy(IndicatorStrategy):
    name = "BOLLINGER"
    default_weight = 0.85
    data_error_key = "BOLLINGER_DATA_ERROR"

    def __init__(self, params: Optional[BollingerParams] = None, weight: Optional[float] = None) -> None:
        super().__init__(weight)
        self.params = params or BollingerParams()

    async def fetch_data(self, db: Database, symbol: str) -> BollingerData:
        record = await self._fetch_required_row(
            db, GET_BOLLINGER_QUERY, symbol, self.params.period, self.params.lookback_hours
        )
        return BollingerData(**{key: float(value) for key, value in dict(record).items()})

    def calculate_score(self, data: BollingerData) -> float:
        return bollinger_score(
            data.close_price, data.upper_band, data.middle_band, data.lower_band
        )

    async def persist(self, db: Database, signal_id: UUID, data: BollingerData, score: float) -> None:
        await db.execute(
            INSERT_BOLLINGER_SIGNAL,
            signal_id,
            data.upper_band,
            data.middle_band,
            data.lower_band,
            data.close_price,
            data.band_width,
            score,
        )
