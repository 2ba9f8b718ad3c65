"""
Volume strategy: the last hour's average candle volume against the lookback average.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from coin_trader.core.errors import StrategyDataError
from coin_trader.storage.database import Database
from coin_trader.strategies.builtin.base import IndicatorStrategy
from coin_trader.strategies.scoring import volume_score

GET_VOLUME_QUERY = """
SELECT
    COALESCE(AVG(volume) FILTER (WHERE timestamp > NOW() - INTERVAL '60 minutes'), 0)
        AS latest_hour_volume,
    COALESCE(AVG(volume) FILTER (WHERE timestamp <= NOW() - INTERVAL '60 minutes'), 0)
        AS historical_avg_volume
FROM Market_Data
WHERE symbol = $1
  AND timestamp > NOW() - make_interval(hours => $2)
"""

INSERT_VOLUME_SIGNAL = """
INSERT INTO VolumeSignal (signal_id, current_volume, avg_volume, score)
VALUES ($1, $2, $3, $4)
"""


@dataclass(frozen=True)
class VolumeParams:
    lookback_hours: int = 24


@dataclass(frozen=True)
class VolumeData:
    latest_hour_volume: float
    historical_avg_volume: float


class VolumeStrategy(IndicatorStrategy):
    name = "VOLUME"
    default_weight = 0.7
    data_error_key = "VOLUME_DATA_NOT_FOUND"

    def __init__(self, params: Optional[VolumeParams] = None, weight: Optional[float] = None) -> None:
        super().__init__(weight)
        self.params = params or VolumeParams()

    async def fetch_data(self, db: Database, symbol: str) -> VolumeData:
        record = await self._fetch_required_row(
            db, GET_VOLUME_QUERY, symbol, self.params.lookback_hours
        )
        data = VolumeData(
            latest_hour_volume=float(record["latest_hour_volume"]),
            historical_avg_volume=float(record["historical_avg_volume"]),
        )
        # log() is undefined at or below zero
        if data.latest_hour_volume <= 0 or data.historical_avg_volume <= 0:
            raise StrategyDataError(self.data_error_key, detail=symbol)
        return data

    def calculate_score(self, data: VolumeData) -> float:
        return volume_score(data.latest_hour_volume, data.historical_avg_volume)

    async def persist(self, db: Database, signal_id: UUID, data: VolumeData, score: float) -> None:
        await db.execute(
            INSERT_VOLUME_SIGNAL,
            signal_id,
            data.latest_hour_volume,
            data.historical_avg_volume,
            score,
        )
