"""
Repository for one-minute market candles.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from coin_trader.storage.models import DailySummary, MarketCandle
from coin_trader.storage.repositories.base import BaseRepository


class CandleRepository(BaseRepository[MarketCandle]):
    """Market_Data access."""

    table_name = "Market_Data"
    model_class = MarketCandle

    async def upsert_many(self, candles: Iterable[MarketCandle]) -> int:
        """Insert candles, overwriting any row with the same (symbol, timestamp)."""
        query = """
            INSERT INTO Market_Data (
                symbol, timestamp, open_price, high_price,
                low_price, close_price, volume
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (symbol, timestamp) DO UPDATE SET
                open_price = EXCLUDED.open_price,
                high_price = EXCLUDED.high_price,
                low_price = EXCLUDED.low_price,
                close_price = EXCLUDED.close_price,
                volume = EXCLUDED.volume
        """
        count = 0
        for candle in candles:
            await self.db.execute(
                query,
                candle.symbol,
                candle.timestamp,
                candle.open_price,
                candle.high_price,
                candle.low_price,
                candle.close_price,
                candle.volume,
            )
            count += 1
        return count

    async def get_latest(self, symbol: str) -> Optional[MarketCandle]:
        query = """
            SELECT * FROM Market_Data
            WHERE symbol = $1
            ORDER BY timestamp DESC
            LIMIT 1
        """
        record = await self.db.fetchrow(query, symbol)
        return self._record_to_model(record)

    async def get_latest_close(self, symbol: str) -> Optional[Decimal]:
        candle = await self.get_latest(symbol)
        return candle.close_price if candle else None

    async def delete_older_than(self, hours: int) -> int:
        """Delete candles older than `hours`. Returns the number of rows deleted."""
        query = """
            DELETE FROM Market_Data
            WHERE timestamp < NOW() - make_interval(hours => $1)
        """
        result = await self.db.execute(query, hours)
        # asyncpg returns e.g. "DELETE 42"
        try:
            return int(result.split()[-1])
        except (AttributeError, IndexError, ValueError):
            return 0

    async def daily_summary(
        self, symbol: str, start: datetime, end: datetime
    ) -> DailySummary:
        """Average close and total volume between start (inclusive) and end (exclusive)."""
        query = """
            SELECT
                COUNT(*) AS candle_count,
                AVG(close_price) AS avg_close,
                SUM(volume) AS total_volume
            FROM Market_Data
            WHERE symbol = $1 AND timestamp >= $2 AND timestamp < $3
        """
        record = await self.db.fetchrow(query, symbol, start, end)
        if record is None:
            return DailySummary(symbol=symbol, candle_count=0)
        return DailySummary(symbol=symbol, **dict(record))
