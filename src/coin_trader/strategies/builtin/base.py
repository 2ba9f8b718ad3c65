"""
Shared plumbing for the SQL-backed indicator strategies.
"""
from __future__ import annotations

from typing import Any, Optional

from coin_trader.core.errors import StrategyDataError
from coin_trader.storage.database import Database


class IndicatorStrategy:
    """Holds name and weight; subclasses add fetch_data / calculate_score / persist."""

    name: str = ""
    default_weight: float = 1.0
    data_error_key: str = "UNEXPECTED_ERROR"

    def __init__(self, weight: Optional[float] = None) -> None:
        self._weight = self.default_weight if weight is None else weight

    @property
    def weight(self) -> float:
        return self._weight

    async def _fetch_required_row(self, db: Database, query: str, *args: Any):
        """fetchrow that treats no row, or NULL in any column, as missing data."""
        record = await db.fetchrow(query, *args)
        if record is None or any(value is None for value in dict(record).values()):
            raise StrategyDataError(self.data_error_key, detail=f"{self.name} {args[0]}")
        return record

    def __repr__(self) -> str:
        return f"{type(self).__name__}(weight={self._weight})"
