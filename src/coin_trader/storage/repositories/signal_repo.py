"""
Repository for signal runs (SignalLog).

Per-strategy audit rows are written by each strategy's `persist` method, since
only the strategy knows its own columns.
"""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from coin_trader.storage.models import SignalRun
from coin_trader.storage.repositories.base import BaseRepository


class SignalRepository(BaseRepository[SignalRun]):
    """SignalLog access."""

    table_name = "SignalLog"
    model_class = SignalRun

    async def create_run(self, symbol: str) -> SignalRun:
        """Start a new analysis run and return it with its generated id."""
        query = """
            INSERT INTO SignalLog (symbol, hour_time)
            VALUES ($1, NOW())
            RETURNING id, symbol, hour_time
        """
        record = await self.db.fetchrow(query, symbol)
        return self._record_to_model(record)

    async def get(self, signal_id: UUID) -> Optional[SignalRun]:
        query = "SELECT id, symbol, hour_time FROM SignalLog WHERE id = $1"
        record = await self.db.fetchrow(query, signal_id)
        return self._record_to_model(record)
