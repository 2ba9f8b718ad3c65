"""
Repository for the Trades table.

A trade is written twice: once provisionally when the order is submitted and
once, in place, when the exchange confirms the fill. The settle update only
matches unsettled rows, so replaying a fill confirmation is a no-op.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from coin_trader.storage.models import Trade
from coin_trader.storage.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class TradeRepository(BaseRepository[Trade]):
    """Trades access."""

    table_name = "Trades"
    model_class = Trade

    async def create_provisional(self, trade: Trade) -> Trade:
        """
        Insert the provisional row for a submitted order.

        The row id is the client-generated order identifier, so resubmitting the
        same identifier leaves the existing row untouched.
        """
        query = """
            INSERT INTO Trades (
                uuid, type, symbol, price, quantity, fee,
                sequence, order_uuid, settled
            ) VALUES ($1, $2, $3, $4, $5, $6, 0, $7, FALSE)
            ON CONFLICT (uuid, type, sequence) DO NOTHING
        """
        await self.db.execute(
            query,
            trade.uuid,
            trade.type,
            trade.symbol,
            trade.price,
            trade.quantity,
            trade.fee,
            trade.order_uuid,
        )
        return trade

    async def apply_fill(
        self,
        row_id: UUID,
        side: str,
        symbol: str,
        price: Decimal,
        quantity: Decimal,
        fee: Decimal,
    ) -> Optional[Trade]:
        """
        Settle a provisional trade with the accumulated fill.

        Returns the updated row, or None when no unsettled row matched
        (already settled, or never written).
        """
        query = """
            UPDATE Trades SET
                price = COALESCE($4, price),
                quantity = COALESCE($5, quantity),
                fee = $6,
                sequence = sequence + 1,
                settled = TRUE,
                updated_at = NOW()
            WHERE uuid = $1 AND type = $2 AND symbol = $3 AND settled = FALSE
            RETURNING *
        """
        record = await self.db.fetchrow(query, row_id, side, symbol, price, quantity, fee)
        return self._record_to_model(record)

    async def get(self, row_id: UUID, side: str) -> Optional[Trade]:
        query = """
            SELECT * FROM Trades
            WHERE uuid = $1 AND type = $2
            ORDER BY sequence DESC
            LIMIT 1
        """
        record = await self.db.fetchrow(query, row_id, side)
        return self._record_to_model(record)

    async def attach_order(
        self,
        row_id: UUID,
        side: str,
        order_uuid: str,
        price: Optional[Decimal],
        quantity: Optional[Decimal],
        fee: Decimal,
    ) -> None:
        """Record the exchange's order uuid and acknowledgement on the provisional row."""
        query = """
            UPDATE Trades SET
                order_uuid = $3,
                price = COALESCE($4, price),
                quantity = COALESCE($5, quantity),
                fee = $6,
                updated_at = NOW()
            WHERE uuid = $1 AND type = $2 AND settled = FALSE
        """
        await self.db.execute(query, row_id, side, order_uuid, price, quantity, fee)

    async def discard_provisional(self, row_id: UUID, side: str) -> None:
        """Delete a provisional row whose order the exchange never accepted."""
        query = """
            DELETE FROM Trades
            WHERE uuid = $1 AND type = $2 AND settled = FALSE AND order_uuid IS NULL
        """
        await self.db.execute(query, row_id, side)
