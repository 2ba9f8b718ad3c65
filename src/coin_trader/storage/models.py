"""
Pydantic models matching the PostgreSQL schema in storage/schema.py.

IMPORTANT: All monetary fields (prices, quantities, fees, volumes) use Decimal
for precision. Strategy scores use float.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


# =============================================================================
# MARKET DATA
# =============================================================================


class MarketCandle(BaseModel):
    """One-minute OHLCV candle stored in Market_Data."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    symbol: str
    timestamp: datetime
    open_price: Decimal
    high_price: Decimal
    low_price: Decimal
    close_price: Decimal
    volume: Decimal


class DailySummary(BaseModel):
    """Aggregated market activity for one symbol over one day."""

    symbol: str
    candle_count: int
    avg_close: Optional[Decimal] = None
    total_volume: Optional[Decimal] = None


# =============================================================================
# TRADES
# =============================================================================


class Trade(BaseModel):
    """
    A trade row.

    Written provisionally when an order is submitted (sequence=0, settled=False)
    and updated in place once the exchange reports the fill.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    uuid: UUID
    type: str  # BUY or SELL
    symbol: str
    price: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    fee: Decimal = Decimal("0")
    sequence: int = 0
    order_uuid: Optional[str] = None
    settled: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# SIGNALS
# =============================================================================


class SignalRun(BaseModel):
    """One analysis run. Per-strategy rows reference it by signal_id."""

    id: UUID
    symbol: str
    hour_time: datetime
