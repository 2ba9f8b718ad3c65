"""
Database schema for the trading system.

Executed idempotently by the manager service at startup. Every statement uses
IF NOT EXISTS so concurrent or repeated runs are harmless.
"""
from __future__ import annotations

import logging

from coin_trader.storage.database import Database

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS: tuple[str, ...] = (
    "CREATE EXTENSION IF NOT EXISTS pgcrypto",
    # -------------------------------------------------------------------------
    # Market data (1-minute candles)
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS Market_Data (
        symbol TEXT NOT NULL,
        timestamp TIMESTAMPTZ NOT NULL,
        open_price NUMERIC NOT NULL,
        high_price NUMERIC NOT NULL,
        low_price NUMERIC NOT NULL,
        close_price NUMERIC NOT NULL,
        volume NUMERIC NOT NULL,
        PRIMARY KEY (symbol, timestamp)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_market_data_timestamp ON Market_Data (timestamp)",
    # -------------------------------------------------------------------------
    # Trades: provisional row at submission, settled in place on fill
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS Trades (
        uuid UUID NOT NULL,
        type VARCHAR(4) NOT NULL CHECK (type IN ('BUY', 'SELL')),
        symbol TEXT NOT NULL,
        price NUMERIC,
        quantity NUMERIC,
        fee NUMERIC NOT NULL DEFAULT 0,
        sequence INTEGER NOT NULL DEFAULT 0,
        order_uuid TEXT,
        settled BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (uuid, type, sequence)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_trades_symbol_created ON Trades (symbol, created_at DESC)",
    # -------------------------------------------------------------------------
    # Signal runs and per-strategy audit rows
    # -------------------------------------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS SignalLog (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        symbol TEXT NOT NULL,
        hour_time TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS RsiSignal (
        signal_id UUID PRIMARY KEY REFERENCES SignalLog (id) ON DELETE CASCADE,
        current_rsi NUMERIC NOT NULL,
        prev_rsi NUMERIC[] NOT NULL DEFAULT '{}',
        score NUMERIC NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS MacdSignal (
        signal_id UUID PRIMARY KEY REFERENCES SignalLog (id) ON DELETE CASCADE,
        macd_line NUMERIC NOT NULL,
        signal_line NUMERIC NOT NULL,
        histogram NUMERIC NOT NULL,
        zero_cross BOOLEAN NOT NULL,
        trend_strength NUMERIC NOT NULL,
        score NUMERIC NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS BollingerSignal (
        signal_id UUID PRIMARY KEY REFERENCES SignalLog (id) ON DELETE CASCADE,
        upper_band NUMERIC NOT NULL,
        middle_band NUMERIC NOT NULL,
        lower_band NUMERIC NOT NULL,
        close_price NUMERIC NOT NULL,
        band_width NUMERIC NOT NULL,
        score NUMERIC NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS StochasticSignal (
        signal_id UUID PRIMARY KEY REFERENCES SignalLog (id) ON DELETE CASCADE,
        k_value NUMERIC NOT NULL,
        d_value NUMERIC NOT NULL,
        score NUMERIC NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS MaSignal (
        signal_id UUID PRIMARY KEY REFERENCES SignalLog (id) ON DELETE CASCADE,
        short_ma NUMERIC NOT NULL,
        long_ma NUMERIC NOT NULL,
        prev_short_ma NUMERIC NOT NULL,
        score NUMERIC NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS VolumeSignal (
        signal_id UUID PRIMARY KEY REFERENCES SignalLog (id) ON DELETE CASCADE,
        current_volume NUMERIC NOT NULL,
        avg_volume NUMERIC NOT NULL,
        score NUMERIC NOT NULL
    )
    """,
)


async def ensure_schema(db: Database) -> None:
    """Create all tables and indexes if they do not exist yet."""
    async with db.transaction() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info(f"Schema ensured ({len(SCHEMA_STATEMENTS)} statements)")
