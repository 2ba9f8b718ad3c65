"""
Storage Layer - Async PostgreSQL database and repositories.

This is the foundation layer that all other components depend on.
Built on asyncpg for async database access.

Public API:
    Database, DatabaseConfig - Connection pool and session management
    ensure_schema - Idempotent DDL

    Models:
        MarketCandle, DailySummary, Trade, SignalRun

    Repositories:
        CandleRepository, SignalRepository, TradeRepository
"""
from coin_trader.storage.database import Database, DatabaseConfig
from coin_trader.storage.models import DailySummary, MarketCandle, SignalRun, Trade
from coin_trader.storage.repositories import (
    CandleRepository,
    SignalRepository,
    TradeRepository,
)
from coin_trader.storage.schema import ensure_schema

__all__ = [
    "Database",
    "DatabaseConfig",
    "ensure_schema",
    "MarketCandle",
    "DailySummary",
    "Trade",
    "SignalRun",
    "CandleRepository",
    "SignalRepository",
    "TradeRepository",
]
