"""
Repositories for async PostgreSQL access.
"""
from coin_trader.storage.repositories.base import BaseRepository
from coin_trader.storage.repositories.candle_repo import CandleRepository
from coin_trader.storage.repositories.signal_repo import SignalRepository
from coin_trader.storage.repositories.trade_repo import TradeRepository

__all__ = [
    "BaseRepository",
    "CandleRepository",
    "SignalRepository",
    "TradeRepository",
]
