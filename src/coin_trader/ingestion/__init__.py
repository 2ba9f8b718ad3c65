"""
Ingestion Layer - Exchange access and candle ingestion.

Public API:
    UpbitClient, ExchangeAPIError - REST client
    Account, AccountSnapshot, Candle, Order, OrderFill - exchange models

The ingestion process (CandleIngestor, CandleSaveService, IngestionConfig) is
imported from coin_trader.ingestion.service.
"""
from coin_trader.ingestion.client import (
    ExchangeAPIError,
    RateLimitError,
    UpbitClient,
    floor_to_price_unit,
    price_unit,
)
from coin_trader.ingestion.models import (
    Account,
    AccountSnapshot,
    Candle,
    Order,
    OrderFill,
    split_symbol,
)

__all__ = [
    "UpbitClient",
    "ExchangeAPIError",
    "RateLimitError",
    "price_unit",
    "floor_to_price_unit",
    "Account",
    "AccountSnapshot",
    "Candle",
    "Order",
    "OrderFill",
    "split_symbol",
]
