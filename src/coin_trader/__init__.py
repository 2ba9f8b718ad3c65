"""
Coin Trader.

Automated spot trading for a single exchange, split into cooperating processes
(candle ingestion, signal analysis, order execution, operational manager) that
coordinate only through PostgreSQL: LISTEN/NOTIFY channels for events and a
session-scoped advisory lock that serializes the analyze -> trade pipeline.
"""

__version__ = "0.1.0"
