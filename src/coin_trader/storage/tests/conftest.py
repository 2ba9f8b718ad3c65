"""
Storage layer test fixtures.

Repository tests run against a mocked Database; SQL is asserted by shape,
never executed.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from coin_trader.storage.models import MarketCandle, Trade


@pytest.fixture
def mock_db():
    """Mock database for unit tests."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def sample_candle() -> MarketCandle:
    return MarketCandle(
        symbol="KRW-BTC",
        timestamp=datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
        open_price=Decimal("95000000"),
        high_price=Decimal("95100000"),
        low_price=Decimal("94900000"),
        close_price=Decimal("95050000"),
        volume=Decimal("1.25"),
    )


@pytest.fixture
def provisional_trade() -> Trade:
    return Trade(
        uuid=uuid.UUID("5d0d7a4e-1b1e-4a7c-9a43-0f6b2f3e9c11"),
        type="BUY",
        symbol="KRW-BTC",
        price=Decimal("99950"),
        order_uuid="ord-1",
    )
