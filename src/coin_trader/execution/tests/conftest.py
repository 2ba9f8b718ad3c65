"""
Execution layer test fixtures.

The trade repository is a mock whose apply_fill echoes a settled row, the way
the UPDATE ... RETURNING query does for an unsettled one.
"""
from unittest.mock import AsyncMock

import pytest

from coin_trader.storage.models import Trade


@pytest.fixture
def trades():
    repo = AsyncMock()
    repo.create_provisional = AsyncMock(side_effect=lambda trade: trade)

    async def apply_fill(row_id, side, symbol, price, quantity, fee):
        return Trade(
            uuid=row_id,
            type=side,
            symbol=symbol,
            price=price,
            quantity=quantity,
            fee=fee,
            sequence=1,
            order_uuid="ord-1",
            settled=True,
        )

    repo.apply_fill = AsyncMock(side_effect=apply_fill)
    repo.get = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def no_sleep():
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep
