"""
Account posture: which side of the market the next analysis should evaluate.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from coin_trader.core.errors import AmbiguousPostureError
from coin_trader.ingestion.models import AccountSnapshot


class Posture(str, Enum):
    HOLDING = "holding"          # evaluate selling
    READY_TO_BUY = "ready_to_buy"  # evaluate buying


def determine_posture(
    snapshot: AccountSnapshot,
    min_holding_value: Decimal,
    min_order_amount: Decimal,
) -> Posture:
    """
    Holding wins over buying power. Neither is an invariant violation.

    Raises:
        AmbiguousPostureError: dust position and not enough quote to buy
    """
    if snapshot.holding_value > min_holding_value:
        return Posture.HOLDING
    if snapshot.quote_balance > min_order_amount:
        return Posture.READY_TO_BUY
    raise AmbiguousPostureError(
        detail=(
            f"{snapshot.symbol} holding={snapshot.holding_value} "
            f"quote={snapshot.quote_balance}"
        )
    )


def profit_rate(current_price: Decimal, avg_buy_price: Decimal) -> Optional[float]:
    """Percent change from the average buy price, or None without a cost basis."""
    if avg_buy_price <= 0:
        return None
    return float((current_price - avg_buy_price) / avg_buy_price * 100)
