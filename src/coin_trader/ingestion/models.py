"""
Data models for exchange responses.

Upbit returns numbers as JSON numbers or numeric strings depending on the
endpoint; everything monetary is parsed into Decimal here so the rest of the
code never sees floats for money.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from coin_trader.storage.models import MarketCandle


def _dec(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


def _opt_dec(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def split_symbol(symbol: str) -> tuple[str, str]:
    """'KRW-BTC' -> ('KRW', 'BTC')."""
    quote, _, base = symbol.partition("-")
    if not quote or not base:
        raise ValueError(f"Invalid market symbol: {symbol!r}")
    return quote, base


@dataclass(frozen=True)
class Account:
    """One currency balance on the exchange."""
    currency: str
    balance: Decimal
    locked: Decimal
    avg_buy_price: Decimal
    unit_currency: str = "KRW"

    @classmethod
    def from_api(cls, data: dict) -> "Account":
        return cls(
            currency=data["currency"],
            balance=_dec(data.get("balance")),
            locked=_dec(data.get("locked")),
            avg_buy_price=_dec(data.get("avg_buy_price")),
            unit_currency=data.get("unit_currency", "KRW"),
        )


@dataclass(frozen=True)
class AccountSnapshot:
    """
    Balances relevant to one market, e.g. KRW and BTC for KRW-BTC.

    holding_value is balance * average buy price, the cost basis of the
    position, as reported by the exchange.
    """
    symbol: str
    quote_balance: Decimal
    base_balance: Decimal
    avg_buy_price: Decimal

    @property
    def holding_value(self) -> Decimal:
        return self.base_balance * self.avg_buy_price

    @classmethod
    def from_accounts(cls, accounts: list[Account], symbol: str) -> "AccountSnapshot":
        quote, base = split_symbol(symbol)
        by_currency = {a.currency: a for a in accounts}
        quote_account = by_currency.get(quote)
        base_account = by_currency.get(base)
        return cls(
            symbol=symbol,
            quote_balance=quote_account.balance if quote_account else Decimal("0"),
            base_balance=base_account.balance if base_account else Decimal("0"),
            avg_buy_price=base_account.avg_buy_price if base_account else Decimal("0"),
        )


@dataclass(frozen=True)
class Candle:
    """One-minute candle as returned by /v1/candles/minutes/1."""
    market: str
    candle_date_time_utc: datetime
    opening_price: Decimal
    high_price: Decimal
    low_price: Decimal
    trade_price: Decimal
    candle_acc_trade_volume: Decimal

    @classmethod
    def from_api(cls, data: dict) -> "Candle":
        timestamp = datetime.fromisoformat(data["candle_date_time_utc"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            market=data["market"],
            candle_date_time_utc=timestamp,
            opening_price=_dec(data["opening_price"]),
            high_price=_dec(data["high_price"]),
            low_price=_dec(data["low_price"]),
            trade_price=_dec(data["trade_price"]),
            candle_acc_trade_volume=_dec(data["candle_acc_trade_volume"]),
        )

    def to_market_candle(self) -> MarketCandle:
        return MarketCandle(
            symbol=self.market,
            timestamp=self.candle_date_time_utc,
            open_price=self.opening_price,
            high_price=self.high_price,
            low_price=self.low_price,
            close_price=self.trade_price,
            volume=self.candle_acc_trade_volume,
        )


@dataclass(frozen=True)
class OrderFill:
    """One execution (partial fill) of an order."""
    uuid: str
    price: Decimal
    volume: Decimal
    funds: Decimal

    @classmethod
    def from_api(cls, data: dict) -> "OrderFill":
        return cls(
            uuid=data.get("uuid", ""),
            price=_dec(data.get("price")),
            volume=_dec(data.get("volume")),
            funds=_dec(data.get("funds")),
        )


TERMINAL_ORDER_STATES = frozenset({"done", "cancel"})


@dataclass(frozen=True)
class Order:
    """Order as returned by POST /v1/orders and GET /v1/order."""
    uuid: str
    side: str
    ord_type: str
    state: str
    market: str
    price: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    executed_volume: Decimal = Decimal("0")
    paid_fee: Decimal = Decimal("0")
    identifier: Optional[str] = None
    trades: tuple[OrderFill, ...] = field(default=())

    @classmethod
    def from_api(cls, data: dict) -> "Order":
        return cls(
            uuid=data["uuid"],
            side=data.get("side", ""),
            ord_type=data.get("ord_type", ""),
            state=data.get("state", ""),
            market=data.get("market", ""),
            price=_opt_dec(data.get("price")),
            volume=_opt_dec(data.get("volume")),
            executed_volume=_dec(data.get("executed_volume")),
            paid_fee=_dec(data.get("paid_fee")),
            identifier=data.get("identifier"),
            trades=tuple(OrderFill.from_api(t) for t in data.get("trades") or ()),
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_ORDER_STATES

    @property
    def is_filled(self) -> bool:
        """Terminal with at least one execution."""
        return self.is_terminal and len(self.trades) > 0

    @property
    def filled_volume(self) -> Decimal:
        return sum((t.volume for t in self.trades), Decimal("0"))

    @property
    def filled_funds(self) -> Decimal:
        return sum((t.funds for t in self.trades), Decimal("0"))

    @property
    def average_price(self) -> Optional[Decimal]:
        volume = self.filled_volume
        if volume == 0:
            return None
        return self.filled_funds / volume
