"""
OrderExecutionCoordinator - turns a trade decision into a settled Trades row.

Flow for one BUY/SELL event:
    1. Re-read balances (the decision may be stale).
    2. Write the provisional Trades row keyed by a fresh UUID4 identifier.
    3. Place a market order carrying that identifier. If submission fails, the
       order is looked up by identifier; only an order the exchange has never
       seen drops the provisional row.
    4. Poll the order a bounded number of times with a fixed delay until it is
       terminal with at least one execution.
    5. Settle the row in place with the accumulated fills (sequence + 1).

Settling only matches unsettled rows, so replaying step 5 is a no-op. If
polling runs out, the provisional row is left as-is and OrderNotFilledError
is raised.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Awaitable, Callable, Optional

from coin_trader.core.channels import BUY, SELL, Channel, EventEnvelope
from coin_trader.core.errors import (
    InsufficientBalanceError,
    OrderNotFilledError,
    OrderSubmissionError,
    TraderError,
)
from coin_trader.core.posture import profit_rate
from coin_trader.ingestion.client import ExchangeAPIError, UpbitClient
from coin_trader.ingestion.models import AccountSnapshot, Order
from coin_trader.storage.models import Trade
from coin_trader.storage.repositories import TradeRepository

logger = logging.getLogger(__name__)

EXCHANGE_SIDES = {BUY: "bid", SELL: "ask"}


@dataclass
class OrderConfig:
    """Configuration for order execution."""

    poll_attempts: int = 3
    poll_delay_seconds: float = 3.0
    min_order_amount: Decimal = Decimal("10000")
    min_sell_volume: Decimal = Decimal("0.00001")
    # market-price bids must leave room for the fee
    fee_rate: Decimal = Decimal("0.0005")


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one executed decision."""

    side: str
    symbol: str
    row_id: uuid.UUID
    order_uuid: str
    trade: Trade
    replayed: bool = False
    realized_profit: Optional[Decimal] = None
    realized_rate: Optional[float] = None


class OrderExecutionCoordinator:
    """
    Usage:
        coordinator = OrderExecutionCoordinator(exchange, TradeRepository(db), notify=service.notify)
        bus.subscribe(Channel.TRADING, coordinator.handle_event)
    """

    def __init__(
        self,
        exchange: UpbitClient,
        trades: TradeRepository,
        config: Optional[OrderConfig] = None,
        notify: Optional[Callable[[str], Awaitable[None]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        id_factory: Callable[[], uuid.UUID] = uuid.uuid4,
    ) -> None:
        self._exchange = exchange
        self._trades = trades
        self._config = config or OrderConfig()
        self._notify = notify
        self._sleep = sleep
        self._id_factory = id_factory
        self._in_flight: set[str] = set()

    def is_in_flight(self, symbol: str) -> bool:
        return symbol in self._in_flight

    async def handle_event(self, channel: Channel, payload: str) -> None:
        """Bus handler for the trading channel. Never raises."""
        try:
            envelope = EventEnvelope.parse(payload)
        except TraderError as e:
            logger.warning(f"Ignoring trading event: {e}")
            return

        if envelope.verb not in EXCHANGE_SIDES or not envelope.argument:
            logger.warning(f"Unknown trading event {payload!r} ignored")
            return

        try:
            await self.execute(envelope.verb, envelope.argument)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{envelope.verb} {envelope.argument} failed: {e}", exc_info=True)
            await self._send(f"[trading] {envelope.verb} {envelope.argument}: {e}")

    async def execute(self, side: str, symbol: str) -> Optional[ExecutionOutcome]:
        """
        Place and settle one order. Returns None if an order for the symbol is
        already being executed by this process.
        """
        if symbol in self._in_flight:
            logger.info(f"Order for {symbol} already in flight, {side} ignored")
            return None

        self._in_flight.add(symbol)
        try:
            snapshot = AccountSnapshot.from_accounts(await self._exchange.get_accounts(), symbol)
            request = self._order_request(side, symbol, snapshot)

            row_id = self._id_factory()
            await self._trades.create_provisional(Trade(uuid=row_id, type=side, symbol=symbol))

            order = await self._submit(side, symbol, row_id, request)
            await self._trades.attach_order(
                row_id, side, order.uuid, order.price, order.volume, order.paid_fee
            )

            outcome = await self.reconcile(row_id, order.uuid, side, symbol, snapshot)
            await self._send(self._describe(outcome))
            return outcome
        finally:
            self._in_flight.discard(symbol)

    def _order_request(self, side: str, symbol: str, snapshot: AccountSnapshot) -> dict:
        if side == BUY:
            amount = self._buy_amount(snapshot.quote_balance)
            if amount < self._config.min_order_amount:
                raise InsufficientBalanceError(detail=f"{symbol} quote={snapshot.quote_balance}")
            return dict(volume=None, price=amount, ord_type="price")

        if snapshot.base_balance < self._config.min_sell_volume:
            raise InsufficientBalanceError(detail=f"{symbol} base={snapshot.base_balance}")
        return dict(volume=snapshot.base_balance, price=None, ord_type="market")

    async def _submit(self, side: str, symbol: str, row_id: uuid.UUID, request: dict) -> Order:
        try:
            order = await self._exchange.place_order(
                symbol=symbol,
                side=EXCHANGE_SIDES[side],
                identifier=str(row_id),
                **request,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # a retried POST may have been rejected after the first one landed
            logger.warning(f"Submitting {side} {symbol} failed: {e}; looking up identifier {row_id}")
            order = await self._recover(side, symbol, row_id, e)

        if not order.uuid:
            raise OrderSubmissionError(detail=f"{side} {symbol}: no order uuid returned")

        logger.info(f"Submitted {side} {symbol} order={order.uuid} identifier={row_id}")
        return order

    async def _recover(
        self, side: str, symbol: str, row_id: uuid.UUID, error: Exception
    ) -> Order:
        """
        Find the order placed under `row_id` after a failed submission.

        Raises:
            OrderSubmissionError: the exchange has no such order (the provisional
                row is dropped), or the lookup failed too (the row is kept)
        """
        try:
            order = await self._exchange.get_order_by_identifier(str(row_id))
        except asyncio.CancelledError:
            raise
        except ExchangeAPIError as e:
            if e.status_code == 404:
                await self._trades.discard_provisional(row_id, side)
                raise OrderSubmissionError(detail=f"{side} {symbol}: {error}") from error
            raise OrderSubmissionError(
                detail=f"{side} {symbol}: {error}; row {row_id} kept for reconciliation"
            ) from error
        except Exception as e:
            logger.error(f"Order lookup by identifier {row_id} failed: {e}")
            raise OrderSubmissionError(
                detail=f"{side} {symbol}: {error}; row {row_id} kept for reconciliation"
            ) from error

        logger.warning(f"Recovered {side} {symbol} order={order.uuid} by identifier {row_id}")
        return order

    def _buy_amount(self, quote_balance: Decimal) -> Decimal:
        spendable = quote_balance * (Decimal("1") - self._config.fee_rate)
        return spendable.to_integral_value(rounding=ROUND_DOWN)

    async def reconcile(
        self,
        row_id: uuid.UUID,
        order_uuid: str,
        side: str,
        symbol: str,
        snapshot: Optional[AccountSnapshot] = None,
    ) -> ExecutionOutcome:
        """
        Poll the order until filled and settle the trade row.

        Raises:
            OrderNotFilledError: the order never reached a filled state
        """
        attempts = self._config.poll_attempts
        for attempt in range(1, attempts + 1):
            await self._sleep(self._config.poll_delay_seconds)
            try:
                order = await self._exchange.get_order(order_uuid)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Order {order_uuid} lookup failed ({attempt}/{attempts}): {e}")
                continue

            if order.is_filled:
                return await self._settle(row_id, order, side, symbol, snapshot)
            if order.is_terminal:
                # cancelled without any execution; nothing will fill
                break
            logger.info(f"Order {order_uuid} state={order.state} ({attempt}/{attempts})")

        raise OrderNotFilledError(order_uuid, attempts)

    async def _settle(
        self,
        row_id: uuid.UUID,
        order: Order,
        side: str,
        symbol: str,
        snapshot: Optional[AccountSnapshot],
    ) -> ExecutionOutcome:
        try:
            trade = await self._trades.apply_fill(
                row_id,
                side,
                symbol,
                order.average_price,
                order.filled_volume,
                order.paid_fee,
            )
        except Exception as e:
            raise TraderError("ORDER_UPDATE_ERROR", detail=f"{order.uuid}: {e}") from e

        replayed = trade is None
        if replayed:
            logger.info(f"Trade {row_id} already settled, fill replay ignored")
            trade = await self._trades.get(row_id, side)
            if trade is None:
                raise TraderError("ORDER_UPDATE_ERROR", detail=f"no trade row {row_id}")

        realized_profit = None
        realized_rate = None
        if side == SELL and snapshot is not None and trade.price is not None:
            realized_rate = profit_rate(trade.price, snapshot.avg_buy_price)
            if trade.quantity is not None:
                realized_profit = (trade.price - snapshot.avg_buy_price) * trade.quantity - trade.fee

        return ExecutionOutcome(
            side=side,
            symbol=symbol,
            row_id=row_id,
            order_uuid=order.uuid,
            trade=trade,
            replayed=replayed,
            realized_profit=realized_profit,
            realized_rate=realized_rate,
        )

    @staticmethod
    def _describe(outcome: ExecutionOutcome) -> str:
        trade = outcome.trade
        text = (
            f"[trading] {outcome.side} {outcome.symbol} filled "
            f"price={trade.price} quantity={trade.quantity} fee={trade.fee}"
        )
        if outcome.realized_rate is not None:
            text += f" profit={outcome.realized_profit} ({outcome.realized_rate:.2f}%)"
        return text

    async def _send(self, text: str) -> None:
        if self._notify is not None:
            await self._notify(text)
