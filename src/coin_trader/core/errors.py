"""
Error catalog and exception hierarchy.

Every operator-facing error message comes from MESSAGES so the same wording
shows up in logs and in manager notifications. Exceptions carry the catalog
key plus an optional detail string.
"""
from __future__ import annotations

from typing import Optional

MESSAGES: dict[str, str] = {
    # Service lifecycle
    "SERVICE_START": "service started",
    "SERVICE_SHUTDOWN": "service stopped",
    "UNEXPECTED_ERROR": "Unexpected error",
    "DB_CONNECTION_ERROR": "Database session lost",
    "RECONNECT_EXHAUSTED": "Database reconnect attempts exhausted, shutting down",
    # Event bus
    "PAYLOAD_ERROR": "Invalid event payload",
    "PUBLISH_ERROR": "Failed to publish event",
    # Strategies
    "NOT_FOUND_STRATEGY": "No strategies configured",
    "INVALID_STRATEGY_ERROR": "Unknown strategy",
    "RSI_DATA_ERROR": "Not enough data to compute RSI",
    "MACD_DATA_ERROR": "Not enough data to compute MACD",
    "BOLLINGER_DATA_ERROR": "Not enough data to compute Bollinger bands",
    "STOCHASTIC_DATA_ERROR": "Not enough data to compute stochastic oscillator",
    "MA_DATA_NOT_FOUND": "Not enough data to compute moving averages",
    "MA_INVALID_DATA": "Moving averages must be positive",
    "VOLUME_DATA_NOT_FOUND": "Not enough data to compute volume ratio",
    "SIGNAL_LOG_ERROR": "Failed to record signal run",
    # Analysis
    "ACCOUNT_STATUS_ERROR": "Account satisfies neither the buy nor the sell condition",
    "ANALYSIS_ERROR": "Analysis cycle failed",
    # Orders
    "INSUFFICIENT_BALANCE": "Insufficient balance for order",
    "ORDER_SUBMISSION_ERROR": "Order submission failed",
    "ORDER_NOT_FILLED": "Order was not filled within the polling window",
    "ORDER_UPDATE_ERROR": "Failed to record order fill",
    "EXCHANGE_API_ERROR": "Exchange API request failed",
    # Ingestion and maintenance
    "CANDLE_SAVE_ERROR": "Failed to store candle data",
    "DAILY_SUMMARY_ERROR": "Failed to aggregate daily market summary",
    "DELETE_OLD_DATA_ERROR": "Failed to delete old market data",
    "NOTIFIER_ERROR": "Failed to deliver notification",
}


def get_message(key: str) -> str:
    """Look up a catalog message, falling back to the key itself."""
    return MESSAGES.get(key, key)


class TraderError(Exception):
    """Base class for all trading system errors."""

    default_key = "UNEXPECTED_ERROR"

    def __init__(self, key: Optional[str] = None, detail: Optional[str] = None) -> None:
        self.key = key or self.default_key
        self.detail = detail
        message = get_message(self.key)
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidPayloadError(TraderError):
    """Event payload could not be parsed."""

    default_key = "PAYLOAD_ERROR"


class PublishError(TraderError):
    """An event could not be published to the store."""

    default_key = "PUBLISH_ERROR"


class StrategyDataError(TraderError):
    """A strategy did not find enough (or valid) market data."""

    def __init__(self, key: str = "UNEXPECTED_ERROR", detail: Optional[str] = None) -> None:
        super().__init__(key, detail)


class UnknownStrategyError(TraderError):
    """A configured strategy name is not registered."""

    default_key = "INVALID_STRATEGY_ERROR"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(detail=name)


class AmbiguousPostureError(TraderError):
    """The account is neither holding a position nor able to open one."""

    default_key = "ACCOUNT_STATUS_ERROR"


class InsufficientBalanceError(TraderError):
    """Not enough balance to place the decided order."""

    default_key = "INSUFFICIENT_BALANCE"


class OrderSubmissionError(TraderError):
    """The exchange rejected or failed to accept an order."""

    default_key = "ORDER_SUBMISSION_ERROR"


class OrderNotFilledError(TraderError):
    """The order did not reach a filled state within the polling budget."""

    default_key = "ORDER_NOT_FILLED"

    def __init__(self, order_uuid: str, attempts: int) -> None:
        self.order_uuid = order_uuid
        self.attempts = attempts
        super().__init__(detail=f"order {order_uuid} after {attempts} attempts")


class ReconnectExhaustedError(TraderError):
    """The supervisor gave up reconnecting to the store."""

    default_key = "RECONNECT_EXHAUSTED"
