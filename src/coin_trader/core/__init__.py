"""
Core Layer - cross-process coordination.

Public API:
    Channel, EventEnvelope - channel names and payload format
    EventBus - LISTEN/NOTIFY publish/subscribe
    AdvisoryLock, LockKey - session advisory locks
    ConnectionSupervisor, SupervisorConfig, SupervisorState - session resilience
    TraderService - process lifecycle base class
    TraderError and subclasses - typed errors with catalog messages

The analysis pipeline (core.pipeline, core.analysis_service) is imported from
its own modules since it depends on the strategies and ingestion layers.
"""
from coin_trader.core.channels import Channel, EventEnvelope, manager_message, tick_event, trade_event
from coin_trader.core.errors import (
    MESSAGES,
    AmbiguousPostureError,
    InsufficientBalanceError,
    InvalidPayloadError,
    OrderNotFilledError,
    OrderSubmissionError,
    PublishError,
    ReconnectExhaustedError,
    StrategyDataError,
    TraderError,
    UnknownStrategyError,
    get_message,
)
from coin_trader.core.event_bus import EventBus
from coin_trader.core.locks import AdvisoryLock, LockKey
from coin_trader.core.service import TraderService
from coin_trader.core.supervisor import ConnectionSupervisor, SupervisorConfig, SupervisorState

__all__ = [
    "Channel",
    "EventEnvelope",
    "manager_message",
    "tick_event",
    "trade_event",
    "MESSAGES",
    "get_message",
    "TraderError",
    "AmbiguousPostureError",
    "InsufficientBalanceError",
    "InvalidPayloadError",
    "OrderNotFilledError",
    "OrderSubmissionError",
    "PublishError",
    "ReconnectExhaustedError",
    "StrategyDataError",
    "UnknownStrategyError",
    "EventBus",
    "AdvisoryLock",
    "LockKey",
    "TraderService",
    "ConnectionSupervisor",
    "SupervisorConfig",
    "SupervisorState",
]
