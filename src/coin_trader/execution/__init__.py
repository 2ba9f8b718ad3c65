"""
Execution Layer - Order placement and trade settlement.

Public API:
    OrderExecutionCoordinator, OrderConfig, ExecutionOutcome
    TradingService - process wiring (execution.service)
"""
from coin_trader.execution.order_coordinator import (
    ExecutionOutcome,
    OrderConfig,
    OrderExecutionCoordinator,
)

__all__ = [
    "ExecutionOutcome",
    "OrderConfig",
    "OrderExecutionCoordinator",
]
