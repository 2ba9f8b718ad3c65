"""
Built-in indicator strategies.
"""
from typing import Mapping, Optional

from coin_trader.strategies.builtin.bollinger import BollingerStrategy
from coin_trader.strategies.builtin.ma import MaStrategy
from coin_trader.strategies.builtin.macd import MacdStrategy
from coin_trader.strategies.builtin.rsi import RsiStrategy
from coin_trader.strategies.builtin.stochastic import StochasticStrategy
from coin_trader.strategies.builtin.volume import VolumeStrategy
from coin_trader.strategies.registry import StrategyRegistry

BUILTIN_STRATEGIES = (
    RsiStrategy,
    MacdStrategy,
    BollingerStrategy,
    StochasticStrategy,
    MaStrategy,
    VolumeStrategy,
)


def build_default_registry(weights: Optional[Mapping[str, float]] = None) -> StrategyRegistry:
    """Registry with every built-in strategy, optionally overriding weights by name."""
    weights = weights or {}
    registry = StrategyRegistry()
    for strategy_class in BUILTIN_STRATEGIES:
        registry.register(strategy_class(weight=weights.get(strategy_class.name)))
    return registry


__all__ = [
    "BUILTIN_STRATEGIES",
    "build_default_registry",
    "RsiStrategy",
    "MacdStrategy",
    "BollingerStrategy",
    "StochasticStrategy",
    "MaStrategy",
    "VolumeStrategy",
]
