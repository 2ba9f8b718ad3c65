"""
Strategies Layer - Indicator strategies and their ensemble.

This module provides:
    - Strategy: Protocol defining the strategy interface
    - Decision, StrategyResult, EnsembleResult: result types
    - StrategyRegistry: name -> strategy lookup
    - StrategyEnsemble: weighted combination and consensus gates
    - Built-in strategies: RSI, MACD, BOLLINGER, STOCHASTIC, MA, VOLUME

Design Principle:
    Scoring is PURE LOGIC (strategies.scoring). Data access and audit writes
    are separate methods on each strategy so the math stays trivially testable.
"""

from .signals import Decision, EnsembleResult, StrategyResult, quantize
from .protocol import Strategy
from .registry import DuplicateStrategyError, StrategyRegistry
from .ensemble import EnsembleConfig, StrategyEnsemble, majority_sell, unanimous_buy
from .builtin import (
    BollingerStrategy,
    MaStrategy,
    MacdStrategy,
    RsiStrategy,
    StochasticStrategy,
    VolumeStrategy,
    build_default_registry,
)

__all__ = [
    "Decision",
    "EnsembleResult",
    "StrategyResult",
    "quantize",
    "Strategy",
    "StrategyRegistry",
    "DuplicateStrategyError",
    "EnsembleConfig",
    "StrategyEnsemble",
    "unanimous_buy",
    "majority_sell",
    "build_default_registry",
    "RsiStrategy",
    "MacdStrategy",
    "BollingerStrategy",
    "StochasticStrategy",
    "MaStrategy",
    "VolumeStrategy",
]
