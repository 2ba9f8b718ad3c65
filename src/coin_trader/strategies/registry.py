"""
Strategy registry for configuration-driven strategy selection.

Strategies are registered by name; the analysis pipeline resolves the names in
its configuration to instances at startup.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from coin_trader.core.errors import UnknownStrategyError

from .protocol import Strategy


class DuplicateStrategyError(Exception):
    """Raised when attempting to register a strategy with a name that already exists."""

    pass


class StrategyRegistry:
    """
    Registry for strategy lookup.

    Usage:
        registry = StrategyRegistry()
        registry.register(RsiStrategy())
        strategy = registry.get("RSI")
        strategies = registry.resolve(["RSI", "MACD"])
    """

    def __init__(self) -> None:
        self._strategies: Dict[str, Strategy] = {}

    def register(self, strategy: Strategy) -> None:
        """
        Register a strategy instance.

        Raises:
            DuplicateStrategyError: If a strategy with this name already exists
        """
        name = strategy.name.upper()
        if name in self._strategies:
            raise DuplicateStrategyError(f"Strategy '{name}' is already registered.")
        self._strategies[name] = strategy

    def get(self, name: str) -> Strategy:
        """
        Get a strategy by name (case-insensitive).

        Raises:
            UnknownStrategyError: If no strategy with this name exists
        """
        strategy = self._strategies.get(name.strip().upper())
        if strategy is None:
            raise UnknownStrategyError(name)
        return strategy

    def get_optional(self, name: str) -> Optional[Strategy]:
        return self._strategies.get(name.strip().upper())

    def resolve(self, names: Iterable[str]) -> List[Strategy]:
        """Resolve names in order. Fails on the first unknown name."""
        return [self.get(name) for name in names]

    def list_all(self) -> List[str]:
        """Sorted list of strategy names."""
        return sorted(self._strategies.keys())

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, name: str) -> bool:
        return name.strip().upper() in self._strategies
