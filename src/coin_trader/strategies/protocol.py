"""
Strategy protocol.

A strategy reads its indicator inputs from the store, turns them into a score
in [-1, 1] with pure logic, and records an audit row tied to the signal run.
Only `calculate_score` needs to be side-effect free, which keeps the scoring
math trivial to test.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

if TYPE_CHECKING:
    from coin_trader.storage.database import Database


@runtime_checkable
class Strategy(Protocol):
    """
    Protocol that all strategies must implement.

    Example implementation:
        class MyStrategy:
            name = "MY"
            weight = 0.5

            async def fetch_data(self, db, symbol):
                return await db.fetchrow("SELECT ...", symbol)

            def calculate_score(self, data) -> float:
                return 0.0

            async def persist(self, db, signal_id, data, score) -> None:
                await db.execute("INSERT INTO MySignal ...", signal_id, score)
    """

    @property
    def name(self) -> str:
        """Unique upper-case identifier, used in configuration."""
        ...

    @property
    def weight(self) -> float:
        """Multiplier applied to the raw score before combining."""
        ...

    async def fetch_data(self, db: "Database", symbol: str) -> Any:
        """
        Read indicator inputs for `symbol`.

        Raises StrategyDataError when there is not enough data.
        """
        ...

    def calculate_score(self, data: Any) -> float:
        """Pure scoring, returns a value in [-1, 1]."""
        ...

    async def persist(self, db: "Database", signal_id: UUID, data: Any, score: float) -> None:
        """Write the per-strategy audit row for this run."""
        ...
