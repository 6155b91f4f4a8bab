"""
Strategy contract.

A strategy is a pluggable, deterministic decision function.  For every
bar the engine first asks it to build a snapshot (whatever derived
state the strategy needs) and then to evaluate that snapshot into a
:class:`StrategyDecision`.  Strategies must not mutate the market data
or the position they are handed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ..execution.models import BotDefinition, Candle, PositionState, StrategyDecision


@dataclass(frozen=True)
class StrategyMarketContext:
    """Read-only view of the market at bar `index`."""
    execution_candles: List[Candle]
    index: int
    series: Dict[str, List[Candle]] = field(default_factory=dict)

    @property
    def candle(self) -> Candle:
        return self.execution_candles[self.index]

    def history(self) -> List[Candle]:
        """Candles up to and including the current bar."""
        return self.execution_candles[: self.index + 1]


class TradingStrategy(Protocol):
    id: str
    version: str

    def build_snapshot(
        self,
        bot: BotDefinition,
        config: Any,
        market: StrategyMarketContext,
        position: Optional[PositionState],
    ) -> Any: ...

    def evaluate(
        self,
        bot: BotDefinition,
        config: Any,
        snapshot: Any,
        market: StrategyMarketContext,
        position: Optional[PositionState],
    ) -> StrategyDecision: ...
