"""Fixed quantity per entry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..execution.models import BotDefinition, Candle, EnterIntent, StrategyDecision
from .base import PositionSizingResult, entry_reference_price


@dataclass(frozen=True)
class FixedQuantitySizer:
    quantity: float

    def __call__(
        self,
        *,
        bot: BotDefinition,
        config: Any,
        snapshot: Any,
        decision: StrategyDecision,
        intent: EnterIntent,
        candle: Candle,
        equity: float,
    ) -> PositionSizingResult:
        if self.quantity <= 0:
            return PositionSizingResult(quantity=0.0)
        price = entry_reference_price(intent, candle)
        return PositionSizingResult(quantity=self.quantity, notional=self.quantity * price)
