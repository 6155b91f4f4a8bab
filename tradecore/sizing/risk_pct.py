"""
Risk-based sizing.

The quantity is chosen so that a stop-out loses `risk_pct_per_trade`
of equity, capped by a maximum leveraged notional, and floored to the
instrument's lot step.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from ..execution.models import BotDefinition, Candle, EnterIntent, StrategyDecision
from .base import PositionSizingResult, entry_reference_price

_ZERO = PositionSizingResult(
    quantity=0.0,
    risk_amount=0.0,
    stop_distance=0.0,
    notional=0.0,
    estimated_loss_at_stop=0.0,
    used_notional_cap=False,
)


def floor_to_step(value: float, step: float) -> float:
    if step <= 0:
        return value
    return math.floor(value / step) * step


@dataclass(frozen=True)
class RiskPercentSizer:
    risk_pct_per_trade: float
    leverage: float = 1.0
    max_notional_pct_equity: float = 1.0
    contract_multiplier: float = 1.0
    lot_step: float = 0.0

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
        if not math.isfinite(equity) or equity <= 0 or intent.stop_price is None:
            return _ZERO
        entry_price = entry_reference_price(intent, candle)
        stop_distance = abs(entry_price - intent.stop_price)
        if not math.isfinite(stop_distance) or stop_distance <= 0 or entry_price <= 0:
            return _ZERO

        risk_amount = equity * self.risk_pct_per_trade
        qty_from_risk = risk_amount / (stop_distance * self.contract_multiplier)

        max_notional = equity * self.leverage * self.max_notional_pct_equity
        qty_from_cap = max_notional / (entry_price * self.contract_multiplier)

        quantity = max(0.0, floor_to_step(min(qty_from_risk, qty_from_cap), self.lot_step))
        return PositionSizingResult(
            quantity=quantity,
            risk_amount=risk_amount,
            stop_distance=stop_distance,
            notional=quantity * entry_price * self.contract_multiplier,
            estimated_loss_at_stop=quantity * stop_distance * self.contract_multiplier,
            used_notional_cap=qty_from_cap < qty_from_risk,
        )
