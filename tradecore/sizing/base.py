"""
Position sizing contract.

A sizer turns an `enter` intent and the current account equity into a
concrete quantity.  The engine treats a non-positive quantity as "do
not open" rather than as an error, so sizers signal refusal by
returning zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from ..execution.models import BotDefinition, Candle, EnterIntent, StrategyDecision


@dataclass(frozen=True)
class PositionSizingResult:
    quantity: float
    risk_amount: Optional[float] = None
    stop_distance: Optional[float] = None
    notional: Optional[float] = None
    estimated_loss_at_stop: Optional[float] = None
    used_notional_cap: Optional[bool] = None


class PositionSizer(Protocol):
    """Callable that sizes a new position."""

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
    ) -> PositionSizingResult: ...


def entry_reference_price(intent: EnterIntent, candle: Candle) -> float:
    """Price an entry is expected to fill at before slippage."""
    return intent.limit_price if intent.limit_price is not None else candle.close


def build_sizer(sizing_cfg: Optional[Dict[str, Any]]) -> PositionSizer:
    """Build a sizer from a `sizing` config mapping.

    Supported types:
    - ``fixed`` / ``fixed_qty``: ``quantity``
    - ``risk`` / ``risk_pct``: ``risk_pct_per_trade``, ``leverage``,
      ``max_notional_pct_equity``, ``contract_multiplier``, ``lot_step``
    """
    from .fixed_qty import FixedQuantitySizer
    from .risk_pct import RiskPercentSizer

    cfg = sizing_cfg or {}
    mode = str(cfg.get("type") or "fixed").strip().lower().replace("-", "_")

    if mode in {"fixed", "fixed_qty"}:
        return FixedQuantitySizer(quantity=float(cfg.get("quantity", 1.0)))
    if mode in {"risk", "risk_pct"}:
        return RiskPercentSizer(
            risk_pct_per_trade=float(cfg.get("risk_pct_per_trade", 0.01)),
            leverage=float(cfg.get("leverage", 1.0)),
            max_notional_pct_equity=float(cfg.get("max_notional_pct_equity", 1.0)),
            contract_multiplier=float(cfg.get("contract_multiplier", 1.0)),
            lot_step=float(cfg.get("lot_step", 0.0)),
        )
    raise ValueError(f"Unsupported sizing type: {cfg.get('type')!r}")
