"""
Domain and intent models.

These dataclasses are the contract shared by strategies, the backtest
engine and live execution: candles, bot definitions, trading intents,
strategy decisions, position state, simulated orders and fills, and
the final backtest result.  They carry no behaviour beyond
construction-time shape checks and small copy/serialisation helpers.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, asdict, replace
from typing import Any, ClassVar, Dict, List, Optional

SIDES = ("long", "short")
POSITION_STATUSES = (
    "flat",
    "entry-pending",
    "open",
    "reducing",
    "closing",
    "closed",
    "reconciling",
    "error",
)
ORDER_PURPOSES = ("entry", "reduce", "stop", "take-profit", "close", "reconcile")
FILL_REASONS = ("entry", "tp", "stop", "signal", "end", "reduce")
# Exit labels with a fixed fill reason; take-profit ids may not reuse them.
EXIT_LABELS = ("stop", "signal", "end", "reduce")


def _check_side(side: str) -> None:
    if side not in SIDES:
        raise ValueError(f"Unsupported side value: {side!r}")


def _check_fraction(name: str, value: float) -> None:
    if not 0.0 < value <= 1.0:
        raise ValueError(f"{name} must be in (0, 1], got {value}")


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar; `time` is the bar timestamp in epoch milliseconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass
class ExecutionSettings:
    """How and on which timeframe a bot is evaluated."""
    trigger: str = "cron"
    execution_timeframe: str = "1h"
    warmup_bars: int = 0


@dataclass
class BotDefinition:
    """Read-only description of a deployed bot."""
    id: str
    symbol: str
    strategy_id: str
    name: str = ""
    strategy_version: str = "1"
    exchange_id: str = "paper"
    account_id: str = "default"
    market_type: str = "futures"  # 'spot', 'perp' or 'futures'
    status: str = "active"
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    risk_profile_id: str = "default"
    strategy_config: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at_ms: int = 0
    updated_at_ms: int = 0


# --------------------------------------------------------------------------
# Management plans and intents
# --------------------------------------------------------------------------


@dataclass
class TakeProfitInstruction:
    """A partial-close target.

    `size_fraction` is relative to the position's original quantity,
    not to whatever quantity remains when the target is touched.
    """
    id: str
    label: str
    price: float
    size_fraction: float
    move_stop_to_breakeven: bool = False

    def __post_init__(self) -> None:
        _check_fraction("size_fraction", self.size_fraction)
        if self.id in EXIT_LABELS:
            raise ValueError(f"Take-profit id {self.id!r} is reserved for non-target exits")


@dataclass
class PositionManagementPlan:
    """Take-profit ladder plus close and cooldown policy for a position."""
    take_profits: List[TakeProfitInstruction] = field(default_factory=list)
    close_on_opposite_intent: bool = False
    cooldown_bars: int = 0

    def __post_init__(self) -> None:
        if self.cooldown_bars < 0:
            raise ValueError(f"cooldown_bars must be >= 0, got {self.cooldown_bars}")


@dataclass
class IntentBase:
    """Fields shared by every intent a strategy emits."""
    kind: ClassVar[str] = ""

    bot_id: str = ""
    strategy_id: str = ""
    time: int = 0
    reasons: List[str] = field(default_factory=list)
    confidence: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    meta: Any = None


@dataclass
class EnterIntent(IntentBase):
    """Open a new position."""
    kind: ClassVar[str] = "enter"

    side: str = "long"
    entry_type: str = "market"  # 'market' or 'limit'
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    management: Optional[PositionManagementPlan] = None

    def __post_init__(self) -> None:
        _check_side(self.side)
        if self.entry_type not in ("market", "limit"):
            raise ValueError(f"Unsupported entry type: {self.entry_type!r}")
        if self.entry_type == "limit" and self.limit_price is None:
            raise ValueError("A limit entry requires limit_price")


@dataclass
class ReduceIntent(IntentBase):
    """Close part of the open position."""
    kind: ClassVar[str] = "reduce"

    side: str = "long"
    price: Optional[float] = None
    size_fraction: float = 1.0

    def __post_init__(self) -> None:
        _check_side(self.side)
        _check_fraction("size_fraction", self.size_fraction)


@dataclass
class MoveStopIntent(IntentBase):
    kind: ClassVar[str] = "move-stop"

    side: str = "long"
    stop_price: float = 0.0

    def __post_init__(self) -> None:
        _check_side(self.side)


@dataclass
class CloseIntent(IntentBase):
    kind: ClassVar[str] = "close"

    side: str = "long"
    price: Optional[float] = None

    def __post_init__(self) -> None:
        _check_side(self.side)


@dataclass
class HoldIntent(IntentBase):
    kind: ClassVar[str] = "hold"


INTENT_TYPES = (EnterIntent, ReduceIntent, MoveStopIntent, CloseIntent, HoldIntent)


@dataclass
class StrategyDecision:
    """Everything a strategy produced for one bar."""
    snapshot_time: int
    reasons: List[str] = field(default_factory=list)
    intents: List[IntentBase] = field(default_factory=list)
    confidence: Optional[float] = None
    diagnostics: Optional[Dict[str, Any]] = None


# --------------------------------------------------------------------------
# Positions, orders and fills
# --------------------------------------------------------------------------


@dataclass
class PositionState:
    """Canonical lifecycle record of one position.

    Invariant: ``0 <= remaining_quantity <= quantity``; the status is
    ``closed`` exactly when the remaining quantity reached zero after at
    least one fill.
    """
    bot_id: str
    position_id: str
    symbol: str
    side: str
    status: str
    quantity: float
    remaining_quantity: float
    avg_entry_price: Optional[float] = None
    stop_price: Optional[float] = None
    realized_pnl: float = 0.0
    unrealized_pnl: Optional[float] = None
    opened_at_ms: Optional[int] = None
    closed_at_ms: Optional[int] = None
    strategy_context: Optional[Dict[str, Any]] = None


@dataclass
class SimulatedOrder:
    id: str
    bot_id: str
    position_id: str
    side: str
    purpose: str
    status: str
    requested_quantity: float
    created_at_ms: int
    updated_at_ms: int
    requested_price: Optional[float] = None
    executed_price: Optional[float] = None
    executed_quantity: Optional[float] = None


@dataclass
class SimulatedFill:
    """One execution; closing fills decrement the position's quantity."""
    id: str
    order_id: str
    position_id: str
    bot_id: str
    reason: str
    side: str
    time: int
    price: float
    quantity: float
    gross_pnl: float
    fee: float
    net_pnl: float
    label: Optional[str] = None


@dataclass
class SimulatedPosition(PositionState):
    """Position record enriched with the data the simulator tracks."""
    entry_price: float = 0.0
    entry_fee: float = 0.0
    fills: List[SimulatedFill] = field(default_factory=list)
    management: Optional[PositionManagementPlan] = None
    close_price: Optional[float] = None
    meta: Any = None

    def clone(self) -> "SimulatedPosition":
        """Return a copy that no longer aliases the live record's containers."""
        return replace(
            self,
            fills=list(self.fills),
            strategy_context=dict(self.strategy_context) if self.strategy_context else None,
            management=copy.deepcopy(self.management),
        )


@dataclass
class EquityPoint:
    """Account equity at the close of a bar."""
    time: int
    equity: float


@dataclass
class TimelineEvent:
    time: int
    type: str  # 'strategy.decision', 'position.opened', 'position.reduced', 'position.closed', 'stop.moved'
    message: str
    position_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


# --------------------------------------------------------------------------
# Requests and results
# --------------------------------------------------------------------------


@dataclass
class SlippageModel:
    type: str = "none"  # 'none' or 'fixed-bps'
    bps: float = 0.0

    def __post_init__(self) -> None:
        if self.type not in ("none", "fixed-bps"):
            raise ValueError(f"Unsupported slippage model: {self.type!r}")


@dataclass
class FeeModel:
    type: str = "fixed-rate"
    rate: float = 0.0

    def __post_init__(self) -> None:
        if self.type != "fixed-rate":
            raise ValueError(f"Unsupported fee model: {self.type!r}")


@dataclass
class BacktestRequest:
    """Parameters of one simulation run."""
    id: str
    bot_id: str
    initial_equity: float
    slippage_model: SlippageModel = field(default_factory=SlippageModel)
    fee_model: FeeModel = field(default_factory=FeeModel)
    from_ms: Optional[int] = None
    to_ms: Optional[int] = None
    chart_timeframe: str = "1h"
    created_at_ms: int = 0


@dataclass
class MarketData:
    """Ascending execution candles plus auxiliary series keyed by timeframe."""
    execution_candles: List[Candle]
    series: Dict[str, List[Candle]] = field(default_factory=dict)


@dataclass
class BacktestMetrics:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    net_pnl: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    max_drawdown_pct: float = 0.0
    ending_equity: float = 0.0


@dataclass
class BacktestResult:
    """Complete, immutable-by-convention output of a run."""
    bot_id: str
    strategy_id: str
    metrics: BacktestMetrics
    positions: List[SimulatedPosition] = field(default_factory=list)
    orders: List[SimulatedOrder] = field(default_factory=list)
    fills: List[SimulatedFill] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    timeline: List[TimelineEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# --------------------------------------------------------------------------
# Serialisation of positions (used to resume runs from persisted state)
# --------------------------------------------------------------------------


def position_to_dict(position: SimulatedPosition) -> Dict[str, Any]:
    return asdict(position)


def position_from_dict(raw: Dict[str, Any]) -> SimulatedPosition:
    """Rebuild a `SimulatedPosition` from :func:`position_to_dict` output."""
    data = dict(raw)
    data["fills"] = [SimulatedFill(**item) for item in data.get("fills") or []]
    management = data.get("management")
    if management is not None:
        data["management"] = PositionManagementPlan(
            take_profits=[TakeProfitInstruction(**tp) for tp in management.get("take_profits") or []],
            close_on_opposite_intent=bool(management.get("close_on_opposite_intent", False)),
            cooldown_bars=int(management.get("cooldown_bars", 0)),
        )
    _check_side(data["side"])
    return SimulatedPosition(**data)
