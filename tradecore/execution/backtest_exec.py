"""
Backtest execution engine.

This module contains the `BacktestEngine` class which drives a strategy
bar by bar over an ascending candle series and simulates how a single
position is opened, managed (stop-loss, staged take-profits, breakeven
moves, cooldowns) and closed.  Every quantity, stop and status change
goes through the position lifecycle state machine, so the simulated
trace follows the same semantics as live execution.

A run is a pure function of its inputs: the engine keeps no state
between calls to :meth:`BacktestEngine.run`, performs no I/O and
processes candles strictly in order, so identical inputs always give
an identical :class:`BacktestResult`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import fields
from typing import Any, List, Optional

from .lifecycle import EnterEvent, MoveStopEvent, PositionSyncEvent, ReduceEvent, transition
from .models import (
    BacktestRequest,
    BacktestResult,
    BotDefinition,
    Candle,
    CloseIntent,
    EnterIntent,
    EquityPoint,
    EXIT_LABELS,
    MarketData,
    MoveStopIntent,
    PositionManagementPlan,
    ReduceIntent,
    SimulatedFill,
    SimulatedOrder,
    SimulatedPosition,
    StrategyDecision,
    TakeProfitInstruction,
    TimelineEvent,
)
from ..reporting.metrics import build_metrics, compute_max_drawdown_pct
from ..sizing.base import PositionSizer
from ..strategy.base import StrategyMarketContext, TradingStrategy

logger = logging.getLogger(__name__)

# Remaining quantity at or below this is treated as fully closed.
QUANTITY_EPSILON = 1e-10

TARGET_FIRST = "target-first"
STOP_FIRST = "stop-first"


def fee_for(price: float, quantity: float, fee_rate: float) -> float:
    """Flat-rate fee on the traded notional."""
    return abs(price * quantity) * fee_rate


def apply_slippage(price: float, side: str, kind: str, bps: float) -> float:
    """Move `price` against the position holder by `bps` basis points.

    Entries fill higher for longs and lower for shorts; exits fill lower
    for longs and higher for shorts.
    """
    if not math.isfinite(bps) or bps <= 0:
        return price
    move = price * (bps / 10_000)
    if kind == "entry":
        return price + move if side == "long" else price - move
    return price - move if side == "long" else price + move


def gross_pnl_for(side: str, entry: float, exit_price: float, quantity: float) -> float:
    if side == "long":
        return (exit_price - entry) * quantity
    return (entry - exit_price) * quantity


def target_touched(side: str, candle: Candle, target_price: float) -> bool:
    if side == "long":
        return candle.high >= target_price
    return candle.low <= target_price


def stop_touched(side: str, candle: Candle, stop_price: float) -> bool:
    if side == "long":
        return candle.low <= stop_price
    return candle.high >= stop_price


def intrabar_priority(bot: BotDefinition) -> str:
    """Which exit is tested first when one bar touches both stop and target."""
    metadata = bot.metadata or {}
    value = metadata.get("intrabarExitPriority", metadata.get("intrabar_exit_priority"))
    return TARGET_FIRST if value == TARGET_FIRST else STOP_FIRST


def adjustment_intents_enabled(bot: BotDefinition) -> bool:
    metadata = bot.metadata or {}
    return bool(metadata.get("applyAdjustmentIntents", metadata.get("apply_adjustment_intents", False)))


def validate_management_plan(
    side: str,
    entry_price: float,
    plan: Optional[PositionManagementPlan],
) -> List[str]:
    """Describe the problems of a management plan; empty when it is sound.

    Two problems are reported: targets that sit on the losing side of
    the entry (they can never fill as intended) and targets sharing a
    price (only the first fill at that price is remembered).
    """
    if plan is None:
        return []
    problems: List[str] = []
    seen_prices = set()
    for target in plan.take_profits:
        wrong_side = target.price <= entry_price if side == "long" else target.price >= entry_price
        if wrong_side:
            problems.append(
                f"target {target.id} at {target.price} is not on the profitable side of entry {entry_price} for {side}"
            )
        if target.price in seen_prices:
            problems.append(f"target {target.id} shares price {target.price} with another target")
        seen_prices.add(target.price)
    return problems


def _exit_purpose(label: str) -> str:
    if label == "stop":
        return "stop"
    if label in ("signal", "end"):
        return "close"
    if label == "reduce":
        return "reduce"
    return "take-profit"


def _exit_reason(label: str) -> str:
    if label in EXIT_LABELS:
        return label
    return "tp"


def _initial_entry_price(position: SimulatedPosition) -> float:
    if position.avg_entry_price is not None:
        return position.avg_entry_price
    context_price = (position.strategy_context or {}).get("entryPrice")
    if isinstance(context_price, (int, float)) and not isinstance(context_price, bool):
        return float(context_price)
    if position.close_price is not None:
        return position.close_price
    return 0.0


class _Simulation:
    """Accumulators and the active position of a single run."""

    def __init__(self, engine: "BacktestEngine", initial_position: Optional[SimulatedPosition]) -> None:
        self.engine = engine
        self.bot = engine.bot
        request = engine.request
        self.fee_rate = request.fee_model.rate
        self.slippage_bps = request.slippage_model.bps if request.slippage_model.type == "fixed-bps" else 0.0
        self.priority = intrabar_priority(engine.bot)
        self.apply_adjustments = adjustment_intents_enabled(engine.bot)

        self.equity = request.initial_equity
        self.cooldown_until_index = -1
        self.counters = {"position": 1, "order": 1, "fill": 1}

        self.active: Optional[SimulatedPosition] = None
        if initial_position is not None:
            self.active = initial_position.clone()
            self.active.entry_price = _initial_entry_price(initial_position)

        self.positions: List[SimulatedPosition] = []
        self.orders: List[SimulatedOrder] = []
        self.fills: List[SimulatedFill] = []
        self.equity_curve: List[EquityPoint] = []
        self.timeline: List[TimelineEvent] = []

    def next_id(self, kind: str) -> str:
        value = self.counters[kind]
        self.counters[kind] = value + 1
        return f"{kind}-{value}"

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def close_portion(self, candle: Candle, label: str, quantity: float, raw_price: float) -> None:
        """Close up to `quantity` of the active position at `raw_price`.

        `label` is the target id for take-profits, otherwise one of
        ``stop``, ``signal``, ``end`` or ``reduce``.
        """
        position = self.active
        if position is None or quantity <= 0:
            return
        qty = min(quantity, position.remaining_quantity)
        if qty <= 0:
            return

        exit_price = apply_slippage(raw_price, position.side, "exit", self.slippage_bps)
        fee = fee_for(exit_price, qty, self.fee_rate)
        gross_pnl = gross_pnl_for(position.side, position.entry_price, exit_price, qty)
        net_pnl = gross_pnl - fee
        self.equity += net_pnl

        remaining = position.remaining_quantity - qty
        if remaining <= QUANTITY_EPSILON:
            remaining = 0.0

        order_id = self.next_id("order")
        self.orders.append(
            SimulatedOrder(
                id=order_id,
                bot_id=self.bot.id,
                position_id=position.position_id,
                side=position.side,
                purpose=_exit_purpose(label),
                status="filled",
                requested_price=raw_price,
                executed_price=exit_price,
                requested_quantity=qty,
                executed_quantity=qty,
                created_at_ms=candle.time,
                updated_at_ms=candle.time,
            )
        )
        fill = SimulatedFill(
            id=self.next_id("fill"),
            order_id=order_id,
            position_id=position.position_id,
            bot_id=self.bot.id,
            reason=_exit_reason(label),
            label=label,
            side=position.side,
            time=candle.time,
            price=exit_price,
            quantity=qty,
            gross_pnl=gross_pnl,
            fee=fee,
            net_pnl=net_pnl,
        )
        self.fills.append(fill)

        position = transition(position, ReduceEvent(at=candle.time, remaining_quantity=remaining))
        position.realized_pnl += net_pnl
        position.fills.append(fill)

        if position.status == "closed":
            position.close_price = exit_price
            self.positions.append(position.clone())
            self.timeline.append(
                TimelineEvent(
                    time=candle.time,
                    type="position.closed",
                    position_id=position.position_id,
                    message=f"Position closed via {label}",
                )
            )
            logger.debug(
                "Closed %s %s via %s at %.6f (net %.6f)",
                position.position_id, position.side, label, exit_price, position.realized_pnl - position.entry_fee,
            )
            self.active = None
        else:
            self.timeline.append(
                TimelineEvent(
                    time=candle.time,
                    type="position.reduced",
                    position_id=position.position_id,
                    message=f"Position reduced via {label}",
                    data={"remainingQuantity": position.remaining_quantity},
                )
            )
            self.active = position

    def move_stop(self, candle: Candle, stop_price: float, message: str) -> None:
        position = transition(self.active, MoveStopEvent(at=candle.time, stop_price=stop_price))
        self.active = position
        self.timeline.append(
            TimelineEvent(
                time=candle.time,
                type="stop.moved",
                position_id=position.position_id,
                message=message,
                data={"stopPrice": position.stop_price},
            )
        )

    def untouched_targets(self) -> List[TakeProfitInstruction]:
        """Targets without a prior take-profit fill, nearest first.

        A target counts as filled when an earlier `tp` fill carries its id
        as label, or was requested at its price.  Fills of a resumed
        position have no order in this run and fall back to their own
        price.
        """
        position = self.active
        management = position.management
        targets = list(management.take_profits) if management else []
        targets.sort(key=lambda t: t.price, reverse=position.side == "short")
        requested = {o.id: o.requested_price for o in self.orders if o.position_id == position.position_id}
        tp_fills = [f for f in position.fills if f.reason == "tp"]
        filled_ids = {f.label for f in tp_fills if f.label is not None}
        filled_prices = {requested.get(f.order_id, f.price) for f in tp_fills}
        return [t for t in targets if t.id not in filled_ids and t.price not in filled_prices]

    def process_targets(self, candle: Candle, targets: List[TakeProfitInstruction]) -> None:
        for target in targets:
            if self.active is None:
                return
            if not target_touched(self.active.side, candle, target.price):
                continue
            self.close_portion(candle, target.id, self.active.quantity * target.size_fraction, target.price)
            if self.active is None:
                return
            if target.move_stop_to_breakeven:
                self.move_stop(candle, self.active.entry_price, f"Stop moved to breakeven after {target.label}")

    def process_stop(self, candle: Candle) -> None:
        position = self.active
        if position is None or position.stop_price is None:
            return
        if stop_touched(position.side, candle, position.stop_price):
            self.close_portion(candle, "stop", position.remaining_quantity, position.stop_price)

    def process_adjustments(self, candle: Candle, decision: StrategyDecision) -> None:
        move = _find_intent(decision, MoveStopIntent, side=self.active.side)
        if move is not None:
            self.move_stop(candle, move.stop_price, "Stop moved by strategy")
        reduce = _find_intent(decision, ReduceIntent, side=self.active.side)
        if reduce is not None:
            price = reduce.price if reduce.price is not None else candle.close
            self.close_portion(candle, "reduce", self.active.remaining_quantity * reduce.size_fraction, price)

    def process_management(self, candle: Candle, decision: StrategyDecision) -> None:
        """Resolve stop, targets and exit signals of the active position on `candle`."""
        targets = self.untouched_targets()

        if self.priority == TARGET_FIRST:
            self.process_targets(candle, targets)
            self.process_stop(candle)
        else:
            self.process_stop(candle)
            self.process_targets(candle, targets)
        if self.active is None:
            return

        if self.apply_adjustments:
            self.process_adjustments(candle, decision)
            if self.active is None:
                return

        close_intent = _find_intent(decision, CloseIntent, side=self.active.side)
        if close_intent is not None:
            price = close_intent.price if close_intent.price is not None else candle.close
            self.close_portion(candle, "signal", self.active.remaining_quantity, price)
            return

        management = self.active.management
        if management is None or not management.close_on_opposite_intent:
            return
        opposite = "short" if self.active.side == "long" else "long"
        if _find_intent(decision, EnterIntent, side=opposite) is not None:
            self.close_portion(candle, "signal", self.active.remaining_quantity, candle.close)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def open_position(self, candle: Candle, intent: EnterIntent, quantity: float, sizing: Any) -> None:
        requested_price = intent.limit_price if intent.limit_price is not None else candle.close
        entry_price = apply_slippage(requested_price, intent.side, "entry", self.slippage_bps)
        entry_fee = fee_for(entry_price, quantity, self.fee_rate)
        self.equity -= entry_fee

        position_id = self.next_id("position")
        order_id = self.next_id("order")
        self.orders.append(
            SimulatedOrder(
                id=order_id,
                bot_id=self.bot.id,
                position_id=position_id,
                side=intent.side,
                purpose="entry",
                status="filled",
                requested_price=requested_price,
                executed_price=entry_price,
                requested_quantity=quantity,
                executed_quantity=quantity,
                created_at_ms=candle.time,
                updated_at_ms=candle.time,
            )
        )
        fill = SimulatedFill(
            id=self.next_id("fill"),
            order_id=order_id,
            position_id=position_id,
            bot_id=self.bot.id,
            reason="entry",
            side=intent.side,
            time=candle.time,
            price=entry_price,
            quantity=quantity,
            gross_pnl=0.0,
            fee=entry_fee,
            net_pnl=-entry_fee,
        )
        self.fills.append(fill)

        pending = transition(
            None,
            EnterEvent(
                at=candle.time,
                quantity=quantity,
                stop_price=intent.stop_price,
                avg_entry_price=entry_price,
                bot_id=self.bot.id,
                position_id=position_id,
                symbol=self.bot.symbol,
                side=intent.side,
            ),
        )
        # The simulated entry fills immediately
        state = transition(pending, PositionSyncEvent(at=candle.time, status="open"))
        self.active = SimulatedPosition(
            **{f.name: getattr(state, f.name) for f in fields(state)},
            entry_price=entry_price,
            entry_fee=entry_fee,
            fills=[fill],
            management=intent.management,
            meta=intent.meta,
        )
        self.active.strategy_context = {"reasons": list(intent.reasons), "sizing": sizing}

        for problem in validate_management_plan(intent.side, entry_price, intent.management):
            logger.warning("Bot %s %s: %s", self.bot.id, position_id, problem)

        self.timeline.append(
            TimelineEvent(
                time=candle.time,
                type="position.opened",
                position_id=position_id,
                message=f"Position opened {intent.side}",
                data={"quantity": quantity, "entryPrice": entry_price},
            )
        )
        logger.debug("Opened %s %s qty=%s at %.6f", position_id, intent.side, quantity, entry_price)


def _find_intent(decision: StrategyDecision, intent_type: type, side: Optional[str] = None) -> Any:
    """First intent of `intent_type` (and `side`, when given) in the decision."""
    for intent in decision.intents:
        if isinstance(intent, intent_type) and (side is None or intent.side == side):
            return intent
    return None


def _check_ascending(candles: List[Candle]) -> None:
    for previous, current in zip(candles, candles[1:]):
        if current.time < previous.time:
            raise ValueError(
                f"Execution candles must be ascending by time: {current.time} follows {previous.time}"
            )


class BacktestEngine:
    """Simulate a strategy's decisions over a candle series.

    Parameters
    ----------
    request : BacktestRequest
        Initial equity plus the slippage and fee models.
    bot : BotDefinition
        The bot being simulated; its metadata selects the intrabar exit
        priority (``intrabarExitPriority``) and whether reduce/move-stop
        intents are applied (``applyAdjustmentIntents``).
    config : object
        Strategy configuration, passed through to the strategy and sizer.
    strategy : TradingStrategy
        Deterministic decision function.
    position_sizer : PositionSizer
        Converts an enter intent into a quantity.
    """

    def __init__(
        self,
        request: BacktestRequest,
        bot: BotDefinition,
        config: Any,
        strategy: TradingStrategy,
        position_sizer: PositionSizer,
    ) -> None:
        self.request = request
        self.bot = bot
        self.config = config
        self.strategy = strategy
        self.position_sizer = position_sizer

    def run(
        self,
        market: MarketData,
        initial_position: Optional[SimulatedPosition] = None,
    ) -> BacktestResult:
        """Execute the simulation and return its full trace.

        Returns
        -------
        BacktestResult
            Closed positions, orders, fills, one equity point per candle,
            the timeline and the aggregated metrics.
        """
        candles = market.execution_candles
        _check_ascending(candles)
        logger.info(
            "Backtest %s: bot=%s strategy=%s candles=%d",
            self.request.id, self.bot.id, self.strategy.id, len(candles),
        )
        sim = _Simulation(self, initial_position)

        for index, candle in enumerate(candles):
            context = StrategyMarketContext(execution_candles=candles, index=index, series=market.series)
            # Strategies only ever see a copy of the active position
            view = sim.active.clone() if sim.active is not None else None
            snapshot = self.strategy.build_snapshot(self.bot, self.config, context, view)
            decision = self.strategy.evaluate(self.bot, self.config, snapshot, context, view)

            sim.timeline.append(
                TimelineEvent(
                    time=candle.time,
                    type="strategy.decision",
                    position_id=sim.active.position_id if sim.active else None,
                    message=", ".join(decision.reasons) or "strategy_evaluated",
                    data=decision.diagnostics,
                )
            )

            if sim.active is not None:
                management = sim.active.management
                cooldown_bars = management.cooldown_bars if management else 0
                sim.process_management(candle, decision)
                if sim.active is None:
                    sim.cooldown_until_index = index + cooldown_bars + 1
                elif sim.active.status == "reducing":
                    sim.active = transition(sim.active, PositionSyncEvent(at=candle.time, status="open"))

            if sim.active is None and index >= sim.cooldown_until_index:
                intent = _find_intent(decision, EnterIntent)
                if intent is not None:
                    sizing = self.position_sizer(
                        bot=self.bot,
                        config=self.config,
                        snapshot=snapshot,
                        decision=decision,
                        intent=intent,
                        candle=candle,
                        equity=sim.equity,
                    )
                    if sizing.quantity > 0:
                        sim.open_position(candle, intent, sizing.quantity, sizing)
                    else:
                        logger.debug("Sizer declined entry at %d (quantity %s)", candle.time, sizing.quantity)

            sim.equity_curve.append(EquityPoint(time=candle.time, equity=sim.equity))

        if sim.active is not None and candles:
            last = candles[-1]
            sim.close_portion(last, "end", sim.active.remaining_quantity, last.close)
            if sim.equity_curve:
                sim.equity_curve[-1] = EquityPoint(time=last.time, equity=sim.equity)

        metrics = build_metrics(sim.positions, sim.equity, compute_max_drawdown_pct(sim.equity_curve))
        logger.info(
            "Backtest %s finished: trades=%d net=%.6f ending_equity=%.6f",
            self.request.id, metrics.total_trades, metrics.net_pnl, metrics.ending_equity,
        )
        return BacktestResult(
            bot_id=self.bot.id,
            strategy_id=self.strategy.id,
            metrics=metrics,
            positions=sim.positions,
            orders=sim.orders,
            fills=sim.fills,
            equity_curve=sim.equity_curve,
            timeline=sim.timeline,
        )


def run_backtest(
    request: BacktestRequest,
    bot: BotDefinition,
    config: Any,
    strategy: TradingStrategy,
    market: MarketData,
    position_sizer: PositionSizer,
    initial_position: Optional[SimulatedPosition] = None,
) -> BacktestResult:
    """Functional form of :meth:`BacktestEngine.run`."""
    engine = BacktestEngine(request, bot, config, strategy, position_sizer)
    return engine.run(market, initial_position=initial_position)
