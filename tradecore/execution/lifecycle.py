"""
Position lifecycle state machine.

`transition()` maps the current position state (or `None` when no
position exists) plus a lifecycle event to the next state.  It is used
by the backtest engine for every quantity, stop and status change and
is equally valid for live execution, where events arrive from the
strategy, the exchange and the reconciliation process.

The function is pure: it never mutates its input and returns either a
new state object or the unchanged one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import ClassVar, Optional, TypeVar

from .models import PositionState

SYNC_STATUSES = ("open", "closed", "reconciling")

State = TypeVar("State", bound=PositionState)


@dataclass(frozen=True)
class LifecycleEvent:
    type: ClassVar[str] = ""

    at: int


@dataclass(frozen=True)
class EnterEvent(LifecycleEvent):
    """Strategy asked to enter (or re-arm) a position."""
    type: ClassVar[str] = "strategy.enter"

    quantity: float = 0.0
    stop_price: Optional[float] = None
    avg_entry_price: Optional[float] = None
    # Identity of a newly created record; ignored when a position exists.
    bot_id: str = "unknown"
    position_id: str = "pending"
    symbol: str = "unknown"
    side: str = "long"


@dataclass(frozen=True)
class ReduceEvent(LifecycleEvent):
    type: ClassVar[str] = "strategy.reduce"

    remaining_quantity: float = 0.0


@dataclass(frozen=True)
class MoveStopEvent(LifecycleEvent):
    type: ClassVar[str] = "strategy.move-stop"

    stop_price: float = 0.0


@dataclass(frozen=True)
class CloseEvent(LifecycleEvent):
    type: ClassVar[str] = "strategy.close"


@dataclass(frozen=True)
class OrderRejectedEvent(LifecycleEvent):
    type: ClassVar[str] = "exchange.order-rejected"


@dataclass(frozen=True)
class PositionSyncEvent(LifecycleEvent):
    """Exchange reported the position's actual status."""
    type: ClassVar[str] = "exchange.position-sync"

    status: str = "open"

    def __post_init__(self) -> None:
        if self.status not in SYNC_STATUSES:
            raise ValueError(f"Unsupported sync status: {self.status!r}")


@dataclass(frozen=True)
class DriftDetectedEvent(LifecycleEvent):
    type: ClassVar[str] = "reconcile.detected-drift"


def transition(current: Optional[State], event: LifecycleEvent) -> Optional[State]:
    """Return the position state that follows `event`.

    Parameters
    ----------
    current : PositionState or None
        The present state; `None` when no position exists.
    event : LifecycleEvent
        One of the event dataclasses defined in this module.

    Returns
    -------
    PositionState or None
        The next state.  Without a current position only
        :class:`EnterEvent` creates one; every other event yields `None`.
        Unknown event types return `current` unchanged.
    """
    if current is None:
        if not isinstance(event, EnterEvent):
            return None
        return PositionState(
            bot_id=event.bot_id,
            position_id=event.position_id,
            symbol=event.symbol,
            side=event.side,
            status="entry-pending",
            quantity=event.quantity,
            remaining_quantity=event.quantity,
            avg_entry_price=event.avg_entry_price,
            stop_price=event.stop_price,
            realized_pnl=0.0,
            opened_at_ms=event.at,
        )

    if isinstance(event, EnterEvent):
        # Re-arming keeps the original opening time
        return replace(
            current,
            status="entry-pending",
            quantity=event.quantity,
            remaining_quantity=event.quantity,
            avg_entry_price=event.avg_entry_price if event.avg_entry_price is not None else current.avg_entry_price,
            stop_price=event.stop_price if event.stop_price is not None else current.stop_price,
            opened_at_ms=current.opened_at_ms if current.opened_at_ms is not None else event.at,
        )
    if isinstance(event, ReduceEvent):
        remaining = max(0.0, event.remaining_quantity)
        if remaining > 0:
            return replace(current, status="reducing", remaining_quantity=remaining)
        return replace(current, status="closed", remaining_quantity=0.0, closed_at_ms=event.at)
    if isinstance(event, MoveStopEvent):
        return replace(current, stop_price=event.stop_price)
    if isinstance(event, CloseEvent):
        return replace(current, status="closed", remaining_quantity=0.0, closed_at_ms=event.at)
    if isinstance(event, OrderRejectedEvent):
        return replace(current, status="error")
    if isinstance(event, PositionSyncEvent):
        closed_at = event.at if event.status == "closed" else current.closed_at_ms
        return replace(current, status=event.status, closed_at_ms=closed_at)
    if isinstance(event, DriftDetectedEvent):
        return replace(current, status="reconciling")
    return current
