"""
Intraday breakout strategy implementation.

This strategy tracks the highest high and lowest low of each local
trading day and asks to enter long or short when the current bar's
high or low breaks those levels.  It does not enter when both levels
break on the same bar and honours a configured session window.  Every
entry carries a percentage stop and a take-profit ladder from the
strategy configuration.

The strategy is stateless: the snapshot is rebuilt from the candle
history on every bar, so replaying the same candles always yields the
same decisions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from ..config.schema import StrategyConfig
from ..execution.models import (
    BotDefinition,
    EnterIntent,
    HoldIntent,
    PositionManagementPlan,
    PositionState,
    StrategyDecision,
    TakeProfitInstruction,
)
from ..utils.timeutils import is_in_session, local_date, parse_time_str
from .base import StrategyMarketContext


@dataclass(frozen=True)
class BreakoutSnapshot:
    """Levels of the current day built from the bars before this one."""
    time: int
    close: float
    high: float
    low: float
    day_high: Optional[float]
    day_low: Optional[float]
    in_session: bool


class IntradayBreakoutStrategy:
    """Generate trading intents based on intraday breakout logic."""

    id = "intraday-breakout"
    version = "1"

    def build_snapshot(
        self,
        bot: BotDefinition,
        config: StrategyConfig,
        market: StrategyMarketContext,
        position: Optional[PositionState],
    ) -> BreakoutSnapshot:
        candles = market.execution_candles
        candle = market.candle
        today = local_date(candle.time, config.timezone)

        # Walk back over earlier bars of the same local day
        day_high: Optional[float] = None
        day_low: Optional[float] = None
        idx = market.index - 1
        while idx >= 0 and local_date(candles[idx].time, config.timezone) == today:
            prev = candles[idx]
            day_high = prev.high if day_high is None else max(day_high, prev.high)
            day_low = prev.low if day_low is None else min(day_low, prev.low)
            idx -= 1

        in_session = is_in_session(
            candle.time,
            parse_time_str(config.session.start),
            parse_time_str(config.session.end),
            config.timezone,
        )
        return BreakoutSnapshot(
            time=candle.time,
            close=candle.close,
            high=candle.high,
            low=candle.low,
            day_high=day_high,
            day_low=day_low,
            in_session=in_session,
        )

    def signal(self, snapshot: BreakoutSnapshot) -> Optional[str]:
        """Return `'long'`, `'short'` or `None` for a snapshot."""
        long_signal = snapshot.day_high is not None and snapshot.high > snapshot.day_high
        short_signal = snapshot.day_low is not None and snapshot.low < snapshot.day_low
        if not snapshot.in_session:
            return None
        if long_signal and not short_signal:
            return 'long'
        if short_signal and not long_signal:
            return 'short'
        return None

    def evaluate(
        self,
        bot: BotDefinition,
        config: StrategyConfig,
        snapshot: BreakoutSnapshot,
        market: StrategyMarketContext,
        position: Optional[PositionState],
    ) -> StrategyDecision:
        diagnostics = {
            'close': snapshot.close,
            'dayHigh': snapshot.day_high,
            'dayLow': snapshot.day_low,
            'inSession': snapshot.in_session,
        }
        side = self.signal(snapshot)
        if side is None or (position is not None and position.side == side):
            reasons = ['no_breakout'] if side is None else ['already_positioned']
            return StrategyDecision(
                snapshot_time=snapshot.time,
                reasons=reasons,
                intents=[
                    HoldIntent(bot_id=bot.id, strategy_id=self.id, time=snapshot.time, reasons=reasons)
                ],
                diagnostics=diagnostics,
            )

        reasons = [f'breakout_{side}']
        intent = EnterIntent(
            bot_id=bot.id,
            strategy_id=self.id,
            time=snapshot.time,
            reasons=reasons,
            side=side,
            entry_type='market',
            stop_price=self._stop_price(side, snapshot.close, config),
            management=PositionManagementPlan(
                take_profits=self._take_profits(side, snapshot.close, config),
                close_on_opposite_intent=config.close_on_opposite_intent,
                cooldown_bars=config.cooldown_bars,
            ),
        )
        return StrategyDecision(
            snapshot_time=snapshot.time,
            reasons=reasons,
            intents=[intent],
            diagnostics=diagnostics,
        )

    @staticmethod
    def _stop_price(side: str, price: float, config: StrategyConfig) -> float:
        if side == 'long':
            return price * (1.0 - config.sl_pct)
        return price * (1.0 + config.sl_pct)

    @staticmethod
    def _take_profits(side: str, price: float, config: StrategyConfig) -> List[TakeProfitInstruction]:
        targets: List[TakeProfitInstruction] = []
        for n, level in enumerate(config.take_profits, start=1):
            offset = price * level.pct
            targets.append(
                TakeProfitInstruction(
                    id=f'tp{n}',
                    label=f'TP{n}',
                    price=price + offset if side == 'long' else price - offset,
                    size_fraction=level.size_fraction,
                    move_stop_to_breakeven=level.move_stop_to_breakeven,
                )
            )
        return targets
