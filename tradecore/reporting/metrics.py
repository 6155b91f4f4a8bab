"""
Performance metrics calculations.

This module reduces the closed positions and the equity curve of a
backtest into summary statistics.  `build_metrics()` produces the
canonical :class:`BacktestMetrics` stored on every result, and
`compute_summary()` adds the derived ratios used in reports.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ..execution.models import BacktestMetrics, BacktestResult, EquityPoint, SimulatedPosition


def compute_max_drawdown_pct(equity_curve: Sequence[EquityPoint]) -> float:
    """Largest peak-to-trough decline as a fraction of the peak.

    Points reached while the running peak is zero or negative are
    skipped, so the result always lies in ``[0, 1]`` for non-negative
    equity.
    """
    if not equity_curve:
        return 0.0
    peak = equity_curve[0].equity
    max_dd = 0.0
    for point in equity_curve:
        peak = max(peak, point.equity)
        if peak <= 0:
            continue
        drawdown = (peak - point.equity) / peak
        if drawdown > max_dd:
            max_dd = drawdown
    return max_dd


def position_net_pnl(position: SimulatedPosition) -> float:
    """Realised result of a position after its entry fee."""
    return position.realized_pnl - position.entry_fee


def build_metrics(
    positions: Sequence[SimulatedPosition],
    ending_equity: float,
    max_drawdown_pct: float,
) -> BacktestMetrics:
    """Aggregate closed positions into a :class:`BacktestMetrics`.

    Parameters
    ----------
    positions : sequence of SimulatedPosition
        Positions recorded by the engine.  Only those with a
        `closed_at_ms` count as trades.
    ending_equity : float
        Equity after the last fill.
    max_drawdown_pct : float
        Result of :func:`compute_max_drawdown_pct` for the run.
    """
    results: List[float] = [
        position_net_pnl(p) for p in positions if p.closed_at_ms is not None
    ]
    total_trades = len(results)
    wins = [pnl for pnl in results if pnl > 0]
    losses = [pnl for pnl in results if pnl < 0]

    return BacktestMetrics(
        total_trades=total_trades,
        wins=len(wins),
        losses=len(losses),
        win_rate=len(wins) / total_trades if total_trades else 0.0,
        net_pnl=sum(results),
        gross_profit=sum(wins),
        gross_loss=abs(sum(losses)),
        max_drawdown_pct=max_drawdown_pct,
        ending_equity=ending_equity,
    )


def compute_summary(result: BacktestResult, initial_equity: float) -> Dict[str, Any]:
    """Flatten the metrics of `result` and add report-only ratios."""
    m = result.metrics
    closed = [p for p in result.positions if p.closed_at_ms is not None]
    total_return = (m.ending_equity - initial_equity) / initial_equity if initial_equity else 0.0
    profit_factor = m.gross_profit / m.gross_loss if m.gross_loss > 0 else 0.0
    avg_trade = m.net_pnl / m.total_trades if m.total_trades else 0.0
    total_fees = sum(f.fee for f in result.fills)

    exit_reasons: Dict[str, int] = {}
    for position in closed:
        if position.fills:
            reason = position.fills[-1].reason
            exit_reasons[reason] = exit_reasons.get(reason, 0) + 1

    return {
        'bot_id': result.bot_id,
        'strategy_id': result.strategy_id,
        'total_trades': m.total_trades,
        'wins': m.wins,
        'losses': m.losses,
        'win_rate': m.win_rate,
        'net_pnl': m.net_pnl,
        'gross_profit': m.gross_profit,
        'gross_loss': m.gross_loss,
        'max_drawdown_pct': m.max_drawdown_pct,
        'ending_equity': m.ending_equity,
        'total_return': total_return,
        'profit_factor': profit_factor,
        'avg_trade': avg_trade,
        'total_fees': total_fees,
        'exit_reasons': exit_reasons,
    }
