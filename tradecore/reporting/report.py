"""
Report generation utilities.

This module turns a `BacktestResult` into human‑readable artefacts:
CSV files of positions, orders, fills, the equity curve and the
timeline, a JSON summary of performance metrics and a PNG chart of the
equity curve.
"""

from __future__ import annotations

import os
import json
import logging
from dataclasses import asdict
from typing import Any, Dict, List
import pandas as pd
import matplotlib

# Use non‑interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..execution.models import BacktestResult
from .metrics import compute_summary, position_net_pnl

logger = logging.getLogger(__name__)


def _ms_to_iso(value: Any) -> Any:
    if value is None:
        return None
    return pd.Timestamp(int(value), unit="ms", tz="UTC").isoformat()


def positions_frame(result: BacktestResult) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for p in result.positions:
        rows.append(
            {
                'position_id': p.position_id,
                'symbol': p.symbol,
                'side': p.side,
                'quantity': p.quantity,
                'entry_price': p.entry_price,
                'close_price': p.close_price,
                'opened_at': _ms_to_iso(p.opened_at_ms),
                'closed_at': _ms_to_iso(p.closed_at_ms),
                'realized_pnl': p.realized_pnl,
                'entry_fee': p.entry_fee,
                'net_pnl': position_net_pnl(p),
                'exit_reason': p.fills[-1].reason if p.fills else None,
                'fills': len(p.fills),
            }
        )
    return pd.DataFrame(rows)


def equity_frame(result: BacktestResult) -> pd.DataFrame:
    df = pd.DataFrame([asdict(pt) for pt in result.equity_curve], columns=['time', 'equity'])
    df['timestamp'] = pd.to_datetime(df['time'], unit='ms', utc=True)
    return df


def generate_backtest_report(
    result: BacktestResult,
    initial_equity: float,
    out_dir: str = "results",
) -> Dict[str, Any]:
    """Generate report files for a backtest run.

    Creates the output directory if it does not exist and writes the
    following files:

    - `positions.csv` – closed positions with their net result
    - `orders.csv` / `fills.csv` – every simulated order and fill
    - `equity_curve.csv` – account equity at each bar
    - `timeline.csv` – decisions and position events
    - `summary.json` – performance metrics
    - `equity_curve.png` – line chart of the equity curve

    Returns the summary dictionary written to `summary.json`.
    """
    os.makedirs(out_dir, exist_ok=True)

    positions_frame(result).to_csv(os.path.join(out_dir, 'positions.csv'), index=False)
    pd.DataFrame([asdict(o) for o in result.orders]).to_csv(os.path.join(out_dir, 'orders.csv'), index=False)
    pd.DataFrame([asdict(f) for f in result.fills]).to_csv(os.path.join(out_dir, 'fills.csv'), index=False)

    df_eq = equity_frame(result)
    df_eq.to_csv(os.path.join(out_dir, 'equity_curve.csv'), index=False)

    timeline_rows = [
        {
            'time': ev.time,
            'type': ev.type,
            'position_id': ev.position_id,
            'message': ev.message,
            'data': json.dumps(ev.data, sort_keys=True, default=str) if ev.data is not None else None,
        }
        for ev in result.timeline
    ]
    pd.DataFrame(timeline_rows).to_csv(os.path.join(out_dir, 'timeline.csv'), index=False)

    # Summary JSON
    summary = compute_summary(result, initial_equity)
    summary_path = os.path.join(out_dir, 'summary.json')
    with open(summary_path, 'w', encoding='utf-8') as fh:
        json.dump(summary, fh, indent=2, ensure_ascii=False)

    # Equity curve plot
    fig, ax = plt.subplots(figsize=(10, 4))
    if not df_eq.empty:
        ax.plot(df_eq['timestamp'], df_eq['equity'], linewidth=1.5)
        ax.set_title(f'Equity Curve – {result.bot_id}')
        ax.set_xlabel('Time')
        ax.set_ylabel('Equity')
        fig.autofmt_xdate()
    fig.tight_layout()
    fig.savefig(os.path.join(out_dir, 'equity_curve.png'))
    plt.close(fig)

    logger.info("Report written to %s", out_dir)
    return summary
