import os
import sys
import json
import tempfile

import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradecore import app
from tradecore.config.schema import SessionConfig, StrategyConfig, TakeProfitLevel
from tradecore.execution.backtest_exec import run_backtest
from tradecore.execution.models import BacktestRequest, BotDefinition, Candle, MarketData
from tradecore.reporting.report import generate_backtest_report
from tradecore.sizing.fixed_qty import FixedQuantitySizer
from tradecore.strategy.intraday_breakout import IntradayBreakoutStrategy

import unittest

HOUR = 3_600_000
START = 1_704_096_000_000  # 2024-01-01 08:00 UTC

# Flat first bar, breakout on the second, target hit on the third
BARS = [
    (100.0, 101.0, 99.0, 100.0),
    (100.0, 102.0, 99.5, 102.0),
    (102.0, 104.5, 101.5, 104.0),
    (104.0, 104.5, 103.0, 103.5),
]


def candles():
    return [Candle(time=START + i * HOUR, open=o, high=h, low=l, close=c) for i, (o, h, l, c) in enumerate(BARS)]


class TestReport(unittest.TestCase):
    def test_report_files_and_summary(self) -> None:
        config = StrategyConfig(
            session=SessionConfig(start="00:00", end="23:59"),
            sl_pct=0.02,
            take_profits=[TakeProfitLevel(pct=0.02, size_fraction=1.0)],
            close_on_opposite_intent=False,
        )
        result = run_backtest(
            request=BacktestRequest(id="bt", bot_id="bot-1", initial_equity=1000.0),
            bot=BotDefinition(id="bot-1", symbol="TEST", strategy_id=IntradayBreakoutStrategy.id),
            config=config,
            strategy=IntradayBreakoutStrategy(),
            position_sizer=FixedQuantitySizer(quantity=1.0),
            market=MarketData(execution_candles=candles()),
        )

        with tempfile.TemporaryDirectory() as out_dir:
            summary = generate_backtest_report(result, 1000.0, out_dir=out_dir)
            for name in ('positions.csv', 'orders.csv', 'fills.csv', 'equity_curve.csv',
                         'timeline.csv', 'summary.json', 'equity_curve.png'):
                self.assertTrue(os.path.exists(os.path.join(out_dir, name)), name)
            with open(os.path.join(out_dir, 'summary.json'), encoding='utf-8') as fh:
                self.assertEqual(json.load(fh), summary)
            positions = pd.read_csv(os.path.join(out_dir, 'positions.csv'))

        # Entry at 102, target at 104.04
        self.assertEqual(summary['total_trades'], 1)
        self.assertAlmostEqual(summary['net_pnl'], 2.04)
        self.assertEqual(summary['exit_reasons'], {'tp': 1})
        self.assertEqual(positions.loc[0, 'exit_reason'], 'tp')
        self.assertEqual(len(result.equity_curve), len(BARS))


class TestCommandLine(unittest.TestCase):
    def test_backtest_mode_writes_report(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            data_dir = os.path.join(tmp, 'data')
            os.makedirs(data_dir)
            rows = ["time,open,high,low,close"]
            rows += [f"{c.time},{c.open},{c.high},{c.low},{c.close}" for c in candles()]
            with open(os.path.join(data_dir, 'TEST.csv'), 'w', encoding='utf-8') as fh:
                fh.write("\n".join(rows) + "\n")

            config_path = os.path.join(tmp, 'config.yaml')
            with open(config_path, 'w', encoding='utf-8') as fh:
                fh.write(
                    "bot:\n  symbol: OTHER\n"
                    "backtest:\n  initial_equity: 1000\n"
                    "strategy:\n"
                    "  session: {start: '00:00', end: '23:59'}\n"
                    "  sl_pct: 0.02\n"
                    "  take_profits: [{pct: 0.02, size_fraction: 1.0}]\n"
                    f"data:\n  csv_dir: {data_dir}\n"
                )

            out_dir = os.path.join(tmp, 'out')
            app.main(['backtest', '--config', config_path, '--symbol', 'TEST', '--out', out_dir])

            with open(os.path.join(out_dir, 'summary.json'), encoding='utf-8') as fh:
                summary = json.load(fh)
        self.assertEqual(summary['total_trades'], 1)
        self.assertAlmostEqual(summary['ending_equity'], 1002.04)


if __name__ == '__main__':
    unittest.main()
