import os
import sys
import tempfile

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradecore.config.schema import config_from_dict, load_config

import unittest

YAML_TEXT = """
bot:
  id: breakout-eurusd
  symbol: EURUSD
  metadata:
    intrabarExitPriority: target-first
backtest:
  initial_equity: 5000
  costs:
    slippage_model: fixed-bps
    slippage_bps: 2
    fee_rate: 0.0005
  start: "2024-01-01"
sizing:
  type: risk_pct
  risk_pct_per_trade: 0.01
strategy:
  sl_pct: 0.004
  take_profits:
    - pct: 0.004
      size_fraction: 0.5
      move_stop_to_breakeven: true
    - pct: 0.008
      size_fraction: 1.0
data:
  timezone: Europe/Berlin
"""


class TestConfigLoading(unittest.TestCase):
    def _write(self, text: str) -> str:
        fd, path = tempfile.mkstemp(suffix=".yaml")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        self.addCleanup(os.remove, path)
        return path

    def test_load_yaml_merges_defaults(self) -> None:
        cfg = load_config(self._write(YAML_TEXT))

        self.assertEqual(cfg.bot.id, "breakout-eurusd")
        self.assertEqual(cfg.bot.strategy_id, "intraday-breakout")
        self.assertEqual(cfg.backtest.initial_equity, 5000.0)
        self.assertEqual(cfg.backtest.id, "backtest")
        self.assertEqual(cfg.sizing["type"], "risk_pct")
        self.assertEqual(cfg.strategy.session.start, "06:00")
        self.assertEqual(len(cfg.strategy.take_profits), 2)
        self.assertTrue(cfg.strategy.take_profits[0].move_stop_to_breakeven)
        # strategy timezone falls back to the data timezone
        self.assertEqual(cfg.strategy.timezone, "Europe/Berlin")

    def test_bot_definition_and_request(self) -> None:
        cfg = load_config(self._write(YAML_TEXT))
        bot = cfg.bot_definition()
        request = cfg.backtest_request()

        self.assertEqual(bot.name, "breakout-eurusd")
        self.assertEqual(bot.metadata, {"intrabarExitPriority": "target-first"})
        self.assertEqual(bot.strategy_config["sl_pct"], 0.004)
        self.assertEqual(request.bot_id, "breakout-eurusd")
        self.assertEqual(request.slippage_model.type, "fixed-bps")
        self.assertEqual(request.slippage_model.bps, 2.0)
        self.assertEqual(request.fee_model.rate, 0.0005)
        # Naive bound read in the data timezone (Europe/Berlin, UTC+1)
        self.assertEqual(request.from_ms, 1_704_063_600_000)
        self.assertIsNone(request.to_ms)

    def test_window_bounds_follow_data_timezone(self) -> None:
        cfg = config_from_dict({
            "backtest": {"start": "2024-01-01T00:00:00+00:00", "end": "2024-01-02 06:00"},
            "data": {"timezone": "America/New_York"},
        })
        request = cfg.backtest_request()
        # Explicit offsets are kept; naive bounds are New York local time
        self.assertEqual(request.from_ms, 1_704_067_200_000)
        self.assertEqual(request.to_ms, 1_704_193_200_000)

    def test_empty_file_uses_defaults(self) -> None:
        cfg = load_config(self._write(""))
        self.assertEqual(cfg.sizing, {"type": "fixed", "quantity": 1.0})
        self.assertEqual(cfg.bot.symbol, "EURUSD")
        self.assertEqual(cfg.strategy.timezone, "UTC")
        self.assertEqual(cfg.backtest.costs.slippage_model, "none")

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_config(os.path.join(tempfile.gettempdir(), "does-not-exist-tradecore.yaml"))

    def test_invalid_values_raise(self) -> None:
        with self.assertRaises(ValueError):
            config_from_dict({"backtest": {"costs": {"slippage_model": "random"}}})
        with self.assertRaises(ValueError):
            config_from_dict({"backtest": {"initial_equity": 0}})
        with self.assertRaises(ValueError):
            config_from_dict({"strategy": {"take_profits": [{"pct": 0.01, "size_fraction": 1.5}]}})
        with self.assertRaises(ValueError):
            config_from_dict({"strategy": {"sl_pct": -1}})
        with self.assertRaises(ValueError):
            load_config(self._write("- just\n- a list\n"))


if __name__ == '__main__':
    unittest.main()
