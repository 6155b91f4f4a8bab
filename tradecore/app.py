"""
Application entry point.

This module defines a command‑line interface for running a backtest:
it loads the YAML configuration and the candle CSV, builds the
strategy and position sizer, runs the engine and writes the report.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .config.schema import load_config
from .data.csv_data import CSVDataLoader
from .execution.backtest_exec import BacktestEngine
from .execution.models import MarketData
from .reporting.report import generate_backtest_report
from .sizing.base import build_sizer
from .strategy.intraday_breakout import IntradayBreakoutStrategy
from .utils.persistence import load_position

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Parse command‑line arguments and run the requested backtest."""
    parser = argparse.ArgumentParser(description="Single-position backtest engine")
    parser.add_argument('mode', choices=['backtest'], help="Operating mode")
    parser.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    parser.add_argument('--symbol', help="Override the bot symbol from the configuration")
    parser.add_argument('--initial-position', help="JSON file with a position to resume")
    parser.add_argument('--out', default='results', help="Output directory for the report")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    config = load_config(args.config)
    if args.symbol:
        config.bot.symbol = args.symbol

    bot = config.bot_definition()
    request = config.backtest_request()
    loader = CSVDataLoader(config.data.csv_dir, config.data.timezone)
    candles = loader.load_candles(bot.symbol, request.from_ms, request.to_ms)
    if not candles:
        logger.warning("No candles for %s in the requested window", bot.symbol)

    initial_position = load_position(args.initial_position) if args.initial_position else None

    engine = BacktestEngine(
        request=request,
        bot=bot,
        config=config.strategy,
        strategy=IntradayBreakoutStrategy(),
        position_sizer=build_sizer(config.sizing),
    )
    result = engine.run(MarketData(execution_candles=candles), initial_position=initial_position)
    summary = generate_backtest_report(result, request.initial_equity, out_dir=args.out)
    logging.info(
        "Backtest complete: %d trades, net %.2f, max drawdown %.2f%%. Results saved to '%s'.",
        summary['total_trades'], summary['net_pnl'], summary['max_drawdown_pct'] * 100, args.out,
    )


if __name__ == '__main__':
    main()
