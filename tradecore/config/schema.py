"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with defaults for any missing fields.

The engine itself never reads configuration from ambient state: the
`Config` object is turned into an explicit `BotDefinition`,
`BacktestRequest`, strategy configuration and sizer which are then
passed into the engine call.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import yaml

from ..execution.models import (
    BacktestRequest,
    BotDefinition,
    ExecutionSettings,
    FeeModel,
    SlippageModel,
)


@dataclass
class SessionConfig:
    """Defines the trading session for each day.

    Attributes
    ----------
    start : str
        Start time in `HH:MM` 24‑hour format, interpreted in the
        strategy timezone.
    end : str
        End time in `HH:MM` format.  The end is exclusive: no new
        positions are opened at or after this time.
    """

    start: str = "06:00"
    end: str = "20:00"


@dataclass
class TakeProfitLevel:
    """One rung of the take‑profit ladder.

    Attributes
    ----------
    pct : float
        Distance from the entry as a fraction of the entry price.
    size_fraction : float
        Fraction of the original quantity closed at this level.
    move_stop_to_breakeven : bool
        Move the stop to the entry price once this level fills.
    """

    pct: float
    size_fraction: float
    move_stop_to_breakeven: bool = False


@dataclass
class StrategyConfig:
    """Parameters of the intraday breakout strategy.

    Attributes
    ----------
    session : SessionConfig
        Window in which entries are allowed.
    timezone : str
        IANA timezone used to split days and evaluate the session.
    sl_pct : float
        Stop‑loss distance as a fraction of the close (e.g. 0.005).
    take_profits : list of TakeProfitLevel
        Take‑profit ladder attached to every entry.
    cooldown_bars : int
        Bars to wait after a full close before re‑entering.
    close_on_opposite_intent : bool
        Close an open position when the opposite breakout fires.
    """

    session: SessionConfig = field(default_factory=SessionConfig)
    timezone: str = "UTC"
    sl_pct: float = 0.005
    take_profits: List[TakeProfitLevel] = field(
        default_factory=lambda: [TakeProfitLevel(pct=0.005, size_fraction=1.0)]
    )
    cooldown_bars: int = 0
    close_on_opposite_intent: bool = True


@dataclass
class CostsConfig:
    """Models trading costs.

    Attributes
    ----------
    slippage_model : str
        ``none`` or ``fixed-bps``.
    slippage_bps : float
        Adverse price move in basis points applied to every fill when
        the model is ``fixed-bps``.
    fee_rate : float
        Fee charged as a fraction of traded notional (e.g. 0.0006).
    """

    slippage_model: str = "none"
    slippage_bps: float = 0.0
    fee_rate: float = 0.0


@dataclass
class BacktestConfig:
    """Run parameters.

    Attributes
    ----------
    id : str
        Identifier of the backtest request.
    initial_equity : float
        Starting account equity.
    costs : CostsConfig
        Slippage and fee configuration.
    start : str or None
        Optional inclusive ISO timestamp bounding the candle series.
        Naive values are read in the data timezone, like the CSV times.
    end : str or None
        Optional inclusive ISO timestamp bounding the candle series.
    """

    id: str = "backtest"
    initial_equity: float = 100_000.0
    costs: CostsConfig = field(default_factory=CostsConfig)
    start: Optional[str] = None
    end: Optional[str] = None


@dataclass
class BotConfig:
    """Bot definition as written in the config file."""

    id: str = "bot-1"
    name: str = ""
    symbol: str = "EURUSD"
    strategy_id: str = "intraday-breakout"
    strategy_version: str = "1"
    exchange_id: str = "paper"
    account_id: str = "default"
    market_type: str = "futures"
    timeframe: str = "1h"
    warmup_bars: int = 0
    risk_profile_id: str = "default"
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DataConfig:
    """Data source configuration.

    Attributes
    ----------
    csv_dir : str
        Directory containing one CSV file per symbol.
    timezone : str
        IANA timezone used for naive timestamps in the CSV files.
    """

    csv_dir: str = "data"
    timezone: str = "UTC"


@dataclass
class Config:
    """Root configuration for a backtest run."""

    bot: BotConfig = field(default_factory=BotConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    sizing: Dict[str, Any] = field(default_factory=lambda: {"type": "fixed", "quantity": 1.0})
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    data: DataConfig = field(default_factory=DataConfig)

    def bot_definition(self) -> BotDefinition:
        b = self.bot
        return BotDefinition(
            id=b.id,
            name=b.name or b.id,
            symbol=b.symbol,
            strategy_id=b.strategy_id,
            strategy_version=b.strategy_version,
            exchange_id=b.exchange_id,
            account_id=b.account_id,
            market_type=b.market_type,
            execution=ExecutionSettings(execution_timeframe=b.timeframe, warmup_bars=b.warmup_bars),
            risk_profile_id=b.risk_profile_id,
            strategy_config=_strategy_config_dict(self.strategy),
            metadata=dict(b.metadata),
        )

    def backtest_request(self) -> BacktestRequest:
        bt = self.backtest
        return BacktestRequest(
            id=bt.id,
            bot_id=self.bot.id,
            initial_equity=bt.initial_equity,
            slippage_model=SlippageModel(type=bt.costs.slippage_model, bps=bt.costs.slippage_bps),
            fee_model=FeeModel(rate=bt.costs.fee_rate),
            from_ms=_to_epoch_ms(bt.start, self.data.timezone),
            to_ms=_to_epoch_ms(bt.end, self.data.timezone),
            chart_timeframe=self.bot.timeframe,
        )


def _to_epoch_ms(value: Optional[str], tz_name: str) -> Optional[int]:
    """Epoch ms of a window bound; naive bounds are read in `tz_name`."""
    if value is None:
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize(tz_name)
    return int(ts.value // 1_000_000)


def _strategy_config_dict(cfg: StrategyConfig) -> Dict[str, Any]:
    return {
        'session': {'start': cfg.session.start, 'end': cfg.session.end},
        'timezone': cfg.timezone,
        'sl_pct': cfg.sl_pct,
        'take_profits': [
            {'pct': tp.pct, 'size_fraction': tp.size_fraction, 'move_stop_to_breakeven': tp.move_stop_to_breakeven}
            for tp in cfg.take_profits
        ],
        'cooldown_bars': cfg.cooldown_bars,
        'close_on_opposite_intent': cfg.close_on_opposite_intent,
    }


_DEFAULTS: Dict[str, Any] = {
    'bot': {
        'id': 'bot-1',
        'name': '',
        'symbol': 'EURUSD',
        'strategy_id': 'intraday-breakout',
        'strategy_version': '1',
        'exchange_id': 'paper',
        'account_id': 'default',
        'market_type': 'futures',
        'timeframe': '1h',
        'warmup_bars': 0,
        'risk_profile_id': 'default',
        'metadata': {},
    },
    'backtest': {
        'id': 'backtest',
        'initial_equity': 100_000.0,
        'costs': {
            'slippage_model': 'none',
            'slippage_bps': 0.0,
            'fee_rate': 0.0,
        },
        'start': None,
        'end': None,
    },
    'sizing': {'type': 'fixed', 'quantity': 1.0},
    'strategy': {
        'session': {
            'start': '06:00',
            'end': '20:00',
        },
        'timezone': None,
        'sl_pct': 0.005,
        'take_profits': [{'pct': 0.005, 'size_fraction': 1.0}],
        'cooldown_bars': 0,
        'close_on_opposite_intent': True,
    },
    'data': {
        'csv_dir': 'data',
        'timezone': 'UTC',
    },
}


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def config_from_dict(raw: Dict[str, Any]) -> Config:
    """Build a `Config` from a (possibly partial) nested mapping.

    Raises
    ------
    ValueError
        If a section has an unexpected shape or a value is out of range.
    """
    merged = _merge_dict(copy.deepcopy(_DEFAULTS), raw or {})

    strat = merged['strategy']
    if not isinstance(strat.get('take_profits'), list):
        raise ValueError("strategy.take_profits must be a list")
    take_profits = [
        TakeProfitLevel(
            pct=float(tp['pct']),
            size_fraction=float(tp['size_fraction']),
            move_stop_to_breakeven=bool(tp.get('move_stop_to_breakeven', False)),
        )
        for tp in strat['take_profits']
    ]
    for tp in take_profits:
        if tp.pct <= 0:
            raise ValueError(f"take profit pct must be positive, got {tp.pct}")
        if not 0.0 < tp.size_fraction <= 1.0:
            raise ValueError(f"take profit size_fraction must be in (0, 1], got {tp.size_fraction}")
    sl_pct = float(strat['sl_pct'])
    if sl_pct <= 0:
        raise ValueError(f"strategy.sl_pct must be positive, got {sl_pct}")

    strategy_cfg = StrategyConfig(
        session=SessionConfig(**strat['session']),
        timezone=str(strat.get('timezone') or merged['data']['timezone']),
        sl_pct=sl_pct,
        take_profits=take_profits,
        cooldown_bars=int(strat['cooldown_bars']),
        close_on_opposite_intent=bool(strat['close_on_opposite_intent']),
    )

    bt = merged['backtest']
    costs_cfg = CostsConfig(
        slippage_model=str(bt['costs']['slippage_model']),
        slippage_bps=float(bt['costs']['slippage_bps']),
        fee_rate=float(bt['costs']['fee_rate']),
    )
    if costs_cfg.slippage_model not in ('none', 'fixed-bps'):
        raise ValueError(f"Unsupported slippage model: {costs_cfg.slippage_model!r}")
    initial_equity = float(bt['initial_equity'])
    if initial_equity <= 0:
        raise ValueError(f"backtest.initial_equity must be positive, got {initial_equity}")

    if not isinstance(merged['sizing'], dict):
        raise ValueError("sizing must be a mapping")

    return Config(
        bot=BotConfig(**merged['bot']),
        backtest=BacktestConfig(
            id=str(bt['id']),
            initial_equity=initial_equity,
            costs=costs_cfg,
            start=bt.get('start'),
            end=bt.get('end'),
        ),
        sizing=dict(merged['sizing']),
        strategy=strategy_cfg,
        data=DataConfig(**merged['data']),
    )


def load_config(path: str) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    Config
        A populated configuration object.  Missing fields are filled with
        the defaults defined in this module.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")
    with file_path.open("r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping: {file_path}")
    return config_from_dict(raw)
