"""
CSV data loader.

This module provides a class to load historical OHLCV data from CSV
files and turn it into the engine's `Candle` series.  Two layouts are
recognised:

```
time,open,high,low,close[,volume]
```

and the tab-separated MetaTrader 5 export with ``<DATE>``, ``<TIME>``,
``<OPEN>``, ``<HIGH>``, ``<LOW>``, ``<CLOSE>`` and optionally
``<TICKVOL>`` / ``<VOL>`` columns.  Naive timestamps are localised to
the configured timezone.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from ..execution.models import Candle
from ..utils.timeutils import to_epoch_ms

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("open", "high", "low", "close")
MT5_COLUMNS = ["<DATE>", "<TIME>", "<OPEN>", "<HIGH>", "<LOW>", "<CLOSE>"]


class CSVDataLoader:
    """Load OHLCV data from CSV files for backtesting.

    Parameters
    ----------
    csv_dir : str
        Directory where the CSV files are located.  Each symbol's file
        must be named `{SYMBOL}.csv`.
    timezone : str
        IANA timezone name used to localise naive timestamps.
    """

    def __init__(self, csv_dir: str, timezone: str) -> None:
        self.csv_dir = Path(csv_dir)
        self.timezone = timezone

    def load(self, symbol: str) -> pd.DataFrame:
        """Return a frame indexed by timezone-aware time, sorted ascending."""
        file_path = self.csv_dir / f"{symbol}.csv"
        if not file_path.exists():
            raise FileNotFoundError(f"CSV file not found for symbol {symbol}: {file_path}")

        with file_path.open("r", encoding="utf-8") as fh:
            header = fh.readline()
        if "<DATE>" in header:
            df = self._load_mt5(file_path, symbol)
        else:
            df = self._load_standard(file_path, symbol)

        df = df[~df.index.duplicated(keep="first")].sort_index()
        logger.debug("Loaded %d bars for %s from %s", len(df), symbol, file_path)
        return df

    def _localise(self, index: pd.DatetimeIndex) -> pd.DatetimeIndex:
        if index.tz is None:
            return index.tz_localize(self.timezone)
        return index.tz_convert(self.timezone)

    def _load_standard(self, file_path: Path, symbol: str) -> pd.DataFrame:
        df = pd.read_csv(file_path)
        df.columns = [str(c).strip().lower() for c in df.columns]
        missing = [c for c in ("time",) + REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(
                f"Unrecognized CSV format for {symbol}. Missing columns: {missing}. "
                f"Found columns: {list(df.columns)}"
            )
        times = df["time"]
        if pd.api.types.is_numeric_dtype(times):
            # Epoch values: seconds or milliseconds
            unit = "ms" if times.abs().max() > 10**11 else "s"
            index = pd.DatetimeIndex(pd.to_datetime(times, unit=unit, utc=True))
        else:
            index = pd.DatetimeIndex(pd.to_datetime(times, errors="raise"))
        out = pd.DataFrame(
            {
                "open": df["open"].astype(float).to_numpy(),
                "high": df["high"].astype(float).to_numpy(),
                "low": df["low"].astype(float).to_numpy(),
                "close": df["close"].astype(float).to_numpy(),
                "volume": df["volume"].astype(float).to_numpy() if "volume" in df.columns else 0.0,
            },
            index=self._localise(index),
        )
        out.index.name = "time"
        return out

    def _load_mt5(self, file_path: Path, symbol: str) -> pd.DataFrame:
        df = pd.read_csv(file_path, sep="\t", engine="python")
        df.columns = [c.strip() for c in df.columns]

        missing = [c for c in MT5_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(
                f"Unrecognized CSV format for {symbol}. Missing columns: {missing}. "
                f"Found columns: {list(df.columns)}"
            )

        dt = df["<DATE>"].astype(str).str.strip() + " " + df["<TIME>"].astype(str).str.strip()
        ts = pd.to_datetime(dt, format="%Y.%m.%d %H:%M:%S", errors="coerce")
        if ts.isna().any():
            # fallback if format differs
            ts = pd.to_datetime(dt, errors="coerce")
        if ts.isna().any():
            bad = dt[ts.isna()].head(5).tolist()
            raise ValueError(f"Could not parse MT5 DATE/TIME for {symbol}. Examples: {bad}")

        volume_col: Optional[str] = next((c for c in ("<TICKVOL>", "<VOL>") if c in df.columns), None)
        out = pd.DataFrame(
            {
                "open": df["<OPEN>"].astype(float).to_numpy(),
                "high": df["<HIGH>"].astype(float).to_numpy(),
                "low": df["<LOW>"].astype(float).to_numpy(),
                "close": df["<CLOSE>"].astype(float).to_numpy(),
                "volume": df[volume_col].astype(float).to_numpy() if volume_col else 0.0,
            },
            # MT5 exports use terminal local time
            index=self._localise(pd.DatetimeIndex(ts)),
        )
        out.index.name = "time"
        return out

    def load_candles(
        self,
        symbol: str,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
    ) -> List[Candle]:
        """Load `symbol` and convert it to candles within ``[start_ms, end_ms]``."""
        candles = frame_to_candles(self.load(symbol))
        return [
            c for c in candles
            if (start_ms is None or c.time >= start_ms) and (end_ms is None or c.time <= end_ms)
        ]


def frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    """Convert a time-indexed OHLC(V) frame into ascending `Candle`s."""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Frame is missing columns: {missing}")
    volumes = df["volume"] if "volume" in df.columns else pd.Series(0.0, index=df.index)
    candles: List[Candle] = []
    for ts, o, h, l, c, v in zip(df.index, df["open"], df["high"], df["low"], df["close"], volumes):
        candles.append(
            Candle(
                time=to_epoch_ms(pd.Timestamp(ts)),
                open=float(o),
                high=float(h),
                low=float(l),
                close=float(c),
                volume=float(v),
            )
        )
    candles.sort(key=lambda candle: candle.time)
    return candles
