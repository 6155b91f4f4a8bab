"""
Timezone and trading session utilities.

Candles carry epoch-millisecond timestamps; strategies that reason in
local trading days and session windows use these helpers to convert
them into timezone-aware `pandas.Timestamp` objects.
"""

from __future__ import annotations

from datetime import date, time
from typing import Union
import pandas as pd


def parse_time_str(ts: str) -> time:
    """Parse a `HH:MM` string into a `datetime.time` object.

    Parameters
    ----------
    ts : str
        A string in 24‑hour format such as ``"06:30"``.

    Returns
    -------
    datetime.time
        The corresponding time.
    """
    hour, minute = map(int, ts.split(":"))
    return time(hour=hour, minute=minute)


def to_timezone(ts: Union[pd.Timestamp, int], tz_name: str) -> pd.Timestamp:
    """Convert a timestamp or epoch milliseconds to the specified timezone.

    Integers are read as epoch milliseconds.  Naive timestamps are
    assumed to be in UTC before conversion.
    """
    if isinstance(ts, int):
        ts = pd.Timestamp(ts, unit="ms", tz="UTC")
    elif not isinstance(ts, pd.Timestamp):
        ts = pd.Timestamp(ts)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts.tz_convert(tz_name)


def to_epoch_ms(ts: pd.Timestamp) -> int:
    """Epoch milliseconds of a timestamp; naive values are taken as UTC."""
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.value // 1_000_000)


def local_date(time_ms: int, tz_name: str) -> date:
    """Calendar date of `time_ms` in the given timezone."""
    return to_timezone(time_ms, tz_name).date()


def is_in_session(ts: Union[pd.Timestamp, int], session_start: time, session_end: time, tz_name: str) -> bool:
    """Check whether `ts` is within the trading session.

    The timestamp is converted to the given timezone and its time
    component is compared to the start and end times.  The end time
    is exclusive.
    """
    local_ts = to_timezone(ts, tz_name)
    current_time = local_ts.time()
    return session_start <= current_time < session_end
