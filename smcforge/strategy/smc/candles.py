"""
Candle frames — validation and normalisation of OHLCV input.

Every component downstream works on a DataFrame with exactly the columns

    timestamp (int64 epoch ms), open, high, low, close, volume (float64)

on a RangeIndex, ascending by timestamp. to_frame() accepts whatever the
caller has and produces that, or raises InvalidInputError:

  - a DataFrame with those columns, or with a DatetimeIndex and no
    timestamp column (the usual shape of a price-history download).
    A datetime-typed timestamp column is converted to epoch ms, naive
    values taken as UTC
  - a list of Candle objects or dicts
  - a list of exchange kline rows [open_time, open, high, low, close, volume, ...]
"""
import re
from typing import Iterable, Union

import numpy as np
import pandas as pd

from .errors import InvalidInputError
from .models import Candle

COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]
PRICE_COLUMNS = ["open", "high", "low", "close", "volume"]

_TF_RE = re.compile(r"^(\d+)([mhdwMHDW])$")
_TF_MINUTES = {"m": 1, "h": 60, "d": 1440, "w": 10080}


def timeframe_minutes(timeframe: str) -> int:
    """'5m' → 5, '4h' → 240, '1D' → 1440. Raises InvalidInputError."""
    m = _TF_RE.match(str(timeframe).strip())
    if not m:
        raise InvalidInputError(f"unrecognised timeframe {timeframe!r}")
    n, unit = int(m.group(1)), m.group(2)
    # 'M' would be months elsewhere; here only minutes are lowercase-m
    if unit == "M":
        raise InvalidInputError(f"unrecognised timeframe {timeframe!r}")
    return n * _TF_MINUTES[unit.lower()]


def _from_records(candles) -> pd.DataFrame:
    rows = list(candles)
    if not rows:
        return pd.DataFrame(columns=COLUMNS)
    first = rows[0]
    if isinstance(first, Candle):
        return pd.DataFrame([[c.timestamp, c.open, c.high, c.low, c.close, c.volume]
                             for c in rows], columns=COLUMNS)
    if isinstance(first, dict):
        return pd.DataFrame(rows)
    if isinstance(first, (list, tuple, np.ndarray)):
        try:
            return pd.DataFrame([list(r)[:6] for r in rows], columns=COLUMNS)
        except ValueError as e:
            raise InvalidInputError(f"kline rows need at least 6 fields: {e}") from e
    raise InvalidInputError(f"unsupported candle record type {type(first).__name__}")


def _epoch_ms(stamps, label: str) -> np.ndarray:
    """DatetimeIndex or datetime Series → int64 epoch ms. Naive values are UTC."""
    if isinstance(stamps, pd.Series):
        stamps = pd.DatetimeIndex(stamps)
    if stamps.hasnans:
        raise InvalidInputError(f"{label}: missing timestamps")
    stamps = stamps.tz_convert("UTC") if stamps.tz is not None else stamps.tz_localize("UTC")
    epoch = pd.Timestamp("1970-01-01", tz="UTC")
    return np.asarray((stamps - epoch) // pd.Timedelta(milliseconds=1), dtype="int64")


def to_frame(candles: Union[pd.DataFrame, Iterable], label: str = "candles") -> pd.DataFrame:
    """
    Validate and normalise candles. Returns a new DataFrame; never mutates
    the input. `label` names the series in error messages.
    """
    if isinstance(candles, pd.DataFrame):
        df = candles.copy()
        if "timestamp" not in df.columns and isinstance(df.index, pd.DatetimeIndex):
            df["timestamp"] = _epoch_ms(df.index, label)
    elif candles is None:
        raise InvalidInputError(f"{label}: no candles given")
    else:
        df = _from_records(candles)

    df.columns = [str(c).lower() for c in df.columns]
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        raise InvalidInputError(f"{label}: missing columns {missing}")

    df = df[COLUMNS].reset_index(drop=True)
    if pd.api.types.is_datetime64_any_dtype(df["timestamp"]):
        df["timestamp"] = _epoch_ms(df["timestamp"], label)
    if df.empty:
        return df.astype({c: "float64" for c in PRICE_COLUMNS}).astype({"timestamp": "int64"})

    for col in COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    values = df[COLUMNS].to_numpy(dtype=float)
    if not np.isfinite(values).all():
        bad = [c for c in COLUMNS if not np.isfinite(df[c].to_numpy(dtype=float)).all()]
        raise InvalidInputError(f"{label}: non-finite or non-numeric values in {bad}")

    if (df["volume"] < 0).any():
        raise InvalidInputError(f"{label}: negative volume")
    if (df["high"] < df["low"]).any():
        raise InvalidInputError(f"{label}: high below low")

    ts = df["timestamp"].to_numpy(dtype=float)
    if len(ts) > 1 and not (np.diff(ts) > 0).all():
        raise InvalidInputError(f"{label}: timestamps must be strictly increasing")

    df["timestamp"] = df["timestamp"].astype("int64")
    for col in PRICE_COLUMNS:
        df[col] = df[col].astype("float64")
    return df


def tail(df: pd.DataFrame, n: int) -> pd.DataFrame:
    """Last n candles, re-indexed from 0."""
    return df.iloc[-n:].reset_index(drop=True) if n > 0 else df.iloc[0:0]
