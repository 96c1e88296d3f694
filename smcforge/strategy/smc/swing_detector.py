"""
Swing Detector

Finds local extrema in a candle window and classifies them against the
previous swing on the same side:

    swing high above the last swing high → HH, otherwise LH
    swing low  below the last swing low  → LL, otherwise HL

A candle is a swing high when its high is >= every high in the `lookback`
candles on each side (swing low symmetric with <=). Because the comparison
is inclusive, a flat top registers every candle of the plateau.

The last-high / last-low trackers live on the detector and carry over from
one detect() call to the next, so feeding consecutive chunks of one series
classifies them as a single stream. Call reset() before switching to an
unrelated series. detect_fresh() classifies a standalone window with local
trackers and never touches the instance, which is what the analysis
components call; a detector shared between symbols or threads goes through
it. Classification is never revised once emitted.
"""
import logging
from typing import List

import numpy as np
import pandas as pd

from . import strategy_config as _cfg
from .models import Swing

logger = logging.getLogger(__name__)


def swing_strength(price: float, df: pd.DataFrame) -> float:
    """
    Strength of a swing at `price` within the window, 0.0–1.0.

    Candles whose high or low lies within SWING_STRENGTH_PCT of the price
    are "touches". Their combined volume relative to the average candle
    volume is weighted 0.6, the touch count (per 5) 0.4.
    """
    if price <= 0 or df.empty:
        return 0.0
    highs = df['high'].values
    lows = df['low'].values
    vols = df['volume'].values
    band = _cfg.SWING_STRENGTH_PCT
    near = (np.abs(highs - price) / price < band) | (np.abs(lows - price) / price < band)

    avg_vol = vols.mean()
    volume_strength = vols[near].sum() / avg_vol if avg_vol > 0 else 0.0
    touches = int(near.sum())

    raw = (volume_strength * _cfg.SWING_STRENGTH_VOLUME_WEIGHT
           + touches / _cfg.SWING_STRENGTH_MAX_TOUCHES * _cfg.SWING_STRENGTH_TOUCH_WEIGHT)
    return float(min(raw, 1.0))


def find_swing_indices(values: np.ndarray, kind: str, lookback: int) -> List[int]:
    """Indices i (lookback <= i < len-lookback) dominating ±lookback bars."""
    idxs = []
    for i in range(lookback, len(values) - lookback):
        window = values[i - lookback:i + lookback + 1]
        if kind == 'high' and values[i] >= window.max():
            idxs.append(i)
        elif kind == 'low' and values[i] <= window.min():
            idxs.append(i)
    return idxs


class SwingDetector:
    """
    Parameters
    ----------
    lookback : int, optional
        Candles each side a swing must dominate. Defaults to SWING_LOOKBACK.
    """

    def __init__(self, lookback: int = None):
        self._lookback = lookback
        self.reset()

    @property
    def lookback(self) -> int:
        return self._lookback if self._lookback is not None else _cfg.SWING_LOOKBACK

    def reset(self) -> None:
        self.last_swing_high = float('-inf')
        self.last_swing_low = float('inf')

    def detect(self, df: pd.DataFrame) -> List[Swing]:
        """Time-ordered swings for the window, continuing from the trackers."""
        swings, self.last_swing_high, self.last_swing_low = self._classify(
            df, self.last_swing_high, self.last_swing_low
        )
        return swings

    def detect_fresh(self, df: pd.DataFrame) -> List[Swing]:
        """
        Swings of a standalone window. Classifies with its own trackers and
        leaves the instance's untouched, so one detector can serve several
        threads.
        """
        swings, _, _ = self._classify(df, float('-inf'), float('inf'))
        return swings

    def _classify(self, df: pd.DataFrame, last_high: float, last_low: float):
        """(swings, last_high, last_low). Short windows → no swings."""
        n = self.lookback
        if len(df) < 2 * n + 1:
            return [], last_high, last_low

        highs = df['high'].values
        lows = df['low'].values
        stamps = df['timestamp'].values

        high_idx = set(find_swing_indices(highs, 'high', n))
        low_idx = set(find_swing_indices(lows, 'low', n))

        swings: List[Swing] = []
        for i in sorted(high_idx | low_idx):
            # outside bar: high is emitted before low
            if i in high_idx:
                price = float(highs[i])
                kind = 'HH' if price > last_high else 'LH'
                last_high = price
                swings.append(Swing(price, kind, int(stamps[i]), swing_strength(price, df)))
            if i in low_idx:
                price = float(lows[i])
                kind = 'LL' if price < last_low else 'HL'
                last_low = price
                swings.append(Swing(price, kind, int(stamps[i]), swing_strength(price, df)))

        logger.debug(f"swings: {len(swings)} from {len(df)} candles (lookback={n})")
        return swings, last_high, last_low
