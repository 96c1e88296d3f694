"""
Market Structure Analyzer

Higher-timeframe context for every cycle:

  trend       last TREND_LEG highs and lows of the last TREND_WINDOW HTF
              candles, both strictly rising → uptrend, both strictly
              falling → downtrend, anything else → ranging
  key levels  clustered from HTF swings (LevelDetector)
  swings      from the secondary (lower) timeframe, used for stop
              placement and BOS/ChoCH freshness checks
"""
import logging
from typing import Optional

import numpy as np
import pandas as pd

from . import strategy_config as _cfg
from .candles import tail
from .level_detector import LevelDetector
from .models import MarketStructure, Trend
from .swing_detector import SwingDetector

logger = logging.getLogger(__name__)


def _strictly(values: np.ndarray, rising: bool) -> bool:
    diffs = np.diff(values)
    return bool((diffs > 0).all()) if rising else bool((diffs < 0).all())


def detect_trend(df: pd.DataFrame) -> Trend:
    """Trend of a candle window. Fewer than TREND_LEG candles → RANGING."""
    leg = _cfg.TREND_LEG
    window = tail(df, _cfg.TREND_WINDOW)
    if len(window) < leg:
        return Trend.RANGING

    highs = window['high'].values[-leg:]
    lows = window['low'].values[-leg:]
    if _strictly(highs, True) and _strictly(lows, True):
        return Trend.UPTREND
    if _strictly(highs, False) and _strictly(lows, False):
        return Trend.DOWNTREND
    return Trend.RANGING


class MarketStructureAnalyzer:

    def __init__(self, swing_detector: SwingDetector = None, level_detector: LevelDetector = None):
        self.swing_detector = swing_detector or SwingDetector()
        self.level_detector = level_detector or LevelDetector(swing_detector=self.swing_detector)

    def analyze(
        self,
        htf: pd.DataFrame,
        secondary: Optional[pd.DataFrame] = None,
        htf_timeframe: str = "4h",
    ) -> MarketStructure:
        """
        htf        higher-timeframe window (trend + key levels)
        secondary  lower-timeframe window for swings; defaults to htf
        """
        trend = detect_trend(htf)
        key_levels = self.level_detector.detect(htf, timeframe=htf_timeframe)
        swing_src = secondary if secondary is not None else htf
        swings = self.swing_detector.detect_fresh(swing_src)

        logger.debug(
            f"structure: {trend.value} | {len(swings)} swings | {len(key_levels)} key levels"
        )
        return MarketStructure(trend=trend, swings=tuple(swings), key_levels=tuple(key_levels))
