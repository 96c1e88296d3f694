"""
Pattern Detector

Recognizes the smart-money footprints the strategy trades:

  1. Order Block     — last opposite candle before a displacement that
                       closes through its range (bullish: bearish candle,
                       then a bullish candle closing above its high).
  2. Fair Value Gap  — three-candle gap left by a fast move; the wicks of
                       candles i-1 and i+1 do not overlap.
  3. ChoCH           — change of character: a LL ... HH sequence (or HH ...
                       LL) where the new extreme takes out the old one.
  4. BOS             — break of structure: a swing takes out the lower high
                       (or higher low) before it.
  5. Liquidity Grab  — a candle sweeps the previous candle's low/high and
                       closes back inside on heavy volume. Stop hunt.
  6. Breaker Block   — a key level that price has since closed through.
  7. Imbalance       — displacement close beyond the prior extreme with the
                       next candle leaving the body untouched.

Each recognizer scans ONE candle window independently and returns every
occurrence it finds (zero or many). Windows too short for a recognizer
return []. Nothing here decides whether a pattern is tradeable: every
pattern carries price-action and validation tags, and the prioritizer /
validator / setup calculator downstream make the call.

Also finds liquidity levels (swept highs/lows with stop clusters) for the
confidence scorer.
"""
import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from . import strategy_config as _cfg
from .errors import InvalidInputError
from .level_detector import LevelDetector
from .market_structure import detect_trend
from .models import (
    BEARISH,
    BULLISH,
    KeyLevel,
    LiquidityLevel,
    Pattern,
    PatternValidation,
    PriceAction,
    Trend,
)
from .swing_detector import SwingDetector

logger = logging.getLogger(__name__)


# ── Window helpers ─────────────────────────────────────────────────────────

def price_action_tags(df: pd.DataFrame) -> PriceAction:
    """Tags taken from the last candles of the window."""
    if len(df) < 2:
        return PriceAction()
    o = df['open'].values
    c = df['close'].values
    h = df['high'].values
    l = df['low'].values
    last_body = c[-1] - o[-1]
    prev_body = c[-2] - o[-2]
    return PriceAction(
        clean_break=bool(abs(last_body) > abs(prev_body) * _cfg.CLEAN_BREAK_BODY_MULT),
        immediate_retrace=bool(last_body * prev_body < 0),
        strong_reversal=bool(abs(last_body) > (h[-2] - l[-2]) * _cfg.STRONG_REVERSAL_RANGE_MULT),
    )


def is_near_key_level(price: float, key_levels, pct: float = None, min_strength: float = None) -> bool:
    pct = _cfg.KEY_LEVEL_PROXIMITY_PCT if pct is None else pct
    min_strength = _cfg.KEY_LEVEL_MIN_STRENGTH if min_strength is None else min_strength
    if price <= 0:
        return False
    return any(
        abs(lv.price - price) / price < pct and lv.strength >= min_strength
        for lv in key_levels
    )


def is_psychological_level(price: float) -> bool:
    """
    Round number at the price's own scale: 27000 for 27,040, 1.2000 for
    1.2001. Within PSYCHOLOGICAL_LEVEL_PCT.
    """
    if not price or price <= 0 or not math.isfinite(price):
        return False
    unit = 10 ** (math.floor(math.log10(price)) - 1)
    rounded = round(price / unit) * unit
    return abs(price - rounded) / price < _cfg.PSYCHOLOGICAL_LEVEL_PCT


def has_stop_cluster(df: pd.DataFrame, price: float, side: str) -> bool:
    """>= STOP_CLUSTER_MIN_WICKS recent lows (buy) / highs (sell) near price."""
    recent = df.iloc[-_cfg.STOP_CLUSTER_LOOKBACK:]
    wicks = recent['low'].values if side == 'buy' else recent['high'].values
    threshold = price * _cfg.STOP_CLUSTER_PCT
    return int((np.abs(wicks - price) < threshold).sum()) >= _cfg.STOP_CLUSTER_MIN_WICKS


@dataclass
class _WindowContext:
    timeframe: str
    avg_volume: float
    last_volume: float
    avg_range: float
    price_action: PriceAction
    trend: Trend
    key_levels: List[KeyLevel]
    htf_trend: Optional[Trend]


_ALIGNED = {BULLISH: Trend.UPTREND, BEARISH: Trend.DOWNTREND}
_OPPOSED = {BULLISH: Trend.DOWNTREND, BEARISH: Trend.UPTREND}


class PatternDetector:
    """
    Parameters
    ----------
    swing_detector : SwingDetector, optional
        Used by ChoCH / BOS. Reset before every window.
    level_detector : LevelDetector, optional
        Used by BreakerBlock, and for the key-level proximity tag when the
        caller does not pass higher-timeframe levels.
    """

    def __init__(self, swing_detector: SwingDetector = None, level_detector: LevelDetector = None):
        self.swing_detector = swing_detector or SwingDetector()
        self.level_detector = level_detector or LevelDetector(swing_detector=self.swing_detector)
        self._recognizers = {
            "OrderBlock": self._order_blocks,
            "FairValueGap": self._fair_value_gaps,
            "ChoCH": self._choch,
            "BOS": self._bos,
            "LiquidityGrab": self._liquidity_grabs,
            "BreakerBlock": self._breaker_blocks,
            "Imbalance": self._imbalances,
        }

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def find_patterns(
        self,
        df: pd.DataFrame,
        timeframe: str,
        pattern_type: str,
        key_levels: Optional[List[KeyLevel]] = None,
        htf_trend: Optional[Trend] = None,
    ) -> List[Pattern]:
        """
        All patterns of one type in the window.

        key_levels  levels for the proximity tag (higher-timeframe levels in
                    the strategy); window levels when omitted
        htf_trend   higher-timeframe trend for multi_timeframe_alignment;
                    None means no higher-timeframe view, tag is True
        """
        recognizer = self._recognizers.get(pattern_type)
        if recognizer is None:
            raise InvalidInputError(f"unknown pattern type '{pattern_type}'")
        if len(df) < 2:
            return []
        ctx = self._context(df, timeframe, key_levels, htf_trend)
        patterns = recognizer(df, ctx)
        if patterns:
            logger.debug(f"{pattern_type} [{timeframe}]: {len(patterns)} found")
        return patterns

    def detect_all(
        self,
        df: pd.DataFrame,
        timeframe: str,
        pattern_types: Optional[List[str]] = None,
        key_levels: Optional[List[KeyLevel]] = None,
        htf_trend: Optional[Trend] = None,
    ) -> List[Pattern]:
        types = pattern_types or list(self._recognizers)
        out: List[Pattern] = []
        for t in types:
            out.extend(self.find_patterns(df, timeframe, t, key_levels, htf_trend))
        return out

    def find_order_blocks(self, df: pd.DataFrame, timeframe: str = "5m", **kw) -> List[Pattern]:
        return self.find_patterns(df, timeframe, "OrderBlock", **kw)

    def find_fair_value_gaps(self, df: pd.DataFrame, timeframe: str = "5m", **kw) -> List[Pattern]:
        return self.find_patterns(df, timeframe, "FairValueGap", **kw)

    def find_choch(self, df: pd.DataFrame, timeframe: str = "5m", **kw) -> List[Pattern]:
        return self.find_patterns(df, timeframe, "ChoCH", **kw)

    def find_bos(self, df: pd.DataFrame, timeframe: str = "5m", **kw) -> List[Pattern]:
        return self.find_patterns(df, timeframe, "BOS", **kw)

    def find_liquidity_grabs(self, df: pd.DataFrame, timeframe: str = "5m", **kw) -> List[Pattern]:
        return self.find_patterns(df, timeframe, "LiquidityGrab", **kw)

    def find_liquidity_levels(self, df: pd.DataFrame) -> List[LiquidityLevel]:
        """
        Heavy-volume sweeps: a candle that trades below the previous low and
        closes back above it leaves buy-side liquidity at its low; the
        mirror leaves sell-side liquidity at its high.
        """
        if len(df) < 2:
            return []
        vols = df['volume'].values
        avg_vol = vols.mean()
        if avg_vol <= 0:
            return []
        h = df['high'].values
        l = df['low'].values
        c = df['close'].values

        levels: List[LiquidityLevel] = []
        for i in range(1, len(df)):
            if vols[i] <= avg_vol * _cfg.LIQUIDITY_VOLUME_MULT:
                continue
            strength = float(vols[i] / avg_vol)
            if l[i] < l[i - 1] and c[i] > l[i - 1]:
                price = float(l[i])
                levels.append(LiquidityLevel(
                    price=price, side='buy', strength=strength, volume=float(vols[i]),
                    psychological_level=is_psychological_level(price),
                    stop_cluster=has_stop_cluster(df, price, 'buy'),
                ))
            if h[i] > h[i - 1] and c[i] < h[i - 1]:
                price = float(h[i])
                levels.append(LiquidityLevel(
                    price=price, side='sell', strength=strength, volume=float(vols[i]),
                    psychological_level=is_psychological_level(price),
                    stop_cluster=has_stop_cluster(df, price, 'sell'),
                ))
        return levels

    # ------------------------------------------------------------------ #
    # Tagging
    # ------------------------------------------------------------------ #

    def _context(self, df, timeframe, key_levels, htf_trend) -> _WindowContext:
        if key_levels is None:
            key_levels = self.level_detector.detect(df, timeframe=timeframe)
        return _WindowContext(
            timeframe=timeframe,
            avg_volume=float(df['volume'].mean()),
            last_volume=float(df['volume'].iloc[-1]),
            avg_range=float((df['high'] - df['low']).mean()),
            price_action=price_action_tags(df),
            trend=detect_trend(df),
            key_levels=list(key_levels),
            htf_trend=htf_trend,
        )

    def _make(self, ctx: _WindowContext, pattern_type: str, direction: str,
              price: float, confidence: float, timestamp) -> Pattern:
        validation = PatternValidation(
            volume_confirmation=ctx.last_volume > ctx.avg_volume * _cfg.VOLUME_CONFIRMATION_MULT,
            market_structure_alignment=ctx.trend == _ALIGNED[direction],
            key_level_proximity=is_near_key_level(price, ctx.key_levels),
            multi_timeframe_alignment=(ctx.htf_trend is None
                                       or ctx.htf_trend != _OPPOSED[direction]),
        )
        return Pattern(
            pattern_type=pattern_type,
            direction=direction,
            price=float(price),
            confidence=float(min(max(confidence, 0.0), 1.0)),
            timeframe=ctx.timeframe,
            timestamp=int(timestamp),
            volume=ctx.last_volume,
            average_volume=ctx.avg_volume,
            price_action=ctx.price_action,
            validation=validation,
        )

    # ------------------------------------------------------------------ #
    # Recognizers
    # ------------------------------------------------------------------ #

    def _order_blocks(self, df, ctx) -> List[Pattern]:
        o, h, l, c = (df[k].values for k in ('open', 'high', 'low', 'close'))
        ts = df['timestamp'].values
        base = _cfg.PATTERN_BASE_CONFIDENCE["OrderBlock"]
        out = []
        for i in range(len(df) - 1):
            mid = (h[i] + l[i]) / 2
            # bearish candle, then bullish candle closing above its high
            if c[i] < o[i] and c[i + 1] > o[i + 1] and c[i + 1] > h[i]:
                out.append(self._make(ctx, "OrderBlock", BULLISH, mid, base, ts[i + 1]))
            # bullish candle, then bearish candle closing below its low
            if c[i] > o[i] and c[i + 1] < o[i + 1] and c[i + 1] < l[i]:
                out.append(self._make(ctx, "OrderBlock", BEARISH, mid, base, ts[i + 1]))
        return out

    def _fair_value_gaps(self, df, ctx) -> List[Pattern]:
        h, l = df['high'].values, df['low'].values
        ts = df['timestamp'].values
        base = _cfg.PATTERN_BASE_CONFIDENCE["FairValueGap"]
        out = []
        for i in range(1, len(df) - 1):
            if l[i - 1] > h[i + 1]:
                out.append(self._make(ctx, "FairValueGap", BEARISH,
                                      (l[i - 1] + h[i + 1]) / 2, base, ts[i + 1]))
            if h[i - 1] < l[i + 1]:
                out.append(self._make(ctx, "FairValueGap", BULLISH,
                                      (h[i - 1] + l[i + 1]) / 2, base, ts[i + 1]))
        return out

    def _choch(self, df, ctx) -> List[Pattern]:
        swings = self.swing_detector.detect_fresh(df)
        base = _cfg.PATTERN_BASE_CONFIDENCE["ChoCH"]
        out = []
        for i in range(2, len(swings)):
            first, last = swings[i - 2], swings[i]
            if first.swing_type == 'LL' and last.swing_type == 'HH' and last.price > first.price:
                out.append(self._make(ctx, "ChoCH", BULLISH, last.price, base, last.timestamp))
            if first.swing_type == 'HH' and last.swing_type == 'LL' and last.price < first.price:
                out.append(self._make(ctx, "ChoCH", BEARISH, last.price, base, last.timestamp))
        return out

    def _bos(self, df, ctx) -> List[Pattern]:
        swings = self.swing_detector.detect_fresh(df)
        base = _cfg.PATTERN_BASE_CONFIDENCE["BOS"]
        out = []
        for i in range(1, len(swings)):
            prev, curr = swings[i - 1], swings[i]
            before = swings[i - 2].price if i >= 2 else None
            if prev.swing_type == 'LH' and curr.price > prev.price and \
                    (before is None or curr.price > before):
                out.append(self._make(ctx, "BOS", BULLISH, curr.price, base, curr.timestamp))
            if prev.swing_type == 'HL' and curr.price < prev.price and \
                    (before is None or curr.price < before):
                out.append(self._make(ctx, "BOS", BEARISH, curr.price, base, curr.timestamp))
        return out

    def _liquidity_grabs(self, df, ctx) -> List[Pattern]:
        if ctx.avg_volume <= 0:
            return []
        o, h, l, c, v = (df[k].values for k in ('open', 'high', 'low', 'close', 'volume'))
        ts = df['timestamp'].values
        out = []
        for i in range(1, len(df)):
            if v[i] <= ctx.avg_volume * _cfg.LIQUIDITY_VOLUME_MULT:
                continue
            rng = h[i] - l[i]
            vol_score = min(v[i] / ctx.avg_volume, 3) / 3
            range_score = min(rng / ctx.avg_range, 3) / 3 if ctx.avg_range > 0 else 0.0
            body_score = abs(c[i] - o[i]) / rng if rng > 0 else 0.0
            conf = 0.4 * vol_score + 0.3 * range_score + 0.3 * body_score

            if l[i] < l[i - 1] and c[i] > l[i - 1]:
                out.append(self._make(ctx, "LiquidityGrab", BULLISH, l[i - 1], conf, ts[i]))
            if h[i] > h[i - 1] and c[i] < h[i - 1]:
                out.append(self._make(ctx, "LiquidityGrab", BEARISH, h[i - 1], conf, ts[i]))
        return out

    def _breaker_blocks(self, df, ctx) -> List[Pattern]:
        levels = self.level_detector.detect(df, timeframe=ctx.timeframe)
        last_close = float(df['close'].iloc[-1])
        last_ts = df['timestamp'].iloc[-1]
        base = _cfg.PATTERN_BASE_CONFIDENCE["BreakerBlock"]
        out = []
        for lv in levels:
            # support now overhead: broken downward
            if lv.level_type == 'support' and last_close < lv.price:
                out.append(self._make(ctx, "BreakerBlock", BEARISH, lv.price, base, last_ts))
            # resistance now underfoot: broken upward
            if lv.level_type == 'resistance' and last_close > lv.price:
                out.append(self._make(ctx, "BreakerBlock", BULLISH, lv.price, base, last_ts))
        return out

    def _imbalances(self, df, ctx) -> List[Pattern]:
        h, l, c = df['high'].values, df['low'].values, df['close'].values
        ts = df['timestamp'].values
        ext = _cfg.IMBALANCE_EXTENSION_PCT
        base = _cfg.PATTERN_BASE_CONFIDENCE["Imbalance"]
        out = []
        for i in range(1, len(df) - 1):
            if c[i] > h[i - 1] * (1 + ext) and l[i + 1] > h[i]:
                out.append(self._make(ctx, "Imbalance", BULLISH, c[i], base, ts[i + 1]))
            if c[i] < l[i - 1] * (1 - ext) and h[i + 1] < l[i]:
                out.append(self._make(ctx, "Imbalance", BEARISH, c[i], base, ts[i + 1]))
        return out
