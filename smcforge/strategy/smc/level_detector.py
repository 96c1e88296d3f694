"""
Level Detector — support / resistance / breaker levels from swing clusters.

Swing highs that repeat at (nearly) the same price are resistance, swing
lows that repeat are support. Where a support cluster and a resistance
cluster sit on the same price, the level has been broken from one side and
retested from the other: that is a breaker, and it gets a strength bonus.

Clustering is a greedy single pass (LevelClusterer): sort ascending, open a
cluster at the first price, merge each next price while it is within
LEVEL_CLUSTER_PCT of the running mean of the members gathered so far.
A price that misses closes the cluster and opens the next one. Feeding the
resulting means back through the clusterer gives the same number of
clusters.
"""
import logging
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from . import strategy_config as _cfg
from .models import KeyLevel, Swing
from .swing_detector import SwingDetector

logger = logging.getLogger(__name__)


class LevelClusterer:
    """
    Parameters
    ----------
    tolerance_pct : float, optional
        Relative distance from the running cluster mean that still merges
        (0.002 = 0.2%). Defaults to LEVEL_CLUSTER_PCT.
    """

    def __init__(self, tolerance_pct: float = None):
        self._tolerance_pct = tolerance_pct

    @property
    def tolerance_pct(self) -> float:
        return self._tolerance_pct if self._tolerance_pct is not None else _cfg.LEVEL_CLUSTER_PCT

    def cluster(self, prices: Iterable[float]) -> List[Tuple[float, int]]:
        """[(mean price, count)] sorted by count desc (stable on price asc)."""
        ordered = sorted(float(p) for p in prices)
        if not ordered:
            return []

        tol = self.tolerance_pct
        clusters: List[Tuple[float, int]] = []
        members = [ordered[0]]
        for p in ordered[1:]:
            mean = sum(members) / len(members)
            if abs(p - mean) / mean <= tol:
                members.append(p)
            else:
                clusters.append((sum(members) / len(members), len(members)))
                members = [p]
        clusters.append((sum(members) / len(members), len(members)))

        clusters.sort(key=lambda c: c[1], reverse=True)
        return clusters


class LevelDetector:
    """
    Builds KeyLevels for one timeframe.

    Parameters
    ----------
    clusterer : LevelClusterer, optional
    swing_detector : SwingDetector, optional
        Used when detect() is not handed swings.
    """

    def __init__(self, clusterer: LevelClusterer = None, swing_detector: SwingDetector = None):
        self.clusterer = clusterer or LevelClusterer()
        self.swing_detector = swing_detector or SwingDetector()

    def detect(
        self,
        df: Optional[pd.DataFrame] = None,
        timeframe: str = "4h",
        swings: Optional[List[Swing]] = None,
    ) -> List[KeyLevel]:
        """
        Key levels sorted by strength desc.

        Either `swings` or a candle window `df` (swings detected fresh) must
        be given. Fewer than one swing → [].
        """
        if swings is None:
            if df is None:
                return []
            swings = self.swing_detector.detect_fresh(df)

        highs = [s.price for s in swings if s.is_high]
        lows = [s.price for s in swings if not s.is_high]
        resistance = self.clusterer.cluster(highs)
        support = self.clusterer.cluster(lows)

        # (price, count, level_type)
        raw: List[Tuple[float, int, str]] = []
        used_res = set()
        tol = self.clusterer.tolerance_pct
        for s_price, s_count in support:
            match = None
            for j, (r_price, r_count) in enumerate(resistance):
                if j in used_res:
                    continue
                if abs(r_price - s_price) / s_price <= tol:
                    match = j
                    break
            if match is None:
                raw.append((s_price, s_count, 'support'))
                continue
            used_res.add(match)
            r_price, r_count = resistance[match]
            total = s_count + r_count
            price = (s_price * s_count + r_price * r_count) / total
            raw.append((price, total, 'breaker'))
        for j, (r_price, r_count) in enumerate(resistance):
            if j not in used_res:
                raw.append((r_price, r_count, 'resistance'))

        if not raw:
            return []

        max_count = max(c for _, c, _ in raw)
        levels = []
        for price, count, level_type in raw:
            strength = count / max_count
            if level_type == 'breaker':
                strength = min(strength + _cfg.BREAKER_STRENGTH_BONUS, 1.0)
            levels.append(KeyLevel(
                price=float(price),
                level_type=level_type,
                strength=float(strength),
                timeframe=timeframe,
                touches=int(count),
            ))

        levels.sort(key=lambda lv: lv.strength, reverse=True)
        logger.debug(
            f"key levels [{timeframe}]: {len(levels)} "
            f"({sum(1 for lv in levels if lv.level_type == 'breaker')} breakers)"
        )
        return levels
