"""
Pattern prioritisation and alignment gate.

Ranking (highest first):
  1. pattern-type conviction (PATTERN_PRIORITY: BOS > ChoCH > LiquidityGrab
     > OrderBlock = BreakerBlock > FairValueGap = Imbalance)
  2. timeframe (minutes; 15m beats 5m)
  3. confidence
  4. recency

The top element is the cycle's main pattern. Only the main pattern goes
through AlignmentValidator; a rejected main pattern ends the cycle.
"""
import logging
from typing import Iterable, List, Tuple

from . import strategy_config as _cfg
from .candles import timeframe_minutes
from .clock import MS_PER_HOUR
from .models import BEARISH, BULLISH, MarketStructure, Pattern, Trend
from .pattern_detector import is_near_key_level

logger = logging.getLogger(__name__)


def filter_recent(patterns: Iterable[Pattern], now_ms: int, max_age_hours: float = None) -> List[Pattern]:
    """Patterns whose timestamp lies within the last max_age_hours (default 24h)."""
    hours = _cfg.PATTERN_MAX_AGE_HOURS if max_age_hours is None else max_age_hours
    cutoff = now_ms - hours * MS_PER_HOUR
    return [p for p in patterns if p.timestamp >= cutoff]


def priority_key(p: Pattern) -> Tuple:
    return (
        _cfg.PATTERN_PRIORITY.get(p.pattern_type, 0),
        timeframe_minutes(p.timeframe),
        p.confidence,
        p.timestamp,
    )


def prioritize_patterns(patterns: Iterable[Pattern]) -> List[Pattern]:
    """New list, strongest first. Stable for fully tied patterns."""
    return sorted(patterns, key=priority_key, reverse=True)


class AlignmentValidator:
    """
    Type-specific gate on the main pattern.

    validate() returns (ok, reason). A failed gate is a normal outcome,
    never an exception; reason is a short code for the rejection funnel.
    """

    def validate(self, pattern: Pattern, structure: MarketStructure, now_ms: int) -> Tuple[bool, str]:
        # ── Trend opposition ────────────────────────────────────────────────
        if pattern.direction == BULLISH and structure.trend == Trend.DOWNTREND:
            return False, "counter_trend: bullish pattern in downtrend"
        if pattern.direction == BEARISH and structure.trend == Trend.UPTREND:
            return False, "counter_trend: bearish pattern in uptrend"

        ptype = pattern.pattern_type
        levels = structure.key_levels

        # ── Structure breaks need a fresh confirming swing ─────────────────
        if ptype in ("BOS", "ChoCH"):
            needed = "HL" if pattern.direction == BULLISH else "LH"
            cutoff = now_ms - _cfg.SWING_MAX_AGE_HOURS * MS_PER_HOUR
            if not any(s.swing_type == needed and s.timestamp >= cutoff for s in structure.swings):
                return False, f"no_confirming_swing: no {needed} in last {_cfg.SWING_MAX_AGE_HOURS:g}h"

        # ── Liquidity grab must be at a strong level ───────────────────────
        elif ptype == "LiquidityGrab":
            if not is_near_key_level(pattern.price, levels):
                return False, "no_key_level: liquidity grab away from strong level"

        # ── Order block: matching level OR volume ──────────────────────────
        elif ptype == "OrderBlock":
            wanted = "support" if pattern.direction == BULLISH else "resistance"
            has_level = any(
                lv.level_type == wanted
                and abs(lv.price - pattern.price) / pattern.price < _cfg.ORDER_BLOCK_LEVEL_PCT
                for lv in levels
            )
            if not has_level and not pattern.validation.volume_confirmation:
                return False, f"unconfirmed_order_block: no {wanted} nearby and no volume"

        # ── FVG inside a level cluster is messy ────────────────────────────
        elif ptype == "FairValueGap":
            if any(abs(lv.price - pattern.price) / pattern.price < _cfg.FVG_MESSY_LEVEL_PCT
                   for lv in levels):
                return False, "messy_price_action: key level inside fair value gap zone"

        return True, "aligned"
