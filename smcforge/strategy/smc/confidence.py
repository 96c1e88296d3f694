"""
ConfidenceScorer — A+ classification of an accepted setup

Seven independent criteria, one point each:

  1. HTF trend alignment     main direction matches the HTF trend
  2. Pattern confluence      another same-direction pattern within 0.3%
  3. Volume                  main pattern volume > 1.5× average
  4. Clean break             clean break AND no immediate retrace
  5. Key level               ≥0.7-strength key level within 0.3%
  6. Structure alignment     the pattern's own structure-alignment flag
  7. Liquidity               matching-side liquidity level within 0.5%
                             that shows a stop cluster

criteria_met ≥ A_PLUS_MIN_CRITERIA (5) → A+.
Final confidence = main pattern confidence, +0.2 when A+ (capped at 1.0).

Usage:
    from smcforge.strategy.smc.confidence import score_confidence
    cs = score_confidence(main, ranked_patterns, analysis)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from . import strategy_config as _cfg
from .models import BULLISH, Pattern, SMCAnalysis, Trend
from .pattern_detector import is_near_key_level

logger = logging.getLogger(__name__)

CRITERIA_COUNT = 7

_TREND_FOR = {"bullish": Trend.UPTREND, "bearish": Trend.DOWNTREND}


# ── Result ─────────────────────────────────────────────────────────────────

@dataclass
class ConfidenceScore:
    score: float                 # final confidence 0–1
    base: float                  # main pattern confidence
    criteria_met: int            # 0–7
    is_a_plus: bool
    reasons: List[str] = field(default_factory=list)   # one per satisfied criterion

    def to_dict(self) -> dict:
        return {
            "confidence":     round(self.score, 4),
            "base":           round(self.base, 4),
            "criteria_met":   self.criteria_met,
            "is_a_plus":      self.is_a_plus,
            "a_plus_reasons": list(self.reasons),
        }


# ── Criteria ───────────────────────────────────────────────────────────────

def _htf_alignment(main: Pattern, analysis: SMCAnalysis) -> tuple[bool, str]:
    trend = analysis.market_structure.trend
    return trend == _TREND_FOR[main.direction], f"Higher timeframe alignment ({trend.value})"


def _pattern_confluence(main: Pattern, patterns: Sequence[Pattern]) -> tuple[bool, str]:
    others = [
        p for p in patterns
        if p is not main
        and p.direction == main.direction
        and abs(p.price - main.price) / main.price < _cfg.CONFLUENCE_PCT
    ]
    types = sorted({p.pattern_type for p in others})
    return bool(others), f"Pattern confluence: {', '.join(types)}"


def _volume(main: Pattern) -> tuple[bool, str]:
    ok = main.average_volume > 0 and main.volume > main.average_volume * _cfg.VOLUME_CONFIRMATION_MULT
    return ok, "Volume confirmation"


def _clean_break(main: Pattern) -> tuple[bool, str]:
    pa = main.price_action
    return pa.clean_break and not pa.immediate_retrace, "Clean break without retrace"


def _key_level(main: Pattern, analysis: SMCAnalysis) -> tuple[bool, str]:
    return is_near_key_level(main.price, analysis.key_levels), "Key level confluence"


def _structure(main: Pattern) -> tuple[bool, str]:
    return main.validation.market_structure_alignment, "Market structure alignment"


def _liquidity(main: Pattern, analysis: SMCAnalysis) -> tuple[bool, str]:
    side = "buy" if main.direction == BULLISH else "sell"
    ok = any(
        lv.side == side
        and lv.stop_cluster
        and abs(lv.price - main.price) / main.price < _cfg.LIQUIDITY_CONFLUENCE_PCT
        for lv in analysis.liquidity_levels
    )
    return ok, "Liquidity presence with stop cluster"


# ── Aggregate ──────────────────────────────────────────────────────────────

def score_confidence(
    main: Pattern,
    patterns: Sequence[Pattern],
    analysis: SMCAnalysis,
) -> ConfidenceScore:
    """
    main      the main pattern (usually patterns[0] after prioritisation)
    patterns  every candidate pattern of the cycle, for confluence
    """
    checks = [
        _htf_alignment(main, analysis),
        _pattern_confluence(main, patterns),
        _volume(main),
        _clean_break(main),
        _key_level(main, analysis),
        _structure(main),
        _liquidity(main, analysis),
    ]
    reasons = [note for ok, note in checks if ok]
    met = len(reasons)
    is_a_plus = met >= _cfg.A_PLUS_MIN_CRITERIA

    score = main.confidence
    if is_a_plus:
        score = min(score + _cfg.A_PLUS_CONFIDENCE_BOOST, 1.0)
        logger.info(f"🌟 A+ setup: {main} ({met}/{CRITERIA_COUNT})")
        for r in reasons:
            logger.info(f"   ✅ {r}")
    else:
        logger.debug(f"{main}: {met}/{CRITERIA_COUNT} A+ criteria")

    return ConfidenceScore(
        score=float(min(max(score, 0.0), 1.0)),
        base=main.confidence,
        criteria_met=met,
        is_a_plus=is_a_plus,
        reasons=reasons,
    )
