"""
targeting.py — Entry gate, stop selection, target selection and R:R.

Single source of truth for turning a main pattern into a concrete trade
geometry. SMCStrategy calls TradeSetupCalculator both for freshly detected
patterns and for queued setups whose price band has just been reached.

Functions:
  calculate_volatility()  — population std of close-to-close returns
  entry_threshold()       — 0.5%, widened to 2×vol in high-vol regimes
  find_stop_loss()        — nearest fresh swing on the invalidating side,
                            volatility fallback when none exists
  select_targets()        — up to 3 favorable key levels, nearest first
  risk_reward_ratio()     — |t1 - entry| / |stop - entry|

Gate order (first failure wins, reason code in SetupResult):
  price_not_reached  → QUEUED (6h expiry, band entry×(1±thr))
  stop_too_tight     → REJECTED
  no_targets         → REJECTED
  rr_too_low         → REJECTED
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from . import strategy_config as _cfg
from .candles import tail
from .clock import MS_PER_HOUR, SystemClock
from .models import (
    BULLISH,
    KeyLevel,
    Pattern,
    QueuedSetup,
    SetupOutcome,
    SMCAnalysis,
    Swing,
)

logger = logging.getLogger(__name__)


def calculate_volatility(df: pd.DataFrame, window: int = None) -> float:
    """Population std (ddof=0) of returns over the last `window` candles."""
    window = _cfg.VOLATILITY_WINDOW if window is None else window
    closes = tail(df, window)['close'].values
    if len(closes) < 2:
        return 0.0
    returns = np.diff(closes) / closes[:-1]
    return float(np.std(returns))


def entry_threshold(volatility: float) -> float:
    if volatility > _cfg.HIGH_VOLATILITY:
        return volatility * _cfg.HIGH_VOL_THRESHOLD_MULT
    return _cfg.BASE_ENTRY_THRESHOLD


def price_band(entry: float, threshold: float) -> Tuple[float, float]:
    return entry * (1 - threshold), entry * (1 + threshold)


def find_stop_loss(
    direction: str,
    entry: float,
    swings: List[Swing],
    now_ms: int,
    volatility: float,
) -> Tuple[float, str]:
    """
    Returns (stop, stop_type). stop_type is 'swing' or 'volatility_fallback'.

    direction is the pattern direction ('bullish' → stop below entry).
    """
    cutoff = now_ms - _cfg.SWING_MAX_AGE_HOURS * MS_PER_HOUR
    bullish = direction == BULLISH
    candidates = [
        s for s in swings
        if s.timestamp > cutoff and (s.price < entry if bullish else s.price > entry)
    ]
    if candidates:
        nearest = min(candidates, key=lambda s: abs(entry - s.price))
        return nearest.price, "swing"

    dist = volatility * _cfg.FALLBACK_STOP_VOL_MULT
    stop = entry * (1 - dist) if bullish else entry * (1 + dist)
    return stop, "volatility_fallback"


def select_targets(direction: str, entry: float, key_levels: List[KeyLevel]) -> List[float]:
    """Up to MAX_TARGETS favorable-side levels with strength >= TARGET_MIN_STRENGTH."""
    bullish = direction == BULLISH
    prices = [
        lv.price for lv in key_levels
        if lv.strength >= _cfg.TARGET_MIN_STRENGTH
        and (lv.price > entry if bullish else lv.price < entry)
    ]
    prices.sort(key=lambda p: abs(p - entry))
    return prices[:_cfg.MAX_TARGETS]


def risk_reward_ratio(entry: float, stop: float, targets: List[float]) -> float:
    risk = abs(stop - entry)
    if risk <= 0 or not targets:
        return 0.0
    return abs(targets[0] - entry) / risk


@dataclass
class TradeSetup:
    entry: float
    stop_loss: float
    targets: List[float]
    risk_reward_ratio: float
    volatility: float
    stop_type: str


@dataclass
class SetupResult:
    outcome: SetupOutcome
    reason: str
    setup: Optional[TradeSetup] = None
    queued: Optional[QueuedSetup] = None
    rejected_log: List[dict] = field(default_factory=list)


class TradeSetupCalculator:
    """
    Parameters
    ----------
    queue : SetupQueue, optional
        Receives setups whose entry price has not been reached. Without a
        queue the QUEUED result is still returned, just not stored.
    clock : optional
        Anything with now_ms(). Defaults to SystemClock.
    """

    def __init__(self, queue=None, clock=None):
        self.queue = queue
        self.clock = clock or SystemClock()

    def calculate(
        self,
        symbol: str,
        pattern: Pattern,
        analysis: SMCAnalysis,
        exec_df: pd.DataFrame,
        current_price: Optional[float] = None,
        volatility: Optional[float] = None,
    ) -> SetupResult:
        """
        exec_df        execution-timeframe candles (volatility + current price)
        current_price  defaults to the last execution close
        volatility     override for the measured volatility
        """
        now_ms = self.clock.now_ms()
        entry = pattern.price
        if current_price is None:
            current_price = float(exec_df['close'].iloc[-1])
        if volatility is None:
            volatility = calculate_volatility(exec_df)
        rejected_log: List[dict] = []

        # ── Entry gate ──────────────────────────────────────────────────────
        threshold = entry_threshold(volatility)
        diff = abs(current_price - entry) / entry
        if diff > threshold:
            queued = QueuedSetup(
                symbol=symbol,
                pattern=pattern,
                analysis=analysis,
                entry_price=entry,
                queue_time=now_ms,
                expiry_time=int(now_ms + _cfg.QUEUE_EXPIRY_HOURS * MS_PER_HOUR),
                price_threshold=price_band(entry, threshold),
            )
            if self.queue is not None:
                self.queue.queue_setup(queued)
            logger.info(
                f"⏳ {symbol}: {pattern.pattern_type} {pattern.direction} queued — "
                f"price {current_price:.8f} is {diff:.2%} from entry {entry:.8f} "
                f"(threshold {threshold:.2%})"
            )
            return SetupResult(SetupOutcome.QUEUED, "price_not_reached", queued=queued)

        # ── Stop ────────────────────────────────────────────────────────────
        stop, stop_type = find_stop_loss(
            pattern.direction, entry, list(analysis.market_structure.swings), now_ms, volatility
        )
        stop_dist = abs(entry - stop) / entry
        min_stop = max(volatility * _cfg.MIN_STOP_VOL_MULT, _cfg.MIN_STOP_PCT)
        if stop_dist < min_stop:
            rejected_log.append({"gate": "stop", "stop": stop, "stop_type": stop_type,
                                 "distance": stop_dist, "required": min_stop})
            logger.debug(
                f"⚠️ {symbol}: stop too close to entry "
                f"({stop_dist:.2%} vs required {min_stop:.2%}, {stop_type})"
            )
            return SetupResult(SetupOutcome.REJECTED, "stop_too_tight", rejected_log=rejected_log)

        # ── Targets ─────────────────────────────────────────────────────────
        targets = select_targets(pattern.direction, entry, analysis.key_levels)
        if not targets:
            rejected_log.append({"gate": "targets", "levels": len(analysis.key_levels)})
            logger.debug(f"⚠️ {symbol}: no favorable key level to target")
            return SetupResult(SetupOutcome.REJECTED, "no_targets", rejected_log=rejected_log)

        # ── Reward:risk ────────────────────────────────────────────────────
        rr = risk_reward_ratio(entry, stop, targets)
        if rr < _cfg.MIN_RR:
            rejected_log.append({"gate": "rr", "rr": round(rr, 3), "min_rr": _cfg.MIN_RR,
                                 "target": targets[0], "stop": stop})
            logger.debug(f"⚠️ {symbol}: R:R {rr:.2f} below minimum {_cfg.MIN_RR}")
            return SetupResult(SetupOutcome.REJECTED, "rr_too_low", rejected_log=rejected_log)

        setup = TradeSetup(
            entry=entry,
            stop_loss=float(stop),
            targets=[float(t) for t in targets],
            risk_reward_ratio=float(rr),
            volatility=volatility,
            stop_type=stop_type,
        )
        return SetupResult(SetupOutcome.ACCEPTED, "accepted", setup=setup)
