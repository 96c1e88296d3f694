"""
SMC Strategy — Main Coordinator

One analyze() call = one cycle for one symbol.

Decision flow:
  0. Validate candles (InvalidInputError) and required timeframes
     (InsufficientDataError)
  1. Queued setups: purge expired, trigger those whose band contains the
     current price. Triggered setups go straight to the setup calculator
     with their stored analysis snapshot; the first that yields a plan
     wins. If anything triggered, fresh detection is skipped this cycle.
  2. Market structure on the structure timeframe (trend + key levels),
     swings from the swing timeframe
  3. Pattern scan: every SCAN_PATTERN_TYPES recognizer on every
     SCAN_TIMEFRAMES window
  4. Recency filter (24h) and optional confidence floor
  5. Prioritise → main pattern → AlignmentValidator
  6. TradeSetupCalculator → ACCEPTED / QUEUED / REJECTED
  7. ConfidenceScorer (A+) → TradePlan

The default outcome is no plan. A plan requires every gate to pass.
"""
import logging
from typing import Dict, List, Optional

import pandas as pd

from ...execution.setup_queue import SetupQueue
from . import strategy_config as _cfg   # module-ref import so apply_levers() patches propagate
from .candles import timeframe_minutes, to_frame
from .clock import SystemClock
from .confidence import score_confidence
from .errors import InsufficientDataError, InvalidInputError
from .market_structure import MarketStructureAnalyzer
from .models import (
    AnalysisResult,
    Pattern,
    QueuedSetup,
    SetupOutcome,
    SMCAnalysis,
    TradePlan,
    trade_direction,
)
from .pattern_detector import PatternDetector
from .prioritizer import AlignmentValidator, filter_recent, prioritize_patterns
from .swing_detector import SwingDetector
from .targeting import TradeSetup, TradeSetupCalculator

logger = logging.getLogger(__name__)


def _unique(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for x in items:
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out


class SMCStrategy:
    """
    Parameters
    ----------
    queue : SetupQueue, optional
        Deferred setups. A private SetupQueue on the same clock by default.
    clock : optional
        Anything with now_ms(). Defaults to SystemClock.
    """

    def __init__(self, queue=None, clock=None):
        self.clock = clock or SystemClock()
        self.queue = queue if queue is not None else SetupQueue(clock=self.clock)
        self.structure_analyzer = MarketStructureAnalyzer(swing_detector=SwingDetector())
        self.pattern_detector = PatternDetector(swing_detector=SwingDetector())
        self.validator = AlignmentValidator()
        self.calculator = TradeSetupCalculator(queue=self.queue, clock=self.clock)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def analyze(self, symbol: str, candles_by_timeframe: Dict[str, object],
                current_price: Optional[float] = None) -> Optional[TradePlan]:
        """TradePlan, or None when there is no actionable setup this cycle."""
        return self.analyze_detailed(symbol, candles_by_timeframe, current_price).plan

    def get_queued_setups(self, symbol: str) -> List[QueuedSetup]:
        return self.queue.get(symbol)

    def clear_queue(self, symbol: str) -> None:
        self.queue.clear(symbol)

    def analyze_detailed(
        self,
        symbol: str,
        candles_by_timeframe: Dict[str, object],
        current_price: Optional[float] = None,
    ) -> AnalysisResult:
        """
        Full cycle with outcome + reason.

        candles_by_timeframe  {'5m': DataFrame | list, '15m': ..., '1h': ..., '4h': ...}
        current_price         defaults to the last execution-timeframe close
        """
        frames = self._frames(symbol, candles_by_timeframe)
        exec_df = frames[_cfg.EXECUTION_TIMEFRAME]
        if current_price is None:
            current_price = float(exec_df['close'].iloc[-1])

        # ── 1. Queued setups first ──────────────────────────────────────────
        triggered = self.queue.check(symbol, current_price)
        if triggered:
            return self._process_triggered(symbol, triggered, exec_df, current_price)

        # ── 2. Market structure ────────────────────────────────────────────
        structure_tf = _cfg.STRUCTURE_TIMEFRAME
        swing_tf = _cfg.SWING_TIMEFRAME if _cfg.SWING_TIMEFRAME in frames else structure_tf
        structure = self.structure_analyzer.analyze(
            frames[structure_tf], frames[swing_tf], htf_timeframe=structure_tf
        )

        # ── 3. Pattern scan ────────────────────────────────────────────────
        scan_tfs = [tf for tf in _cfg.scan_timeframes() if tf in frames]
        if not scan_tfs:
            scan_tfs = [_cfg.EXECUTION_TIMEFRAME]
        patterns: List[Pattern] = []
        for tf in scan_tfs:
            patterns.extend(self.pattern_detector.detect_all(
                frames[tf], tf,
                pattern_types=_cfg.scan_pattern_types(),
                key_levels=list(structure.key_levels),
                htf_trend=structure.trend,
            ))

        # ── 4. Recency / confidence floor ──────────────────────────────────
        now_ms = self.clock.now_ms()
        recent = filter_recent(patterns, now_ms)
        if _cfg.MIN_PATTERN_CONFIDENCE > 0:
            recent = [p for p in recent if p.confidence > _cfg.MIN_PATTERN_CONFIDENCE]
        if not recent:
            logger.info(f"{symbol}: no recent patterns ({len(patterns)} found, all stale or weak)")
            return AnalysisResult(symbol, SetupOutcome.NO_SETUP, "no_recent_patterns",
                                  failed_filters=["recency"])

        liq_tf = _cfg.LIQUIDITY_TIMEFRAME if _cfg.LIQUIDITY_TIMEFRAME in frames else _cfg.EXECUTION_TIMEFRAME
        analysis = SMCAnalysis(
            patterns=recent,
            market_structure=structure,
            liquidity_levels=self.pattern_detector.find_liquidity_levels(frames[liq_tf]),
            key_levels=list(structure.key_levels),
            order_blocks=[p for p in recent if p.pattern_type == "OrderBlock" and p.timeframe == liq_tf],
        )

        # ── 5. Prioritise + align ──────────────────────────────────────────
        ranked = prioritize_patterns(recent)
        main = ranked[0]
        ok, reason = self.validator.validate(main, structure, now_ms)
        if not ok:
            logger.debug(f"⚠️ {symbol}: {main} rejected — {reason}")
            return AnalysisResult(symbol, SetupOutcome.REJECTED, reason, main_pattern=main,
                                  failed_filters=[reason.split(":")[0]], analysis=analysis)

        # ── 6. Setup ───────────────────────────────────────────────────────
        return self._evaluate(symbol, main, ranked, analysis, exec_df, current_price, from_queue=False)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _frames(self, symbol: str, candles_by_timeframe: Dict[str, object]) -> Dict[str, pd.DataFrame]:
        if not isinstance(candles_by_timeframe, dict):
            raise InvalidInputError(f"{symbol}: candles_by_timeframe must be a dict")
        frames = {}
        for tf, candles in candles_by_timeframe.items():
            try:
                timeframe_minutes(tf)
                frames[tf] = to_frame(candles, label=f"{symbol} {tf}")
            except InvalidInputError as e:
                logger.error(f"❌ {symbol}: invalid input — {e}")
                raise

        for tf in (_cfg.EXECUTION_TIMEFRAME, _cfg.STRUCTURE_TIMEFRAME):
            if tf not in frames or frames[tf].empty:
                raise InsufficientDataError(f"{symbol}: required timeframe '{tf}' missing")
        n = len(frames[_cfg.EXECUTION_TIMEFRAME])
        if n < _cfg.MIN_ANALYSIS_CANDLES:
            raise InsufficientDataError(
                f"{symbol}: {n} {_cfg.EXECUTION_TIMEFRAME} candles, "
                f"need {_cfg.MIN_ANALYSIS_CANDLES}"
            )
        return frames

    def _process_triggered(self, symbol, triggered, exec_df, current_price) -> AnalysisResult:
        reasons = []
        for setup in triggered:
            ranked = prioritize_patterns(setup.analysis.patterns) or [setup.pattern]
            result = self._evaluate(symbol, setup.pattern, ranked, setup.analysis,
                                    exec_df, current_price, from_queue=True)
            if result.plan is not None:
                return result
            reasons.append(result.reason)
        logger.info(f"{symbol}: {len(triggered)} triggered setup(s) produced no plan ({reasons})")
        return AnalysisResult(symbol, SetupOutcome.REJECTED, f"triggered_setups_rejected: {', '.join(reasons)}",
                              failed_filters=reasons, from_queue=True)

    def _evaluate(self, symbol, main, ranked, analysis, exec_df, current_price, from_queue) -> AnalysisResult:
        result = self.calculator.calculate(symbol, main, analysis, exec_df, current_price)
        if result.outcome != SetupOutcome.ACCEPTED:
            failed = [] if result.outcome == SetupOutcome.QUEUED else [result.reason]
            return AnalysisResult(symbol, result.outcome, result.reason, main_pattern=main,
                                  failed_filters=failed, from_queue=from_queue, analysis=analysis)

        plan = self._build_plan(symbol, main, ranked, analysis, result.setup)
        logger.info(f"📈 {symbol}: {plan}{' (from queue)' if from_queue else ''}")
        return AnalysisResult(symbol, SetupOutcome.ACCEPTED, "accepted", plan=plan,
                              main_pattern=main, from_queue=from_queue, analysis=analysis)

    def _build_plan(self, symbol: str, main: Pattern, ranked: List[Pattern],
                    analysis: SMCAnalysis, setup: TradeSetup) -> TradePlan:
        cs = score_confidence(main, ranked, analysis)
        types = _unique([main.pattern_type] + [p.pattern_type for p in ranked])

        entry_conditions = [
            f"{main.pattern_type} pattern confirmed on {main.timeframe}",
            f"Market structure: {analysis.market_structure.trend.value}",
        ]
        if len(types) > 1:
            entry_conditions.append(f"Pattern confluence: {', '.join(types)}")

        exit_conditions = [f"Stop loss at {setup.stop_loss}"]
        exit_conditions += [f"Target {i + 1} at {t}" for i, t in enumerate(setup.targets)]
        exit_conditions += ["Pattern invalidation", "Market structure change"]

        return TradePlan(
            symbol=symbol,
            direction=trade_direction(main.direction),
            entry_price=setup.entry,
            stop_loss=setup.stop_loss,
            targets=list(setup.targets),
            confidence_score=cs.score,
            timeframe=main.timeframe,
            risk_reward_ratio=setup.risk_reward_ratio,
            entry_conditions=entry_conditions,
            exit_conditions=exit_conditions,
            trading_patterns=types,
            is_a_plus_setup=cs.is_a_plus,
            a_plus_reasons=cs.reasons,
            created_at=self.clock.now_ms(),
        )


if __name__ == "__main__":
    # Demo: fake multi-TF data and one analysis cycle
    import numpy as np

    from .clock import FixedClock

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    np.random.seed(42)
    clock = FixedClock()
    end_ms = clock.now_ms()

    def make_df(n, minutes, start=27000.0, drift=2.0, noise=40.0):
        closes = start + np.cumsum(np.random.randn(n) * noise + drift)
        opens = np.concatenate([[start], closes[:-1]])
        return pd.DataFrame({
            'timestamp': end_ms - (n - 1 - np.arange(n)) * minutes * 60_000,
            'open':   opens,
            'high':   np.maximum(opens, closes) + abs(np.random.randn(n) * noise / 2),
            'low':    np.minimum(opens, closes) - abs(np.random.randn(n) * noise / 2),
            'close':  closes,
            'volume': abs(np.random.randn(n) * 100) + 50,
        })

    strategy = SMCStrategy(clock=clock)
    result = strategy.analyze_detailed("BTCUSDT", {
        "5m":  make_df(100, 5),
        "15m": make_df(100, 15),
        "1h":  make_df(100, 60),
        "4h":  make_df(50, 240),
    })
    print(result)
    for q in strategy.get_queued_setups("BTCUSDT"):
        print("queued:", q.pattern, q.price_threshold)
