"""
SMC data model.

Everything produced by the analysis layer (swings, levels, patterns,
market structure) is an immutable snapshot recomputed every cycle. The only
state that outlives a cycle is the QueuedSetup, owned by SetupQueue.

Timestamps are epoch milliseconds.
"""
import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Tuple

from .errors import InvalidInputError


BULLISH = "bullish"
BEARISH = "bearish"

LONG = "long"
SHORT = "short"

PATTERN_TYPES = (
    "OrderBlock",
    "FairValueGap",
    "BreakerBlock",
    "ChoCH",
    "BOS",
    "LiquidityGrab",
    "Imbalance",
)


class Trend(Enum):
    UPTREND  = "uptrend"
    DOWNTREND = "downtrend"
    RANGING  = "ranging"


class SetupOutcome(Enum):
    ACCEPTED = "ACCEPTED"    # plan produced
    QUEUED   = "QUEUED"      # entry not reached yet, deferred to SetupQueue
    REJECTED = "REJECTED"    # a gate failed, see reason
    NO_SETUP = "NO_SETUP"    # nothing to evaluate this cycle


def trade_direction(pattern_direction: str) -> str:
    return LONG if pattern_direction == BULLISH else SHORT


# ── Structural elements ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Candle:
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Swing:
    price: float
    swing_type: str          # 'HH' / 'LH' (swing highs), 'LL' / 'HL' (swing lows)
    timestamp: int
    strength: float          # 0.0–1.0

    @property
    def is_high(self) -> bool:
        return self.swing_type in ("HH", "LH")


@dataclass(frozen=True)
class KeyLevel:
    price: float
    level_type: str          # 'support', 'resistance' or 'breaker'
    strength: float          # cluster count / largest cluster (+ breaker bonus)
    timeframe: str
    touches: int = 1

    def __repr__(self):
        return (f"KeyLevel({self.price:.5f} [{self.level_type}] "
                f"strength={self.strength:.2f} touches={self.touches} tf={self.timeframe})")


@dataclass(frozen=True)
class MarketStructure:
    trend: Trend
    swings: Tuple[Swing, ...] = ()
    key_levels: Tuple[KeyLevel, ...] = ()


@dataclass(frozen=True)
class PriceAction:
    clean_break: bool = False
    immediate_retrace: bool = False
    strong_reversal: bool = False


@dataclass(frozen=True)
class PatternValidation:
    volume_confirmation: bool = False
    market_structure_alignment: bool = False
    key_level_proximity: bool = False
    multi_timeframe_alignment: bool = False


@dataclass(frozen=True)
class Pattern:
    pattern_type: str        # one of PATTERN_TYPES
    direction: str           # 'bullish' or 'bearish'
    price: float
    confidence: float
    timeframe: str
    timestamp: int           # candle / swing that completes the pattern
    volume: float = 0.0
    average_volume: float = 0.0
    price_action: PriceAction = field(default_factory=PriceAction)
    validation: PatternValidation = field(default_factory=PatternValidation)

    def __str__(self):
        return (f"{self.pattern_type} {self.direction} @ {self.price:.5f} "
                f"[{self.timeframe}] conf={self.confidence:.2f}")


@dataclass(frozen=True)
class LiquidityLevel:
    price: float
    side: str                # 'buy' (swept lows) or 'sell' (swept highs)
    strength: float          # sweep volume / average volume
    volume: float
    psychological_level: bool = False
    stop_cluster: bool = False


@dataclass
class SMCAnalysis:
    """Snapshot of one analysis cycle, carried along with a queued setup."""
    patterns: List[Pattern]
    market_structure: MarketStructure
    liquidity_levels: List[LiquidityLevel] = field(default_factory=list)
    key_levels: List[KeyLevel] = field(default_factory=list)
    order_blocks: List[Pattern] = field(default_factory=list)


@dataclass(frozen=True)
class QueuedSetup:
    symbol: str
    pattern: Pattern
    analysis: SMCAnalysis
    entry_price: float
    queue_time: int
    expiry_time: int
    price_threshold: Tuple[float, float]    # (min, max) trigger band

    def contains(self, price: float) -> bool:
        lo, hi = self.price_threshold
        return lo <= price <= hi

    def is_expired(self, now_ms: int) -> bool:
        return self.expiry_time <= now_ms


# ── Trade plan ─────────────────────────────────────────────────────────────

# camelCase aliases accepted from external producers of plans
_PLAN_ALIASES = {
    "entryPrice": "entry_price",
    "stopLoss": "stop_loss",
    "confidenceScore": "confidence_score",
    "riskRewardRatio": "risk_reward_ratio",
    "entryConditions": "entry_conditions",
    "exitConditions": "exit_conditions",
    "tradingPatterns": "trading_patterns",
    "isAPlusSetup": "is_a_plus_setup",
    "aPlusReasons": "a_plus_reasons",
    "createdAt": "created_at",
}

_PLAN_REQUIRED = ("direction", "entry_price", "stop_loss", "targets",
                  "confidence_score", "timeframe", "risk_reward_ratio")


@dataclass
class TradePlan:
    symbol: str
    direction: str                   # 'long' or 'short'
    entry_price: float
    stop_loss: float
    targets: List[float]             # 1–3, nearest first
    confidence_score: float
    timeframe: str
    risk_reward_ratio: float
    entry_conditions: List[str] = field(default_factory=list)
    exit_conditions: List[str] = field(default_factory=list)
    trading_patterns: List[str] = field(default_factory=list)
    is_a_plus_setup: bool = False
    a_plus_reasons: List[str] = field(default_factory=list)
    created_at: int = 0

    def __str__(self):
        grade = "A+" if self.is_a_plus_setup else "  "
        tps = ", ".join(f"{t:.5f}" for t in self.targets)
        return (
            f"[{grade}] {self.symbol} {self.direction.upper()} "
            f"entry={self.entry_price:.5f} sl={self.stop_loss:.5f} "
            f"tp=[{tps}] rr={self.risk_reward_ratio:.2f} "
            f"conf={self.confidence_score:.0%} ({self.timeframe})"
        )

    # ------------------------------------------------------------------ #
    # Trade lifecycle helpers
    # ------------------------------------------------------------------ #

    def is_stop_loss_hit(self, price: float) -> bool:
        if self.direction == LONG:
            return price <= self.stop_loss
        return price >= self.stop_loss

    def target_hit_index(self, price: float) -> int:
        """Index of the furthest target reached at `price`, or -1."""
        hit = -1
        for i, t in enumerate(self.targets):
            if (self.direction == LONG and price >= t) or \
               (self.direction == SHORT and price <= t):
                hit = i
        return hit

    def profit_loss(self, exit_price: float, quantity: float) -> float:
        if self.direction == LONG:
            return (exit_price - self.entry_price) * quantity
        return (self.entry_price - exit_price) * quantity

    # ------------------------------------------------------------------ #
    # Serialisation
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict, symbol: Optional[str] = None) -> "TradePlan":
        """
        Build a plan from an untrusted dict (e.g. an externally generated
        plan), validating shape and price geometry.

        Accepts snake_case or camelCase keys. Raises InvalidInputError.
        """
        if not isinstance(data, dict):
            raise InvalidInputError(f"trade plan must be a dict, got {type(data).__name__}")
        d = {_PLAN_ALIASES.get(k, k): v for k, v in data.items()}
        if symbol is not None:
            d["symbol"] = symbol
        missing = [k for k in ("symbol",) + _PLAN_REQUIRED if k not in d]
        if missing:
            raise InvalidInputError(f"trade plan missing fields: {missing}")

        direction = str(d["direction"]).lower()
        if direction not in (LONG, SHORT):
            raise InvalidInputError(f"trade plan direction must be long/short, got {d['direction']!r}")

        def _num(name, value):
            if isinstance(value, bool):
                raise InvalidInputError(f"trade plan {name} must be numeric, got {value!r}")
            try:
                f = float(value)
            except (TypeError, ValueError):
                raise InvalidInputError(f"trade plan {name} must be numeric, got {value!r}")
            if not math.isfinite(f):
                raise InvalidInputError(f"trade plan {name} must be finite, got {value!r}")
            return f

        entry = _num("entry_price", d["entry_price"])
        stop = _num("stop_loss", d["stop_loss"])
        if entry <= 0 or stop <= 0:
            raise InvalidInputError("trade plan prices must be positive")

        raw_targets = d["targets"]
        if not isinstance(raw_targets, (list, tuple)) or not 1 <= len(raw_targets) <= 3:
            raise InvalidInputError("trade plan needs 1-3 targets")
        targets = [_num("target", t) for t in raw_targets]

        if direction == LONG:
            if stop >= entry:
                raise InvalidInputError(f"long plan stop {stop} must be below entry {entry}")
            if any(t <= entry for t in targets):
                raise InvalidInputError("long plan targets must be above entry")
        else:
            if stop <= entry:
                raise InvalidInputError(f"short plan stop {stop} must be above entry {entry}")
            if any(t >= entry for t in targets):
                raise InvalidInputError("short plan targets must be below entry")

        confidence = _num("confidence_score", d["confidence_score"])
        if not 0.0 <= confidence <= 1.0:
            raise InvalidInputError(f"trade plan confidence_score must be in [0, 1], got {confidence}")

        def _strings(name):
            value = d.get(name, [])
            if not isinstance(value, (list, tuple)) or not all(isinstance(s, str) for s in value):
                raise InvalidInputError(f"trade plan {name} must be a list of strings")
            return list(value)

        return cls(
            symbol=str(d["symbol"]),
            direction=direction,
            entry_price=entry,
            stop_loss=stop,
            targets=targets,
            confidence_score=confidence,
            timeframe=str(d["timeframe"]),
            risk_reward_ratio=_num("risk_reward_ratio", d["risk_reward_ratio"]),
            entry_conditions=_strings("entry_conditions"),
            exit_conditions=_strings("exit_conditions"),
            trading_patterns=_strings("trading_patterns"),
            is_a_plus_setup=bool(d.get("is_a_plus_setup", False)),
            a_plus_reasons=_strings("a_plus_reasons"),
            created_at=int(d.get("created_at", 0) or 0),
        )


@dataclass
class AnalysisResult:
    """Full outcome of one SMCStrategy cycle for a symbol."""
    symbol: str
    outcome: SetupOutcome
    reason: str = ""
    plan: Optional[TradePlan] = None
    main_pattern: Optional[Pattern] = None
    failed_filters: List[str] = field(default_factory=list)
    from_queue: bool = False
    analysis: Optional[SMCAnalysis] = None

    def __str__(self):
        if self.plan is not None:
            src = " (queued)" if self.from_queue else ""
            return f"{self.plan}{src}"
        return f"{self.symbol}: {self.outcome.value} — {self.reason}"
