"""
strategy_config.py — Single Source of Truth for All SMC Thresholds
==================================================================

THIS IS THE ONLY PLACE THESE CONSTANTS ARE DEFINED.

Every recognizer, the setup calculator, the confidence scorer, the queue
and the cache import this module BY REFERENCE:

    from . import strategy_config as _cfg
    ...
    if vol_ratio > _cfg.VOLUME_CONFIRMATION_MULT:

and read the constant at call time. Never copy a value into a default
argument, or runtime overrides stop reaching it.

LEVER SYSTEM
============
Every threshold is a named lever. Three ways to change one without editing
source:

    apply_levers({"MIN_RR": 2.0, "CONFLUENCE_PCT": 0.005})
    load_profile("legacy_strict")           # profiles/legacy_strict.json
    load_env_levers()                       # SMC_MIN_RR=2.0 in env / .env

get_model_tags() fingerprints whatever is active so a plan or a replay
result can always be traced back to the config that produced it.
"""
import json as _json
import os as _os
import pathlib as _pathlib
import sys as _sys

from dotenv import load_dotenv as _load_dotenv

from .errors import InvalidInputError

# ── Swing detection ────────────────────────────────────────────────────────
# Candles each side a swing point must dominate (>= / <=, so plateaus can
# register adjacent swings).
SWING_LOOKBACK: int = 3

# Swing strength: volume of candles touching the swing price within this
# band, relative to average volume, weighted 0.6; touches (capped at 5)
# weighted 0.4.
SWING_STRENGTH_PCT: float = 0.005
SWING_STRENGTH_VOLUME_WEIGHT: float = 0.6
SWING_STRENGTH_TOUCH_WEIGHT: float = 0.4
SWING_STRENGTH_MAX_TOUCHES: int = 5

# ── Key levels ─────────────────────────────────────────────────────────────
# Greedy single-pass clustering tolerance, relative to the cluster anchor.
LEVEL_CLUSTER_PCT: float = 0.002

# Added to a level's strength when it was broken from the other side
# (support and resistance clusters overlap). Capped at 1.0.
BREAKER_STRENGTH_BONUS: float = 0.2

# ── Market structure ───────────────────────────────────────────────────────
# Higher-timeframe trend = last TREND_LEG highs and lows, both strictly
# monotonic, inside the last TREND_WINDOW candles.
TREND_WINDOW: int = 20
TREND_LEG: int = 3

# ── Pattern recognizers ────────────────────────────────────────────────────
PATTERN_BASE_CONFIDENCE: dict = {
    "OrderBlock": 0.80,
    "FairValueGap": 0.70,
    "BreakerBlock": 0.80,
    "ChoCH": 0.90,
    "BOS": 0.85,
    "Imbalance": 0.70,
}

# Volume multiple over the window average that counts as confirmation.
# Shared by the LiquidityGrab / liquidity-level sweep gate.
VOLUME_CONFIRMATION_MULT: float = 1.5
LIQUIDITY_VOLUME_MULT: float = 1.5

# Price-action tags on the last candles of the window.
CLEAN_BREAK_BODY_MULT: float = 1.2
STRONG_REVERSAL_RANGE_MULT: float = 1.5

# Key-level proximity tag / LiquidityGrab validation.
KEY_LEVEL_MIN_STRENGTH: float = 0.7
KEY_LEVEL_PROXIMITY_PCT: float = 0.003

# Imbalance: the displacement close must clear the prior high/low by this.
IMBALANCE_EXTENSION_PCT: float = 0.005

# Stop clusters: >= MIN_WICKS of the last LOOKBACK candles with a low/high
# within STOP_CLUSTER_PCT of the level.
STOP_CLUSTER_PCT: float = 0.001
STOP_CLUSTER_LOOKBACK: int = 20
STOP_CLUSTER_MIN_WICKS: int = 3

# Round-number proximity for liquidity levels.
PSYCHOLOGICAL_LEVEL_PCT: float = 0.001

# ── Prioritisation / validation ────────────────────────────────────────────
# Higher = stronger signal. Ties fall through to timeframe, confidence, age.
PATTERN_PRIORITY: dict = {
    "BOS": 5,
    "ChoCH": 4,
    "LiquidityGrab": 3,
    "OrderBlock": 2,
    "BreakerBlock": 2,
    "FairValueGap": 1,
    "Imbalance": 1,
}

# Patterns at or below this confidence never reach prioritisation.
# 0.0 = off; the legacy_strict profile uses 0.7.
MIN_PATTERN_CONFIDENCE: float = 0.0

# Patterns and swings older than this (relative to the clock) are ignored.
PATTERN_MAX_AGE_HOURS: float = 24.0
SWING_MAX_AGE_HOURS: float = 24.0

# OrderBlock needs a matching key level this close (or volume confirmation).
ORDER_BLOCK_LEVEL_PCT: float = 0.005

# FairValueGap is rejected when ANY key level sits this close (messy price).
FVG_MESSY_LEVEL_PCT: float = 0.005

# ── Trade setup ────────────────────────────────────────────────────────────
# Entry band: |current - entry| / entry must be within the threshold, else
# the setup is queued. Threshold widens to HIGH_VOL_THRESHOLD_MULT x vol in
# high-volatility regimes.
BASE_ENTRY_THRESHOLD: float = 0.005
HIGH_VOLATILITY: float = 0.015
HIGH_VOL_THRESHOLD_MULT: float = 2.0
VOLATILITY_WINDOW: int = 20

# Queued setups expire this many hours after queueing.
QUEUE_EXPIRY_HOURS: float = 6.0

# Stop placement. Fallback stop sits FALLBACK_STOP_VOL_MULT x vol away when
# no fresh swing exists on the invalidating side. Any stop closer than
# max(MIN_STOP_VOL_MULT x vol, MIN_STOP_PCT) is rejected.
FALLBACK_STOP_VOL_MULT: float = 2.0
MIN_STOP_VOL_MULT: float = 1.2
MIN_STOP_PCT: float = 0.008

# Targets: favorable-side key levels with at least this strength.
TARGET_MIN_STRENGTH: float = 0.5
MAX_TARGETS: int = 3

# Minimum reward:risk to the first target.
MIN_RR: float = 1.5

# ── Confidence scoring ─────────────────────────────────────────────────────
# Same-direction patterns within CONFLUENCE_PCT count as confluence.
CONFLUENCE_PCT: float = 0.003
# Matching-direction liquidity level (with a stop cluster) within this.
LIQUIDITY_CONFLUENCE_PCT: float = 0.005
A_PLUS_MIN_CRITERIA: int = 5
A_PLUS_CONFIDENCE_BOOST: float = 0.2

# ── Setup queue ────────────────────────────────────────────────────────────
MAX_QUEUED_SETUPS_PER_SYMBOL: int = 10
QUEUE_DUPLICATE_PCT: float = 0.003

# ── Timeframes ─────────────────────────────────────────────────────────────
# Execution frame: current price, volatility, minimum-length check.
EXECUTION_TIMEFRAME: str = "5m"
# Trend + key levels.
STRUCTURE_TIMEFRAME: str = "4h"
# Secondary swings (stop placement, BOS/ChoCH freshness).
SWING_TIMEFRAME: str = "1h"
# Liquidity-level discovery.
LIQUIDITY_TIMEFRAME: str = "15m"
# Comma-separated so they can be overridden from the environment.
SCAN_TIMEFRAMES: str = "15m,5m"
SCAN_PATTERN_TYPES: str = "BOS,ChoCH,LiquidityGrab,OrderBlock,FairValueGap"

MIN_ANALYSIS_CANDLES: int = 20

# ── Kline fetching / cache ─────────────────────────────────────────────────
FETCH_COUNTS: dict = {"5m": 100, "15m": 100, "1h": 100, "4h": 50}
CACHE_TTL_SECONDS: dict = {"5m": 240, "15m": 720, "1h": 2700, "4h": 10800}
DEFAULT_CACHE_TTL_SECONDS: int = 300


def scan_timeframes() -> list:
    return [tf.strip() for tf in SCAN_TIMEFRAMES.split(",") if tf.strip()]


def scan_pattern_types() -> list:
    return [t.strip() for t in SCAN_PATTERN_TYPES.split(",") if t.strip()]


# ── Lever system ───────────────────────────────────────────────────────────
def _lever_names() -> list:
    m = _sys.modules[__name__]
    return [k for k in vars(m) if k.isupper() and not k.startswith("_")]


def _snapshot() -> dict:
    m = _sys.modules[__name__]
    out = {}
    for k in _lever_names():
        v = getattr(m, k)
        out[k] = dict(v) if isinstance(v, dict) else v
    return out


def apply_levers(overrides: dict) -> dict:
    """
    Patch module-level constants at runtime.

    Every consumer imports this module by reference, so patched values are
    seen immediately.

    Type coercion is automatic based on the existing type of each constant,
    so string values from env vars work. Dict levers accept a dict or a JSON
    object string and REPLACE the whole mapping.

    Returns the dict of applied overrides (useful for logging).
    Raises InvalidInputError (a ValueError) for unknown or non-overridable
    keys and for values that cannot be coerced.

    Example:
        apply_levers({"MIN_RR": 2.0, "SCAN_TIMEFRAMES": "1h,15m"})
    """
    m = _sys.modules[__name__]
    applied = {}
    for key, raw_val in overrides.items():
        if key not in _DEFAULTS:
            raise InvalidInputError(f"apply_levers: unknown lever '{key}'")
        existing = getattr(m, key)
        try:
            if isinstance(existing, float):
                val = float(raw_val)
            elif isinstance(existing, int):
                val = int(raw_val)
            elif isinstance(existing, str):
                val = str(raw_val)
            elif isinstance(existing, dict):
                val = _json.loads(raw_val) if isinstance(raw_val, str) else dict(raw_val)
                if not isinstance(val, dict):
                    raise TypeError("expected a JSON object")
            else:
                val = raw_val
        except (TypeError, ValueError) as e:
            raise InvalidInputError(
                f"apply_levers: cannot coerce {key}={raw_val!r} "
                f"to {type(existing).__name__}: {e}"
            ) from e
        setattr(m, key, val)
        applied[key] = val
    return applied


def reset_levers() -> None:
    """Restore every lever to its import-time default."""
    m = _sys.modules[__name__]
    for k, v in _DEFAULTS.items():
        setattr(m, k, dict(v) if isinstance(v, dict) else v)


def load_profile(profile_name: str, profiles_dir=None) -> dict:
    """
    Load a named lever profile from profiles/<name>.json and apply it.
    Returns the dict of applied overrides.

    Profiles live in <repo>/profiles/ unless profiles_dir is given.
    """
    if profiles_dir is None:
        # smcforge/strategy/smc/strategy_config.py → up 3 levels → repo root
        profiles_dir = _pathlib.Path(__file__).resolve().parents[3] / "profiles"
    profiles_dir = _pathlib.Path(profiles_dir)
    profile_path = profiles_dir / f"{profile_name}.json"
    if not profile_path.exists():
        available = sorted(p.stem for p in profiles_dir.glob("*.json"))
        raise FileNotFoundError(
            f"Profile '{profile_name}' not found at {profile_path}. "
            f"Available: {available}"
        )
    with open(profile_path) as f:
        overrides = _json.load(f)
    # Strip comment/metadata keys (anything starting with "_")
    overrides = {k: v for k, v in overrides.items() if not k.startswith("_")}
    return apply_levers(overrides)


def load_env_levers(prefix: str = "SMC_", env_file=None) -> dict:
    """
    Apply SMC_<LEVER>=value overrides from the environment.

    A .env file (env_file, or one found by python-dotenv from the working
    directory) is loaded first without overriding variables already set.
    Variables with the prefix that do not name a lever are ignored, since
    the prefix may be shared with deployment settings.
    """
    if env_file is not None:
        _load_dotenv(env_file, override=False)
    else:
        _load_dotenv(override=False)
    overrides = {}
    for name, value in _os.environ.items():
        if not name.startswith(prefix):
            continue
        key = name[len(prefix):]
        if key in _DEFAULTS:
            overrides[key] = value
    return apply_levers(overrides)


# ── Model tag helper ────────────────────────────────────────────────────────
def get_model_tags() -> list:
    """
    Returns a sorted list of short tags, one per lever that differs from its
    default. An empty list means the canonical configuration.

    Tags are stable short strings; join them to get a run fingerprint.
    """
    m = _sys.modules[__name__]
    tags = []
    for key, default in _DEFAULTS.items():
        current = getattr(m, key)
        if current == default:
            continue
        if isinstance(current, dict):
            changed = sorted(k for k in set(current) | set(default)
                             if current.get(k) != default.get(k))
            tags.append(f"{key.lower()}[{','.join(changed)}]")
        elif isinstance(current, float):
            tags.append(f"{key.lower()}_{current:g}")
        else:
            tags.append(f"{key.lower()}_{current}")
    return sorted(tags)


_DEFAULTS = _snapshot()
