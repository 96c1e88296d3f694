"""
kline_cache.py
==============
Per-symbol, per-timeframe TTL cache in front of the candle fetcher.

Higher timeframes change slowly, so refetching 4h candles every 5-minute
tick is wasted rate limit. Each timeframe has its own TTL
(CACHE_TTL_SECONDS, DEFAULT_CACHE_TTL_SECONDS for anything else).

When a refetch fails and an older entry exists, the stale candles are
returned (WARNING logged) instead of failing the whole scan. With nothing
cached the fetch error propagates.

Usage:
    cache = KlineCache()
    df = cache.get_or_fetch("BTCUSDT", "4h", 50, client.fetch_candles)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import pandas as pd

from ..strategy.smc import strategy_config as _cfg
from ..strategy.smc.candles import to_frame
from ..strategy.smc.clock import SystemClock

logger = logging.getLogger(__name__)

FetchFn = Callable[[str, str, int], object]


@dataclass
class _Entry:
    candles: pd.DataFrame
    fetched_at: int      # epoch ms


class KlineCache:

    def __init__(self, clock=None) -> None:
        self._clock = clock or SystemClock()
        self._entries: Dict[str, Dict[str, _Entry]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, symbol: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(symbol)
            if lock is None:
                lock = self._locks[symbol] = threading.Lock()
            return lock

    @staticmethod
    def ttl_seconds(timeframe: str) -> int:
        return int(_cfg.CACHE_TTL_SECONDS.get(timeframe, _cfg.DEFAULT_CACHE_TTL_SECONDS))

    def get_or_fetch(
        self,
        symbol: str,
        timeframe: str,
        count: int,
        fetch: FetchFn,
        force_refresh: bool = False,
    ) -> pd.DataFrame:
        """
        Cached candles when younger than the timeframe's TTL, else
        fetch(symbol, timeframe, count) normalised through to_frame().
        Returns a copy; callers may mutate it freely.
        """
        with self._lock_for(symbol):
            now = self._clock.now_ms()
            entry = self._entries.get(symbol, {}).get(timeframe)
            if entry is not None and not force_refresh and \
                    now - entry.fetched_at < self.ttl_seconds(timeframe) * 1000:
                logger.debug(f"{symbol} {timeframe}: cache hit")
                return entry.candles.copy()

            try:
                raw = fetch(symbol, timeframe, count)
                df = to_frame(raw, label=f"{symbol} {timeframe}")
            except Exception as e:
                if entry is None:
                    raise
                age_s = (now - entry.fetched_at) / 1000
                logger.warning(
                    f"⚠️ {symbol} {timeframe}: fetch failed ({e}), "
                    f"using stale cache ({age_s:.0f}s old)"
                )
                return entry.candles.copy()

            self._entries.setdefault(symbol, {})[timeframe] = _Entry(df, now)
            logger.debug(f"{symbol} {timeframe}: fetched {len(df)} candles")
            return df.copy()

    def peek(self, symbol: str, timeframe: str) -> Optional[pd.DataFrame]:
        """Cached candles regardless of age, or None."""
        with self._lock_for(symbol):
            entry = self._entries.get(symbol, {}).get(timeframe)
            return entry.candles.copy() if entry is not None else None

    def clear(self, symbol: Optional[str] = None) -> None:
        if symbol is None:
            with self._guard:
                self._entries.clear()
            logger.info("kline cache cleared")
            return
        with self._lock_for(symbol):
            self._entries.pop(symbol, None)
        logger.info(f"{symbol}: kline cache cleared")
