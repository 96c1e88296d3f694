"""
scanner.py
==========
Per-tick driver: fetch candles for each symbol through the KlineCache, run
SMCStrategy, collect plans.

  • symbols with an open trade (has_active_trade(symbol) true) are skipped
  • one symbol failing (fetch error, invalid candles, too little history)
    is logged at ERROR and yields None; the other symbols still run

The scanner does no scheduling and no order placement. The caller decides
what to do with the returned plans.

Usage:
    scanner = MarketScanner(fetch_candles=client.fetch_candles,
                            has_active_trade=journal.has_open_trade)
    plans = scanner.scan(["BTCUSDT", "ETHUSDT"])
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Optional

import pandas as pd

from ..strategy.smc import strategy_config as _cfg
from ..strategy.smc.models import TradePlan
from ..strategy.smc.smc_strategy import SMCStrategy
from .kline_cache import FetchFn, KlineCache

logger = logging.getLogger(__name__)


class MarketScanner:

    def __init__(
        self,
        fetch_candles: FetchFn,
        strategy: Optional[SMCStrategy] = None,
        cache: Optional[KlineCache] = None,
        has_active_trade: Optional[Callable[[str], bool]] = None,
        fetch_counts: Optional[Dict[str, int]] = None,
    ) -> None:
        self._fetch = fetch_candles
        self.strategy = strategy or SMCStrategy()
        self.cache = cache or KlineCache(clock=self.strategy.clock)
        self._has_active_trade = has_active_trade or (lambda symbol: False)
        self._fetch_counts = fetch_counts

    @property
    def fetch_counts(self) -> Dict[str, int]:
        return self._fetch_counts if self._fetch_counts is not None else dict(_cfg.FETCH_COUNTS)

    def fetch_all(self, symbol: str, force_refresh: bool = False) -> Dict[str, pd.DataFrame]:
        return {
            tf: self.cache.get_or_fetch(symbol, tf, count, self._fetch, force_refresh=force_refresh)
            for tf, count in self.fetch_counts.items()
        }

    def scan_symbol(self, symbol: str) -> Optional[TradePlan]:
        """Raises on fetch / input errors; scan() is the isolating wrapper."""
        logger.debug(f"🔍 {symbol}: scanning")
        candles = self.fetch_all(symbol)
        return self.strategy.analyze(symbol, candles)

    def scan(self, symbols: Iterable[str]) -> Dict[str, Optional[TradePlan]]:
        results: Dict[str, Optional[TradePlan]] = {}
        for symbol in symbols:
            if self._has_active_trade(symbol):
                logger.info(f"⏭️ {symbol}: active trade open, skipping scan")
                continue
            try:
                results[symbol] = self.scan_symbol(symbol)
            except Exception as e:
                logger.error(f"❌ {symbol}: scan failed — {type(e).__name__}: {e}")
                results[symbol] = None
        found = sum(1 for p in results.values() if p is not None)
        logger.info(f"scan complete: {len(results)} symbol(s), {found} plan(s)")
        return results
