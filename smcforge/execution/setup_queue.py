"""
setup_queue.py
==============
Holding area for setups whose entry price has not been reached yet.

Per symbol, an insertion-ordered list of QueuedSetups:
  • max MAX_QUEUED_SETUPS_PER_SYMBOL entries; the oldest is evicted when full
  • a candidate matching an existing entry (same pattern type, direction,
    entry within QUEUE_DUPLICATE_PCT) is discarded
  • entries with expiry_time <= now are purged before every insert / check
  • check(symbol, price) removes and returns every entry whose band
    contains the price, in insertion order

Entries are never mutated: they leave the queue by trigger, expiry, or
clear(). Symbols are independent shards, each guarded by its own lock, so
callers may process different symbols from different threads.

Usage:
    from smcforge.execution.setup_queue import SetupQueue

    queue = SetupQueue()                         # SystemClock
    queue.queue_setup(setup)                     # from TradeSetupCalculator
    triggered = queue.check("BTCUSDT", 27012.5)  # each cycle, before detection
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from ..strategy.smc import strategy_config as _cfg
from ..strategy.smc.clock import SystemClock
from ..strategy.smc.models import QueuedSetup

logger = logging.getLogger(__name__)


class SetupQueue:
    """
    Parameters
    ----------
    clock : optional
        Anything with now_ms(). Defaults to SystemClock.
    max_per_symbol : int, optional
        Defaults to MAX_QUEUED_SETUPS_PER_SYMBOL.
    duplicate_pct : float, optional
        Defaults to QUEUE_DUPLICATE_PCT.
    """

    def __init__(
        self,
        clock=None,
        max_per_symbol: Optional[int] = None,
        duplicate_pct: Optional[float] = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._max = max_per_symbol
        self._dup_pct = duplicate_pct
        self._queues: Dict[str, List[QueuedSetup]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @property
    def max_per_symbol(self) -> int:
        return self._max if self._max is not None else _cfg.MAX_QUEUED_SETUPS_PER_SYMBOL

    @property
    def duplicate_pct(self) -> float:
        return self._dup_pct if self._dup_pct is not None else _cfg.QUEUE_DUPLICATE_PCT

    def _lock_for(self, symbol: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(symbol)
            if lock is None:
                lock = self._locks[symbol] = threading.Lock()
            return lock

    # ── Mutation ───────────────────────────────────────────────────────

    def _purge_locked(self, symbol: str) -> int:
        entries = self._queues.get(symbol, [])
        now = self._clock.now_ms()
        alive = [s for s in entries if not s.is_expired(now)]
        removed = len(entries) - len(alive)
        if removed:
            self._queues[symbol] = alive
            logger.info(f"🧹 {symbol}: purged {removed} expired setup(s)")
        return removed

    def _is_duplicate(self, existing: QueuedSetup, setup: QueuedSetup) -> bool:
        return (
            existing.pattern.pattern_type == setup.pattern.pattern_type
            and existing.pattern.direction == setup.pattern.direction
            and abs(existing.entry_price - setup.entry_price) / setup.entry_price < self.duplicate_pct
        )

    def queue_setup(self, setup: QueuedSetup) -> bool:
        """Insert; returns False when discarded as a duplicate."""
        symbol = setup.symbol
        with self._lock_for(symbol):
            self._purge_locked(symbol)
            entries = self._queues.setdefault(symbol, [])
            if any(self._is_duplicate(e, setup) for e in entries):
                logger.debug(
                    f"{symbol}: duplicate {setup.pattern.pattern_type} "
                    f"{setup.pattern.direction} @ {setup.entry_price} not queued"
                )
                return False
            entries.append(setup)
            while len(entries) > self.max_per_symbol:
                evicted = entries.pop(0)
                logger.debug(f"{symbol}: queue full, evicted setup @ {evicted.entry_price}")
            lo, hi = setup.price_threshold
            logger.info(
                f"📋 {symbol}: queued {setup.pattern.pattern_type} {setup.pattern.direction} "
                f"@ {setup.entry_price} band [{lo:.8f}, {hi:.8f}] ({len(entries)} queued)"
            )
            return True

    def check(self, symbol: str, current_price: float) -> List[QueuedSetup]:
        """Purge expired, then remove and return setups triggered at current_price."""
        with self._lock_for(symbol):
            self._purge_locked(symbol)
            entries = self._queues.get(symbol, [])
            triggered = [s for s in entries if s.contains(current_price)]
            if triggered:
                self._queues[symbol] = [s for s in entries if not s.contains(current_price)]
                logger.info(
                    f"✨ {symbol}: {len(triggered)} queued setup(s) triggered at {current_price}"
                )
            return triggered

    def purge_expired(self, symbol: str) -> int:
        with self._lock_for(symbol):
            return self._purge_locked(symbol)

    def clear(self, symbol: str) -> None:
        with self._lock_for(symbol):
            self._queues.pop(symbol, None)
        logger.info(f"🗑️ {symbol}: setup queue cleared")

    def clear_all(self) -> None:
        for symbol in self.symbols():
            self.clear(symbol)

    # ── Read ───────────────────────────────────────────────────────────

    def get(self, symbol: str) -> List[QueuedSetup]:
        """Live (unexpired) setups for a symbol, oldest first. A copy."""
        with self._lock_for(symbol):
            self._purge_locked(symbol)
            return list(self._queues.get(symbol, []))

    def symbols(self) -> List[str]:
        with self._guard:
            return [s for s, q in self._queues.items() if q]

    def __len__(self) -> int:
        with self._guard:
            return sum(len(q) for q in self._queues.values())
