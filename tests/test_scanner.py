"""
Unit tests for MarketScanner.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import logging

from smcforge.execution.scanner import MarketScanner
from smcforge.strategy.smc.candles import timeframe_minutes
from smcforge.strategy.smc.clock import FixedClock
from smcforge.strategy.smc.smc_strategy import SMCStrategy


NOW = 1_704_067_200_000


class FlatExchange:

    def __init__(self, broken=()):
        self.calls = []
        self.broken = set(broken)

    def __call__(self, symbol, timeframe, count):
        self.calls.append((symbol, timeframe, count))
        if symbol in self.broken:
            raise TimeoutError(f"{symbol} timed out")
        step = timeframe_minutes(timeframe) * 60_000
        return [
            {"timestamp": NOW - (count - 1 - i) * step, "open": 100.0, "high": 100.1,
             "low": 99.9, "close": 100.0, "volume": 50.0}
            for i in range(count)
        ]


class RecordingStrategy:
    """Returns a fixed plan and remembers what it was given."""

    def __init__(self, plan="PLAN"):
        self.clock = FixedClock(NOW)
        self.plan = plan
        self.seen = {}

    def analyze(self, symbol, candles):
        self.seen[symbol] = candles
        return self.plan


class TestMarketScanner:

    def test_flat_market_yields_no_plan(self):
        exchange = FlatExchange()
        scanner = MarketScanner(exchange, strategy=SMCStrategy(clock=FixedClock(NOW)))
        assert scanner.scan(["BTCUSDT"]) == {"BTCUSDT": None}
        assert sorted(tf for _, tf, _ in exchange.calls) == ["15m", "1h", "4h", "5m"]
        assert ("BTCUSDT", "4h", 50) in exchange.calls

    def test_plan_passed_through(self):
        strategy = RecordingStrategy()
        scanner = MarketScanner(FlatExchange(), strategy=strategy)
        assert scanner.scan(["ETHUSDT"]) == {"ETHUSDT": "PLAN"}
        assert set(strategy.seen["ETHUSDT"]) == {"5m", "15m", "1h", "4h"}
        assert len(strategy.seen["ETHUSDT"]["5m"]) == 100

    def test_active_trade_skipped(self):
        exchange = FlatExchange()
        scanner = MarketScanner(exchange, strategy=RecordingStrategy(),
                                has_active_trade=lambda s: s == "BTCUSDT")
        results = scanner.scan(["BTCUSDT", "ETHUSDT"])
        assert list(results) == ["ETHUSDT"]
        assert all(sym == "ETHUSDT" for sym, _, _ in exchange.calls)

    def test_failure_isolated(self, caplog):
        scanner = MarketScanner(FlatExchange(broken={"BADUSDT"}), strategy=RecordingStrategy())
        with caplog.at_level(logging.ERROR):
            results = scanner.scan(["BADUSDT", "ETHUSDT"])
        assert results == {"BADUSDT": None, "ETHUSDT": "PLAN"}
        assert "BADUSDT" in caplog.text

    def test_cache_shared_across_scans(self):
        exchange = FlatExchange()
        scanner = MarketScanner(exchange, strategy=RecordingStrategy())
        scanner.scan(["BTCUSDT"])
        scanner.scan(["BTCUSDT"])
        assert len(exchange.calls) == 4

    def test_custom_fetch_counts(self):
        exchange = FlatExchange()
        scanner = MarketScanner(exchange, strategy=RecordingStrategy(),
                                fetch_counts={"5m": 30, "4h": 10})
        scanner.fetch_all("BTCUSDT")
        assert sorted(exchange.calls) == [("BTCUSDT", "4h", 10), ("BTCUSDT", "5m", 30)]

    def test_force_refresh(self):
        exchange = FlatExchange()
        scanner = MarketScanner(exchange, strategy=RecordingStrategy(), fetch_counts={"5m": 30})
        scanner.fetch_all("BTCUSDT")
        scanner.fetch_all("BTCUSDT", force_refresh=True)
        assert len(exchange.calls) == 2
