"""
Unit tests for TradePlan helpers and external plan validation.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from smcforge.strategy.smc.errors import InvalidInputError
from smcforge.strategy.smc.models import (
    MarketStructure,
    Pattern,
    QueuedSetup,
    SMCAnalysis,
    TradePlan,
    Trend,
)


def long_plan(**kw) -> TradePlan:
    base = dict(symbol="BTCUSDT", direction="long", entry_price=100.0, stop_loss=95.0,
                targets=[110.0, 120.0], confidence_score=0.8, timeframe="5m",
                risk_reward_ratio=2.0)
    base.update(kw)
    return TradePlan(**base)


def short_plan() -> TradePlan:
    return TradePlan("ETHUSDT", "short", 100.0, 105.0, [90.0, 80.0], 0.8, "15m", 2.0)


class TestTradePlanHelpers:

    def test_stop_hit(self):
        assert long_plan().is_stop_loss_hit(95.0)
        assert not long_plan().is_stop_loss_hit(95.01)
        assert short_plan().is_stop_loss_hit(105.0)
        assert not short_plan().is_stop_loss_hit(104.0)

    def test_target_index(self):
        plan = long_plan()
        assert plan.target_hit_index(105.0) == -1
        assert plan.target_hit_index(110.0) == 0
        assert plan.target_hit_index(125.0) == 1
        assert short_plan().target_hit_index(85.0) == 0

    def test_profit_loss(self):
        assert long_plan().profit_loss(110.0, 2) == pytest.approx(20.0)
        assert short_plan().profit_loss(110.0, 1) == pytest.approx(-10.0)

    def test_str(self):
        text = str(long_plan(is_a_plus_setup=True))
        assert text.startswith("[A+] BTCUSDT LONG")
        assert "rr=2.00" in text


class TestFromDict:

    def test_roundtrip(self):
        plan = long_plan(entry_conditions=["OB"], a_plus_reasons=["Volume confirmation"])
        assert TradePlan.from_dict(plan.to_dict()) == plan

    def test_camel_case_and_symbol_override(self):
        plan = TradePlan.from_dict({
            "direction": "LONG", "entryPrice": "100", "stopLoss": 95, "targets": [110],
            "confidenceScore": 0.9, "timeframe": "15m", "riskRewardRatio": 2,
        }, symbol="SOLUSDT")
        assert plan.symbol == "SOLUSDT"
        assert plan.direction == "long"
        assert plan.entry_price == 100.0

    def test_missing_field(self):
        d = long_plan().to_dict()
        del d["stop_loss"]
        with pytest.raises(InvalidInputError, match="missing"):
            TradePlan.from_dict(d)

    @pytest.mark.parametrize("change", [
        {"direction": "sideways"},
        {"stop_loss": 101.0},                 # long stop above entry
        {"targets": [99.0]},                  # long target below entry
        {"targets": []},
        {"targets": [110.0, 111.0, 112.0, 113.0]},
        {"entry_price": float("nan")},
        {"entry_price": True},
        {"entry_price": -1.0},
        {"confidence_score": 1.5},
        {"entry_conditions": "not a list"},
    ])
    def test_rejects(self, change):
        d = long_plan().to_dict()
        d.update(change)
        with pytest.raises(InvalidInputError):
            TradePlan.from_dict(d)

    def test_short_geometry(self):
        d = short_plan().to_dict()
        assert TradePlan.from_dict(d).direction == "short"
        d["targets"] = [101.0]
        with pytest.raises(InvalidInputError):
            TradePlan.from_dict(d)

    def test_not_a_dict(self):
        with pytest.raises(InvalidInputError):
            TradePlan.from_dict(["long"])


class TestQueuedSetup:

    def make(self):
        p = Pattern("OrderBlock", "bullish", 100.0, 0.8, "5m", 0)
        a = SMCAnalysis(patterns=[p], market_structure=MarketStructure(Trend.RANGING))
        return QueuedSetup("BTCUSDT", p, a, 100.0, 0, 1000, (99.5, 100.5))

    def test_band_inclusive(self):
        s = self.make()
        assert s.contains(99.5) and s.contains(100.5)
        assert not s.contains(100.51)

    def test_expiry(self):
        s = self.make()
        assert not s.is_expired(999)
        assert s.is_expired(1000)
