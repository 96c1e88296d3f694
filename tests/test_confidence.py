"""
Unit tests for the A+ confidence scorer.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from smcforge.strategy.smc import strategy_config
from smcforge.strategy.smc.confidence import score_confidence
from smcforge.strategy.smc.models import (
    KeyLevel,
    LiquidityLevel,
    MarketStructure,
    Pattern,
    PatternValidation,
    PriceAction,
    SMCAnalysis,
    Trend,
)


NOW = 1_704_067_200_000


def make_main(conf=0.8, volume=0.0, avg=0.0, clean=False, retrace=False, aligned=False,
              direction="bullish"):
    return Pattern(
        "OrderBlock", direction, 100.0, conf, "5m", NOW,
        volume=volume, average_volume=avg,
        price_action=PriceAction(clean_break=clean, immediate_retrace=retrace),
        validation=PatternValidation(market_structure_alignment=aligned),
    )


def make_analysis(trend=Trend.RANGING, levels=(), liquidity=()):
    return SMCAnalysis(
        patterns=[],
        market_structure=MarketStructure(trend),
        key_levels=list(levels),
        liquidity_levels=list(liquidity),
    )


STRONG_LEVEL = KeyLevel(100.1, "support", 0.9, "4h", 3)
SWEPT_LOWS = LiquidityLevel(99.8, "buy", 2.0, 800.0, stop_cluster=True)


class TestCriteria:

    def test_nothing_met(self):
        main = make_main()
        cs = score_confidence(main, [main], make_analysis())
        assert cs.criteria_met == 0
        assert cs.reasons == []
        assert cs.score == pytest.approx(0.8)
        assert not cs.is_a_plus

    def test_htf_alignment(self):
        main = make_main()
        assert score_confidence(main, [main], make_analysis(Trend.UPTREND)).criteria_met == 1
        assert score_confidence(main, [main], make_analysis(Trend.DOWNTREND)).criteria_met == 0

    def test_confluence_needs_same_direction_nearby(self):
        main = make_main()
        near = Pattern("FairValueGap", "bullish", 100.2, 0.7, "5m", NOW)
        opposite = Pattern("FairValueGap", "bearish", 100.1, 0.7, "5m", NOW)
        far = Pattern("FairValueGap", "bullish", 101.0, 0.7, "5m", NOW)

        cs = score_confidence(main, [main, near], make_analysis())
        assert cs.criteria_met == 1
        assert cs.reasons == ["Pattern confluence: FairValueGap"]
        assert score_confidence(main, [main, opposite, far], make_analysis()).criteria_met == 0

    def test_main_alone_is_not_confluence(self):
        main = make_main()
        assert score_confidence(main, [main, main], make_analysis()).criteria_met == 0

    def test_volume(self):
        assert score_confidence(make_main(volume=700, avg=400), [], make_analysis()).criteria_met == 1
        assert score_confidence(make_main(volume=500, avg=400), [], make_analysis()).criteria_met == 0
        assert score_confidence(make_main(volume=500, avg=0), [], make_analysis()).criteria_met == 0

    def test_clean_break_without_retrace(self):
        assert score_confidence(make_main(clean=True), [], make_analysis()).criteria_met == 1
        assert score_confidence(make_main(clean=True, retrace=True), [], make_analysis()).criteria_met == 0

    def test_key_level(self):
        weak = KeyLevel(100.1, "support", 0.5, "4h", 1)
        assert score_confidence(make_main(), [], make_analysis(levels=[STRONG_LEVEL])).criteria_met == 1
        assert score_confidence(make_main(), [], make_analysis(levels=[weak])).criteria_met == 0

    def test_structure_flag(self):
        assert score_confidence(make_main(aligned=True), [], make_analysis()).criteria_met == 1

    def test_liquidity_needs_matching_side_and_cluster(self):
        no_cluster = LiquidityLevel(99.8, "buy", 2.0, 800.0)
        sell_side = LiquidityLevel(100.2, "sell", 2.0, 800.0, stop_cluster=True)
        assert score_confidence(make_main(), [], make_analysis(liquidity=[SWEPT_LOWS])).criteria_met == 1
        assert score_confidence(make_main(), [], make_analysis(liquidity=[no_cluster, sell_side])).criteria_met == 0
        short = make_main(direction="bearish")
        assert score_confidence(short, [], make_analysis(liquidity=[sell_side])).criteria_met == 1


class TestAPlus:

    def test_all_seven_capped_at_one(self):
        main = make_main(conf=0.9, volume=1000, avg=400, clean=True, aligned=True)
        near = Pattern("FairValueGap", "bullish", 100.2, 0.7, "5m", NOW)
        analysis = make_analysis(Trend.UPTREND, [STRONG_LEVEL], [SWEPT_LOWS])
        cs = score_confidence(main, [main, near], analysis)
        assert cs.criteria_met == 7
        assert cs.is_a_plus
        assert cs.score == 1.0
        assert cs.base == 0.9
        assert len(cs.reasons) == 7

    def test_exactly_five_is_a_plus(self):
        main = make_main(conf=0.7, volume=1000, avg=400, clean=True, aligned=True)
        cs = score_confidence(main, [main], make_analysis(Trend.UPTREND, [STRONG_LEVEL]))
        assert cs.criteria_met == 5
        assert cs.is_a_plus
        assert cs.score == pytest.approx(0.9)

    def test_four_is_not(self):
        main = make_main(volume=1000, avg=400, clean=True, aligned=True)
        cs = score_confidence(main, [main], make_analysis(Trend.UPTREND))
        assert cs.criteria_met == 4
        assert not cs.is_a_plus
        assert cs.score == pytest.approx(0.8)

    def test_threshold_lever(self):
        strategy_config.apply_levers({"A_PLUS_MIN_CRITERIA": 4})
        main = make_main(volume=1000, avg=400, clean=True, aligned=True)
        assert score_confidence(main, [main], make_analysis(Trend.UPTREND)).is_a_plus

    def test_to_dict(self):
        main = make_main(aligned=True)
        d = score_confidence(main, [main], make_analysis()).to_dict()
        assert d == {
            "confidence": 0.8, "base": 0.8, "criteria_met": 1,
            "is_a_plus": False, "a_plus_reasons": ["Market structure alignment"],
        }
