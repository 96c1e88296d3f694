"""
Unit tests for SwingDetector.

Covers:
  - HH/LH/LL/HL classification against the previous same-side swing
  - plateaus registering adjacent swings
  - outside bars (swing high and low on one candle, high first)
  - trackers carrying over between calls until reset()
  - detect_fresh() on one detector shared by several threads
  - swing strength formula
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import threading

import pandas as pd
import pytest

from smcforge.strategy.smc.swing_detector import SwingDetector, swing_strength


T0 = 1_704_067_200_000
STEP = 3_600_000


def make_bars(highs, lows=None, volumes=None) -> pd.DataFrame:
    """Bars with given highs; lows default to high - 0.5, open = close = mid."""
    if lows is None:
        lows = [h - 0.5 for h in highs]
    if volumes is None:
        volumes = [10.0] * len(highs)
    mids = [(h + l) / 2 for h, l in zip(highs, lows)]
    return pd.DataFrame({
        "timestamp": [T0 + i * STEP for i in range(len(highs))],
        "open": mids, "high": highs, "low": lows, "close": mids, "volume": volumes,
    })


TWO_PEAKS = [1, 2, 3, 10, 3, 2, 1, 2, 3, 8, 3, 2, 1]


class TestDetect:

    def test_short_series_empty(self):
        assert SwingDetector().detect(make_bars([1, 2, 3, 4, 3, 2])) == []

    def test_single_peak_is_hh(self):
        swings = SwingDetector().detect(make_bars([1, 2, 3, 10, 3, 2, 1]))
        assert [(s.swing_type, s.price) for s in swings] == [("HH", 10)]
        assert swings[0].timestamp == T0 + 3 * STEP

    def test_classification_sequence(self):
        swings = SwingDetector().detect(make_bars(TWO_PEAKS))
        assert [(s.swing_type, s.price) for s in swings] == [
            ("HH", 10), ("LL", 0.5), ("LH", 8),
        ]

    def test_time_ordered(self):
        swings = SwingDetector().detect(make_bars(TWO_PEAKS))
        stamps = [s.timestamp for s in swings]
        assert stamps == sorted(stamps)

    def test_plateau_registers_adjacent_swings(self):
        swings = SwingDetector().detect(make_bars([1, 2, 3, 5, 5, 2, 1, 0.5]))
        highs = [s for s in swings if s.is_high]
        assert [(s.swing_type, s.price) for s in highs] == [("HH", 5), ("LH", 5)]

    def test_outside_bar_high_emitted_first(self):
        df = make_bars([2, 2, 2, 5, 2, 2, 2], lows=[1, 1, 1, 0, 1, 1, 1])
        swings = SwingDetector().detect(df)
        at_3 = [s for s in swings if s.timestamp == T0 + 3 * STEP]
        assert [s.swing_type for s in at_3] == ["HH", "LL"]

    def test_trackers_persist_between_calls(self):
        det = SwingDetector()
        df = make_bars(TWO_PEAKS)
        det.detect(df)
        again = det.detect(df)
        # 10 > last high 8 → HH; 0.5 is not below last low 0.5 → HL
        assert [s.swing_type for s in again] == ["HH", "HL", "LH"]

    def test_reset_clears_trackers(self):
        det = SwingDetector()
        df = make_bars(TWO_PEAKS)
        first = det.detect(df)
        det.reset()
        assert det.detect(df) == first
        assert det.detect_fresh(df) == first

    def test_detect_fresh_leaves_trackers_alone(self):
        det = SwingDetector()
        df = make_bars(TWO_PEAKS)
        det.detect(df)
        det.detect_fresh(make_bars([1, 2, 3, 50, 3, 2, 1]))
        assert (det.last_swing_high, det.last_swing_low) == (8, 0.5)
        assert [s.swing_type for s in det.detect(df)] == ["HH", "HL", "LH"]

    def test_types_consistent_with_previous_same_side(self):
        highs = [5, 6, 7, 9, 7, 6, 5, 6, 8, 11, 8, 6, 5, 6, 7, 10, 7, 6, 5]
        swings = SwingDetector().detect(make_bars(highs))
        last = {"high": float("-inf"), "low": float("inf")}
        for s in swings:
            if s.is_high:
                assert s.swing_type == ("HH" if s.price > last["high"] else "LH")
                last["high"] = s.price
            else:
                assert s.swing_type == ("LL" if s.price < last["low"] else "HL")
                last["low"] = s.price

    def test_strength_bounded(self):
        swings = SwingDetector().detect(make_bars(TWO_PEAKS, volumes=[1000.0] + [1.0] * 12))
        assert swings
        assert all(0.0 <= s.strength <= 1.0 for s in swings)


class TestConcurrency:

    def test_shared_detector_detect_fresh_matches_serial(self):
        frames = [
            make_bars(TWO_PEAKS),
            make_bars(list(reversed(TWO_PEAKS))),
            make_bars([5, 6, 7, 9, 7, 6, 5, 6, 8, 11, 8, 6, 5, 6, 7, 10, 7, 6, 5]),
            make_bars([9, 8, 7, 2, 7, 8, 9, 8, 7, 4, 7, 8, 9]),
        ]
        det = SwingDetector()
        expected = [SwingDetector().detect(df) for df in frames]
        mismatches = []

        def worker(offset):
            for i in range(30):
                k = (offset + i) % len(frames)
                if det.detect_fresh(frames[k]) != expected[k]:
                    mismatches.append((offset, i))

        threads = [threading.Thread(target=worker, args=(t,)) for t in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert mismatches == []


class TestSwingStrength:

    def test_formula(self):
        df = pd.DataFrame({
            "timestamp": [T0, T0 + 1, T0 + 2, T0 + 3],
            "open": [99.5, 107, 117, 127], "high": [100, 110, 120, 130],
            "low": [99, 105, 115, 125], "close": [99.5, 107, 117, 127],
            "volume": [1.0, 1.0, 1.0, 5.0],
        })
        # one touch (candle 0, volume 1) vs avg volume 2
        assert swing_strength(100.0, df) == pytest.approx(0.6 * 0.5 + 0.4 * 1 / 5)

    def test_capped_at_one(self):
        df = make_bars([100.0] * 6, volumes=[50.0] * 6)
        assert swing_strength(100.0, df) == 1.0

    def test_zero_volume(self):
        df = make_bars([100.0, 150.0, 200.0], volumes=[0.0, 0.0, 0.0])
        assert swing_strength(100.0, df) == pytest.approx(0.4 * 1 / 5)
