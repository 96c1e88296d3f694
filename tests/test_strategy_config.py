"""
Unit tests for the lever system in strategy_config.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json

import pytest

from smcforge.strategy.smc import strategy_config as cfg
from smcforge.strategy.smc.errors import InvalidInputError


class TestApplyLevers:

    def test_coerces_by_existing_type(self):
        applied = cfg.apply_levers({"MIN_RR": "2.5", "MAX_TARGETS": "2", "SCAN_TIMEFRAMES": "1h"})
        assert applied == {"MIN_RR": 2.5, "MAX_TARGETS": 2, "SCAN_TIMEFRAMES": "1h"}
        assert cfg.MIN_RR == 2.5
        assert cfg.scan_timeframes() == ["1h"]

    def test_dict_lever_from_json(self):
        cfg.apply_levers({"FETCH_COUNTS": json.dumps({"5m": 200, "4h": 60})})
        assert cfg.FETCH_COUNTS == {"5m": 200, "4h": 60}

    def test_dict_lever_rejects_non_object(self):
        with pytest.raises(InvalidInputError):
            cfg.apply_levers({"FETCH_COUNTS": "[1, 2]"})

    def test_unknown_lever(self):
        with pytest.raises(InvalidInputError, match="unknown lever"):
            cfg.apply_levers({"NOT_A_LEVER": 1})

    def test_bad_value(self):
        with pytest.raises(InvalidInputError, match="cannot coerce"):
            cfg.apply_levers({"MIN_RR": "lots"})

    def test_reset(self):
        cfg.apply_levers({"MIN_RR": 9.0, "CACHE_TTL_SECONDS": {"5m": 1}})
        cfg.reset_levers()
        assert cfg.MIN_RR == 1.5
        assert cfg.CACHE_TTL_SECONDS["4h"] == 10800

    def test_scan_lists_strip_blanks(self):
        cfg.apply_levers({"SCAN_PATTERN_TYPES": " BOS, ,OrderBlock "})
        assert cfg.scan_pattern_types() == ["BOS", "OrderBlock"]


class TestProfiles:

    def test_legacy_profile(self):
        applied = cfg.load_profile("legacy_strict")
        assert "_description" not in applied
        assert cfg.MIN_RR == 2.0
        assert cfg.MIN_PATTERN_CONFIDENCE == 0.7

    def test_custom_dir(self, tmp_path):
        (tmp_path / "fast.json").write_text(json.dumps({"_note": "x", "QUEUE_EXPIRY_HOURS": 2}))
        assert cfg.load_profile("fast", profiles_dir=tmp_path) == {"QUEUE_EXPIRY_HOURS": 2.0}

    def test_missing_profile(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            cfg.load_profile("nope", profiles_dir=tmp_path)


class TestEnvLevers:

    def test_prefixed_env_vars(self, monkeypatch):
        monkeypatch.setenv("SMC_MIN_RR", "3")
        monkeypatch.setenv("SMC_API_KEY", "secret")
        applied = cfg.load_env_levers()
        assert applied == {"MIN_RR": 3.0}

    def test_env_file(self, monkeypatch, tmp_path):
        env = tmp_path / "levers.env"
        env.write_text("SMC_MAX_TARGETS=2\nSMC_MIN_RR=4\n")
        # registered with monkeypatch so the values dotenv writes are undone
        for name in ("SMC_MAX_TARGETS", "SMC_MIN_RR"):
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)
        monkeypatch.setenv("SMC_MIN_RR", "2.5")

        cfg.load_env_levers(env_file=env)
        assert cfg.MAX_TARGETS == 2
        assert cfg.MIN_RR == 2.5     # already-set variables win over the file


class TestModelTags:

    def test_defaults_have_no_tags(self):
        assert cfg.get_model_tags() == []

    def test_tags_for_changed_levers(self):
        cfg.apply_levers({
            "MIN_RR": 2.0,
            "SCAN_TIMEFRAMES": "5m",
            "FETCH_COUNTS": {"5m": 100, "15m": 100, "1h": 100, "4h": 80},
        })
        assert cfg.get_model_tags() == ["fetch_counts[4h]", "min_rr_2", "scan_timeframes_5m"]
