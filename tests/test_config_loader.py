"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from bazaarlens.config_loader import (
    AppConfig,
    ConfigLoader,
    IndexConfig,
    ScoringConfig,
    interpolate_env_vars,
    load_config,
    load_config_with_overrides,
    process_config_dict,
)
from bazaarlens.constants import CandleInterval, LogLevel

PROJECT_CONFIG = Path(__file__).resolve().parents[1] / "config" / "config.yaml"


class TestEnvVarInterpolation:
    """Tests for environment variable interpolation."""

    def test_no_interpolation_needed(self) -> None:
        """Plain strings and non-strings pass through unchanged."""
        assert interpolate_env_vars("hello") == "hello"
        assert interpolate_env_vars(123) == 123
        assert interpolate_env_vars(None) is None

    def test_simple_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BL_TEST_VAR", "test_value")
        assert interpolate_env_vars("${BL_TEST_VAR}") == "test_value"

    def test_env_var_with_default(self) -> None:
        """${VAR:default} falls back when the variable is unset."""
        os.environ.pop("BL_MISSING_VAR", None)
        assert interpolate_env_vars("${BL_MISSING_VAR:fallback}") == "fallback"

    def test_env_var_with_default_when_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BL_SET_VAR", "actual")
        assert interpolate_env_vars("${BL_SET_VAR:fallback}") == "actual"

    def test_missing_var_no_default(self) -> None:
        """A missing variable without default becomes an empty string."""
        os.environ.pop("BL_TOTALLY_MISSING", None)
        assert interpolate_env_vars("${BL_TOTALLY_MISSING}") == ""

    def test_mixed_text_and_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BL_DIR", "/srv/bazaar")
        assert interpolate_env_vars("${BL_DIR}/snapshot.json") == "/srv/bazaar/snapshot.json"

    def test_empty_variable_beats_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BL_EMPTY_VAR", "")
        assert interpolate_env_vars("${BL_EMPTY_VAR:fallback}") == ""


class TestProcessConfigDict:
    """Tests for recursive config dict processing."""

    def test_nested_dict(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BL_NESTED", "nested_value")
        data = {"level1": {"level2": {"value": "${BL_NESTED}"}}}
        result = process_config_dict(data)
        assert result["level1"]["level2"]["value"] == "nested_value"

    def test_list_of_dicts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Index definitions are dicts inside a list and get interpolated too."""
        monkeypatch.setenv("BL_SLUG", "farming")
        data = {"indices": [{"slug": "${BL_SLUG}", "product_keys": ["WHEAT", "${BL_SLUG}"]}]}
        result = process_config_dict(data)
        assert result["indices"][0]["slug"] == "farming"
        assert result["indices"][0]["product_keys"] == ["WHEAT", "farming"]

    def test_non_string_values_untouched(self) -> None:
        data = {"scoring": {"taker_fee_rate": 0.01125, "min_candles_for_analysis": 6}}
        assert process_config_dict(data) == data

    def test_nested_lists(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BL_KEY", "ENCHANTED_GOLD")
        result = process_config_dict({"groups": [["${BL_KEY}", "WHEAT"], [{"key": "${BL_KEY}"}]]})
        assert result["groups"] == [["ENCHANTED_GOLD", "WHEAT"], [{"key": "ENCHANTED_GOLD"}]]


class TestConfigLoader:
    """Tests for ConfigLoader."""

    def test_load_project_config(self) -> None:
        """The shipped example configuration validates."""
        config = load_config(PROJECT_CONFIG)

        assert isinstance(config, AppConfig)
        assert config.scoring.taker_fee_rate == pytest.approx(0.01125)
        assert config.manipulation.lookback_candles == 168
        assert {index.slug for index in config.indices} == {"farming", "mining", "enchanted"}

    def test_retention_keys_parse_to_intervals(self) -> None:
        config = load_config(PROJECT_CONFIG)

        candle_days = config.retention.candle_days
        assert candle_days[CandleInterval.FIVE_MINUTE] == 7
        assert candle_days[CandleInterval.ONE_HOUR] == 90
        assert candle_days[CandleInterval.ONE_WEEK] is None

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        loader = ConfigLoader(tmp_path / "missing.yaml")
        with pytest.raises(FileNotFoundError):
            loader.load()

    def test_empty_file_yields_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")

        config = load_config(path)

        assert config == AppConfig()

    def test_env_interpolation_in_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BL_SNAPSHOT", "/tmp/snap.json")
        path = tmp_path / "config.yaml"
        path.write_text("environment:\n  snapshot_path: ${BL_SNAPSHOT:./default.json}\n")

        config = load_config(path)

        assert config.environment.snapshot_path == "/tmp/snap.json"

    def test_config_property_caches(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("insights:\n  max_per_category: 5\n")
        loader = ConfigLoader(path)

        first = loader.config
        path.write_text("insights:\n  max_per_category: 7\n")

        assert loader.config is first
        assert loader.reload().insights.max_per_category == 7


class TestOverrides:
    """Tests for CLI overrides."""

    def test_none_path_gives_defaults(self) -> None:
        config = load_config_with_overrides(None)
        assert config.environment.log_level == LogLevel.INFO
        assert config.indices == []

    def test_log_level_override(self) -> None:
        config = load_config_with_overrides(None, log_level="debug")
        assert config.environment.log_level == LogLevel.DEBUG

    def test_snapshot_override(self) -> None:
        config = load_config_with_overrides(PROJECT_CONFIG, snapshot_path="other.json")
        assert config.environment.snapshot_path == "other.json"
        assert len(config.indices) == 3


class TestValidation:
    """Tests for config validation errors."""

    def test_fee_rate_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="Fee rate"):
            ScoringConfig(taker_fee_rate=1.5)

    def test_negative_threshold_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            ScoringConfig(capital_min_spread=-1)

    def test_trend_bounds_ordered(self) -> None:
        with pytest.raises(ValueError, match="trend_factor_min"):
            ScoringConfig(trend_factor_min=1.5, trend_factor_max=1.2)

    def test_invalid_regex_pattern(self) -> None:
        with pytest.raises(ValueError, match="Invalid index pattern"):
            IndexConfig(name="Broken", slug="broken", product_keys=["re:([unclosed"])

    def test_slug_normalized(self) -> None:
        index = IndexConfig(name="Farming", slug="  Farming ")
        assert index.slug == "farming"

    def test_duplicate_slugs_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate index slugs"):
            AppConfig(
                indices=[
                    IndexConfig(name="A", slug="same"),
                    IndexConfig(name="B", slug="SAME"),
                ]
            )

    def test_get_index_case_insensitive(self) -> None:
        config = AppConfig(indices=[IndexConfig(name="Mining", slug="mining")])
        assert config.get_index("MINING") is not None
        assert config.get_index("unknown") is None
