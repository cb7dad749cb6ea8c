"""Configuration loader with Pydantic validation and environment variable interpolation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables at module level
load_dotenv(find_dotenv(usecwd=True))

from bazaarlens.constants import CandleInterval, LogLevel


ENV_REFERENCE = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def interpolate_env_vars(value: Any) -> Any:
    """
    Substitute ``${NAME}`` and ``${NAME:default}`` references in a string.

    A set variable always wins, even when empty. An unset variable takes its
    default, or becomes "" when there is none, so a snapshot path or log level
    can be left for pydantic to validate. Non-strings pass through untouched.
    """
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match[str]) -> str:
        name, default = match.groups()
        return os.environ.get(name, default if default is not None else "")

    return ENV_REFERENCE.sub(substitute, value)


def _interpolate_tree(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _interpolate_tree(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_interpolate_tree(item) for item in node]
    return interpolate_env_vars(node)


def process_config_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Interpolate env references in every string of a parsed YAML document, at any depth."""
    return _interpolate_tree(data)


def _non_negative(v: float) -> float:
    if v < 0:
        raise ValueError(f"Value must be non-negative, got: {v}")
    return v


# ============================================
# Pydantic Configuration Models
# ============================================


class EnvironmentConfig(BaseModel):
    """Environment and runtime settings."""

    log_level: LogLevel = LogLevel.INFO
    snapshot_path: str = "./data/snapshot.json"


class ScoringConfig(BaseModel):
    """Opportunity scoring constants.

    The defaults are empirically tuned against live market behaviour. Change
    them only with validation against real outcomes.
    """

    taker_fee_rate: float = 0.01125
    min_candles_for_analysis: int = 6
    volatility_lookback_candles: int = 48
    risk_buffer_percentage: float = 0.005  # 0.5% of mean price
    bid_epsilon: float = 0.001
    min_spread_stability: float = 0.1

    # Volume throughput
    min_weekly_volume: int = 100_000  # below this, execution risk is high
    hourly_volume_ceiling: float = 10_000.0  # "excellent" hourly throughput

    # Trend factor
    trend_sma_period: int = 5
    trend_sensitivity: float = 0.5
    trend_factor_min: float = 0.8
    trend_factor_max: float = 1.2

    # ROI boost and compression
    roi_boost_weight: float = 0.5
    roi_boost_cap: float = 100.0
    score_log_scale: float = 3.5
    max_score: float = 10.0

    # Sweet spot (Gaussian in log10 price space)
    sweet_spot_target_price: float = 100_000.0
    sweet_spot_width_decades: float = 1.5
    sweet_spot_floor: float = 0.2
    high_roi_threshold: float = 1.0  # 100% ROI
    high_roi_sweet_spot_floor: float = 0.6

    # Capital efficiency gate
    capital_min_spread: float = 1_000.0
    capital_min_ask_price: float = 10_000.0
    capital_gate_steepness: float = 4.0

    # Simplified path
    simplified_roi_multiplier: float = 10.0
    dust_price_threshold: float = 1_000.0
    feasibility_roi_threshold: float = 2.0
    feasibility_volume_threshold: int = 1_000_000

    @field_validator("taker_fee_rate")
    @classmethod
    def validate_fee_rate(cls, v: float) -> float:
        """Fee rate must be a fraction in [0, 1)."""
        if not 0 <= v < 1:
            raise ValueError(f"Fee rate must be in [0, 1), got: {v}")
        return v

    @field_validator(
        "risk_buffer_percentage",
        "bid_epsilon",
        "min_spread_stability",
        "hourly_volume_ceiling",
        "sweet_spot_target_price",
        "sweet_spot_width_decades",
        "capital_min_spread",
        "capital_min_ask_price",
        "dust_price_threshold",
        "feasibility_roi_threshold",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        return _non_negative(v)

    @model_validator(mode="after")
    def validate_trend_bounds(self) -> ScoringConfig:
        """Trend factor bounds must be ordered."""
        if self.trend_factor_min > self.trend_factor_max:
            raise ValueError(
                f"trend_factor_min ({self.trend_factor_min}) must not exceed "
                f"trend_factor_max ({self.trend_factor_max})"
            )
        return self


class ManipulationConfig(BaseModel):
    """Price deviation (manipulation) detection settings."""

    lookback_candles: int = 7 * 24
    min_candles: int = 24
    z_score_threshold: float = 1.5
    intensity_z_ceiling: float = 5.0
    min_stddev_ratio: float = 0.001  # stddev floor as a fraction of the mean

    @field_validator("min_candles", "lookback_candles")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Candle count must be positive, got: {v}")
        return v


class OrderBookConfig(BaseModel):
    """Order book analysis settings."""

    stable_imbalance_threshold: float = 0.1
    depth_band_percent: float = 5.0
    no_ask_depth_ratio: float = 10.0
    liquidity_spread_ceiling_percent: float = 10.0
    liquidity_depth_ceiling: float = 100_000.0

    whale_z_score_threshold: float = 3.0
    min_orders_for_whales: int = 3
    max_whales: int = 10

    wall_volume_multiplier: float = 5.0
    max_walls: int = 10

    level_cluster_percent: float = 1.0
    level_strength_volume: float = 10_000.0
    max_levels: int = 5

    cache_seconds: float = 30.0

    # Heatmap snapshot sampling
    snapshot_step_percent: float = 1.0
    snapshot_steps: int = 20
    snapshot_retention_days: int = 7

    @field_validator("level_cluster_percent", "snapshot_step_percent", "depth_band_percent")
    @classmethod
    def validate_positive_percent(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Percent must be positive, got: {v}")
        return v


class MarketAnalyticsConfig(BaseModel):
    """Cross-product analytics settings."""

    metrics_cache_minutes: float = 5.0
    liquid_volume_floor: int = 10_000

    correlation_cache_minutes: float = 15.0
    correlation_top_n: int = 100
    correlation_lookback_candles: int = 7 * 24
    correlation_min_observations: int = 24
    symmetry_tolerance: float = 1e-12
    strong_correlation: float = 0.7
    moderate_correlation: float = 0.4

    trending_lookback_candles: int = 7 * 24
    trending_min_candles: int = 24
    volatile_threshold: float = 10.0

    heatmap_lookback_candles: int = 48
    heatmap_min_candles: int = 6

    @model_validator(mode="after")
    def validate_correlation_buckets(self) -> MarketAnalyticsConfig:
        if self.moderate_correlation > self.strong_correlation:
            raise ValueError("moderate_correlation must not exceed strong_correlation")
        return self


class InsightsConfig(BaseModel):
    """Market insight scanner thresholds."""

    hot_product_threshold_percent: float = 5.0
    volume_surge_ratio: float = 2.0
    volume_lookback_candles: int = 24
    spread_widening_percent: float = 20.0
    spread_lookback_candles: int = 24
    spread_min_samples: int = 12
    fire_sale_average_discount_percent: float = 20.0
    fire_sale_low_discount_percent: float = 10.0
    fire_sale_volume_ratio: float = 1.5
    movers_min_candles: int = 24
    max_per_category: int = 10


class IndexConfig(BaseModel):
    """Synthetic index definition.

    Constituent patterns are exact keys, prefixes ending in ``*`` or regular
    expressions prefixed with ``re:``.
    """

    name: str
    slug: str
    product_keys: list[str] = Field(default_factory=list)
    min_weekly_volume: int = 1

    @field_validator("product_keys")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Regex patterns must compile."""
        for pattern in v:
            if pattern.startswith("re:"):
                try:
                    re.compile(pattern[3:])
                except re.error as e:
                    raise ValueError(f"Invalid index pattern {pattern!r}: {e}") from e
        return v

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v: str) -> str:
        return v.strip().lower()


class RetentionConfig(BaseModel):
    """Tick and candle retention windows."""

    tick_days: int = 7
    candle_days: dict[CandleInterval, int | None] = Field(
        default_factory=lambda: {
            CandleInterval.FIVE_MINUTE: 7,
            CandleInterval.FIFTEEN_MINUTE: 30,
            CandleInterval.ONE_HOUR: 90,
            CandleInterval.FOUR_HOUR: 365,
            CandleInterval.ONE_DAY: None,
            CandleInterval.ONE_WEEK: None,
        }
    )


class AppConfig(BaseModel):
    """Root application configuration."""

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    manipulation: ManipulationConfig = Field(default_factory=ManipulationConfig)
    orderbook: OrderBookConfig = Field(default_factory=OrderBookConfig)
    analytics: MarketAnalyticsConfig = Field(default_factory=MarketAnalyticsConfig)
    insights: InsightsConfig = Field(default_factory=InsightsConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    indices: list[IndexConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_slugs(self) -> AppConfig:
        """Index slugs must be unique."""
        slugs = [index.slug for index in self.indices]
        if len(slugs) != len(set(slugs)):
            raise ValueError(f"Duplicate index slugs: {slugs}")
        return self

    def get_index(self, slug: str) -> IndexConfig | None:
        """Find an index by slug (case-insensitive)."""
        wanted = slug.strip().lower()
        for index in self.indices:
            if index.slug == wanted:
                return index
        return None


# ============================================
# Configuration Loader
# ============================================


class ConfigLoader:
    """Reads one YAML file into an ``AppConfig``, keeping the last result."""

    def __init__(self, config_path: str | Path) -> None:
        self.config_path = Path(config_path)
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """
        Parse, interpolate and validate the file.

        An empty file yields the built-in defaults for every section.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            yaml.YAMLError: If the YAML is malformed.
            pydantic.ValidationError: If a threshold, fee rate or index pattern is rejected.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}

        self._config = AppConfig.model_validate(process_config_dict(document))
        return self._config

    @property
    def config(self) -> AppConfig:
        """The loaded configuration, loading on first access."""
        if self._config is None:
            return self.load()
        return self._config

    def reload(self) -> AppConfig:
        """Re-read the file, e.g. after index definitions were edited."""
        self._config = None
        return self.load()


def load_config(config_path: str | Path) -> AppConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated AppConfig instance.
    """
    loader = ConfigLoader(config_path)
    return loader.load()


def load_config_with_overrides(
    config_path: str | Path | None,
    *,
    log_level: str | None = None,
    snapshot_path: str | None = None,
) -> AppConfig:
    """
    Load configuration with CLI overrides.

    A ``None`` path yields the built-in defaults.
    """
    config = load_config(config_path) if config_path is not None else AppConfig()

    env_updates: dict[str, Any] = {}
    if log_level is not None:
        env_updates["log_level"] = LogLevel(log_level.upper())
    if snapshot_path is not None:
        env_updates["snapshot_path"] = snapshot_path

    if env_updates:
        environment = config.environment.model_copy(update=env_updates)
        return config.model_copy(update={"environment": environment})

    return config
