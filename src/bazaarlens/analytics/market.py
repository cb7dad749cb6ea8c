"""Cross-product market analytics.

- Market metrics: capitalisation, spreads, manipulation index, health score
- Correlation matrix of hourly closes for the most traded products
- Related products ranked by absolute correlation
- Trending products by 6h/24h/7d momentum
- Volatility/volume heatmap
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from bazaarlens.analysis.stats import (
    clamp,
    coefficient_of_variation,
    mean,
    max_normalize,
    pearson,
    percent_change,
    price_volatility,
    quantile_sorted,
)
from bazaarlens.analytics.cache import TtlCache
from bazaarlens.config_loader import MarketAnalyticsConfig
from bazaarlens.constants import CandleInterval, CorrelationStrength, TrendDirection
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import ProductInfo
from bazaarlens.data.store import CandleStore, ProductCatalog

logger = logging.getLogger(__name__)


# ============================================
# Result records
# ============================================


@dataclass(frozen=True)
class VolumeTotals:
    """Market-wide traded volume estimates from weekly moving volumes."""

    volume_24h: float = 0.0
    volume_7d: float = 0.0
    volume_30d: float = 0.0


@dataclass(frozen=True)
class MarketMetrics:
    total_market_cap: float
    average_spread_percent: float
    median_spread_percent: float
    manipulation_index: float  # percent of active products flagged
    active_products: int
    spread_stability: float  # 0-100
    volume_distribution_score: float  # 0-100
    market_health_score: float  # 0-100
    volume: VolumeTotals = field(default_factory=VolumeTotals)


@dataclass
class CorrelationMatrix:
    product_keys: list[str]
    product_names: list[str]
    matrix: dict[str, dict[str, float]]
    calculated_at: datetime

    def get(self, key_a: str, key_b: str) -> float | None:
        row = self.matrix.get(key_a)
        if row is None:
            return None
        return row.get(key_b)

    def is_symmetric(self, tolerance: float = 1e-12) -> bool:
        for a in self.product_keys:
            for b in self.product_keys:
                if abs(self.matrix[a][b] - self.matrix[b][a]) > tolerance:
                    return False
        return True


@dataclass(frozen=True)
class RelatedProduct:
    product_key: str
    product_name: str
    correlation: float
    strength: CorrelationStrength


@dataclass(frozen=True)
class ProductTrend:
    product_key: str
    product_name: str
    short_term_momentum: float  # % change over 6h
    medium_term_momentum: float  # 24h
    long_term_momentum: float  # 7d (first candle in window)
    direction: TrendDirection
    momentum_strength: float
    current_price: float


@dataclass(frozen=True)
class MarketHeatmapPoint:
    product_key: str
    product_name: str
    volatility: float
    volume: float
    opportunity_score: float
    x: float  # normalised volatility
    y: float  # normalised volume


@dataclass
class MarketHeatmap:
    points: list[MarketHeatmapPoint]
    max_volatility: float
    max_volume: float


# ============================================
# Pure computations
# ============================================


def _spread_fraction(product: ProductInfo) -> float:
    return (product.ask_price - product.bid_price) / product.ask_price


def volume_distribution_score(volumes: Sequence[float]) -> float:
    """100 - 50 * CV of positive volumes, clamped to [0, 100]. 0 without volume."""
    positive = [v for v in volumes if v > 0]
    if not positive:
        return 0.0
    return clamp(100 - coefficient_of_variation(positive) * 50, 0.0, 100.0)


def spread_stability_score(sorted_spreads: Sequence[float]) -> float:
    """100 / (1 + IQR) of fractional spreads; 50 with fewer than four samples."""
    if len(sorted_spreads) < 4:
        return 50.0
    iqr = quantile_sorted(sorted_spreads, 0.75) - quantile_sorted(sorted_spreads, 0.25)
    return 100.0 / (1.0 + max(iqr, 0.0))


def compute_market_metrics(
    products: Sequence[ProductInfo],
    config: MarketAnalyticsConfig | None = None,
) -> MarketMetrics:
    """
    Market-wide metrics over the catalog.

    Spread figures only use liquid products (both sides above the volume
    floor) so dead items do not skew them.
    """
    config = config or MarketAnalyticsConfig()
    active = [p for p in products if p.is_active]

    market_cap = sum(
        p.bid_price * p.bid_volume for p in active if p.bid_price > 0 and p.bid_volume > 0
    )

    liquid = [
        p
        for p in active
        if p.bid_price > 0
        and p.ask_price > 0
        and p.bid_moving_week > config.liquid_volume_floor
        and p.ask_moving_week > config.liquid_volume_floor
    ]
    spreads = sorted(_spread_fraction(p) for p in liquid)

    manipulated = sum(1 for p in active if p.is_manipulated)
    manipulation_index = manipulated / len(active) * 100 if active else 0.0

    stability = spread_stability_score(spreads)
    distribution = volume_distribution_score([p.total_week_volume for p in active])
    health = clamp(
        0.4 * stability + 0.4 * distribution + 0.2 * (100 - manipulation_index), 0.0, 100.0
    )

    weekly_total = float(sum(p.total_week_volume for p in products))

    return MarketMetrics(
        total_market_cap=market_cap,
        average_spread_percent=mean(spreads) * 100,
        median_spread_percent=quantile_sorted(spreads, 0.5) * 100,
        manipulation_index=manipulation_index,
        active_products=len(active),
        spread_stability=stability,
        volume_distribution_score=distribution,
        market_health_score=health,
        volume=VolumeTotals(
            volume_24h=weekly_total / 7,
            volume_7d=weekly_total,
            volume_30d=weekly_total * 30 / 7,
        ),
    )


def aligned_correlation(
    series_a: Mapping[datetime, float],
    series_b: Mapping[datetime, float],
    min_observations: int,
) -> float:
    """Pearson correlation over the timestamps both series share; 0 below the minimum."""
    common = sorted(set(series_a) & set(series_b))
    if len(common) < max(min_observations, 2):
        return 0.0
    return pearson([series_a[t] for t in common], [series_b[t] for t in common])


def build_correlation_matrix(
    series: Mapping[str, Mapping[datetime, float]],
    names: Mapping[str, str] | None = None,
    min_observations: int = 24,
    now: datetime | None = None,
) -> CorrelationMatrix:
    """
    Pairwise correlation matrix.

    The upper triangle is computed once and mirrored, so the matrix is exactly
    symmetric; the diagonal is exactly 1.0.
    """
    names = names or {}
    keys = list(series)
    matrix: dict[str, dict[str, float]] = {key: {key: 1.0} for key in keys}

    for i, key_a in enumerate(keys):
        for key_b in keys[i + 1 :]:
            coefficient = aligned_correlation(series[key_a], series[key_b], min_observations)
            matrix[key_a][key_b] = coefficient
            matrix[key_b][key_a] = coefficient

    return CorrelationMatrix(
        product_keys=keys,
        product_names=[names.get(key, key) for key in keys],
        matrix=matrix,
        calculated_at=now or datetime.now(timezone.utc),
    )


def classify_correlation(coefficient: float, config: MarketAnalyticsConfig | None = None) -> CorrelationStrength:
    config = config or MarketAnalyticsConfig()
    magnitude = abs(coefficient)
    if magnitude >= config.strong_correlation:
        return CorrelationStrength.STRONG
    if magnitude >= config.moderate_correlation:
        return CorrelationStrength.MODERATE
    return CorrelationStrength.WEAK


def trend_direction(short: float, medium: float, long: float, volatile_threshold: float = 10.0) -> TrendDirection:
    if short > 0 and medium > 0 and long > 0:
        return TrendDirection.BULLISH
    if short < 0 and medium < 0 and long < 0:
        return TrendDirection.BEARISH
    if abs(short) + abs(medium) + abs(long) > volatile_threshold:
        return TrendDirection.VOLATILE
    return TrendDirection.NEUTRAL


def close_at_or_before(candles: Sequence[Candle], target: datetime) -> float | None:
    """Close of the last candle starting at or before ``target`` (candles oldest first)."""
    for candle in reversed(candles):
        if candle.period_start <= target:
            return candle.close
    return None


def compute_trend(
    product: ProductInfo,
    candles: Sequence[Candle],
    config: MarketAnalyticsConfig | None = None,
) -> ProductTrend | None:
    """Momentum over 6h, 24h and the whole window. None without enough history."""
    config = config or MarketAnalyticsConfig()
    ordered = sorted(candles, key=lambda c: c.period_start)
    if len(ordered) < config.trending_min_candles:
        return None

    latest = ordered[-1]
    price_6h = close_at_or_before(ordered, latest.period_start - timedelta(hours=6))
    price_24h = close_at_or_before(ordered, latest.period_start - timedelta(hours=24))
    if price_6h is None or price_24h is None:
        return None

    current = latest.close
    short = percent_change(current, price_6h)
    medium = percent_change(current, price_24h)
    long = percent_change(current, ordered[0].close)

    return ProductTrend(
        product_key=product.product_key,
        product_name=product.display_name,
        short_term_momentum=short,
        medium_term_momentum=medium,
        long_term_momentum=long,
        direction=trend_direction(short, medium, long, config.volatile_threshold),
        momentum_strength=math.sqrt(short**2 + medium**2 + long**2),
        current_price=current,
    )


# ============================================
# Engine
# ============================================


class MarketAnalyticsEngine:
    """
    Market analytics over the product catalog and hourly candles.

    Market metrics and the correlation matrix are cached with their own TTLs.
    """

    def __init__(
        self,
        catalog: ProductCatalog,
        candles: CandleStore,
        config: MarketAnalyticsConfig | None = None,
    ):
        self.catalog = catalog
        self.candles = candles
        self.config = config or MarketAnalyticsConfig()
        self._metrics_cache: TtlCache[MarketMetrics] = TtlCache(
            timedelta(minutes=self.config.metrics_cache_minutes)
        )
        self._correlation_cache: TtlCache[CorrelationMatrix] = TtlCache(
            timedelta(minutes=self.config.correlation_cache_minutes)
        )

    def market_metrics(self) -> MarketMetrics:
        return self._metrics_cache.get_or_compute(
            "metrics", lambda: compute_market_metrics(self.catalog.get_products(), self.config)
        )

    def correlation_matrix(self) -> CorrelationMatrix:
        return self._correlation_cache.get_or_compute("matrix", self._compute_correlation_matrix)

    def invalidate(self) -> None:
        self._metrics_cache.invalidate()
        self._correlation_cache.invalidate()

    def _compute_correlation_matrix(self) -> CorrelationMatrix:
        cfg = self.config
        top = sorted(self.catalog.get_products(), key=lambda p: p.total_week_volume, reverse=True)
        top = top[: cfg.correlation_top_n]

        bulk = self.candles.get_candles_bulk(
            [p.product_key for p in top], CandleInterval.ONE_HOUR, cfg.correlation_lookback_candles
        )
        series = {
            p.product_key: {c.period_start: c.close for c in bulk[p.product_key]}
            for p in top
            if len(bulk.get(p.product_key, ())) >= cfg.correlation_min_observations
        }

        logger.debug(
            f"Correlation matrix: {len(top)} top products, {len(series)} with enough candle data"
        )
        matrix = build_correlation_matrix(
            series,
            names={p.product_key: p.display_name for p in top},
            min_observations=cfg.correlation_min_observations,
        )

        if not matrix.is_symmetric(cfg.symmetry_tolerance):
            logger.warning("Correlation matrix failed the symmetry check")
        return matrix

    def related_products(self, product_key: str, count: int | None = None) -> list[RelatedProduct]:
        """Other products ranked by absolute correlation with ``product_key``."""
        matrix = self.correlation_matrix()
        row = matrix.matrix.get(product_key)
        if row is None:
            return []

        names = dict(zip(matrix.product_keys, matrix.product_names))
        related = [
            RelatedProduct(
                product_key=key,
                product_name=names.get(key, key),
                correlation=value,
                strength=classify_correlation(value, self.config),
            )
            for key, value in row.items()
            if key != product_key and math.isfinite(value)
        ]
        related.sort(key=lambda r: abs(r.correlation), reverse=True)
        return related if count is None else related[:count]

    def trending_products(self, count: int = 10) -> list[ProductTrend]:
        cfg = self.config
        products = [p for p in self.catalog.get_products() if p.bid_moving_week > 0]
        bulk = self.candles.get_candles_bulk(
            [p.product_key for p in products], CandleInterval.ONE_HOUR, cfg.trending_lookback_candles
        )

        trends = []
        for product in products:
            trend = compute_trend(product, bulk.get(product.product_key, ()), cfg)
            if trend is not None:
                trends.append(trend)

        trends.sort(key=lambda t: t.momentum_strength, reverse=True)
        return trends[:count]

    def market_heatmap(self) -> MarketHeatmap:
        """Volatility against weekly volume, both normalised by their maximum."""
        cfg = self.config
        products = [p for p in self.catalog.get_products() if p.total_week_volume > 0]
        bulk = self.candles.get_candles_bulk(
            [p.product_key for p in products], CandleInterval.ONE_HOUR, cfg.heatmap_lookback_candles
        )

        rows: list[tuple[ProductInfo, float]] = []
        for product in products:
            candles = bulk.get(product.product_key, [])
            if len(candles) < cfg.heatmap_min_candles:
                continue
            rows.append((product, price_volatility([c.close for c in candles])))

        volatilities = [v for _, v in rows]
        volumes = [float(p.total_week_volume) for p, _ in rows]

        points = [
            MarketHeatmapPoint(
                product_key=product.product_key,
                product_name=product.display_name,
                volatility=volatility,
                volume=volume,
                opportunity_score=product.opportunity_score,
                x=x,
                y=y,
            )
            for (product, volatility), volume, x, y in zip(
                rows, volumes, max_normalize(volatilities), max_normalize(volumes)
            )
        ]
        max_volatility = max(volatilities, default=0.0)
        max_volume = max(volumes, default=0.0)
        return MarketHeatmap(points=points, max_volatility=max_volatility, max_volume=max_volume)
