"""Rule-based market insight scanners.

Every scanner is a pure function of its product batch. The detector only
remembers which products were hot in the previous refresh so it can mark
newcomers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from bazaarlens.analysis.stats import mean, percent_change
from bazaarlens.config_loader import InsightsConfig
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import ProductInfo

logger = logging.getLogger(__name__)


@dataclass
class ProductCandles:
    """A product with its recent 15-minute and hourly candles (oldest first)."""

    product: ProductInfo
    fifteen_minute: list[Candle] = field(default_factory=list)
    hourly: list[Candle] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.fifteen_minute = sorted(self.fifteen_minute, key=lambda c: c.period_start)
        self.hourly = sorted(self.hourly, key=lambda c: c.period_start)


@dataclass(frozen=True)
class HotProductInsight:
    product_key: str
    product_name: str
    tier: str
    detected_at: datetime
    price_change_percent: float  # absolute
    is_increasing: bool
    current_price: float
    is_new: bool


@dataclass(frozen=True)
class VolumeSurgeInsight:
    product_key: str
    product_name: str
    tier: str
    detected_at: datetime
    surge_ratio: float
    is_buying_surge: bool
    current_hour_volume: float
    average_hourly_volume: float


@dataclass(frozen=True)
class SpreadOpportunityInsight:
    product_key: str
    product_name: str
    tier: str
    detected_at: datetime
    current_spread: float
    average_spread: float
    spread_change_percent: float
    opportunity_score: float


@dataclass(frozen=True)
class FireSaleInsight:
    product_key: str
    product_name: str
    tier: str
    detected_at: datetime
    current_price: float
    average_close_24h: float
    low_7d: float
    discount_from_average_percent: float
    discount_from_low_percent: float
    volume_ratio: float


@dataclass(frozen=True)
class MarketMoverInsight:
    product_key: str
    product_name: str
    tier: str
    detected_at: datetime
    price_change_percent_24h: float
    current_price: float
    volume_24h: float
    is_gainer: bool


@dataclass
class MarketInsights:
    hot_products: list[HotProductInsight] = field(default_factory=list)
    volume_surges: list[VolumeSurgeInsight] = field(default_factory=list)
    spread_opportunities: list[SpreadOpportunityInsight] = field(default_factory=list)
    fire_sales: list[FireSaleInsight] = field(default_factory=list)
    gainers: list[MarketMoverInsight] = field(default_factory=list)
    losers: list[MarketMoverInsight] = field(default_factory=list)
    last_updated: datetime | None = None
    new_insights_count: int = 0


def _hourly_volume_ratio(hourly: Sequence[Candle], lookback: int) -> tuple[float, float, float] | None:
    """(current volume, average prior volume, ratio), or None when undefined."""
    if len(hourly) < 2:
        return None
    current = hourly[-1].volume
    prior = [c.volume for c in hourly[-(lookback + 1) : -1] if c.volume > 0]
    if current <= 0 or not prior:
        return None
    average = mean(prior)
    if average <= 0:
        return None
    return current, average, current / average


class MarketInsightsDetector:
    """
    Scans product batches for hot products, volume surges, widening spreads,
    fire sales and 24h movers. Each category is capped independently.
    """

    def __init__(self, config: InsightsConfig | None = None):
        self.config = config or InsightsConfig()
        self._lock = threading.Lock()
        self._previous_hot_keys: set[str] = set()
        self._latest = MarketInsights()

    @property
    def previous_hot_keys(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._previous_hot_keys)

    @property
    def insights(self) -> MarketInsights:
        """Result of the last refresh (empty before the first one)."""
        with self._lock:
            return self._latest

    def refresh(self, batch: Iterable[ProductCandles], now: datetime | None = None) -> MarketInsights:
        """Run every scanner and remember this cycle's hot products."""
        now = now or datetime.now(timezone.utc)
        items = [b for b in batch if b.product.bid_moving_week > 0]

        with self._lock:
            hot = self.hot_products(items, self._previous_hot_keys, now)
            gainers, losers = self.market_movers(items, now)
            insights = MarketInsights(
                hot_products=hot,
                volume_surges=self.volume_surges(items, now),
                spread_opportunities=self.spread_opportunities(items, now),
                fire_sales=self.fire_sales(items, now),
                gainers=gainers,
                losers=losers,
                last_updated=now,
                new_insights_count=sum(1 for h in hot if h.is_new),
            )
            self._previous_hot_keys = {h.product_key for h in hot}
            self._latest = insights

        logger.info(
            f"Market insights refreshed: {len(insights.hot_products)} hot, "
            f"{len(insights.volume_surges)} surges, {len(insights.spread_opportunities)} spreads, "
            f"{len(insights.fire_sales)} fire sales, {len(gainers) + len(losers)} movers"
        )
        return insights

    # ------------------------------------------------------------------
    # Scanners
    # ------------------------------------------------------------------

    def hot_products(
        self,
        items: Sequence[ProductCandles],
        previous_keys: Iterable[str] = (),
        now: datetime | None = None,
    ) -> list[HotProductInsight]:
        """Absolute change between the last two 15-minute closes at or above the threshold."""
        now = now or datetime.now(timezone.utc)
        previous = set(previous_keys)
        results = []

        for item in items:
            if len(item.fifteen_minute) < 2:
                continue
            before = item.fifteen_minute[-2].close
            current = item.fifteen_minute[-1].close
            if before <= 0:
                continue

            change = percent_change(current, before)
            if abs(change) < self.config.hot_product_threshold_percent:
                continue

            product = item.product
            results.append(
                HotProductInsight(
                    product_key=product.product_key,
                    product_name=product.display_name,
                    tier=product.tier,
                    detected_at=now,
                    price_change_percent=abs(change),
                    is_increasing=change > 0,
                    current_price=current,
                    is_new=product.product_key not in previous,
                )
            )

        results.sort(key=lambda h: h.price_change_percent, reverse=True)
        return results[: self.config.max_per_category]

    def volume_surges(self, items: Sequence[ProductCandles], now: datetime | None = None) -> list[VolumeSurgeInsight]:
        """Current hourly volume against the average of the prior hours."""
        now = now or datetime.now(timezone.utc)
        results = []

        for item in items:
            volumes = _hourly_volume_ratio(item.hourly, self.config.volume_lookback_candles)
            if volumes is None:
                continue
            current, average, ratio = volumes
            if ratio < self.config.volume_surge_ratio:
                continue

            last = item.hourly[-1]
            product = item.product
            results.append(
                VolumeSurgeInsight(
                    product_key=product.product_key,
                    product_name=product.display_name,
                    tier=product.tier,
                    detected_at=now,
                    surge_ratio=ratio,
                    is_buying_surge=last.close >= last.open,
                    current_hour_volume=current,
                    average_hourly_volume=average,
                )
            )

        results.sort(key=lambda v: v.surge_ratio, reverse=True)
        return results[: self.config.max_per_category]

    def spread_opportunities(
        self, items: Sequence[ProductCandles], now: datetime | None = None
    ) -> list[SpreadOpportunityInsight]:
        """Current spread widened against the mean of recent hourly spreads."""
        cfg = self.config
        now = now or datetime.now(timezone.utc)
        results = []

        for item in items:
            product = item.product
            current_spread = product.ask_price - product.bid_price
            if product.bid_price <= 0 or current_spread <= 0:
                continue

            recent = [c.spread for c in item.hourly[-cfg.spread_lookback_candles :] if c.spread > 0]
            if len(recent) < cfg.spread_min_samples:
                continue

            average = mean(recent)
            change = percent_change(current_spread, average)
            if change < cfg.spread_widening_percent:
                continue

            results.append(
                SpreadOpportunityInsight(
                    product_key=product.product_key,
                    product_name=product.display_name,
                    tier=product.tier,
                    detected_at=now,
                    current_spread=current_spread,
                    average_spread=average,
                    spread_change_percent=change,
                    opportunity_score=product.opportunity_score,
                )
            )

        results.sort(key=lambda s: s.spread_change_percent, reverse=True)
        return results[: cfg.max_per_category]

    def fire_sales(self, items: Sequence[ProductCandles], now: datetime | None = None) -> list[FireSaleInsight]:
        """
        Ask price far below recent prices on heavy volume.

        All three must hold: discount to the 24h average close, discount to the
        7-day low, and elevated current-hour volume.
        """
        cfg = self.config
        now = now or datetime.now(timezone.utc)
        results = []

        for item in items:
            product = item.product
            price = product.ask_price
            hourly = item.hourly
            if price <= 0 or len(hourly) < cfg.movers_min_candles:
                continue

            average_24h = mean([c.close for c in hourly[-24:]])
            lows = [c.low for c in hourly if c.low > 0]
            if average_24h <= 0 or not lows:
                continue
            low_7d = min(lows)

            volumes = _hourly_volume_ratio(hourly, cfg.volume_lookback_candles)
            if volumes is None:
                continue
            volume_ratio = volumes[2]

            below_average = (average_24h - price) / average_24h * 100
            below_low = (low_7d - price) / low_7d * 100

            if (
                below_average < cfg.fire_sale_average_discount_percent
                or below_low < cfg.fire_sale_low_discount_percent
                or volume_ratio < cfg.fire_sale_volume_ratio
            ):
                continue

            results.append(
                FireSaleInsight(
                    product_key=product.product_key,
                    product_name=product.display_name,
                    tier=product.tier,
                    detected_at=now,
                    current_price=price,
                    average_close_24h=average_24h,
                    low_7d=low_7d,
                    discount_from_average_percent=below_average,
                    discount_from_low_percent=below_low,
                    volume_ratio=volume_ratio,
                )
            )

        results.sort(key=lambda f: f.discount_from_average_percent, reverse=True)
        return results[: cfg.max_per_category]

    def market_movers(
        self, items: Sequence[ProductCandles], now: datetime | None = None
    ) -> tuple[list[MarketMoverInsight], list[MarketMoverInsight]]:
        """Top gainers and losers by 24h change."""
        cfg = self.config
        now = now or datetime.now(timezone.utc)
        movers = []

        for item in items:
            if len(item.hourly) < cfg.movers_min_candles:
                continue
            window = item.hourly[-25:]
            base = window[0].open
            if base <= 0:
                continue

            current = window[-1].close
            change = percent_change(current, base)
            product = item.product
            movers.append(
                MarketMoverInsight(
                    product_key=product.product_key,
                    product_name=product.display_name,
                    tier=product.tier,
                    detected_at=now,
                    price_change_percent_24h=change,
                    current_price=current,
                    volume_24h=sum(c.volume for c in window),
                    is_gainer=change >= 0,
                )
            )

        gainers = sorted(
            (m for m in movers if m.is_gainer), key=lambda m: m.price_change_percent_24h, reverse=True
        )
        losers = sorted((m for m in movers if not m.is_gainer), key=lambda m: m.price_change_percent_24h)
        return gainers[: cfg.max_per_category], losers[: cfg.max_per_category]
