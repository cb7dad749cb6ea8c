"""Order book microstructure analysis.

Computes from one bid book and one ask book:
- Imbalance ratio and pressure label
- Best bid/ask, spread and mid price
- Depth near the touch and a liquidity score
- Whale orders (amount z-score outliers) and walls (multiples of side average)
- Support/resistance bands and the cumulative depth chart

Empty books on either side never raise; metrics fall back to zero/neutral.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import numpy as np

from bazaarlens.analytics.cache import TtlCache
from bazaarlens.config_loader import OrderBookConfig
from bazaarlens.constants import ImbalanceTrend, LevelType, OrderSide
from bazaarlens.data.market_data import OrderLevel
from bazaarlens.data.store import BookSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderBookImbalance:
    """Volume pressure between the two sides. Ratio in [-1, 1], positive is bid-heavy."""

    ratio: float
    total_bid_volume: float
    total_ask_volume: float
    bid_pressure_percent: float
    ask_pressure_percent: float
    trend: ImbalanceTrend


@dataclass(frozen=True)
class OrderBookStats:
    total_bid_orders: int
    total_ask_orders: int
    avg_bid_order_size: float
    avg_ask_order_size: float
    largest_bid_order: int
    largest_ask_order: int
    best_bid: float
    best_ask: float
    spread: float
    mid_price: float

    @property
    def is_two_sided(self) -> bool:
        return self.best_bid > 0 and self.best_ask > 0


@dataclass(frozen=True)
class PriceWall:
    price: float
    volume: int
    side: OrderSide
    percent_from_mid: float


@dataclass(frozen=True)
class OrderBookDepthMetrics:
    bid_depth: float  # volume within the depth band of best bid
    ask_depth: float
    depth_ratio: float
    liquidity_score: float  # 0-100
    spread: float
    spread_percent: float
    walls: list[PriceWall] = field(default_factory=list)


@dataclass(frozen=True)
class WhaleOrder:
    unit_price: float
    amount: int
    order_count: int
    z_score: float
    side: OrderSide


@dataclass(frozen=True)
class OrderBookLevel:
    """Clustered price band."""

    price: float
    level_type: LevelType
    strength: float  # 0-1
    total_volume: int
    order_count: int
    percent_from_mid: float


@dataclass(frozen=True)
class DepthChartPoint:
    price: float
    cumulative_volume: float
    side: OrderSide


@dataclass(frozen=True)
class OrderBookAnalysis:
    """Complete analysis of one product's book."""

    imbalance: OrderBookImbalance
    depth: OrderBookDepthMetrics
    stats: OrderBookStats
    whales: list[WhaleOrder]
    support: list[OrderBookLevel]
    resistance: list[OrderBookLevel]
    depth_chart: list[DepthChartPoint]
    calculated_at: datetime


def _percent_from(price: float, reference: float) -> float:
    if reference <= 0:
        return 0.0
    return (price - reference) / reference * 100


class OrderBookAnalyzer:
    """
    Order book analyzer.

    ``analyze`` is a pure single-pass computation. ``analyze_product`` pulls the
    current book from a source and caches the result per product.
    """

    def __init__(self, config: OrderBookConfig | None = None):
        self.config = config or OrderBookConfig()
        self._cache: TtlCache[OrderBookAnalysis] = TtlCache(
            timedelta(seconds=self.config.cache_seconds)
        )

    def analyze_product(self, product_key: str, source: BookSource) -> OrderBookAnalysis | None:
        """Cached analysis of a product's current book, None when it has no book."""
        cached = self._cache.get(product_key)
        if cached is not None:
            return cached

        book = source.get_book(product_key)
        if book is None:
            logger.debug(f"No order book for {product_key}")
            return None

        bids, asks = book
        return self._cache.get_or_compute(product_key, lambda: self.analyze(bids, asks))

    def invalidate(self, product_key: str | None = None) -> None:
        self._cache.invalidate(product_key)

    def analyze(
        self,
        bids: Sequence[OrderLevel],
        asks: Sequence[OrderLevel],
        now: datetime | None = None,
    ) -> OrderBookAnalysis:
        """Analyze one product's bid and ask books."""
        stats = self.calculate_stats(bids, asks)
        support, resistance = self.support_resistance(bids, asks, stats.mid_price)

        return OrderBookAnalysis(
            imbalance=self.calculate_imbalance(bids, asks),
            depth=self.depth_metrics(bids, asks, stats),
            stats=stats,
            whales=self.detect_whales(bids, asks),
            support=support,
            resistance=resistance,
            depth_chart=self.depth_chart(bids, asks),
            calculated_at=now or datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def calculate_imbalance(
        self, bids: Sequence[OrderLevel], asks: Sequence[OrderLevel]
    ) -> OrderBookImbalance:
        total_bid = float(sum(o.amount for o in bids))
        total_ask = float(sum(o.amount for o in asks))
        total = total_bid + total_ask

        if total > 0:
            ratio = (total_bid - total_ask) / total
            bid_percent = total_bid / total * 100
            ask_percent = total_ask / total * 100
        else:
            ratio, bid_percent, ask_percent = 0.0, 50.0, 50.0

        if abs(ratio) < self.config.stable_imbalance_threshold:
            trend = ImbalanceTrend.STABLE
        elif ratio > 0:
            trend = ImbalanceTrend.IMPROVING
        else:
            trend = ImbalanceTrend.WORSENING

        return OrderBookImbalance(
            ratio=ratio,
            total_bid_volume=total_bid,
            total_ask_volume=total_ask,
            bid_pressure_percent=bid_percent,
            ask_pressure_percent=ask_percent,
            trend=trend,
        )

    def calculate_stats(self, bids: Sequence[OrderLevel], asks: Sequence[OrderLevel]) -> OrderBookStats:
        best_bid = max((o.unit_price for o in bids), default=0.0)
        best_ask = min((o.unit_price for o in asks), default=0.0)

        if best_bid > 0 and best_ask > 0:
            spread = best_ask - best_bid
            mid = (best_bid + best_ask) / 2
        else:
            # One-sided book: no spread, mid falls back to the side we have
            spread = 0.0
            mid = best_bid or best_ask

        return OrderBookStats(
            total_bid_orders=sum(o.order_count for o in bids),
            total_ask_orders=sum(o.order_count for o in asks),
            avg_bid_order_size=sum(o.amount for o in bids) / len(bids) if bids else 0.0,
            avg_ask_order_size=sum(o.amount for o in asks) / len(asks) if asks else 0.0,
            largest_bid_order=max((o.amount for o in bids), default=0),
            largest_ask_order=max((o.amount for o in asks), default=0),
            best_bid=best_bid,
            best_ask=best_ask,
            spread=spread,
            mid_price=mid,
        )

    def depth_metrics(
        self,
        bids: Sequence[OrderLevel],
        asks: Sequence[OrderLevel],
        stats: OrderBookStats,
    ) -> OrderBookDepthMetrics:
        cfg = self.config
        band = cfg.depth_band_percent / 100

        bid_depth = float(
            sum(o.amount for o in bids if o.unit_price >= stats.best_bid * (1 - band))
        )
        ask_depth = float(
            sum(o.amount for o in asks if o.unit_price <= stats.best_ask * (1 + band))
        )

        if ask_depth > 0:
            depth_ratio = bid_depth / ask_depth
        elif bid_depth > 0:
            depth_ratio = cfg.no_ask_depth_ratio
        else:
            depth_ratio = 1.0

        if stats.is_two_sided and stats.mid_price > 0:
            spread_percent = stats.spread / stats.mid_price * 100
            spread_component = 50 * (
                1 - min(spread_percent / cfg.liquidity_spread_ceiling_percent, 1.0)
            )
        else:
            spread_percent = 0.0
            spread_component = 0.0

        depth_component = 50 * min((bid_depth + ask_depth) / cfg.liquidity_depth_ceiling, 1.0)
        liquidity = max(0.0, min(100.0, spread_component + depth_component))

        return OrderBookDepthMetrics(
            bid_depth=bid_depth,
            ask_depth=ask_depth,
            depth_ratio=depth_ratio,
            liquidity_score=liquidity,
            spread=stats.spread,
            spread_percent=spread_percent,
            walls=self.detect_walls(bids, asks, stats.mid_price),
        )

    def detect_walls(
        self,
        bids: Sequence[OrderLevel],
        asks: Sequence[OrderLevel],
        mid_price: float,
    ) -> list[PriceWall]:
        """Orders larger than ``wall_volume_multiplier`` times their side's average."""
        walls: list[PriceWall] = []
        for side, book in ((OrderSide.BID, bids), (OrderSide.ASK, asks)):
            if not book:
                continue
            average = sum(o.amount for o in book) / len(book)
            threshold = average * self.config.wall_volume_multiplier
            walls.extend(
                PriceWall(
                    price=o.unit_price,
                    volume=o.amount,
                    side=side,
                    percent_from_mid=_percent_from(o.unit_price, mid_price),
                )
                for o in book
                if o.amount > threshold
            )

        walls.sort(key=lambda w: w.volume, reverse=True)
        return walls[: self.config.max_walls]

    def detect_whales(self, bids: Sequence[OrderLevel], asks: Sequence[OrderLevel]) -> list[WhaleOrder]:
        """
        Orders whose amount is a z-score outlier across both sides.

        Needs at least ``min_orders_for_whales`` orders and non-zero spread of
        amounts; otherwise nothing is flagged.
        """
        cfg = self.config
        pool = [(OrderSide.BID, o) for o in bids] + [(OrderSide.ASK, o) for o in asks]
        if len(pool) < cfg.min_orders_for_whales:
            return []

        amounts = np.asarray([o.amount for _, o in pool], dtype=float)
        mean = float(amounts.mean())
        std = float(amounts.std())
        if std <= 0 or not math.isfinite(std):
            return []

        whales = []
        for side, order in pool:
            z_score = (order.amount - mean) / std
            if z_score >= cfg.whale_z_score_threshold:
                whales.append(
                    WhaleOrder(
                        unit_price=order.unit_price,
                        amount=order.amount,
                        order_count=order.order_count,
                        z_score=z_score,
                        side=side,
                    )
                )

        whales.sort(key=lambda w: w.z_score, reverse=True)
        return whales[: cfg.max_whales]

    def support_resistance(
        self,
        bids: Sequence[OrderLevel],
        asks: Sequence[OrderLevel],
        mid_price: float,
    ) -> tuple[list[OrderBookLevel], list[OrderBookLevel]]:
        """Cluster each side into bands of ``level_cluster_percent`` of mid price."""
        if mid_price <= 0:
            return [], []

        width = mid_price * self.config.level_cluster_percent / 100
        support = self._cluster(bids, width, mid_price, LevelType.SUPPORT)
        resistance = self._cluster(asks, width, mid_price, LevelType.RESISTANCE)
        return support, resistance

    def _cluster(
        self,
        book: Sequence[OrderLevel],
        width: float,
        mid_price: float,
        level_type: LevelType,
    ) -> list[OrderBookLevel]:
        bands: dict[int, list[OrderLevel]] = {}
        for order in book:
            bands.setdefault(math.floor(order.unit_price / width), []).append(order)

        levels = []
        for orders in bands.values():
            price = sum(o.unit_price for o in orders) / len(orders)
            volume = sum(o.amount for o in orders)
            levels.append(
                OrderBookLevel(
                    price=price,
                    level_type=level_type,
                    strength=min(1.0, volume / self.config.level_strength_volume),
                    total_volume=volume,
                    order_count=sum(o.order_count for o in orders),
                    percent_from_mid=_percent_from(price, mid_price),
                )
            )

        levels.sort(key=lambda lvl: lvl.total_volume, reverse=True)
        return levels[: self.config.max_levels]

    def depth_chart(self, bids: Sequence[OrderLevel], asks: Sequence[OrderLevel]) -> list[DepthChartPoint]:
        """Cumulative volume from the touch outward on each side."""
        points: list[DepthChartPoint] = []

        cumulative = 0.0
        for order in sorted(bids, key=lambda o: o.unit_price, reverse=True):
            cumulative += order.amount
            points.append(DepthChartPoint(order.unit_price, cumulative, OrderSide.BID))

        cumulative = 0.0
        for order in sorted(asks, key=lambda o: o.unit_price):
            cumulative += order.amount
            points.append(DepthChartPoint(order.unit_price, cumulative, OrderSide.ASK))

        return points
