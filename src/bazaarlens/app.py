"""BazaarLens analytics pipeline."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from bazaarlens.analytics.index import IndexAggregator
from bazaarlens.analytics.market import MarketAnalyticsEngine
from bazaarlens.config_loader import AppConfig
from bazaarlens.constants import LOG_FORMAT, LOG_FORMAT_JSON, CandleInterval, LogLevel
from bazaarlens.data.candle_aggregator import CandleAggregator, LiveCandleTracker
from bazaarlens.data.market_data import ProductInfo, Tick
from bazaarlens.data.snapshot_loader import MarketSnapshot
from bazaarlens.data.store import (
    MemoryBookSource,
    MemoryMarketStore,
    MemoryProductCatalog,
    MemorySnapshotStore,
)
from bazaarlens.insights.detector import MarketInsights, MarketInsightsDetector, ProductCandles
from bazaarlens.orderbook.analyzer import OrderBookAnalyzer
from bazaarlens.orderbook.heatmap import OrderBookHeatmap
from bazaarlens.scoring.batch import CachedScores, ProductState, ScoreRunCache, score_batch
from bazaarlens.scoring.manipulation import ManipulationDetector
from bazaarlens.scoring.opportunity import OpportunityScorer

logger = logging.getLogger(__name__)

SCORING_INTERVAL = CandleInterval.ONE_HOUR


def setup_logging(level: str | LogLevel = LogLevel.INFO, json_format: bool = False) -> None:
    """Configure root logging with the application format."""
    name = level.value if isinstance(level, LogLevel) else str(level).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format=LOG_FORMAT_JSON if json_format else LOG_FORMAT,
    )


@dataclass
class CycleResult:
    """Summary of one refresh cycle."""

    candles_upserted: int
    products_scored: int
    products_reused: int
    snapshot_levels: int
    insights: MarketInsights


class AnalyticsPipeline:
    """
    Wires the analytics components over in-memory stores.

    One ``run_cycle`` aggregates ticks into candles, rescores changed products,
    samples order books for heatmaps, refreshes insights and prunes old data.
    """

    def __init__(self, config: AppConfig | None = None):
        self.config = config or AppConfig()
        cfg = self.config

        # Stores
        self.market = MemoryMarketStore()
        self.catalog = MemoryProductCatalog()
        self.books = MemoryBookSource()
        self.snapshots = MemorySnapshotStore()

        # Components
        self.aggregator = CandleAggregator(
            self.market, self.market, tick_retention=timedelta(days=cfg.retention.tick_days)
        )
        self.live = LiveCandleTracker()
        self.scorer = OpportunityScorer(cfg.scoring)
        self.manipulation = ManipulationDetector(cfg.manipulation)
        self.run_cache = ScoreRunCache()
        self.orderbook = OrderBookAnalyzer(cfg.orderbook)
        self.heatmap = OrderBookHeatmap(self.snapshots, cfg.orderbook)
        self.analytics = MarketAnalyticsEngine(self.catalog, self.market, cfg.analytics)
        self.indices = IndexAggregator(cfg.indices, self.catalog, self.market)
        self.insights = MarketInsightsDetector(cfg.insights)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def load_snapshot(self, snapshot: MarketSnapshot) -> None:
        """Feed a validated snapshot into the stores."""
        self.catalog.upsert(snapshot.products)
        for product_key, (bids, asks) in snapshot.books.items():
            self.books.set_book(product_key, bids, asks)
        if snapshot.candles:
            self.market.save_candles(snapshot.candles)
        if snapshot.ticks:
            self.market.record_ticks(snapshot.ticks)

        for product in snapshot.products:
            if product.bid_price > 0:
                self.live.update(
                    product.product_key,
                    product.bid_price,
                    product.ask_price,
                    product.bid_volume + product.ask_volume,
                    now=snapshot.timestamp,
                )

        logger.info(
            f"Snapshot loaded: {len(snapshot.products)} products, {len(snapshot.books)} books"
        )

    def ingest_ticks(self, ticks: Iterable[Tick]) -> int:
        return self.market.record_ticks(ticks)

    # ------------------------------------------------------------------
    # Cycle steps
    # ------------------------------------------------------------------

    def score_products(self) -> tuple[int, int]:
        """
        Rescore products whose state changed since the last run.

        Returns:
            (products scored, products reusing cached scores)
        """
        products = self.catalog.get_products()
        states = {p.product_key: ProductState.from_input(p.to_scoring_input()) for p in products}
        changed = self.run_cache.changed_keys(states)

        to_score = [p.to_scoring_input() for p in products if p.product_key in changed]
        lookback = max(
            self.config.scoring.volatility_lookback_candles,
            self.config.manipulation.lookback_candles,
        )
        candles = self.market.get_candles_bulk(
            [i.product_key for i in to_score], SCORING_INTERVAL, lookback
        )
        opportunity, manipulation = score_batch(to_score, candles, self.scorer, self.manipulation)

        scores: dict[str, CachedScores] = {
            item.product_key: CachedScores(opportunity_score=o, manipulation=m)
            for item, o, m in zip(to_score, opportunity, manipulation)
        }

        reused = 0
        updated: list[ProductInfo] = []
        for product in products:
            cached = scores.get(product.product_key)
            if cached is None:
                cached = self.run_cache.get_cached_scores(product.product_key)
                if cached is None:
                    continue
                scores[product.product_key] = cached
                reused += 1
            updated.append(
                replace(
                    product,
                    opportunity_score=cached.opportunity_score,
                    is_manipulated=cached.manipulation.is_manipulated,
                    manipulation_intensity=cached.manipulation.intensity,
                    price_deviation_percent=cached.manipulation.deviation_percent,
                )
            )

        self.catalog.upsert(updated)
        self.run_cache.update(states, scores)
        logger.info(f"Scored {len(to_score)} products ({reused} reused from previous run)")
        return len(to_score), reused

    def sample_order_books(self, now: datetime) -> int:
        total = 0
        for product_key in self.books.product_keys():
            book = self.books.get_book(product_key)
            if book is not None:
                total += self.heatmap.record(product_key, book[0], book[1], now)
        return total

    def refresh_insights(self, now: datetime) -> MarketInsights:
        batch = [
            ProductCandles(
                product=product,
                fifteen_minute=self.market.get_candles(
                    product.product_key, CandleInterval.FIFTEEN_MINUTE, 2
                ),
                hourly=self.market.get_candles(product.product_key, CandleInterval.ONE_HOUR, 7 * 24),
            )
            for product in self.catalog.get_products()
        ]
        return self.insights.refresh(batch, now)

    def cleanup(self, now: datetime) -> None:
        """Apply tick, candle, snapshot and live candle retention."""
        retention = self.config.retention
        self.market.prune_ticks(now, timedelta(days=retention.tick_days))
        removed = self.market.prune_candles(now, retention.candle_days)
        if removed:
            logger.info(f"Pruned {removed} candles past retention")
        self.heatmap.cleanup(now)
        self.live.cleanup(now)

    def run_cycle(self, now: datetime | None = None) -> CycleResult:
        """Run one full refresh cycle."""
        now = now or datetime.now(timezone.utc)
        candles = self.aggregator.aggregate_all(now)
        scored, reused = self.score_products()
        levels = self.sample_order_books(now)
        insights = self.refresh_insights(now)
        self.cleanup(now)

        return CycleResult(
            candles_upserted=candles,
            products_scored=scored,
            products_reused=reused,
            snapshot_levels=levels,
            insights=insights,
        )
