"""Market analytics: cached metrics, correlations, trends and indices."""

from bazaarlens.analytics.cache import TtlCache
from bazaarlens.analytics.index import IndexAggregator, IndexCandle, aggregate_index
from bazaarlens.analytics.market import (
    CorrelationMatrix,
    MarketAnalyticsEngine,
    MarketMetrics,
    ProductTrend,
    RelatedProduct,
)

__all__ = [
    "TtlCache",
    "IndexAggregator",
    "IndexCandle",
    "aggregate_index",
    "CorrelationMatrix",
    "MarketAnalyticsEngine",
    "MarketMetrics",
    "ProductTrend",
    "RelatedProduct",
]
