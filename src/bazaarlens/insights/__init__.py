"""Market insight scanners."""

from bazaarlens.insights.detector import MarketInsights, MarketInsightsDetector, ProductCandles

__all__ = [
    "MarketInsights",
    "MarketInsightsDetector",
    "ProductCandles",
]
