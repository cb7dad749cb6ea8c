"""Order book analysis and heatmap history."""

from bazaarlens.orderbook.analyzer import OrderBookAnalysis, OrderBookAnalyzer
from bazaarlens.orderbook.heatmap import HeatmapPoint, OrderBookHeatmap, sample_snapshot

__all__ = [
    "OrderBookAnalyzer",
    "OrderBookAnalysis",
    "OrderBookHeatmap",
    "HeatmapPoint",
    "sample_snapshot",
]
