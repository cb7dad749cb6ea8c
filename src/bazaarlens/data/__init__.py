"""Market data records, candle aggregation and data access contracts."""

from bazaarlens.data.bars import Candle
from bazaarlens.data.candle_aggregator import CandleAggregator, LiveCandleTracker, aggregate_ticks
from bazaarlens.data.market_data import OrderBookSnapshot, OrderLevel, ProductInfo, ScoringInput, Tick
from bazaarlens.data.store import (
    MemoryBookSource,
    MemoryMarketStore,
    MemoryProductCatalog,
    MemorySnapshotStore,
)

__all__ = [
    "Candle",
    "CandleAggregator",
    "LiveCandleTracker",
    "aggregate_ticks",
    "OrderBookSnapshot",
    "OrderLevel",
    "ProductInfo",
    "ScoringInput",
    "Tick",
    "MemoryBookSource",
    "MemoryMarketStore",
    "MemoryProductCatalog",
    "MemorySnapshotStore",
]
