"""Order book snapshot sampling and heatmap history."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from bazaarlens.config_loader import OrderBookConfig
from bazaarlens.data.market_data import OrderBookSnapshot, OrderLevel
from bazaarlens.data.store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeatmapPoint:
    time: datetime
    price: float
    volume: int


def sample_snapshot(
    product_key: str,
    bids: Sequence[OrderLevel],
    asks: Sequence[OrderLevel],
    timestamp: datetime,
    config: OrderBookConfig | None = None,
) -> list[OrderBookSnapshot]:
    """
    Sample resting volume at fixed percentage steps around the mid price.

    Each level collects orders within half a step of it. Levels with no
    volume are skipped; a book without both sides yields nothing.
    """
    config = config or OrderBookConfig()
    best_bid = max((o.unit_price for o in bids), default=0.0)
    best_ask = min((o.unit_price for o in asks), default=0.0)
    if best_bid <= 0 or best_ask <= 0:
        return []

    mid = (best_bid + best_ask) / 2
    step = mid * config.snapshot_step_percent / 100
    half_step = step / 2

    snapshots = []
    for factor in range(-config.snapshot_steps, config.snapshot_steps + 1):
        level = mid + factor * step
        near_bids = [o for o in bids if abs(o.unit_price - level) < half_step]
        near_asks = [o for o in asks if abs(o.unit_price - level) < half_step]
        bid_volume = sum(o.amount for o in near_bids)
        ask_volume = sum(o.amount for o in near_asks)
        if bid_volume <= 0 and ask_volume <= 0:
            continue
        snapshots.append(
            OrderBookSnapshot(
                product_key=product_key,
                timestamp=timestamp,
                price_level=level,
                bid_volume=bid_volume,
                ask_volume=ask_volume,
                bid_order_count=sum(o.order_count for o in near_bids),
                ask_order_count=sum(o.order_count for o in near_asks),
            )
        )
    return snapshots


class OrderBookHeatmap:
    """Records book samples into a snapshot store and reads them back as heatmap points."""

    def __init__(self, store: SnapshotStore, config: OrderBookConfig | None = None):
        self.store = store
        self.config = config or OrderBookConfig()

    def record(
        self,
        product_key: str,
        bids: Sequence[OrderLevel],
        asks: Sequence[OrderLevel],
        now: datetime | None = None,
    ) -> int:
        """Sample the book and append it. Returns levels stored."""
        snapshots = sample_snapshot(
            product_key, bids, asks, now or datetime.now(timezone.utc), self.config
        )
        if snapshots:
            self.store.add_snapshots(snapshots)
        return len(snapshots)

    def heatmap(self, product_key: str, hours: int = 24, now: datetime | None = None) -> list[HeatmapPoint]:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        return [
            HeatmapPoint(time=s.timestamp, price=s.price_level, volume=s.total_volume)
            for s in self.store.get_snapshots(product_key, cutoff)
        ]

    def cleanup(self, now: datetime | None = None) -> int:
        """Delete samples past the retention window."""
        days = self.config.snapshot_retention_days
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        deleted = self.store.prune(cutoff)
        if deleted:
            logger.info(f"Cleaned up {deleted} order book snapshots older than {days} days")
        return deleted
