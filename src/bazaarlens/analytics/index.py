"""Synthetic market indices built from constituent candles."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from bazaarlens.config_loader import IndexConfig
from bazaarlens.constants import CandleInterval
from bazaarlens.data.bars import Candle
from bazaarlens.data.store import CandleStore, ProductCatalog

logger = logging.getLogger(__name__)

BASE_VALUE = 100.0


@dataclass(frozen=True)
class IndexCandle:
    """Averaged rebased candle; ``contributors`` is how many constituents had data."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    ask_close: float
    contributors: int


def aggregate_index(candles_by_product: Mapping[str, Sequence[Candle]]) -> list[IndexCandle]:
    """
    Average rebased constituents over the union of their timestamps.

    Each constituent is rebased to 100 at its first positive close. A timestamp
    only needs one contributing constituent, so a sparse or newly listed product
    never truncates the index. Ask close is averaged over constituents that
    have one.
    """
    rebased: list[tuple[float, dict[datetime, Candle]]] = []
    for product_key, candles in candles_by_product.items():
        ordered = sorted(candles, key=lambda c: c.period_start)
        base = next((c.close for c in ordered if c.close > 0), None)
        if base is None:
            logger.debug(f"Index constituent {product_key} has no positive close, skipped")
            continue
        rebased.append((base, {c.period_start: c for c in ordered}))

    timestamps = sorted({t for _, by_time in rebased for t in by_time})

    points = []
    for time in timestamps:
        rows = [(base, by_time[time]) for base, by_time in rebased if time in by_time]
        if not rows:
            continue
        count = len(rows)
        asks = [c.ask_close / base * BASE_VALUE for base, c in rows if c.ask_close > 0]
        points.append(
            IndexCandle(
                time=time,
                open=sum(c.open / base for base, c in rows) * BASE_VALUE / count,
                high=sum(c.high / base for base, c in rows) * BASE_VALUE / count,
                low=sum(c.low / base for base, c in rows) * BASE_VALUE / count,
                close=sum(c.close / base for base, c in rows) * BASE_VALUE / count,
                ask_close=sum(asks) / len(asks) if asks else 0.0,
                contributors=count,
            )
        )
    return points


class IndexAggregator:
    """Resolves index definitions against the catalog and aggregates their candles."""

    def __init__(
        self,
        indices: Sequence[IndexConfig],
        catalog: ProductCatalog,
        candles: CandleStore,
    ):
        self.indices = {index.slug: index for index in indices}
        self.catalog = catalog
        self.candles = candles

    def get_index(self, slug: str) -> IndexConfig | None:
        return self.indices.get(slug.strip().lower())

    def constituents(self, index: IndexConfig) -> list[str]:
        """Resolved keys with at least the index's minimum weekly volume."""
        products = self.catalog.resolve(index.product_keys)
        keys = [p.product_key for p in products if p.total_week_volume >= index.min_weekly_volume]
        dropped = len(products) - len(keys)
        if dropped:
            logger.debug(f"Index {index.slug}: dropped {dropped} low-volume constituents")
        return keys

    def aggregated_candles(
        self, slug: str, interval: CandleInterval, limit: int = 100
    ) -> list[IndexCandle]:
        """Index series for a slug; unknown slugs yield an empty series."""
        index = self.get_index(slug)
        if index is None:
            logger.debug(f"Unknown index slug: {slug}")
            return []

        keys = self.constituents(index)
        if not keys:
            return []

        bulk = self.candles.get_candles_bulk(keys, interval, limit)
        return aggregate_index(bulk)
