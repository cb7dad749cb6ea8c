"""Data access contracts and in-memory implementations.

The analytics core never performs I/O. Collaborators hand it ticks, candles,
catalog entries and order book snapshots through these interfaces.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from bazaarlens.constants import CandleInterval
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import OrderBookSnapshot, OrderLevel, ProductInfo, Tick, as_utc

logger = logging.getLogger(__name__)


def matches_pattern(product_key: str, pattern: str) -> bool:
    """
    Match a product key against an index constituent pattern.

    Patterns:
    - ``ENCHANTED_*`` - prefix match
    - ``re:^ENCHANTED_(GOLD|IRON)$`` - regular expression (full match)
    - anything else - exact key
    """
    if pattern.startswith("re:"):
        return re.fullmatch(pattern[3:], product_key) is not None
    if pattern.endswith("*"):
        return product_key.startswith(pattern[:-1])
    return product_key == pattern


def resolve_patterns(patterns: Sequence[str], product_keys: Iterable[str]) -> list[str]:
    """Resolve patterns to concrete keys, preserving first-match order without duplicates."""
    keys = list(product_keys)
    resolved: list[str] = []
    seen: set[str] = set()
    for pattern in patterns:
        for key in keys:
            if key not in seen and matches_pattern(key, pattern):
                resolved.append(key)
                seen.add(key)
    return resolved


# ============================================
# Collaborator contracts
# ============================================


class TickSource(ABC):
    """Append-only source of raw feed ticks."""

    @abstractmethod
    def get_ticks(self, product_key: str, since: datetime) -> list[Tick]:
        """Ticks for a product at or after ``since``, oldest first."""

    @abstractmethod
    def get_product_keys(self) -> list[str]:
        """All product keys that have ticks."""


class CandleStore(ABC):
    """Candle persistence with upsert-by-natural-key semantics."""

    @abstractmethod
    def get_candles(
        self,
        product_key: str,
        interval: CandleInterval,
        limit: int = 100,
        before: datetime | None = None,
    ) -> list[Candle]:
        """Most recent ``limit`` candles (optionally before a time), oldest first."""

    @abstractmethod
    def save_candles(self, candles: Iterable[Candle]) -> int:
        """Upsert candles. Returns the number written."""

    @abstractmethod
    def get_latest_candle_time(self, product_key: str, interval: CandleInterval) -> datetime | None:
        """Period start of the newest stored candle."""

    def get_candles_bulk(
        self,
        product_keys: Sequence[str],
        interval: CandleInterval,
        limit_per_product: int,
    ) -> dict[str, list[Candle]]:
        """Candles for many products. Products without candles are omitted."""
        result: dict[str, list[Candle]] = {}
        for key in product_keys:
            candles = self.get_candles(key, interval, limit_per_product)
            if candles:
                result[key] = candles
        return result


class ProductCatalog(ABC):
    """Live product catalog."""

    @abstractmethod
    def get_products(self) -> list[ProductInfo]:
        """All known products."""

    def get_product(self, product_key: str) -> ProductInfo | None:
        for product in self.get_products():
            if product.product_key == product_key:
                return product
        return None

    def resolve(self, patterns: Sequence[str]) -> list[ProductInfo]:
        """Resolve key patterns to catalog entries."""
        by_key = {p.product_key: p for p in self.get_products()}
        return [by_key[key] for key in resolve_patterns(patterns, by_key)]


class BookSource(ABC):
    """Current order books on demand."""

    @abstractmethod
    def get_book(self, product_key: str) -> tuple[list[OrderLevel], list[OrderLevel]] | None:
        """(bids, asks) for a product, or None when the product has no book."""


class SnapshotStore(ABC):
    """Periodic order book samples for heatmaps."""

    @abstractmethod
    def add_snapshots(self, snapshots: Iterable[OrderBookSnapshot]) -> None:
        """Append samples."""

    @abstractmethod
    def get_snapshots(self, product_key: str, since: datetime) -> list[OrderBookSnapshot]:
        """Samples for a product at or after ``since``, oldest first."""

    @abstractmethod
    def prune(self, cutoff: datetime) -> int:
        """Delete samples older than ``cutoff``. Returns the number removed."""


# ============================================
# In-memory implementations
# ============================================


class MemoryMarketStore(TickSource, CandleStore):
    """Thread-safe in-memory tick and candle store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ticks: dict[str, list[Tick]] = defaultdict(list)
        self._candles: dict[tuple[str, CandleInterval], dict[datetime, Candle]] = defaultdict(dict)

    def record_ticks(self, ticks: Iterable[Tick]) -> int:
        """Append ticks, keeping each product's list in time order. Naive timestamps are stored as UTC."""
        count = 0
        with self._lock:
            touched: set[str] = set()
            for tick in ticks:
                if tick.timestamp.tzinfo is None:
                    tick = replace(tick, timestamp=as_utc(tick.timestamp))
                self._ticks[tick.product_key].append(tick)
                touched.add(tick.product_key)
                count += 1
            for key in touched:
                self._ticks[key].sort(key=lambda t: t.timestamp)
        return count

    def get_ticks(self, product_key: str, since: datetime) -> list[Tick]:
        since = as_utc(since)
        with self._lock:
            return [t for t in self._ticks.get(product_key, []) if t.timestamp >= since]

    def get_product_keys(self) -> list[str]:
        with self._lock:
            return sorted(k for k, v in self._ticks.items() if v)

    def get_candles(
        self,
        product_key: str,
        interval: CandleInterval,
        limit: int = 100,
        before: datetime | None = None,
    ) -> list[Candle]:
        with self._lock:
            series = self._candles.get((product_key, interval), {})
            candles = sorted(series.values(), key=lambda c: c.period_start)
        if before is not None:
            candles = [c for c in candles if c.period_start < before]
        if limit <= 0:
            return []
        return candles[-limit:]

    def save_candles(self, candles: Iterable[Candle]) -> int:
        count = 0
        with self._lock:
            for candle in candles:
                self._candles[(candle.product_key, candle.interval)][candle.period_start] = candle
                count += 1
        return count

    def get_latest_candle_time(self, product_key: str, interval: CandleInterval) -> datetime | None:
        with self._lock:
            series = self._candles.get((product_key, interval))
            if not series:
                return None
            return max(series)

    def prune_ticks(self, now: datetime, retention: timedelta) -> int:
        """Drop ticks older than the retention window."""
        cutoff = as_utc(now) - retention
        removed = 0
        with self._lock:
            for key, ticks in self._ticks.items():
                kept = [t for t in ticks if t.timestamp >= cutoff]
                removed += len(ticks) - len(kept)
                self._ticks[key] = kept
        if removed:
            logger.info(f"Pruned {removed} ticks older than {cutoff.isoformat()}")
        return removed

    def prune_candles(self, now: datetime, retention_days: dict[CandleInterval, int | None]) -> int:
        """Drop candles past their interval's retention. ``None`` keeps forever."""
        removed = 0
        with self._lock:
            for (_, interval), series in self._candles.items():
                days = retention_days.get(interval)
                if days is None:
                    continue
                cutoff = now - timedelta(days=days)
                stale = [start for start in series if start < cutoff]
                for start in stale:
                    del series[start]
                removed += len(stale)
        return removed


class MemoryProductCatalog(ProductCatalog):
    """Catalog backed by a dict, replaced wholesale each refresh."""

    def __init__(self, products: Iterable[ProductInfo] = ()) -> None:
        self._lock = threading.Lock()
        self._products: dict[str, ProductInfo] = {p.product_key: p for p in products}

    def get_products(self) -> list[ProductInfo]:
        with self._lock:
            return list(self._products.values())

    def get_product(self, product_key: str) -> ProductInfo | None:
        with self._lock:
            return self._products.get(product_key)

    def upsert(self, products: Iterable[ProductInfo]) -> None:
        with self._lock:
            for product in products:
                self._products[product.product_key] = product


class MemoryBookSource(BookSource):
    """Order books held in memory, replaced per product."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._books: dict[str, tuple[list[OrderLevel], list[OrderLevel]]] = {}

    def set_book(self, product_key: str, bids: Sequence[OrderLevel], asks: Sequence[OrderLevel]) -> None:
        with self._lock:
            self._books[product_key] = (list(bids), list(asks))

    def get_book(self, product_key: str) -> tuple[list[OrderLevel], list[OrderLevel]] | None:
        with self._lock:
            book = self._books.get(product_key)
        if book is None:
            return None
        return list(book[0]), list(book[1])

    def product_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._books)


class MemorySnapshotStore(SnapshotStore):
    """In-memory order book sample history."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: list[OrderBookSnapshot] = []

    def add_snapshots(self, snapshots: Iterable[OrderBookSnapshot]) -> None:
        with self._lock:
            self._snapshots.extend(snapshots)

    def get_snapshots(self, product_key: str, since: datetime) -> list[OrderBookSnapshot]:
        with self._lock:
            selected = [
                s for s in self._snapshots if s.product_key == product_key and s.timestamp >= since
            ]
        return sorted(selected, key=lambda s: s.timestamp)

    def prune(self, cutoff: datetime) -> int:
        with self._lock:
            before = len(self._snapshots)
            self._snapshots = [s for s in self._snapshots if s.timestamp >= cutoff]
            return before - len(self._snapshots)
