"""Tick to OHLC candle aggregation.

Buckets are epoch-aligned (``floor(ts / interval) * interval``), so re-running
the aggregation over the same ticks always lands on the same period starts.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from bazaarlens.constants import CandleInterval
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import Tick, as_utc
from bazaarlens.data.store import CandleStore, TickSource

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def floor_timestamp(timestamp: datetime, interval: CandleInterval) -> datetime:
    """
    Floor a timestamp to the start of its candle period.

    Naive timestamps are treated as UTC.
    """
    seconds = int((as_utc(timestamp) - EPOCH).total_seconds())
    period = interval.minutes * 60
    return EPOCH + timedelta(seconds=(seconds // period) * period)


def build_candle(
    product_key: str,
    interval: CandleInterval,
    period_start: datetime,
    ticks: Sequence[Tick],
) -> Candle:
    """Build one candle from the ticks of a single bucket (non-empty, oldest first)."""
    first = ticks[0]
    last = ticks[-1]
    bids = [t.bid_price for t in ticks]

    spreads = [s for s in (t.spread for t in ticks) if s is not None]
    spread = max(0.0, sum(spreads) / len(spreads)) if spreads else 0.0

    return Candle(
        product_key=product_key,
        interval=interval,
        period_start=period_start,
        open=first.bid_price,
        high=max(bids),
        low=min(bids),
        close=last.bid_price,
        volume=float(sum(t.bid_volume + t.ask_volume for t in ticks)),
        spread=spread,
        ask_close=last.ask_price,
    )


def aggregate_ticks(
    product_key: str,
    ticks: Iterable[Tick],
    interval: CandleInterval,
) -> list[Candle]:
    """
    Aggregate ticks into candles, one per bucket that has ticks.

    Empty buckets produce no candle.
    """
    buckets: dict[datetime, list[Tick]] = {}
    for tick in sorted(ticks, key=lambda t: as_utc(t.timestamp)):
        buckets.setdefault(floor_timestamp(tick.timestamp, interval), []).append(tick)

    return [
        build_candle(product_key, interval, start, bucket)
        for start, bucket in sorted(buckets.items())
    ]


class CandleAggregator:
    """
    Recompute candles from the tick window and upsert them.

    Daily and weekly candles are rebuilt from the whole retained tick window so
    seeded flat candles get corrected; shorter intervals only re-aggregate from
    the newest stored candle forward.
    """

    def __init__(
        self,
        ticks: TickSource,
        candles: CandleStore,
        tick_retention: timedelta = timedelta(days=7),
        intervals: Sequence[CandleInterval] = tuple(CandleInterval),
    ):
        self.ticks = ticks
        self.candles = candles
        self.tick_retention = tick_retention
        self.intervals = tuple(intervals)

    def lookback_start(self, product_key: str, interval: CandleInterval, now: datetime) -> datetime:
        """Earliest tick time that needs re-aggregating for this product/interval."""
        window_start = now - self.tick_retention
        if interval.is_daily_or_longer:
            return window_start
        latest = self.candles.get_latest_candle_time(product_key, interval)
        return latest if latest is not None else window_start

    def aggregate_product(self, product_key: str, interval: CandleInterval, now: datetime) -> int:
        """Aggregate one product/interval. Returns candles upserted."""
        since = self.lookback_start(product_key, interval, now)
        ticks = self.ticks.get_ticks(product_key, since)
        if not ticks:
            return 0
        candles = aggregate_ticks(product_key, ticks, interval)
        return self.candles.save_candles(candles)

    def aggregate_all(self, now: datetime) -> int:
        """Aggregate every product for every configured interval."""
        total = 0
        product_keys = self.ticks.get_product_keys()
        for product_key in product_keys:
            for interval in self.intervals:
                total += self.aggregate_product(product_key, interval, now)
        logger.info(f"Aggregated {total} candles for {len(product_keys)} products")
        return total


@dataclass(frozen=True)
class LiveTick:
    """Current-minute candle pushed to live charts."""

    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    ask_close: float


class LiveCandleTracker:
    """Per-product running candle for the current minute."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, LiveTick] = {}

    def update(
        self,
        product_key: str,
        bid_price: float,
        ask_price: float,
        volume: float,
        now: datetime | None = None,
    ) -> LiveTick:
        """Fold a new quote into the product's current candle and return it."""
        now = now or datetime.now(timezone.utc)
        period_start = as_utc(now).replace(second=0, microsecond=0)

        with self._lock:
            state = self._states.get(product_key)
            if state is None or state.time < period_start:
                state = LiveTick(
                    time=period_start,
                    open=bid_price,
                    high=bid_price,
                    low=bid_price,
                    close=bid_price,
                    volume=volume,
                    ask_close=ask_price,
                )
            else:
                # Volume is the latest snapshot, not a sum
                state = LiveTick(
                    time=state.time,
                    open=state.open,
                    high=max(state.high, bid_price),
                    low=min(state.low, bid_price),
                    close=bid_price,
                    volume=volume,
                    ask_close=ask_price,
                )
            self._states[product_key] = state
            return state

    def cleanup(self, now: datetime | None = None, max_age: timedelta = timedelta(minutes=5)) -> int:
        """Drop candles whose minute started more than ``max_age`` ago."""
        threshold = as_utc(now or datetime.now(timezone.utc)) - max_age
        with self._lock:
            stale = [key for key, state in self._states.items() if state.time < threshold]
            for key in stale:
                del self._states[key]
        return len(stale)
