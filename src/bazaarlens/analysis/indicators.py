"""Technical indicators over candle series."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from bazaarlens.analysis.stats import mean, pstdev
from bazaarlens.constants import CandleInterval, LevelType
from bazaarlens.data.bars import Candle
from bazaarlens.data.candle_aggregator import floor_timestamp
from bazaarlens.data.market_data import Tick

# Pivots within this relative distance merge into one level
LEVEL_CLUSTER_TOLERANCE = 0.02
MAX_LEVELS = 5


@dataclass(frozen=True)
class IndicatorPoint:
    """Indicator value at a candle time."""

    time: datetime
    value: float


@dataclass
class BollingerBands:
    """Bollinger band series aligned by time."""

    upper: list[IndicatorPoint]
    middle: list[IndicatorPoint]
    lower: list[IndicatorPoint]


@dataclass
class MACDResult:
    """MACD line, signal line and histogram."""

    macd: list[IndicatorPoint]
    signal: list[IndicatorPoint]
    histogram: list[IndicatorPoint]


@dataclass(frozen=True)
class SupportResistanceLevel:
    """Price level where a candle series repeatedly turned."""

    price: float
    level_type: LevelType
    strength: float  # 0-1
    touch_count: int


def _ordered(candles: Sequence[Candle]) -> list[Candle]:
    return sorted(candles, key=lambda c: c.period_start)


def calculate_sma_series(candles: Sequence[Candle], period: int) -> list[IndicatorPoint]:
    """
    Simple Moving Average of closes.

    Args:
        candles: Candle series (any order)
        period: Window length

    Returns:
        One point per candle from the ``period``-th onwards
    """
    ordered = _ordered(candles)
    if period <= 0 or len(ordered) < period:
        return []

    closes = [c.close for c in ordered]
    return [
        IndicatorPoint(ordered[i].period_start, mean(closes[i - period + 1 : i + 1]))
        for i in range(period - 1, len(ordered))
    ]


def _ema_points(points: Sequence[IndicatorPoint], period: int) -> list[IndicatorPoint]:
    """
    EMA = Value(t) * k + EMA(t-1) * (1 - k), k = 2 / (period + 1), seeded with the SMA.
    """
    if period <= 0 or len(points) < period:
        return []

    k = 2.0 / (period + 1)
    ema = mean([p.value for p in points[:period]])
    result = [IndicatorPoint(points[period - 1].time, ema)]

    for point in points[period:]:
        ema = (point.value - ema) * k + ema
        result.append(IndicatorPoint(point.time, ema))

    return result


def calculate_ema_series(candles: Sequence[Candle], period: int) -> list[IndicatorPoint]:
    """Exponential Moving Average of closes, seeded by the first-window SMA."""
    ordered = _ordered(candles)
    return _ema_points([IndicatorPoint(c.period_start, c.close) for c in ordered], period)


def calculate_bollinger_bands(
    candles: Sequence[Candle], period: int = 20, num_std: float = 2.0
) -> BollingerBands:
    """SMA middle band with population-stddev upper/lower bands."""
    ordered = _ordered(candles)
    middle = calculate_sma_series(ordered, period)
    upper: list[IndicatorPoint] = []
    lower: list[IndicatorPoint] = []

    for offset, point in enumerate(middle):
        window = [c.close for c in ordered[offset : offset + period]]
        std = pstdev(window)
        upper.append(IndicatorPoint(point.time, point.value + std * num_std))
        lower.append(IndicatorPoint(point.time, point.value - std * num_std))

    return BollingerBands(upper=upper, middle=middle, lower=lower)


def calculate_rsi_series(candles: Sequence[Candle], period: int = 14) -> list[IndicatorPoint]:
    """
    Relative Strength Index with simple-average gains and losses.

    A window without losses yields 100.
    """
    ordered = _ordered(candles)
    if period <= 0 or len(ordered) < period + 1:
        return []

    gains: list[float] = []
    losses: list[float] = []
    for prev, curr in zip(ordered, ordered[1:]):
        change = curr.close - prev.close
        gains.append(max(change, 0.0))
        losses.append(max(-change, 0.0))

    points: list[IndicatorPoint] = []
    for i in range(period - 1, len(gains)):
        avg_gain = mean(gains[i - period + 1 : i + 1])
        avg_loss = mean(losses[i - period + 1 : i + 1])
        if avg_loss == 0:
            rsi = 100.0
        else:
            rs = avg_gain / avg_loss
            rsi = 100 - (100 / (1 + rs))
        points.append(IndicatorPoint(ordered[i + 1].period_start, rsi))

    return points


def calculate_macd(
    candles: Sequence[Candle], fast: int = 12, slow: int = 26, signal: int = 9
) -> MACDResult:
    """MACD = EMA(fast) - EMA(slow); signal = EMA(signal) of MACD; histogram = MACD - signal."""
    fast_ema = {p.time: p.value for p in calculate_ema_series(candles, fast)}
    slow_ema = calculate_ema_series(candles, slow)

    macd_line = [
        IndicatorPoint(p.time, fast_ema[p.time] - p.value) for p in slow_ema if p.time in fast_ema
    ]
    signal_line = _ema_points(macd_line, signal)
    macd_by_time = {p.time: p.value for p in macd_line}
    histogram = [IndicatorPoint(p.time, macd_by_time[p.time] - p.value) for p in signal_line]

    return MACDResult(macd=macd_line, signal=signal_line, histogram=histogram)


def calculate_vwap_series(candles: Sequence[Candle]) -> list[IndicatorPoint]:
    """
    Cumulative Volume Weighted Average Price on typical price (H + L + C) / 3.

    Candles before the first non-zero volume produce no point.
    """
    points: list[IndicatorPoint] = []
    cumulative_pv = 0.0
    cumulative_volume = 0.0

    for candle in _ordered(candles):
        typical = (candle.high + candle.low + candle.close) / 3.0
        cumulative_pv += typical * candle.volume
        cumulative_volume += candle.volume
        if cumulative_volume > 0:
            points.append(IndicatorPoint(candle.period_start, cumulative_pv / cumulative_volume))

    return points


def calculate_spread_series(ticks: Sequence[Tick], interval: CandleInterval) -> list[IndicatorPoint]:
    """
    Spread percent per candle period from raw ticks.

    Each period averages its bids and asks; the point is
    ``(avg_ask - avg_bid) / avg_bid * 100``, or 0 when either average is not positive.
    """
    buckets: dict[datetime, list[Tick]] = defaultdict(list)
    for tick in ticks:
        buckets[floor_timestamp(tick.timestamp, interval)].append(tick)

    points: list[IndicatorPoint] = []
    for start in sorted(buckets):
        bucket = buckets[start]
        avg_bid = mean([t.bid_price for t in bucket])
        avg_ask = mean([t.ask_price for t in bucket])
        if avg_bid > 0 and avg_ask > 0:
            spread = (avg_ask - avg_bid) / avg_bid * 100
        else:
            spread = 0.0
        points.append(IndicatorPoint(start, spread))

    return points


def _is_pivot(window: Sequence[float], value: float, lowest: bool) -> bool:
    if lowest:
        return all(v >= value for v in window)
    return all(v <= value for v in window)


def _level_recency(price: float, ordered: Sequence[Candle]) -> float:
    """
    Score how recently the series came within tolerance of ``price``.

    1.0 for a touch on the latest candle, falling linearly to a floor of 0.3
    for touches a day or more before it.
    """
    if price <= 0:
        return 0.3
    latest = ordered[-1].period_start
    for candle in reversed(ordered):
        near_low = abs(candle.low - price) / price < LEVEL_CLUSTER_TOLERANCE
        near_high = abs(candle.high - price) / price < LEVEL_CLUSTER_TOLERANCE
        if near_low or near_high:
            hours_ago = (latest - candle.period_start) / timedelta(hours=1)
            return max(0.3, min(1.0, 1.0 - hours_ago / 24.0))
    return 0.3


def calculate_support_resistance(
    candles: Sequence[Candle], lookback: int = 20
) -> list[SupportResistanceLevel]:
    """
    Find support and resistance from pivot lows and highs.

    A candle is a pivot low when no low in the ``lookback`` candles on either
    side is below it (pivot highs mirror this). Pivots of the same type within
    2% of a cluster's first pivot are merged at their average price.

    Strength is ``min(1, touches / 5 * 0.7 + recency * 0.3)``.

    Args:
        candles: Candle series (any order)
        lookback: Candles compared on each side of a pivot

    Returns:
        Up to five levels, strongest first; empty with fewer than ``2 * lookback`` candles
    """
    ordered = _ordered(candles)
    if lookback <= 0 or len(ordered) < lookback * 2:
        return []

    lows = [c.low for c in ordered]
    highs = [c.high for c in ordered]
    pivots: list[tuple[float, LevelType]] = []

    for i in range(lookback, len(ordered) - lookback):
        around_lows = lows[i - lookback : i] + lows[i + 1 : i + 1 + lookback]
        around_highs = highs[i - lookback : i] + highs[i + 1 : i + 1 + lookback]
        if _is_pivot(around_lows, lows[i], lowest=True):
            pivots.append((lows[i], LevelType.SUPPORT))
        if _is_pivot(around_highs, highs[i], lowest=False):
            pivots.append((highs[i], LevelType.RESISTANCE))

    levels: list[SupportResistanceLevel] = []
    merged: set[int] = set()
    for i, (anchor, level_type) in enumerate(pivots):
        if i in merged:
            continue
        cluster = [anchor]
        merged.add(i)
        for j in range(i + 1, len(pivots)):
            price, other_type = pivots[j]
            if j in merged or other_type != level_type or anchor <= 0:
                continue
            if abs(anchor - price) / anchor < LEVEL_CLUSTER_TOLERANCE:
                cluster.append(price)
                merged.add(j)

        price = mean(cluster)
        touches = len(cluster)
        recency = _level_recency(price, ordered)
        levels.append(
            SupportResistanceLevel(
                price=price,
                level_type=level_type,
                strength=min(1.0, touches / 5.0 * 0.7 + recency * 0.3),
                touch_count=touches,
            )
        )

    levels.sort(key=lambda lvl: lvl.strength, reverse=True)
    return levels[:MAX_LEVELS]
