"""Statistical helpers shared by the scoring and analytics modules.

Every helper is total: empty or degenerate input returns a finite sentinel
instead of NaN or infinity, so results are always safe to rank.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    """numerator / denominator, or ``default`` when the result would not be finite."""
    if denominator == 0:
        return default
    result = numerator / denominator
    return result if math.isfinite(result) else default


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0 for empty input."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def pstdev(values: Sequence[float]) -> float:
    """Population standard deviation, 0 for empty input."""
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


def percent_change(current: float, previous: float) -> float:
    """Percentage change from previous to current, 0 if previous is not positive."""
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def pct_returns(closes: Sequence[float]) -> list[float]:
    """Simple returns between consecutive closes, skipping non-positive bases."""
    returns: list[float] = []
    for prev, curr in zip(closes, closes[1:]):
        if prev > 0:
            returns.append((curr - prev) / prev)
    return returns


def price_volatility(closes: Sequence[float]) -> float:
    """
    Absolute price volatility.

    Standard deviation of returns scaled by the mean close, so the result is in
    price units.
    """
    if len(closes) < 2:
        return 0.0
    returns = pct_returns(closes)
    if not returns:
        return 0.0
    return pstdev(returns) * mean(closes)


def coefficient_of_variation(values: Sequence[float], default: float = 1.0) -> float:
    """stddev / mean, or ``default`` when the mean is not positive."""
    avg = mean(values)
    if avg <= 0:
        return default
    return pstdev(values) / avg


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Pearson correlation of two equally long series.

    Returns 0 for fewer than two points or a zero-variance series.
    """
    n = min(len(x), len(y))
    if n < 2:
        return 0.0

    xs = np.asarray(x[:n], dtype=float)
    ys = np.asarray(y[:n], dtype=float)
    xc = xs - xs.mean()
    yc = ys - ys.mean()

    denominator = math.sqrt(float(np.dot(xc, xc)) * float(np.dot(yc, yc)))
    if denominator == 0 or not math.isfinite(denominator):
        return 0.0

    return clamp(float(np.dot(xc, yc)) / denominator, -1.0, 1.0)


def max_normalize(values: Sequence[float]) -> list[float]:
    """Scale values by their maximum into [0, 1]. All-zero input maps to zeros."""
    if len(values) == 0:
        return []
    peak = max(values)
    if peak <= 0:
        return [0.0 for _ in values]
    return [clamp(v / peak, 0.0, 1.0) for v in values]


def quantile_sorted(sorted_values: Sequence[float], fraction: float) -> float:
    """Index-based quantile of an already-sorted sequence, 0 when empty."""
    if not sorted_values:
        return 0.0
    index = min(len(sorted_values) - 1, int(len(sorted_values) * fraction))
    return sorted_values[index]
