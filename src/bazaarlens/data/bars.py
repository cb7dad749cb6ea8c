"""Candle data structure."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from bazaarlens.constants import CandleInterval


@dataclass(frozen=True)
class Candle:
    """OHLC candle on bid prices.

    ``spread`` is the mean ask-bid spread over the period and ``ask_close`` the
    last ask seen in it.
    """

    product_key: str
    interval: CandleInterval
    period_start: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    spread: float = 0.0
    ask_close: float = 0.0

    @property
    def key(self) -> tuple[str, CandleInterval, datetime]:
        """Natural key: one candle per (product, interval, period start)."""
        return (self.product_key, self.interval, self.period_start)

    @property
    def range_ratio(self) -> float:
        """(high - low) / close, or 0 when close is not positive."""
        if self.close <= 0:
            return 0.0
        return (self.high - self.low) / self.close

    def is_valid(self) -> bool:
        """High bounds open/close from above, low from below, spread non-negative."""
        return (
            self.high >= max(self.open, self.close)
            and self.low <= min(self.open, self.close)
            and self.spread >= 0
        )
