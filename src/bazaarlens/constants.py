"""Core constants for BazaarLens."""

from datetime import timedelta
from enum import Enum


class CandleInterval(str, Enum):
    """Candle intervals produced by the aggregator."""

    FIVE_MINUTE = "5m"
    FIFTEEN_MINUTE = "15m"
    ONE_HOUR = "1h"
    FOUR_HOUR = "4h"
    ONE_DAY = "1d"
    ONE_WEEK = "1w"

    @property
    def minutes(self) -> int:
        return INTERVAL_MINUTES[self]

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=INTERVAL_MINUTES[self])

    @property
    def is_daily_or_longer(self) -> bool:
        """Daily and weekly candles are rebuilt from the full tick window every cycle."""
        return self in (CandleInterval.ONE_DAY, CandleInterval.ONE_WEEK)


INTERVAL_MINUTES = {
    CandleInterval.FIVE_MINUTE: 5,
    CandleInterval.FIFTEEN_MINUTE: 15,
    CandleInterval.ONE_HOUR: 60,
    CandleInterval.FOUR_HOUR: 240,
    CandleInterval.ONE_DAY: 1440,
    CandleInterval.ONE_WEEK: 10080,
}


class ImbalanceTrend(str, Enum):
    """Order book pressure label."""

    IMPROVING = "improving"
    WORSENING = "worsening"
    STABLE = "stable"


class TrendDirection(str, Enum):
    """Momentum direction label for trending products."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    VOLATILE = "volatile"
    NEUTRAL = "neutral"


class CorrelationStrength(str, Enum):
    """Strength bucket for a correlation coefficient."""

    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


class LevelType(str, Enum):
    """Support or resistance price level, from a book or a candle series."""

    SUPPORT = "support"
    RESISTANCE = "resistance"


class OrderSide(str, Enum):
    """Book side."""

    BID = "bid"
    ASK = "ask"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# ============================================
# Application Constants
# ============================================

APP_NAME = "bazaarlens"
HOURS_PER_WEEK = 7 * 24
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_FORMAT_JSON = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
