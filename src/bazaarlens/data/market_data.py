"""Market data structures and types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


def as_utc(timestamp: datetime) -> datetime:
    """Normalise to UTC; naive timestamps are taken to be UTC already."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


@dataclass(frozen=True)
class Tick:
    """One poll of the marketplace feed for a product."""

    product_key: str
    timestamp: datetime
    bid_price: float
    ask_price: float
    bid_volume: int = 0
    ask_volume: int = 0

    @property
    def spread(self) -> float | None:
        """Ask minus bid, or None when either side is missing."""
        if self.bid_price > 0 and self.ask_price > 0:
            return self.ask_price - self.bid_price
        return None


@dataclass(frozen=True)
class OrderLevel:
    """A single price level on one side of the book."""

    unit_price: float
    amount: int
    order_count: int = 1


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Sampled book volume around one price level, kept for heatmaps."""

    product_key: str
    timestamp: datetime
    price_level: float
    bid_volume: int
    ask_volume: int
    bid_order_count: int
    ask_order_count: int

    @property
    def total_volume(self) -> int:
        return self.bid_volume + self.ask_volume


@dataclass(frozen=True)
class ScoringInput:
    """Current state of one product handed to the scorer."""

    product_key: str
    bid_price: float
    ask_price: float
    bid_moving_week: int
    ask_moving_week: int


@dataclass(frozen=True)
class ProductInfo:
    """Catalog entry: current prices, volumes and display metadata."""

    product_key: str
    name: str = ""
    tier: str = "COMMON"
    bid_price: float = 0.0
    ask_price: float = 0.0
    bid_volume: int = 0  # volume currently resting on the book
    ask_volume: int = 0
    bid_moving_week: int = 0
    ask_moving_week: int = 0
    opportunity_score: float = 0.0
    is_manipulated: bool = False
    manipulation_intensity: float = 0.0
    price_deviation_percent: float = 0.0

    @property
    def display_name(self) -> str:
        return self.name or self.product_key

    @property
    def total_week_volume(self) -> int:
        return self.bid_moving_week + self.ask_moving_week

    @property
    def is_active(self) -> bool:
        """Products with weekly volume on either side."""
        return self.bid_moving_week > 0 or self.ask_moving_week > 0

    def to_scoring_input(self) -> ScoringInput:
        return ScoringInput(
            product_key=self.product_key,
            bid_price=self.bid_price,
            ask_price=self.ask_price,
            bid_moving_week=self.bid_moving_week,
            ask_moving_week=self.ask_moving_week,
        )
