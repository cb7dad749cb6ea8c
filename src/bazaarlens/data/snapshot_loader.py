"""Market snapshot loading with boundary validation.

A snapshot is a JSON document holding the catalog, current order books, and
optionally candles and raw ticks:

    {
      "timestamp": "2026-01-21T12:00:00Z",
      "products": [{"product_key": "ENCHANTED_GOLD", "bid_price": 10.0, ...}],
      "books": {"ENCHANTED_GOLD": {"bids": [...], "asks": [...]}},
      "candles": [{"product_key": "...", "interval": "1h", "period_start": "...", ...}],
      "ticks": [{"product_key": "...", "timestamp": "...", "bid_price": 10.0, ...}]
    }

Malformed data is rejected here, before it can reach the analytics core.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from bazaarlens.constants import CandleInterval
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import OrderLevel, ProductInfo, Tick

logger = logging.getLogger(__name__)


class SnapshotValidationError(ValueError):
    """External snapshot data failed validation."""


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================
# Boundary models
# ============================================


class ProductModel(BaseModel):
    product_key: str = Field(min_length=1)
    name: str = ""
    tier: str = "COMMON"
    bid_price: float = Field(default=0.0, ge=0)
    ask_price: float = Field(default=0.0, ge=0)
    bid_volume: int = Field(default=0, ge=0)
    ask_volume: int = Field(default=0, ge=0)
    bid_moving_week: int = Field(default=0, ge=0)
    ask_moving_week: int = Field(default=0, ge=0)
    is_manipulated: bool = False
    manipulation_intensity: float = Field(default=0.0, ge=0, le=1)
    price_deviation_percent: float = 0.0

    def to_domain(self) -> ProductInfo:
        return ProductInfo(**self.model_dump())


class OrderLevelModel(BaseModel):
    unit_price: float = Field(gt=0)
    amount: int = Field(ge=0)
    order_count: int = Field(default=1, ge=0)

    def to_domain(self) -> OrderLevel:
        return OrderLevel(unit_price=self.unit_price, amount=self.amount, order_count=self.order_count)


class BookModel(BaseModel):
    bids: list[OrderLevelModel] = Field(default_factory=list)
    asks: list[OrderLevelModel] = Field(default_factory=list)


class CandleModel(BaseModel):
    product_key: str = Field(min_length=1)
    interval: CandleInterval
    period_start: datetime
    open: float = Field(ge=0)
    high: float = Field(ge=0)
    low: float = Field(ge=0)
    close: float = Field(ge=0)
    volume: float = Field(default=0.0, ge=0)
    spread: float = Field(default=0.0, ge=0)
    ask_close: float = Field(default=0.0, ge=0)

    @field_validator("period_start")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return _utc(v)

    @model_validator(mode="after")
    def validate_ohlc(self) -> CandleModel:
        if self.high < max(self.open, self.close) or self.low > min(self.open, self.close):
            raise ValueError(
                f"Inconsistent OHLC for {self.product_key} at {self.period_start}: "
                f"O={self.open} H={self.high} L={self.low} C={self.close}"
            )
        return self

    def to_domain(self) -> Candle:
        return Candle(**self.model_dump())


class TickModel(BaseModel):
    product_key: str = Field(min_length=1)
    timestamp: datetime
    bid_price: float = Field(ge=0)
    ask_price: float = Field(ge=0)
    bid_volume: int = Field(default=0, ge=0)
    ask_volume: int = Field(default=0, ge=0)

    @field_validator("timestamp")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return _utc(v)

    def to_domain(self) -> Tick:
        return Tick(**self.model_dump())


class SnapshotModel(BaseModel):
    timestamp: datetime | None = None
    products: list[ProductModel] = Field(default_factory=list)
    books: dict[str, BookModel] = Field(default_factory=dict)
    candles: list[CandleModel] = Field(default_factory=list)
    ticks: list[TickModel] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_products(self) -> SnapshotModel:
        keys = [p.product_key for p in self.products]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"Duplicate product keys: {duplicates}")
        return self


# ============================================
# Domain snapshot
# ============================================


@dataclass
class MarketSnapshot:
    """Validated snapshot contents as domain records."""

    timestamp: datetime
    products: list[ProductInfo] = field(default_factory=list)
    books: dict[str, tuple[list[OrderLevel], list[OrderLevel]]] = field(default_factory=dict)
    candles: list[Candle] = field(default_factory=list)
    ticks: list[Tick] = field(default_factory=list)


def parse_snapshot(data: dict[str, Any]) -> MarketSnapshot:
    """
    Validate a decoded snapshot document.

    Raises:
        SnapshotValidationError: If any record is malformed.
    """
    try:
        model = SnapshotModel.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Rejected market snapshot: {e.error_count()} validation errors")
        raise SnapshotValidationError(str(e)) from e

    return MarketSnapshot(
        timestamp=_utc(model.timestamp) if model.timestamp else datetime.now(timezone.utc),
        products=[p.to_domain() for p in model.products],
        books={
            key: ([o.to_domain() for o in book.bids], [o.to_domain() for o in book.asks])
            for key, book in model.books.items()
        },
        candles=[c.to_domain() for c in model.candles],
        ticks=[t.to_domain() for t in model.ticks],
    )


def load_snapshot(path: str | Path) -> MarketSnapshot:
    """
    Load and validate a snapshot file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        SnapshotValidationError: If the JSON is invalid or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")

    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise SnapshotValidationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise SnapshotValidationError(f"Snapshot root must be an object, got {type(data).__name__}")

    snapshot = parse_snapshot(data)
    logger.info(
        f"Loaded snapshot {path}: {len(snapshot.products)} products, "
        f"{len(snapshot.candles)} candles, {len(snapshot.ticks)} ticks"
    )
    return snapshot
