"""Shared fixtures: a small but complete market snapshot."""

from __future__ import annotations

import json
import math
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

SNAPSHOT_TIME = datetime(2024, 3, 3, tzinfo=timezone.utc)


def _hourly_candles(product_key: str, closes: list[float], spread: float) -> list[dict[str, Any]]:
    start = SNAPSHOT_TIME - timedelta(hours=len(closes))
    return [
        {
            "product_key": product_key,
            "interval": "1h",
            "period_start": (start + timedelta(hours=i)).isoformat(),
            "open": close,
            "high": close * 1.01,
            "low": close * 0.99,
            "close": close,
            "volume": 1_000.0,
            "spread": spread,
            "ask_close": close + spread,
        }
        for i, close in enumerate(closes)
    ]


@pytest.fixture
def snapshot_data() -> dict[str, Any]:
    """
    Three products:
    - ENCHANTED_GOLD: deep market near the price sweet spot, spiking in the last 15 minutes
    - ENCHANTED_WHEAT: cheap item with a small spread
    - WHEAT: no weekly volume, only raw ticks
    """
    gold_closes = [100_000 + 2_000 * math.sin(i / 4) for i in range(48)]
    wheat_closes = [10 + 0.2 * math.sin(i / 4) for i in range(48)]

    candles = _hourly_candles("ENCHANTED_GOLD", gold_closes, spread=9_000.0)
    candles += _hourly_candles("ENCHANTED_WHEAT", wheat_closes, spread=2.0)
    candles += [
        {
            "product_key": "ENCHANTED_GOLD",
            "interval": "15m",
            "period_start": (SNAPSHOT_TIME - timedelta(minutes=30)).isoformat(),
            "open": 100_000,
            "high": 100_000,
            "low": 100_000,
            "close": 100_000,
        },
        {
            "product_key": "ENCHANTED_GOLD",
            "interval": "15m",
            "period_start": (SNAPSHOT_TIME - timedelta(minutes=15)).isoformat(),
            "open": 100_000,
            "high": 107_000,
            "low": 100_000,
            "close": 107_000,
        },
    ]

    return {
        "timestamp": SNAPSHOT_TIME.isoformat(),
        "products": [
            {
                "product_key": "ENCHANTED_GOLD",
                "name": "Enchanted Gold",
                "tier": "UNCOMMON",
                "bid_price": 100_000.0,
                "ask_price": 110_000.0,
                "bid_volume": 500,
                "ask_volume": 400,
                "bid_moving_week": 840_000,
                "ask_moving_week": 840_000,
            },
            {
                "product_key": "ENCHANTED_WHEAT",
                "name": "Enchanted Wheat",
                "bid_price": 10.0,
                "ask_price": 12.0,
                "bid_volume": 20_000,
                "ask_volume": 10_000,
                "bid_moving_week": 100_000,
                "ask_moving_week": 100_000,
            },
            {"product_key": "WHEAT", "bid_price": 2.0, "ask_price": 3.0},
        ],
        "books": {
            "ENCHANTED_GOLD": {
                "bids": [
                    {"unit_price": 100_000, "amount": 50, "order_count": 3},
                    {"unit_price": 99_500, "amount": 40, "order_count": 2},
                    {"unit_price": 99_000, "amount": 45, "order_count": 2},
                    {"unit_price": 98_500, "amount": 55, "order_count": 3},
                    {"unit_price": 98_000, "amount": 60, "order_count": 4},
                    {"unit_price": 97_500, "amount": 50, "order_count": 2},
                    {"unit_price": 97_000, "amount": 40, "order_count": 1},
                    {"unit_price": 96_500, "amount": 45, "order_count": 2},
                    {"unit_price": 96_000, "amount": 50, "order_count": 3},
                    {"unit_price": 95_000, "amount": 5_000, "order_count": 1},
                ],
                "asks": [
                    {"unit_price": 110_000, "amount": 30, "order_count": 2},
                    {"unit_price": 111_000, "amount": 45, "order_count": 3},
                ],
            },
        },
        "candles": candles,
        "ticks": [
            {
                "product_key": "WHEAT",
                "timestamp": (SNAPSHOT_TIME - timedelta(minutes=minutes)).isoformat(),
                "bid_price": bid,
                "ask_price": 3.0,
                "bid_volume": 100,
            }
            for minutes, bid in ((10, 2.0), (8, 2.1), (4, 1.9))
        ],
    }


@pytest.fixture
def snapshot_file(tmp_path: Path, snapshot_data: dict[str, Any]) -> Path:
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(snapshot_data))
    return path
