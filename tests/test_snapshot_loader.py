"""Tests for snapshot loading and boundary validation."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from bazaarlens.constants import CandleInterval
from bazaarlens.data.snapshot_loader import SnapshotValidationError, load_snapshot, parse_snapshot

SNAPSHOT_TIME = datetime(2024, 3, 3, tzinfo=timezone.utc)


class TestParseSnapshot:
    """Tests for converting validated snapshots into domain records."""

    def test_parse(self, snapshot_data: dict[str, Any]) -> None:
        snapshot = parse_snapshot(snapshot_data)

        assert snapshot.timestamp == SNAPSHOT_TIME
        assert [p.product_key for p in snapshot.products] == [
            "ENCHANTED_GOLD",
            "ENCHANTED_WHEAT",
            "WHEAT",
        ]
        bids, asks = snapshot.books["ENCHANTED_GOLD"]
        assert len(bids) == 10
        assert asks[0].unit_price == 110_000
        assert len(snapshot.candles) == 98
        assert snapshot.candles[0].interval == CandleInterval.ONE_HOUR
        assert len(snapshot.ticks) == 3

    def test_naive_timestamps_become_utc(self, snapshot_data: dict[str, Any]) -> None:
        snapshot_data["candles"][0]["period_start"] = "2024-03-01T00:00:00"
        snapshot = parse_snapshot(snapshot_data)
        assert snapshot.candles[0].period_start == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_missing_timestamp_defaults_to_now(self) -> None:
        snapshot = parse_snapshot({"products": []})
        assert snapshot.timestamp.tzinfo is not None

    def test_empty_document(self) -> None:
        snapshot = parse_snapshot({})
        assert snapshot.products == []
        assert snapshot.books == {}


class TestValidation:
    """Malformed records are rejected with SnapshotValidationError."""

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda d: d["products"][0].update(bid_price=-1),
            lambda d: d["products"][0].update(product_key=""),
            lambda d: d["products"].append(copy.deepcopy(d["products"][0])),
            lambda d: d["books"]["ENCHANTED_GOLD"]["bids"][0].update(unit_price=0),
            lambda d: d["candles"][0].update(high=1.0),
            lambda d: d["candles"][0].update(interval="2h"),
            lambda d: d["ticks"][0].update(timestamp="yesterday"),
        ],
        ids=[
            "negative-price",
            "empty-key",
            "duplicate-product",
            "zero-book-price",
            "inconsistent-ohlc",
            "unknown-interval",
            "bad-timestamp",
        ],
    )
    def test_rejected(self, snapshot_data: dict[str, Any], mutate) -> None:
        mutate(snapshot_data)
        with pytest.raises(SnapshotValidationError):
            parse_snapshot(snapshot_data)

    def test_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_snapshot({"products": [{"bid_price": 1}]})


class TestLoadSnapshot:
    """Tests for reading snapshot files."""

    def test_load(self, snapshot_file: Path) -> None:
        snapshot = load_snapshot(snapshot_file)
        assert len(snapshot.products) == 3

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_snapshot(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(SnapshotValidationError, match="Invalid JSON"):
            load_snapshot(path)

    def test_non_object_root(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[]")
        with pytest.raises(SnapshotValidationError, match="must be an object"):
            load_snapshot(path)
