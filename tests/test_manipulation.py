"""Tests for price deviation detection."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from bazaarlens.config_loader import ManipulationConfig
from bazaarlens.constants import CandleInterval
from bazaarlens.data.bars import Candle
from bazaarlens.scoring.manipulation import NOT_MANIPULATED, ManipulationDetector

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _candles(closes: list[float]) -> list[Candle]:
    return [
        Candle("ITEM", CandleInterval.ONE_HOUR, T0 + timedelta(hours=i), c, c, c, c)
        for i, c in enumerate(closes)
    ]


def _alternating(count: int) -> list[Candle]:
    """Closes alternating 90/110: mean 100, population stddev 10."""
    return _candles([90.0 if i % 2 == 0 else 110.0 for i in range(count)])


@pytest.fixture
def detector() -> ManipulationDetector:
    return ManipulationDetector(ManipulationConfig())


class TestNoSignal:
    """Cases that return the neutral score."""

    def test_too_few_candles(self, detector: ManipulationDetector) -> None:
        assert detector.score(500.0, _alternating(23)) == NOT_MANIPULATED

    def test_no_candles(self, detector: ManipulationDetector) -> None:
        assert detector.score(500.0, None) == NOT_MANIPULATED

    def test_non_positive_bid(self, detector: ManipulationDetector) -> None:
        assert detector.score(0.0, _alternating(48)) == NOT_MANIPULATED

    def test_non_positive_closes_ignored(self, detector: ManipulationDetector) -> None:
        """Zero closes don't count toward the minimum."""
        candles = _alternating(20) + _candles([0.0] * 10)
        assert detector.score(500.0, candles) == NOT_MANIPULATED


class TestDetection:
    """Tests for z-score flagging."""

    def test_at_mean_not_flagged(self, detector: ManipulationDetector) -> None:
        result = detector.score(100.0, _alternating(48))
        assert not result.is_manipulated
        assert result.z_score == pytest.approx(0.0)
        assert result.intensity == 0.0

    def test_within_threshold(self, detector: ManipulationDetector) -> None:
        result = detector.score(112.0, _alternating(48))
        assert result.z_score == pytest.approx(1.2)
        assert not result.is_manipulated
        assert result.intensity == 0.0
        assert result.deviation_percent == pytest.approx(12.0)

    def test_outlier_flagged(self, detector: ManipulationDetector) -> None:
        result = detector.score(130.0, _alternating(48))
        assert result.is_manipulated
        assert result.z_score == pytest.approx(3.0)
        assert result.intensity == pytest.approx(0.6)
        assert result.deviation_percent == pytest.approx(30.0)

    def test_low_outlier_flagged(self, detector: ManipulationDetector) -> None:
        result = detector.score(70.0, _alternating(48))
        assert result.is_manipulated
        assert result.z_score == pytest.approx(-3.0)
        assert result.deviation_percent == pytest.approx(-30.0)

    def test_intensity_capped(self, detector: ManipulationDetector) -> None:
        result = detector.score(200.0, _alternating(48))
        assert result.intensity == 1.0

    def test_flat_history_uses_stddev_floor(self, detector: ManipulationDetector) -> None:
        """A constant series floors stddev at 0.1% of the mean."""
        result = detector.score(100.05, _candles([100.0] * 30))
        assert result.z_score == pytest.approx(0.5)
        assert not result.is_manipulated

    def test_only_recent_window_used(self, detector: ManipulationDetector) -> None:
        """Closes older than the lookback don't move the mean."""
        candles = _candles([1_000.0] * 32)
        candles += [
            Candle("ITEM", CandleInterval.ONE_HOUR, T0 + timedelta(hours=32 + i), c, c, c, c)
            for i, c in enumerate(90.0 if i % 2 == 0 else 110.0 for i in range(168))
        ]
        result = detector.score(100.0, candles)
        assert result.z_score == pytest.approx(0.0)

    def test_threshold_configurable(self) -> None:
        strict = ManipulationDetector(ManipulationConfig(z_score_threshold=1.0))
        assert strict.score(112.0, _alternating(48)).is_manipulated
