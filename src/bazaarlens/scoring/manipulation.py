"""Price deviation (manipulation) detection."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from bazaarlens.analysis.stats import mean, pstdev
from bazaarlens.config_loader import ManipulationConfig
from bazaarlens.data.bars import Candle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManipulationScore:
    """Outlier test of the current bid against recent closes."""

    is_manipulated: bool = False
    z_score: float = 0.0
    deviation_percent: float = 0.0
    intensity: float = 0.0  # 0-1


NOT_MANIPULATED = ManipulationScore()


class ManipulationDetector:
    """
    Flags products whose current bid is a statistical outlier.

    z = (bid - mean) / max(stddev, mean * min_stddev_ratio)
    Flagged when |z| > threshold; intensity = min(1, |z| / ceiling).
    """

    def __init__(self, config: ManipulationConfig | None = None):
        self.config = config or ManipulationConfig()

    def score(self, bid_price: float, candles: Sequence[Candle] | None) -> ManipulationScore:
        """
        Score the current bid.

        Too few candles or a non-positive bid is "no signal", not an error.
        """
        cfg = self.config
        history = sorted(candles or (), key=lambda c: c.period_start)
        closes = [c.close for c in history[-cfg.lookback_candles :] if c.close > 0]

        if bid_price <= 0 or len(closes) < cfg.min_candles:
            return NOT_MANIPULATED

        avg = mean(closes)
        if avg <= 0:
            return NOT_MANIPULATED

        stddev = max(pstdev(closes), avg * cfg.min_stddev_ratio)
        z_score = (bid_price - avg) / stddev
        deviation = (bid_price - avg) / avg * 100

        flagged = abs(z_score) > cfg.z_score_threshold
        intensity = min(1.0, abs(z_score) / cfg.intensity_z_ceiling) if flagged else 0.0

        return ManipulationScore(
            is_manipulated=flagged,
            z_score=z_score,
            deviation_percent=deviation,
            intensity=intensity,
        )
