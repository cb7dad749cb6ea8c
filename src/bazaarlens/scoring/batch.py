"""Batch scoring and the run cache of unchanged products."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import ScoringInput
from bazaarlens.scoring.manipulation import ManipulationDetector, ManipulationScore
from bazaarlens.scoring.opportunity import OpportunityScorer

logger = logging.getLogger(__name__)


def score_batch(
    inputs: Sequence[ScoringInput],
    candles_by_product: Mapping[str, Sequence[Candle]],
    scorer: OpportunityScorer | None = None,
    detector: ManipulationDetector | None = None,
) -> tuple[list[float], list[ManipulationScore]]:
    """
    Score many products at once.

    Output lists are index-aligned with ``inputs`` so callers can zip results
    back to products without a keyed lookup.
    """
    scorer = scorer or OpportunityScorer()
    detector = detector or ManipulationDetector()

    opportunity: list[float] = []
    manipulation: list[ManipulationScore] = []
    for item in inputs:
        candles = candles_by_product.get(item.product_key, ())
        opportunity.append(scorer.score(item, candles))
        manipulation.append(detector.score(item.bid_price, candles))

    return opportunity, manipulation


@dataclass(frozen=True)
class ProductState:
    """Inputs that decide whether a product needs rescoring."""

    bid_price: float
    ask_price: float
    bid_moving_week: int
    ask_moving_week: int

    @classmethod
    def from_input(cls, item: ScoringInput) -> ProductState:
        return cls(
            bid_price=item.bid_price,
            ask_price=item.ask_price,
            bid_moving_week=item.bid_moving_week,
            ask_moving_week=item.ask_moving_week,
        )


@dataclass(frozen=True)
class CachedScores:
    """Scores from the previous run."""

    opportunity_score: float
    manipulation: ManipulationScore


class ScoreRunCache:
    """
    Remembers last run's product states and scores.

    Products whose state is unchanged reuse their cached scores instead of being
    rescored. The first run reports every product as changed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, ProductState] = {}
        self._scores: dict[str, CachedScores] = {}
        self._initialized = False

    @property
    def is_first_run(self) -> bool:
        with self._lock:
            return not self._initialized

    def changed_keys(self, current: Mapping[str, ProductState]) -> set[str]:
        """Keys that are new or whose state differs from the previous run."""
        with self._lock:
            if not self._initialized:
                return set(current)
            return {
                key
                for key, state in current.items()
                if self._states.get(key) != state or key not in self._scores
            }

    def get_cached_scores(self, product_key: str) -> CachedScores | None:
        with self._lock:
            return self._scores.get(product_key)

    def update(self, states: Mapping[str, ProductState], scores: Mapping[str, CachedScores]) -> None:
        """Replace the remembered run with this one."""
        with self._lock:
            self._states = dict(states)
            self._scores = dict(scores)
            self._initialized = True
        logger.debug(f"Run cache updated with {len(states)} products")

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
            self._scores.clear()
            self._initialized = False
