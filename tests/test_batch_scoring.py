"""Tests for batch scoring and the run cache."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from bazaarlens.constants import CandleInterval
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import ScoringInput
from bazaarlens.scoring.batch import CachedScores, ProductState, ScoreRunCache, score_batch
from bazaarlens.scoring.manipulation import NOT_MANIPULATED, ManipulationDetector
from bazaarlens.scoring.opportunity import OpportunityScorer

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _input(key: str, bid: float, ask: float) -> ScoringInput:
    return ScoringInput(key, bid, ask, 100_000, 100_000)


def _flat(key: str, price: float, count: int) -> list[Candle]:
    return [
        Candle(key, CandleInterval.ONE_HOUR, T0 + timedelta(hours=i), price, price, price, price)
        for i in range(count)
    ]


class TestScoreBatch:
    """Tests for index-aligned batch scoring."""

    def test_outputs_align_with_inputs(self) -> None:
        inputs = [_input("A", 1_000, 1_500), _input("B", 0, 10), _input("C", 50_000, 80_000)]
        candles = {"A": _flat("A", 1_000, 48), "C": _flat("C", 50_000, 48)}

        opportunity, manipulation = score_batch(inputs, candles)

        assert len(opportunity) == len(manipulation) == 3
        assert opportunity[1] == 0.0
        scorer = OpportunityScorer()
        assert opportunity[0] == scorer.score(inputs[0], candles["A"])
        assert opportunity[2] == scorer.score(inputs[2], candles["C"])

    def test_missing_candles_fall_back(self) -> None:
        inputs = [_input("A", 1_000, 1_500)]

        opportunity, manipulation = score_batch(inputs, {})

        assert opportunity[0] == OpportunityScorer().score(inputs[0])
        assert manipulation[0] == NOT_MANIPULATED

    def test_manipulation_scored_per_product(self) -> None:
        inputs = [_input("A", 2_000, 2_500), _input("B", 1_000, 1_500)]
        candles = {"A": _flat("A", 1_000, 48), "B": _flat("B", 1_000, 48)}

        _, manipulation = score_batch(inputs, candles, detector=ManipulationDetector())

        assert manipulation[0].is_manipulated
        assert not manipulation[1].is_manipulated

    def test_empty_batch(self) -> None:
        assert score_batch([], {}) == ([], [])


class TestScoreRunCache:
    """Tests for reuse of unchanged product scores."""

    def _states(self, **bids: float) -> dict[str, ProductState]:
        return {key: ProductState(bid, bid * 2, 10, 10) for key, bid in bids.items()}

    def _scores(self, states: dict[str, ProductState]) -> dict[str, CachedScores]:
        return {key: CachedScores(1.0, NOT_MANIPULATED) for key in states}

    def test_first_run_everything_changed(self) -> None:
        cache = ScoreRunCache()
        states = self._states(A=1, B=2)

        assert cache.is_first_run
        assert cache.changed_keys(states) == {"A", "B"}

    def test_unchanged_products_reused(self) -> None:
        cache = ScoreRunCache()
        states = self._states(A=1, B=2)
        cache.update(states, self._scores(states))

        current = self._states(A=1, B=3, C=4)

        assert not cache.is_first_run
        assert cache.changed_keys(current) == {"B", "C"}
        assert cache.get_cached_scores("A") == CachedScores(1.0, NOT_MANIPULATED)

    def test_missing_scores_force_rescore(self) -> None:
        cache = ScoreRunCache()
        states = self._states(A=1, B=2)
        cache.update(states, {"A": CachedScores(1.0, NOT_MANIPULATED)})

        assert cache.changed_keys(states) == {"B"}

    def test_state_from_input(self) -> None:
        state = ProductState.from_input(ScoringInput("A", 1.0, 2.0, 3, 4))
        assert state == ProductState(1.0, 2.0, 3, 4)

    def test_clear(self) -> None:
        cache = ScoreRunCache()
        states = self._states(A=1)
        cache.update(states, self._scores(states))

        cache.clear()

        assert cache.is_first_run
        assert cache.get_cached_scores("A") is None
