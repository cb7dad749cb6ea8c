"""Tests for the flip opportunity scorer."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from bazaarlens.config_loader import ScoringConfig
from bazaarlens.constants import CandleInterval
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import ScoringInput
from bazaarlens.scoring.manipulation import ManipulationDetector
from bazaarlens.scoring.opportunity import OpportunityScorer

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _item(bid: float, ask: float, bid_week: int = 100_000, ask_week: int = 100_000) -> ScoringInput:
    return ScoringInput(
        product_key="ITEM",
        bid_price=bid,
        ask_price=ask,
        bid_moving_week=bid_week,
        ask_moving_week=ask_week,
    )


def _flat(price: float, count: int) -> list[Candle]:
    return [
        Candle("ITEM", CandleInterval.ONE_HOUR, T0 + timedelta(hours=i), price, price, price, price)
        for i in range(count)
    ]


@pytest.fixture
def scorer() -> OpportunityScorer:
    return OpportunityScorer(ScoringConfig())


class TestGuards:
    """Inputs that must score zero."""

    @pytest.mark.parametrize(
        "item",
        [
            _item(0, 12),
            _item(10, 0),
            _item(12, 12),
            _item(12, 10),
            _item(10, 12, bid_week=0),
            _item(10, 12, ask_week=0),
        ],
    )
    def test_invalid_input_scores_zero(self, scorer: OpportunityScorer, item: ScoringInput) -> None:
        assert scorer.score(item, _flat(10, 24)) == 0.0
        assert scorer.score(item) == 0.0

    def test_fee_eats_spread(self, scorer: OpportunityScorer) -> None:
        """A 1% spread is unprofitable after the 1.125% taker fee."""
        assert scorer.net_profit(100, 101) < 0
        assert scorer.score(_item(100, 101), _flat(100, 24)) == 0.0

    def test_net_profit(self, scorer: OpportunityScorer) -> None:
        assert scorer.net_profit(10, 12) == pytest.approx(12 * (1 - 0.01125) - 10)


class TestScores:
    """Tests for the advanced and simplified paths."""

    def test_flat_history_scenario(self, scorer: OpportunityScorer) -> None:
        """Bid 10, ask 12, 500k/480k weekly volume, 24 flat hourly candles at 10."""
        item = _item(10, 12, 500_000, 480_000)
        candles = _flat(10, 24)

        assert scorer.score(item, candles) > 0
        assert not ManipulationDetector().score(item.bid_price, candles).is_manipulated

    def test_crossed_book_scores_exactly_zero(self, scorer: OpportunityScorer) -> None:
        assert scorer.score(_item(50, 49), _flat(50, 24)) == 0.0

    def test_cheap_flat_item_scores_tiny_but_positive(self, scorer: OpportunityScorer) -> None:
        score = scorer.score(_item(10, 12), _flat(10, 24))
        assert 0.0 < score < 0.01

    def test_sweet_spot_item_beats_cheap_item(self, scorer: OpportunityScorer) -> None:
        good = scorer.score(_item(100_000, 110_000, 840_000, 840_000), _flat(100_000, 48))
        cheap = scorer.score(_item(10, 12), _flat(10, 24))
        assert 1.0 < good < 10.0
        assert good > cheap

    def test_scores_within_range(self, scorer: OpportunityScorer) -> None:
        rng = random.Random(7)
        for _ in range(200):
            bid = 10 ** rng.uniform(-1, 8)
            ask = bid * rng.uniform(1.0, 20.0)
            item = _item(bid, ask, rng.randint(0, 5_000_000), rng.randint(0, 5_000_000))
            candles = _flat(bid * rng.uniform(0.5, 1.5), rng.choice([0, 3, 24]))
            assert 0.0 <= scorer.score(item, candles) <= 10.0

    @pytest.mark.parametrize("history", [0, 3, 24])
    def test_monotonic_in_ask(self, scorer: OpportunityScorer, history: int) -> None:
        candles = _flat(1_000, history)
        scores = [scorer.score(_item(1_000, ask), candles) for ask in range(1_020, 5_000, 40)]
        assert all(a <= b for a, b in zip(scores, scores[1:]))

    def test_deterministic(self, scorer: OpportunityScorer) -> None:
        candles = [
            Candle("ITEM", CandleInterval.ONE_HOUR, T0 + timedelta(hours=i), p, p * 1.02, p * 0.98, p)
            for i, p in enumerate([100, 104, 98, 101, 99, 103, 97, 102])
        ]
        item = _item(100, 130)
        assert scorer.score(item, candles) == scorer.score(item, candles)
        assert scorer.score(item, list(reversed(candles))) == scorer.score(item, candles)

    def test_sparse_history_uses_simplified_path(self, scorer: OpportunityScorer) -> None:
        item = _item(5_000, 7_000)
        assert scorer.score(item, _flat(5_000, 5)) == scorer.score(item, None)
        assert scorer.score(item, _flat(5_000, 6)) != scorer.score(item, None)

    def test_simplified_scenario(self, scorer: OpportunityScorer) -> None:
        """Balanced 1.68M weekly volume, about 100% ROI, priced in the sweet spot."""
        item = _item(100_000, 202_275, 840_000, 840_000)
        roi = scorer.net_profit(100_000, 202_275) / 100_000
        expected = scorer.compress(roi * 10 * 1.0 * 1.0)
        assert scorer.score(item) == pytest.approx(expected)


class TestComponents:
    """Tests for the individual score factors."""

    def test_volume_score(self, scorer: OpportunityScorer) -> None:
        assert scorer.volume_score(0, 0) == 0.0
        assert scorer.volume_score(840_000, 840_000) == pytest.approx(1.0)
        assert scorer.volume_score(1_680_000, 0) == pytest.approx(0.7)

    def test_volume_score_penalises_thin_markets(self, scorer: OpportunityScorer) -> None:
        hourly = 50_000 / 168
        expected = hourly / 10_000 * (50_000 / 100_000) ** 2
        assert scorer.volume_score(25_000, 25_000) == pytest.approx(expected)

    def test_sweet_spot(self, scorer: OpportunityScorer) -> None:
        assert scorer.sweet_spot_factor(100_000, 0.1) == pytest.approx(1.0)
        assert scorer.sweet_spot_factor(1, 0.1) == pytest.approx(0.2)
        assert scorer.sweet_spot_factor(1, 1.5) == pytest.approx(0.6)

    def test_capital_gate(self, scorer: OpportunityScorer) -> None:
        assert scorer.capital_efficiency_gate(1_000, 10_000) == pytest.approx(0.25)
        assert scorer.capital_efficiency_gate(0, 10_000) == 0.0
        assert scorer.capital_efficiency_gate(1e300, 1e300) == pytest.approx(1.0)
        assert scorer.capital_efficiency_gate(1e-300, 1e-300) == pytest.approx(0.0)

    def test_spread_stability(self, scorer: OpportunityScorer) -> None:
        # zero ranges have no mean, so the CV defaults to 1
        assert scorer.spread_stability(_flat(10, 10)) == pytest.approx(0.5)
        steady = [
            Candle("ITEM", CandleInterval.ONE_HOUR, T0 + timedelta(hours=i), 10, 11, 9, 10)
            for i in range(10)
        ]
        assert scorer.spread_stability(steady) == pytest.approx(1.0)

    def test_trend_factor(self, scorer: OpportunityScorer) -> None:
        assert scorer.trend_factor(_flat(10, 4)) == 1.0
        assert scorer.trend_factor(_flat(10, 10)) == pytest.approx(1.0)
        dip = _flat(10, 4) + [
            Candle("ITEM", CandleInterval.ONE_HOUR, T0 + timedelta(hours=4), 5, 5, 5, 5)
        ]
        assert scorer.trend_factor(dip) == pytest.approx(1.2)

    def test_roi_boost_and_compress(self, scorer: OpportunityScorer) -> None:
        assert scorer.roi_boost(0) == pytest.approx(1.0)
        assert scorer.roi_boost(9) == pytest.approx(1.5)
        assert scorer.roi_boost(1e9) == scorer.roi_boost(100)
        assert scorer.compress(0) == 0.0
        assert scorer.compress(9) == pytest.approx(3.5)
        assert scorer.compress(1e30) == 10.0

    def test_penalties(self, scorer: OpportunityScorer) -> None:
        assert scorer.dust_penalty(500) == pytest.approx(0.25)
        assert scorer.dust_penalty(2_000) == 1.0
        assert scorer.feasibility_penalty(8, 2_000_000) == pytest.approx(0.5)
        assert scorer.feasibility_penalty(8, 500_000) == 1.0
