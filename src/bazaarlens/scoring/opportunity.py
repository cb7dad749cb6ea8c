"""Opportunity scoring for bid/ask flips.

A flip buys at the bid and sells at the ask. The score rates how worthwhile
that flip is on a 0-10 scale from the current spread, weekly volume and (when
enough history exists) candle volatility, spread stability and trend.

Two paths:
- Advanced: at least ``min_candles_for_analysis`` candles
- Simplified: sparse history, ROI and volume only
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from bazaarlens.analysis.stats import clamp, coefficient_of_variation, mean, price_volatility
from bazaarlens.config_loader import ScoringConfig
from bazaarlens.constants import HOURS_PER_WEEK
from bazaarlens.data.bars import Candle
from bazaarlens.data.market_data import ScoringInput

logger = logging.getLogger(__name__)


def _sigmoid(z: float) -> float:
    # Split form so math.exp never overflows
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    e = math.exp(z)
    return e / (1.0 + e)


class OpportunityScorer:
    """
    Scores a single product's flip opportunity.

    Advanced formula:
        raw = (net_profit * volume * stability * sweet_spot * capital_gate)
              / (adjusted_volatility + bid * epsilon)
        raw *= trend_factor * roi_boost
        score = clamp(log10(1 + raw) * 3.5, 0, 10)

    The score is pure: identical inputs always give identical output.
    """

    def __init__(self, config: ScoringConfig | None = None):
        self.config = config or ScoringConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def net_profit(self, bid_price: float, ask_price: float) -> float:
        """Profit per unit after the taker fee on the sell side."""
        return ask_price * (1 - self.config.taker_fee_rate) - bid_price

    def score(self, item: ScoringInput, candles: Sequence[Candle] | None = None) -> float:
        """
        Calculate the opportunity score.

        Args:
            item: Current bid/ask and weekly volumes
            candles: Historical candles for the product (any order)

        Returns:
            Score in [0, 10]; 0 for invalid or unprofitable input
        """
        if not self._is_scoreable(item):
            return 0.0

        net_profit = self.net_profit(item.bid_price, item.ask_price)
        if net_profit <= 0:
            return 0.0

        history = sorted(candles or (), key=lambda c: c.period_start)
        if len(history) >= self.config.min_candles_for_analysis:
            return self._advanced_score(item, net_profit, history)

        logger.debug(
            f"{item.product_key}: {len(history)} candles, using simplified score"
        )
        return self._simplified_score(item, net_profit)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def volume_score(self, bid_moving_week: int, ask_moving_week: int) -> float:
        """
        Throughput score in [0, 1].

        Hourly volume relative to the ceiling, squared-penalised below the
        minimum viable weekly volume and scaled by bid/ask balance.
        """
        cfg = self.config
        total = bid_moving_week + ask_moving_week
        if total <= 0:
            return 0.0

        hourly = total / HOURS_PER_WEEK
        score = min(1.0, hourly / cfg.hourly_volume_ceiling)

        if total < cfg.min_weekly_volume:
            score *= (total / cfg.min_weekly_volume) ** 2

        larger = max(bid_moving_week, ask_moving_week)
        balance = min(bid_moving_week, ask_moving_week) / larger if larger > 0 else 0.0
        return score * (0.7 + 0.3 * balance)

    def sweet_spot_factor(self, price: float, roi: float) -> float:
        """Gaussian price affinity in log10 space, floored; higher floor for very high ROI."""
        cfg = self.config
        floor = cfg.high_roi_sweet_spot_floor if roi >= cfg.high_roi_threshold else cfg.sweet_spot_floor
        if price <= 0 or cfg.sweet_spot_target_price <= 0:
            return floor

        distance = math.log10(price) - math.log10(cfg.sweet_spot_target_price)
        width = cfg.sweet_spot_width_decades
        if width <= 0:
            return 1.0 if distance == 0 else floor

        gaussian = math.exp(-(distance**2) / (2 * width**2))
        return max(floor, gaussian)

    def capital_efficiency_gate(self, spread: float, ask_price: float) -> float:
        """Product of sigmoids requiring both spread and ask to clear their minimums."""
        cfg = self.config
        if spread <= 0 or ask_price <= 0:
            return 0.0

        spread_gate = _sigmoid(cfg.capital_gate_steepness * math.log10(spread / cfg.capital_min_spread))
        price_gate = _sigmoid(
            cfg.capital_gate_steepness * math.log10(ask_price / cfg.capital_min_ask_price)
        )
        return spread_gate * price_gate

    def spread_stability(self, candles: Sequence[Candle]) -> float:
        """1 / (1 + CV) of per-candle (high - low) / close, clamped to [min, 1]."""
        ratios = [c.range_ratio for c in candles]
        cv = coefficient_of_variation(ratios, default=1.0)
        return clamp(1.0 / (1.0 + cv), self.config.min_spread_stability, 1.0)

    def trend_factor(self, candles: Sequence[Candle]) -> float:
        """Favour prices below their short SMA (cheap to buy), clamped."""
        cfg = self.config
        closes = [c.close for c in candles]
        if len(closes) < cfg.trend_sma_period:
            return 1.0
        sma = mean(closes[-cfg.trend_sma_period :])
        if sma <= 0:
            return 1.0
        factor = 1.0 + (1.0 - closes[-1] / sma) * cfg.trend_sensitivity
        return clamp(factor, cfg.trend_factor_min, cfg.trend_factor_max)

    def roi_boost(self, roi: float) -> float:
        cfg = self.config
        return 1.0 + cfg.roi_boost_weight * math.log10(1.0 + min(max(roi, 0.0), cfg.roi_boost_cap))

    def compress(self, raw: float) -> float:
        """log10(1 + raw) * scale, clamped to [0, max_score]."""
        if raw <= 0 or not math.isfinite(raw):
            return 0.0
        compressed = math.log1p(raw) / math.log(10) * self.config.score_log_scale
        return clamp(compressed, 0.0, self.config.max_score)

    def dust_penalty(self, price: float) -> float:
        """Quadratic suppression of items priced under the dust threshold."""
        threshold = self.config.dust_price_threshold
        if threshold <= 0 or price >= threshold:
            return 1.0
        return (max(price, 0.0) / threshold) ** 2

    def feasibility_penalty(self, roi: float, weekly_volume: int) -> float:
        """
        Discount implausible high-ROI high-volume spreads.

        sqrt(threshold / roi) keeps roi * penalty non-decreasing in ROI.
        """
        cfg = self.config
        if roi > cfg.feasibility_roi_threshold and weekly_volume > cfg.feasibility_volume_threshold:
            return math.sqrt(cfg.feasibility_roi_threshold / roi)
        return 1.0

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _is_scoreable(self, item: ScoringInput) -> bool:
        return (
            item.bid_price > 0
            and item.ask_price > 0
            and item.bid_price < item.ask_price
            and item.bid_moving_week > 0
            and item.ask_moving_week > 0
        )

    def _advanced_score(
        self, item: ScoringInput, net_profit: float, history: Sequence[Candle]
    ) -> float:
        cfg = self.config
        window = history[-cfg.volatility_lookback_candles :]
        closes = [c.close for c in window]

        roi = net_profit / item.bid_price
        volatility = price_volatility(closes)
        adjusted_volatility = max(volatility, mean(closes) * cfg.risk_buffer_percentage)
        denominator = adjusted_volatility + item.bid_price * cfg.bid_epsilon
        if denominator <= 0:
            return 0.0

        numerator = (
            net_profit
            * self.volume_score(item.bid_moving_week, item.ask_moving_week)
            * self.spread_stability(window)
            * self.sweet_spot_factor(item.bid_price, roi)
            * self.capital_efficiency_gate(item.ask_price - item.bid_price, item.ask_price)
        )

        raw = numerator / denominator
        raw *= self.trend_factor(window) * self.roi_boost(roi)
        return self.compress(raw)

    def _simplified_score(self, item: ScoringInput, net_profit: float) -> float:
        cfg = self.config
        roi = net_profit / item.bid_price
        weekly_volume = item.bid_moving_week + item.ask_moving_week

        raw = (
            roi
            * cfg.simplified_roi_multiplier
            * self.volume_score(item.bid_moving_week, item.ask_moving_week)
            * self.sweet_spot_factor(item.bid_price, roi)
            * self.dust_penalty(item.bid_price)
            * self.feasibility_penalty(roi, weekly_volume)
        )
        return self.compress(raw)
