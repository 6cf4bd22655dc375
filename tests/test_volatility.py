"""
Tests for the multi-timeframe volatility tracker and classifier.
"""

import math

import pytest

from dexarb.models import ExecutionUrgency, VolatilityImpact, VolatilityMetrics, VolatilityTrend
from dexarb.volatility import (LONG_WINDOW_SECS, SHORT_WINDOW_SECS, PriceSample,
                               VolatilityTracker, VolatilityWindow)


class TestVolatilityWindow:
    """Tests for a single time-bounded window."""

    def test_undefined_below_ten_samples(self):
        """Volatility needs at least 10 samples."""
        window = VolatilityWindow(300)
        for i in range(9):
            window.add(PriceSample(float(i), 3000.0 + i))

        assert window.std_dev() is None
        assert window.volatility_pct() is None

        window.add(PriceSample(9.0, 3009.0))
        assert window.std_dev() is not None

    def test_population_std_dev(self):
        """Std-dev is the population form, volatility is std/mean*100."""
        window = VolatilityWindow(300)
        prices = [100.0, 200.0] * 5
        for i, p in enumerate(prices):
            window.add(PriceSample(float(i), p))

        assert window.std_dev() == pytest.approx(50.0)
        assert window.volatility_pct() == pytest.approx(50.0 / 150.0 * 100)

    def test_evicts_samples_older_than_lookback(self):
        """The oldest sample goes once it is older than the lookback."""
        window = VolatilityWindow(10)
        window.add(PriceSample(0.0, 3000.0))
        window.add(PriceSample(5.0, 3000.0))
        window.add(PriceSample(11.0, 3000.0))

        assert len(window) == 2

    def test_constant_prices_have_zero_volatility(self):
        """A flat series is defined and zero."""
        window = VolatilityWindow(300)
        for i in range(12):
            window.add(PriceSample(float(i), 3000.0))

        assert window.volatility_pct() == 0.0


class TestVolatilityTracker:
    """Tests for VolatilityTracker."""

    def test_empty_tracker_is_neutral(self, clock):
        """No data degrades to LOW impact with no adjustments."""
        tracker = VolatilityTracker(clock=clock)
        metrics = tracker.metrics()

        assert metrics.short_term_volatility is None
        assert metrics.short_vol == 0.0
        assert metrics.impact_assessment == VolatilityImpact.LOW
        assert metrics.recommended_adjustments.spread_multiplier == 1.0

    def test_windows_stay_bounded(self, clock):
        """No window ever holds samples older than its lookback."""
        tracker = VolatilityTracker(clock=clock)
        for i in range(2000):
            clock.advance(2)
            tracker.add_price(3000.0 + (i % 7))

        counts = tracker.sample_counts()
        assert counts['short'] <= SHORT_WINDOW_SECS // 2 + 1
        assert counts['long'] <= LONG_WINDOW_SECS // 2 + 1
        assert counts['short'] < counts['medium'] < counts['long']

    def test_metrics_idempotent(self, clock):
        """Two reads with no add in between are identical."""
        tracker = VolatilityTracker(clock=clock)
        for i in range(30):
            clock.advance(2)
            tracker.add_price(3000.0 + (i % 5) * 10)

        assert tracker.metrics() == tracker.metrics()

    def test_ignores_unusable_prices(self, clock):
        """Non-positive and non-finite prices are not recorded."""
        tracker = VolatilityTracker(clock=clock)
        tracker.add_price(0.0)
        tracker.add_price(-5.0)
        tracker.add_price(math.nan)
        tracker.add_price(math.inf)

        assert tracker.sample_counts() == {'short': 0, 'medium': 0, 'long': 0}

    def test_drops_future_samples(self, clock):
        """A sample dated after 'now' is discarded."""
        tracker = VolatilityTracker(clock=clock)
        tracker.add_price(3000.0, timestamp=clock() + 60)

        assert tracker.sample_counts()['short'] == 0

    def test_drops_out_of_order_samples(self, clock, caplog):
        """A sample older than the newest one is discarded, not restamped."""
        tracker = VolatilityTracker(clock=clock)
        tracker.add_price(3000.0)

        with caplog.at_level("WARNING"):
            tracker.add_price(1000.0, timestamp=clock() - 7200)

        assert tracker.sample_counts() == {'short': 1, 'medium': 1, 'long': 1}
        assert "out-of-order" in caplog.text

    def test_explicit_timestamps_evict(self, clock):
        """Old samples fall out of the short window but stay in the long one."""
        tracker = VolatilityTracker(clock=clock)
        start = clock() - 1000
        for i in range(12):
            tracker.add_price(3000.0 + i, timestamp=start + i)
        tracker.add_price(3000.0, timestamp=clock())

        counts = tracker.sample_counts()
        assert counts['short'] == 1
        assert counts['long'] == 13


class TestVolatilityClassification:
    """Tests for VolatilityMetrics.from_levels."""

    def test_calm_market_scenario(self):
        """1%/1%/1% is LOW, STABLE, multiplier 1.0 and FAST."""
        metrics = VolatilityMetrics.from_levels(1.0, 1.0, 1.0)

        assert metrics.impact_assessment == VolatilityImpact.LOW
        assert metrics.volatility_trend == VolatilityTrend.STABLE
        assert metrics.recommended_adjustments.spread_multiplier == 1.0
        assert metrics.recommended_adjustments.position_size_factor == 1.0
        assert metrics.recommended_adjustments.execution_urgency == ExecutionUrgency.FAST

    def test_increasing_trend(self):
        metrics = VolatilityMetrics.from_levels(8.0, 4.0, 2.0)

        assert metrics.volatility_trend == VolatilityTrend.INCREASING
        assert metrics.impact_assessment == VolatilityImpact.HIGH
        assert metrics.recommended_adjustments.execution_urgency == ExecutionUrgency.CAUTIOUS

    def test_decreasing_trend(self):
        metrics = VolatilityMetrics.from_levels(1.0, 3.0, 6.0)

        assert metrics.volatility_trend == VolatilityTrend.DECREASING
        assert metrics.recommended_adjustments.execution_urgency == ExecutionUrgency.NORMAL

    def test_volatile_trend(self):
        metrics = VolatilityMetrics.from_levels(3.0, 5.0, 1.0)

        assert metrics.volatility_trend == VolatilityTrend.VOLATILE
        assert metrics.impact_assessment == VolatilityImpact.MODERATE

    def test_extreme_is_always_cautious(self):
        metrics = VolatilityMetrics.from_levels(12.0, 12.0, 12.0)

        assert metrics.impact_assessment == VolatilityImpact.EXTREME
        assert metrics.recommended_adjustments.spread_multiplier == 3.0
        assert metrics.recommended_adjustments.position_size_factor == 0.25
        assert metrics.recommended_adjustments.execution_urgency == ExecutionUrgency.CAUTIOUS

    @pytest.mark.parametrize("short,impact", [
        (1.99, VolatilityImpact.LOW),
        (2.0, VolatilityImpact.MODERATE),
        (4.99, VolatilityImpact.MODERATE),
        (5.0, VolatilityImpact.HIGH),
        (9.99, VolatilityImpact.HIGH),
        (10.0, VolatilityImpact.EXTREME),
    ])
    def test_impact_boundaries(self, short, impact):
        assert VolatilityMetrics.from_levels(short, short, short).impact_assessment == impact
