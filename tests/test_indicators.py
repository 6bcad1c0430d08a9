"""Tests for the technical indicator library."""

from __future__ import annotations

import numpy as np
import pytest

from eodsignals.engine import indicators as ind


class TestSma:
    """Tests for sma."""

    def test_mean_of_last_period(self):
        assert ind.sma([1.0, 2.0, 3.0, 4.0, 5.0], 3) == pytest.approx(4.0)

    def test_short_series_returns_none(self):
        assert ind.sma([1.0, 2.0], 3) is None

    def test_non_positive_period_returns_none(self):
        assert ind.sma([1.0, 2.0], 0) is None


class TestEma:
    """Tests for ema and ema_series."""

    def test_without_previous_seeds_from_sma(self):
        values = [float(v) for v in range(1, 21)]
        assert ind.ema(values, 9) == ind.sma(values, 9)

    def test_with_previous_steps_once(self):
        """Multiplier 2/(9+1) = 0.2: 100 + (110 - 100) * 0.2."""
        assert ind.ema([90.0, 110.0], 9, previous=100.0) == pytest.approx(102.0)

    def test_series_starts_at_period(self):
        values = [float(v) for v in range(1, 31)]
        chain = ind.ema_series(values, 10)

        assert len(chain) == len(values) - 9
        assert chain[0] == pytest.approx(sum(values[:10]) / 10)

    def test_series_matches_stepping(self):
        values = [100.0, 102.0, 101.0, 105.0, 107.0, 104.0, 108.0]
        chain = ind.ema_series(values, 3)

        stepped = ind.ema(values[:3], 3)
        for i in range(3, len(values)):
            stepped = ind.ema(values[: i + 1], 3, previous=stepped)
        assert chain[-1] == pytest.approx(stepped)

    def test_short_series(self):
        assert ind.ema_series([1.0, 2.0], 3) == []


class TestRsi:
    """Tests for the simple-average RSI."""

    def test_needs_period_plus_one_closes(self):
        assert ind.rsi([float(v) for v in range(14)], 14) is None
        assert ind.rsi([float(v) for v in range(15)], 14) is not None

    def test_only_gains_is_exactly_100(self):
        assert ind.rsi([float(v) for v in range(100, 130)], 14) == 100.0

    def test_flat_prices_is_100(self):
        """No losses at all, including no movement, yields 100."""
        assert ind.rsi([50.0] * 20, 14) == 100.0

    def test_only_losses_is_zero(self):
        assert ind.rsi([float(v) for v in range(130, 100, -1)], 14) == pytest.approx(0.0)

    def test_balanced_moves_is_50(self):
        closes = [100.0, 101.0] * 8
        assert ind.rsi(closes, 14) == pytest.approx(50.0)

    def test_uses_only_last_window(self):
        """Moves before the last 14 changes do not count."""
        early_crash = [200.0, 100.0]
        rising = [float(v) for v in range(100, 115)]
        assert ind.rsi(early_crash + rising, 14) == 100.0

    def test_bounded_on_random_walk(self):
        rng = np.random.default_rng(7)
        closes = list(100 + np.cumsum(rng.normal(0, 1, 300)))
        for end in range(15, len(closes), 10):
            value = ind.rsi(closes[:end], 14)
            assert 0.0 <= value <= 100.0


class TestMacd:
    """Tests for MACD with and without carried EMA state."""

    @pytest.fixture
    def closes(self) -> list[float]:
        rng = np.random.default_rng(11)
        return [float(v) for v in 100 + np.cumsum(rng.normal(0, 1, 60))]

    def test_short_series_is_empty(self):
        result = ind.macd([float(v) for v in range(25)])
        assert result == ind.MacdResult()

    def test_signal_needs_nine_line_values(self):
        """26 closes give one MACD value; 34 give the first signal."""
        short = ind.macd([float(v) for v in range(30)])
        assert short.macd is not None
        assert short.signal is None
        assert short.histogram is None

        enough = ind.macd([float(v) for v in range(34)])
        assert enough.signal is not None
        assert enough.histogram == pytest.approx(enough.macd - enough.signal)

    def test_line_is_fast_minus_slow(self, closes):
        result = ind.macd(closes)
        assert result.macd == pytest.approx(result.fast_ema - result.slow_ema)
        assert result.fast_ema == pytest.approx(ind.ema_series(closes, 12)[-1])
        assert result.slow_ema == pytest.approx(ind.ema_series(closes, 26)[-1])

    def test_threaded_state_matches_full_chain(self, closes):
        """Stepping yesterday's state by today's close equals bootstrapping."""
        yesterday = ind.macd(closes[:-1])
        threaded = ind.macd(
            closes,
            previous_fast=yesterday.fast_ema,
            previous_slow=yesterday.slow_ema,
            previous_signal=yesterday.signal,
        )
        full = ind.macd(closes)

        assert threaded.macd == pytest.approx(full.macd)
        assert threaded.signal == pytest.approx(full.signal)
        assert threaded.histogram == pytest.approx(full.histogram)

    def test_threaded_state_works_on_short_window(self):
        """Carried state lets MACD continue even when the window is short."""
        result = ind.macd([100.0, 101.0], previous_fast=100.0, previous_slow=99.0)
        assert result.macd is not None
        assert result.signal is None


class TestBollinger:
    """Tests for std and bollinger_bands."""

    def test_population_std(self):
        assert ind.std([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0], 8) == pytest.approx(2.0)

    def test_constant_prices_collapse_bands(self):
        upper, middle, lower = ind.bollinger_bands([10.0] * 20)
        assert upper == middle == lower == pytest.approx(10.0)

    def test_bands_are_two_std_from_middle(self):
        closes = [float(v) for v in range(1, 21)]
        upper, middle, lower = ind.bollinger_bands(closes)
        std = ind.std(closes, 20)

        assert middle == pytest.approx(10.5)
        assert upper - middle == pytest.approx(2 * std)
        assert middle - lower == pytest.approx(2 * std)

    def test_short_series(self):
        assert ind.bollinger_bands([1.0] * 19) == (None, None, None)


class TestAtr:
    """Tests for true_range and the simple-average ATR."""

    def test_true_range_uses_gaps(self):
        assert ind.true_range(high=12.0, low=11.0, prev_close=8.0) == pytest.approx(4.0)
        assert ind.true_range(high=12.0, low=10.0, prev_close=11.0) == pytest.approx(2.0)

    def test_constant_range(self):
        closes = [100.0] * 15
        highs = [101.0] * 15
        lows = [99.0] * 15
        assert ind.atr(highs, lows, closes, 14) == pytest.approx(2.0)

    def test_needs_period_plus_one_bars(self):
        assert ind.atr([101.0] * 14, [99.0] * 14, [100.0] * 14, 14) is None
