"""
Technical Indicator Library.

Pure, stateless calculations over plain float sequences. Every function
returns ``None`` when the series is too short rather than raising, and
never returns NaN or infinity. No rounding happens here; the feature
calculator rounds at its boundary.

Usage:
    from eodsignals.engine.indicators import sma, ema, rsi, macd, atr

    closes = [100.0, 101.5, 99.0, 102.0, ...]
    rsi_value = rsi(closes, period=14)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence


def _finite(value: float | None) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return value


def sma(values: Sequence[float], period: int) -> float | None:
    """
    Calculate Simple Moving Average.

    Args:
        values: Price or value series
        period: Lookback period

    Returns:
        Mean of the last ``period`` values or None if insufficient data
    """
    if period <= 0 or len(values) < period:
        return None
    return _finite(sum(values[-period:]) / period)


def ema(
    values: Sequence[float],
    period: int,
    previous: float | None = None,
) -> float | None:
    """
    Calculate one Exponential Moving Average step.

    Without ``previous`` the EMA is seeded from SMA(values, period), so
    repeated single-shot calls re-seed every time. With ``previous`` the
    latest value is folded in using the multiplier 2 / (period + 1).

    Args:
        values: Price or value series
        period: Lookback period
        previous: Prior EMA value, if one is being carried

    Returns:
        EMA value or None if insufficient data
    """
    if previous is None:
        return sma(values, period)
    if not values:
        return None

    multiplier = 2 / (period + 1)
    return _finite((values[-1] - previous) * multiplier + previous)


def ema_series(values: Sequence[float], period: int) -> list[float]:
    """
    Full EMA chain, seeded from the SMA of the first ``period`` values.

    Returns one value per input from index ``period - 1`` onwards, or an
    empty list if the series is too short.
    """
    if period <= 0 or len(values) < period:
        return []

    multiplier = 2 / (period + 1)
    current = sum(values[:period]) / period
    chain = [current]
    for price in values[period:]:
        current = (price - current) * multiplier + current
        chain.append(current)
    return chain


def rsi(closes: Sequence[float], period: int = 14) -> float | None:
    """
    Calculate Relative Strength Index.

    Simple (not Wilder-smoothed) averages over the last ``period`` changes;
    both sums are divided by ``period``. With no losses in the window the
    result is exactly 100.

    Args:
        closes: Closing prices
        period: RSI period (default 14)

    Returns:
        RSI value (0-100) or None if insufficient data
    """
    if period <= 0 or len(closes) < period + 1:
        return None

    recent = closes[-(period + 1):]
    changes = [recent[i] - recent[i - 1] for i in range(1, len(recent))]

    avg_gain = sum(c for c in changes if c > 0) / period
    avg_loss = sum(-c for c in changes if c < 0) / period

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return _finite(100 - (100 / (1 + rs)))


@dataclass(frozen=True)
class MacdResult:
    """MACD line, signal line, histogram and the EMA state behind them."""

    macd: float | None = None
    signal: float | None = None
    histogram: float | None = None
    fast_ema: float | None = None
    slow_ema: float | None = None


def _macd_line_series(
    closes: Sequence[float],
    fast_period: int,
    slow_period: int,
) -> tuple[list[float], float | None, float | None]:
    """MACD line per bar plus the final fast/slow EMAs (internal helper)."""
    fast_chain = ema_series(closes, fast_period)
    slow_chain = ema_series(closes, slow_period)
    if not fast_chain or not slow_chain:
        return [], None, None

    aligned_fast = fast_chain[-len(slow_chain):]
    line = [f - s for f, s in zip(aligned_fast, slow_chain)]
    return line, fast_chain[-1], slow_chain[-1]


def macd(
    closes: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
    previous_fast: float | None = None,
    previous_slow: float | None = None,
    previous_signal: float | None = None,
) -> MacdResult:
    """
    Calculate MACD (Moving Average Convergence Divergence).

    Stateful: when the prior day's fast/slow EMAs are supplied each EMA
    is stepped once with the latest close, and the signal line is stepped
    from ``previous_signal``. Without carried state the EMAs and the
    signal line are bootstrapped from the full series.

    Args:
        closes: Closing prices
        fast_period: Fast EMA period (default 12)
        slow_period: Slow EMA period (default 26)
        signal_period: Signal line period (default 9)
        previous_fast: Prior fast EMA
        previous_slow: Prior slow EMA
        previous_signal: Prior signal-line EMA

    Returns:
        MacdResult; histogram is None whenever the signal line is
    """
    threaded = previous_fast is not None and previous_slow is not None
    if not closes or (not threaded and len(closes) < slow_period):
        return MacdResult()

    window_line, chain_fast, chain_slow = _macd_line_series(
        closes, fast_period, slow_period
    )

    if threaded:
        fast_ema = ema(closes, fast_period, previous_fast)
        slow_ema = ema(closes, slow_period, previous_slow)
    else:
        fast_ema, slow_ema = chain_fast, chain_slow

    if fast_ema is None or slow_ema is None:
        return MacdResult()

    line = fast_ema - slow_ema

    signal_line: float | None
    if previous_signal is not None:
        signal_line = ema([line], signal_period, previous_signal)
    else:
        series = window_line[:-1] + [line] if window_line else []
        chain = ema_series(series, signal_period)
        signal_line = chain[-1] if chain else None

    histogram = line - signal_line if signal_line is not None else None

    return MacdResult(
        macd=_finite(line),
        signal=_finite(signal_line),
        histogram=_finite(histogram),
        fast_ema=_finite(fast_ema),
        slow_ema=_finite(slow_ema),
    )


def std(values: Sequence[float], period: int) -> float | None:
    """
    Population standard deviation of the last ``period`` values.

    Returns:
        Standard deviation or None if insufficient data
    """
    if period <= 0 or len(values) < period:
        return None

    subset = list(values[-period:])
    mean = sum(subset) / period
    variance = sum((x - mean) ** 2 for x in subset) / period
    return _finite(math.sqrt(variance))


def bollinger_bands(
    closes: Sequence[float],
    period: int = 20,
    num_std: float = 2.0,
) -> tuple[float | None, float | None, float | None]:
    """
    Calculate Bollinger Bands.

    Args:
        closes: Closing prices
        period: SMA period (default 20)
        num_std: Number of standard deviations (default 2.0)

    Returns:
        Tuple of (upper_band, middle_band, lower_band) or (None, None, None)
    """
    middle = sma(closes, period)
    std_dev = std(closes, period)

    if middle is None or std_dev is None:
        return None, None, None

    return middle + num_std * std_dev, middle, middle - num_std * std_dev


def true_range(high: float, low: float, prev_close: float) -> float:
    """Largest of the bar range and the gaps from the previous close."""
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> float | None:
    """
    Calculate Average True Range.

    Simple average of the last ``period`` true ranges.

    Args:
        highs: High prices
        lows: Low prices
        closes: Closing prices
        period: ATR period (default 14)

    Returns:
        ATR value or None if insufficient data
    """
    n = min(len(highs), len(lows), len(closes))
    if period <= 0 or n < period + 1:
        return None

    ranges = [
        true_range(highs[i], lows[i], closes[i - 1])
        for i in range(n - period, n)
    ]
    return _finite(sum(ranges) / period)


__all__ = [
    "MacdResult",
    "atr",
    "bollinger_bands",
    "ema",
    "ema_series",
    "macd",
    "rsi",
    "sma",
    "std",
    "true_range",
]
