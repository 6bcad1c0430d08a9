"""
Historical feature backfill.

Seeds a symbol's snapshot history from a bar history in one pass. Every
date goes through ``calculate_features`` with the same lookback window
and the same carried EMA state the daily pipeline would use, so a later
daily recompute of any backfilled date reproduces the stored snapshot.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np
import pandas as pd

from eodsignals.core.config import settings
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market, parse_market
from eodsignals.domain.price import Bar, BarHistory
from eodsignals.engine.features import calculate_features


# =============================================================================
# Frame Preparation
# =============================================================================

def bars_to_frame(bars: Iterable[Bar] | BarHistory) -> pd.DataFrame:
    """Float OHLCV frame on a DatetimeIndex, ascending, last duplicate wins."""
    history = bars if isinstance(bars, BarHistory) else BarHistory(symbol="", bars=list(bars))
    df = history.to_dataframe()
    if df.empty:
        return df
    df.index = pd.DatetimeIndex(pd.to_datetime(df.index), name="date")
    df = df[~df.index.duplicated(keep="last")]
    return df.sort_index().astype(float)


def window_starts(index: pd.DatetimeIndex, lookback_days: int) -> np.ndarray:
    """Row position where each row's lookback window begins (inclusive)."""
    return index.searchsorted(index - pd.Timedelta(days=lookback_days), side="left")


# =============================================================================
# Backfill
# =============================================================================

def backfill_snapshots(
    symbol: str,
    market: Market | str,
    bars: Iterable[Bar] | BarHistory,
    lookback_days: int | None = None,
    previous: FeatureSnapshot | None = None,
    engine_version: str | None = None,
) -> list[FeatureSnapshot]:
    """
    One snapshot per bar date, ascending, each chained to the one before.

    Args:
        symbol: Ticker symbol
        market: Market code
        bars: Bar history (any order; the last bar of a duplicated date wins)
        lookback_days: Calendar-day window per date (defaults to settings)
        previous: Stored snapshot preceding the first bar, if any
        engine_version: Version stamp (defaults to settings)

    Returns:
        FeatureSnapshot list; empty when there are no bars.
    """
    market = parse_market(market)
    bars = list(bars)
    frame = bars_to_frame(bars)
    if frame.empty:
        return []

    by_date = {bar.date: bar for bar in bars}
    ordered = [by_date[ts.date()] for ts in frame.index]
    starts = window_starts(frame.index, lookback_days or settings.feature_lookback_days)

    snapshots: list[FeatureSnapshot] = []
    for end, start in enumerate(starts):
        snapshot = calculate_features(
            symbol,
            market,
            ordered[end].date,
            ordered[start : end + 1],
            previous=previous,
            engine_version=engine_version,
        )
        snapshots.append(snapshot)
        previous = snapshot
    return snapshots
