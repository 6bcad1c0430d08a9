"""
Feature Calculator.

Turns a symbol's bar window into one immutable FeatureSnapshot for a
target date. The calculation itself is pure; FeatureCalculatorService
wraps it with the bar/snapshot stores for the daily pipeline.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence

from eodsignals.core.config import settings
from eodsignals.core.exceptions import UpstreamUnavailableError
from eodsignals.core.numeric import STATE_PLACES, quantize, round_int, to_float
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market, parse_market
from eodsignals.domain.price import Bar
from eodsignals.engine import indicators as ind
from eodsignals.repositories.base import BarStore, SnapshotStore

logger = logging.getLogger(__name__)


def _state(value: float | None) -> Decimal | None:
    return quantize(value, STATE_PLACES)


def _chain_last(closes: Sequence[float], period: int) -> float | None:
    chain = ind.ema_series(closes, period)
    return chain[-1] if chain else None


def _carried_state(
    previous: FeatureSnapshot | None,
    window: Sequence[Bar],
) -> tuple[float | None, float | None, float | None]:
    """EMA state from the prior snapshot, if it lines up with the window.

    The state is only usable when the previous snapshot was taken on the
    bar immediately before the latest one; otherwise stepping once would
    skip or double count a close.
    """
    if previous is None or not previous.has_ema_state or len(window) < 2:
        return None, None, None
    if previous.date != window[-2].date:
        return None, None, None
    return (
        to_float(previous.ema_fast_state),
        to_float(previous.ema_slow_state),
        to_float(previous.macd_signal_state),
    )


def calculate_features(
    symbol: str,
    market: Market | str,
    as_of: date,
    bars: Sequence[Bar],
    previous: FeatureSnapshot | None = None,
    engine_version: str | None = None,
) -> FeatureSnapshot:
    """
    Calculate the feature snapshot for ``symbol`` on ``as_of``.

    Args:
        symbol: Ticker symbol
        market: Market code
        as_of: Snapshot date; bars after it are ignored
        bars: Lookback window supplied by the caller (any order)
        previous: Prior trading day's snapshot carrying EMA/MACD state
        engine_version: Version stamp (defaults to settings)

    Returns:
        FeatureSnapshot. With no bars every field is None; that is a
        degenerate result, not an error.
    """
    market = parse_market(market)
    version = engine_version or settings.engine_version

    window = sorted((bar for bar in bars if bar.date <= as_of), key=lambda b: b.date)
    if not window:
        return FeatureSnapshot.empty(symbol, market, as_of, engine_version=version)

    closes = [float(bar.close) for bar in window]
    highs = [float(bar.high) for bar in window]
    lows = [float(bar.low) for bar in window]
    volumes = [float(bar.volume) for bar in window]

    prev_fast, prev_slow, prev_signal = _carried_state(previous, window)

    sma_20 = ind.sma(closes, 20)
    sma_50 = ind.sma(closes, 50)
    sma_200 = ind.sma(closes, 200)

    rsi_14 = ind.rsi(closes, 14)
    macd = ind.macd(
        closes,
        previous_fast=prev_fast,
        previous_slow=prev_slow,
        previous_signal=prev_signal,
    )

    # The MACD result only carries EMAs once the slow chain exists
    ema_12 = macd.fast_ema if macd.fast_ema is not None else _chain_last(closes, 12)
    ema_26 = macd.slow_ema if macd.slow_ema is not None else _chain_last(closes, 26)

    bb_upper, bb_middle, bb_lower = ind.bollinger_bands(closes, 20, 2.0)
    atr_14 = ind.atr(highs, lows, closes, 14)

    volume_sma_20 = ind.sma(volumes, 20)
    current_volume = window[-1].volume
    volume_ratio = (
        current_volume / volume_sma_20 if volume_sma_20 else None
    )

    return FeatureSnapshot(
        symbol=symbol,
        market=market,
        date=as_of,
        close_price=quantize(window[-1].close),
        volume=current_volume,
        sma_20=quantize(sma_20),
        sma_50=quantize(sma_50),
        sma_200=quantize(sma_200),
        ema_12=quantize(ema_12),
        ema_26=quantize(ema_26),
        rsi_14=quantize(rsi_14),
        macd=quantize(macd.macd),
        macd_signal=quantize(macd.signal),
        macd_histogram=quantize(macd.histogram),
        bb_upper=quantize(bb_upper),
        bb_middle=quantize(bb_middle),
        bb_lower=quantize(bb_lower),
        atr_14=quantize(atr_14),
        volume_sma_20=round_int(volume_sma_20),
        volume_ratio=quantize(volume_ratio),
        ema_fast_state=_state(macd.fast_ema),
        ema_slow_state=_state(macd.slow_ema),
        macd_signal_state=_state(macd.signal),
        engine_version=version,
    )


class FeatureCalculatorService:
    """Storage-backed feature calculation for the daily pipeline."""

    def __init__(
        self,
        bar_store: BarStore,
        snapshot_store: SnapshotStore,
        lookback_days: int | None = None,
        engine_version: str | None = None,
    ):
        self.bars = bar_store
        self.snapshots = snapshot_store
        self.lookback_days = lookback_days or settings.feature_lookback_days
        self.engine_version = engine_version or settings.engine_version

    def calculate_and_store(
        self,
        symbol: str,
        market: Market | str,
        as_of: date,
    ) -> FeatureSnapshot:
        """Load the window, compute, upsert.

        Raises:
            UpstreamUnavailableError: storage failed; ``details`` carries
                symbol, market and date so the universe pass can report it.
        """
        market = parse_market(market)
        start = as_of - timedelta(days=self.lookback_days)
        context = {"symbol": symbol, "market": market.value, "date": as_of.isoformat()}

        try:
            bars = self.bars.get_bars(symbol, market, start, as_of)
            previous = self.snapshots.get_previous_snapshot(symbol, market, as_of)
            logger.debug(f"Found {len(bars)} bars for {symbol} ({market.value})")

            snapshot = calculate_features(
                symbol,
                market,
                as_of,
                bars,
                previous=previous,
                engine_version=self.engine_version,
            )
            if not bars:
                logger.warning(f"No bars found for {symbol} ({market.value}) on {as_of}")

            self.snapshots.put_snapshot(snapshot)
        except UpstreamUnavailableError as exc:
            raise UpstreamUnavailableError(
                f"Feature calculation failed for {symbol} ({market.value}): {exc.message}",
                details={**exc.details, **context},
            ) from exc
        except (ConnectionError, TimeoutError) as exc:
            raise UpstreamUnavailableError(
                f"Feature calculation failed for {symbol} ({market.value}): {exc}",
                details=context,
            ) from exc

        logger.info(f"Features calculated for {symbol} ({market.value}) on {as_of}")
        return snapshot
