"""
Daily Delta.

Day-over-day summary of what moved: closes across the universe, signal
changes across portfolio positions, stop-loss raises and new activity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from eodsignals.core.numeric import ZERO, mean, pct_diff, quantize
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.portfolio import StopLossState
from eodsignals.domain.sectors import SectorStrength
from eodsignals.domain.signals import SignalDecision, SignalType

logger = logging.getLogger(__name__)

FLAT_BAND_PCT = Decimal("0.1")
TOP_MOVERS = 5

PositionKey = tuple[str, str]


@dataclass
class PriceChanges:
    total_symbols: int = 0
    gainers: int = 0
    losers: int = 0
    unchanged: int = 0
    avg_change: Decimal = ZERO
    top_gainers: list[tuple[str, Decimal]] = field(default_factory=list)
    top_losers: list[tuple[str, Decimal]] = field(default_factory=list)


@dataclass
class SignalChanges:
    total_positions: int = 0
    upgraded: int = 0
    downgraded: int = 0
    new_signals: int = 0
    signal_summary: dict[SignalType, int] = field(default_factory=dict)


@dataclass
class StopLossChanges:
    total_stops: int = 0
    raised: int = 0
    unchanged: int = 0
    avg_raise: Decimal = ZERO


@dataclass
class NewActivity:
    new_symbols: int = 0
    new_reports: int = 0
    new_sectors: int = 0


@dataclass
class DailyDelta:
    date: date
    price_changes: PriceChanges
    signal_changes: SignalChanges
    stop_loss_changes: StopLossChanges
    new_activity: NewActivity = field(default_factory=NewActivity)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        prices = self.price_changes
        signals = self.signal_changes
        stops = self.stop_loss_changes
        activity = self.new_activity
        return {
            "date": self.date.isoformat(),
            "price_changes": {
                "total_symbols": prices.total_symbols,
                "gainers": prices.gainers,
                "losers": prices.losers,
                "unchanged": prices.unchanged,
                "avg_change": str(prices.avg_change),
                "top_gainers": [{"symbol": s, "change": str(c)} for s, c in prices.top_gainers],
                "top_losers": [{"symbol": s, "change": str(c)} for s, c in prices.top_losers],
            },
            "signal_changes": {
                "total_positions": signals.total_positions,
                "upgraded": signals.upgraded,
                "downgraded": signals.downgraded,
                "new_signals": signals.new_signals,
                "signal_summary": {k.value: v for k, v in signals.signal_summary.items()},
            },
            "stop_loss_changes": {
                "total_stops": stops.total_stops,
                "raised": stops.raised,
                "unchanged": stops.unchanged,
                "avg_raise": str(stops.avg_raise),
            },
            "new_activity": {
                "new_symbols": activity.new_symbols,
                "new_reports": activity.new_reports,
                "new_sectors": activity.new_sectors,
            },
            "summary": self.summary,
        }


def price_changes(
    current: Iterable[FeatureSnapshot],
    previous: Iterable[FeatureSnapshot],
) -> PriceChanges:
    """Close-to-close moves for symbols present on both days."""
    previous_close = {snap.key[:2]: snap.close_price for snap in previous}

    current = list(current)
    changes: list[tuple[str, Decimal]] = []
    result = PriceChanges(total_symbols=len(current))

    for snap in current:
        change = pct_diff(snap.close_price, previous_close.get(snap.key[:2]))
        if change is None:
            continue
        changes.append((snap.symbol, change))
        if change > FLAT_BAND_PCT:
            result.gainers += 1
        elif change < -FLAT_BAND_PCT:
            result.losers += 1
        else:
            result.unchanged += 1

    changes.sort(key=lambda item: item[1], reverse=True)
    result.avg_change = quantize(mean([c for _, c in changes])) or ZERO
    result.top_gainers = [(s, quantize(c)) for s, c in changes[:TOP_MOVERS]]
    result.top_losers = [(s, quantize(c)) for s, c in reversed(changes[-TOP_MOVERS:])]
    return result


def signal_changes(
    current: Mapping[PositionKey, SignalDecision],
    previous: Mapping[PositionKey, SignalDecision],
) -> SignalChanges:
    """Upgrades and downgrades by signal rank; unseen positions count as new."""
    result = SignalChanges(total_positions=len(current))

    for key, decision in current.items():
        result.signal_summary[decision.signal] = result.signal_summary.get(decision.signal, 0) + 1

        before = previous.get(key)
        if before is None:
            result.new_signals += 1
        elif decision.signal.rank > before.signal.rank:
            result.upgraded += 1
        elif decision.signal.rank < before.signal.rank:
            result.downgraded += 1

    return result


def stop_loss_changes(
    current: Iterable[StopLossState],
    previous: Mapping[PositionKey, Decimal],
) -> StopLossChanges:
    """Compare stops updated today with the last known earlier values.

    Args:
        current: States whose ``last_updated_date`` is the delta date
        previous: (portfolio_id, symbol_id) -> stop before that date
    """
    current = list(current)
    result = StopLossChanges(total_stops=len(current))
    raises: list[Decimal] = []

    for state in current:
        before = previous.get(state.key)
        if before is None:
            continue
        if state.current_stop_loss > before:
            raises.append(state.current_stop_loss - before)
        else:
            result.unchanged += 1

    result.raised = len(raises)
    result.avg_raise = quantize(mean(raises)) or ZERO
    return result


def _signed(value: Decimal) -> str:
    return f"+{value}" if value > 0 else f"{value}"


def build_summary(
    prices: PriceChanges,
    signals: SignalChanges,
    stops: StopLossChanges,
    new_reports: int = 0,
) -> str:
    parts = [
        f"Market: {prices.gainers} gainers, {prices.losers} losers "
        f"(avg change: {_signed(prices.avg_change)}%)."
    ]
    if signals.upgraded or signals.downgraded:
        parts.append(f"Signals: {signals.upgraded} upgraded, {signals.downgraded} downgraded.")
    if stops.raised:
        parts.append(f"Stops: {stops.raised} raised (avg: ${stops.avg_raise}).")
    if new_reports:
        parts.append(f"New: {new_reports} deep dive reports.")
    return " ".join(parts)


def count_new_sectors(
    current: Iterable[SectorStrength],
    previous: Iterable[SectorStrength],
) -> int:
    """Sectors ranked on the delta date that were not ranked the day before."""
    before = {(s.market, s.sector) for s in previous}
    return sum(1 for s in current if (s.market, s.sector) not in before)


def calculate_daily_delta(
    as_of: date,
    current_snapshots: Iterable[FeatureSnapshot],
    previous_snapshots: Iterable[FeatureSnapshot],
    current_decisions: Mapping[PositionKey, SignalDecision],
    previous_decisions: Mapping[PositionKey, SignalDecision],
    current_stops: Iterable[StopLossState] = (),
    previous_stops: Mapping[PositionKey, Decimal] | None = None,
    new_reports: int = 0,
    new_symbols: int = 0,
    current_sectors: Iterable[SectorStrength] = (),
    previous_sectors: Iterable[SectorStrength] = (),
) -> DailyDelta:
    """
    Assemble the day's delta from already loaded inputs.

    ``new_symbols`` counts symbols whose first snapshot is on ``as_of``;
    new sectors are derived from the two dates' ranked sector lists.
    """
    prices = price_changes(current_snapshots, previous_snapshots)
    signals = signal_changes(current_decisions, previous_decisions)
    stops = stop_loss_changes(current_stops, previous_stops or {})
    activity = NewActivity(
        new_symbols=new_symbols,
        new_reports=new_reports,
        new_sectors=count_new_sectors(current_sectors, previous_sectors),
    )

    delta = DailyDelta(
        date=as_of,
        price_changes=prices,
        signal_changes=signals,
        stop_loss_changes=stops,
        new_activity=activity,
        summary=build_summary(prices, signals, stops, new_reports),
    )
    logger.info(f"Daily delta for {as_of}: {delta.summary}")
    return delta
