"""In-memory stores.

Dictionary-backed implementations of the storage protocols for tests,
backfills and single-process experiments. Each store guards its dict
with a lock so universe passes can run on a thread pool.
"""

from __future__ import annotations

import threading
from datetime import date
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market
from eodsignals.domain.portfolio import Position, StopLossState
from eodsignals.domain.price import Bar
from eodsignals.domain.sectors import SectorStrength
from eodsignals.domain.signals import SignalDecision

if TYPE_CHECKING:
    from eodsignals.engine.deep_dive import DeepDiveReport


class MemoryBarStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bars: dict[tuple[str, Market], dict[date, Bar]] = {}

    def get_bars(self, symbol: str, market: Market, start_date: date, end_date: date) -> list[Bar]:
        with self._lock:
            series = self._bars.get((symbol, market), {})
            return [series[d] for d in sorted(series) if start_date <= d <= end_date]

    def save_bars(self, symbol: str, market: Market, bars: Sequence[Bar]) -> int:
        with self._lock:
            series = self._bars.setdefault((symbol, market), {})
            for bar in bars:
                series[bar.date] = bar
            return len(bars)


class MemorySnapshotStore:
    def __init__(self, snapshots: Iterable[FeatureSnapshot] = ()) -> None:
        self._lock = threading.Lock()
        self._snapshots: dict[tuple[str, Market, date], FeatureSnapshot] = {}
        for snapshot in snapshots:
            self.put_snapshot(snapshot)

    def __len__(self) -> int:
        return len(self._snapshots)

    def get_snapshot(self, symbol: str, market: Market, as_of: date) -> FeatureSnapshot | None:
        with self._lock:
            return self._snapshots.get((symbol, market, as_of))

    def get_previous_snapshot(
        self, symbol: str, market: Market, as_of: date
    ) -> FeatureSnapshot | None:
        with self._lock:
            earlier = [
                snap
                for (sym, mkt, day), snap in self._snapshots.items()
                if sym == symbol and mkt == market and day < as_of
            ]
        return max(earlier, key=lambda s: s.date) if earlier else None

    def put_snapshot(self, snapshot: FeatureSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.key] = snapshot

    def list_snapshots(self, as_of: date, market: Market | None = None) -> list[FeatureSnapshot]:
        with self._lock:
            return [
                snap
                for snap in self._snapshots.values()
                if snap.date == as_of and (market is None or snap.market == market)
            ]

    def get_history(
        self, symbol: str, market: Market, start_date: date, end_date: date
    ) -> list[FeatureSnapshot]:
        with self._lock:
            rows = [
                snap
                for (sym, mkt, day), snap in self._snapshots.items()
                if sym == symbol and mkt == market and start_date <= day <= end_date
            ]
        return sorted(rows, key=lambda s: s.date)


class MemoryStopStateStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[tuple[str, str], StopLossState] = {}

    def get_stop_state(self, portfolio_id: str, symbol_id: str) -> StopLossState | None:
        with self._lock:
            return self._states.get((portfolio_id, symbol_id))

    def put_stop_state(self, state: StopLossState) -> StopLossState:
        with self._lock:
            stored = self._states.get(state.key)
            if stored is not None and stored.current_stop_loss >= state.current_stop_loss:
                return stored
            if stored is not None:
                state = state.model_copy(update={"initial_stop_loss": stored.initial_stop_loss})
            self._states[state.key] = state
            return state

    def list_stop_states(self, portfolio_id: str) -> list[StopLossState]:
        with self._lock:
            return [s for (pid, _), s in self._states.items() if pid == portfolio_id]


class MemoryPositionReader:
    def __init__(self, positions: Iterable[Position] = ()) -> None:
        self._positions = {p.key: p for p in positions}

    def add(self, position: Position) -> None:
        self._positions[position.key] = position

    def get_position(self, portfolio_id: str, symbol_id: str) -> Position | None:
        return self._positions.get((portfolio_id, symbol_id))

    def list_positions(self, portfolio_id: str) -> list[Position]:
        return [p for (pid, _), p in self._positions.items() if pid == portfolio_id]

    def list_portfolios(self) -> list[str]:
        return sorted({pid for pid, _ in self._positions})


class MemorySectorTagReader:
    def __init__(self, tags: dict[tuple[str, Market], str | None] | None = None) -> None:
        self._tags = dict(tags or {})

    def get_sector_tags(self, market: Market) -> dict[str, str | None]:
        return {symbol: sector for (symbol, mkt), sector in self._tags.items() if mkt == market}


class MemoryDecisionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._decisions: dict[tuple[str, str, date], SignalDecision] = {}

    def put_decision(self, portfolio_id: str, symbol_id: str, decision: SignalDecision) -> None:
        with self._lock:
            self._decisions[(portfolio_id, symbol_id, decision.date)] = decision

    def list_decisions(self, as_of: date) -> dict[tuple[str, str], SignalDecision]:
        with self._lock:
            return {
                (pid, sid): decision
                for (pid, sid, day), decision in self._decisions.items()
                if day == as_of
            }


class MemorySectorListStore:
    def __init__(self) -> None:
        self._lists: dict[tuple[date, Market | None], list[SectorStrength]] = {}

    def save_sector_list(
        self, as_of: date, market: Market | None, strengths: Sequence[SectorStrength]
    ) -> None:
        self._lists[(as_of, market)] = sorted(strengths, key=lambda s: s.rank)

    def get_sector_list(
        self, as_of: date, market: Market | None = None, top_n: int | None = None
    ) -> list[SectorStrength]:
        rows = self._lists.get((as_of, market), [])
        return rows[:top_n] if top_n is not None else list(rows)


class MemoryReportStore:
    def __init__(self) -> None:
        self._reports: dict[tuple[str, Market, date], dict[str, Any]] = {}

    def put_report(self, report: "DeepDiveReport") -> None:
        self._reports[report.key] = report.to_dict()

    def get_report(self, symbol: str, market: Market, as_of: date) -> dict[str, Any] | None:
        return self._reports.get((symbol, market, as_of))

    def list_reports(self, as_of: date, market: Market | None = None) -> list[dict[str, Any]]:
        rows = [
            payload
            for (_, mkt, day), payload in self._reports.items()
            if day == as_of and (market is None or mkt == market)
        ]
        return sorted(rows, key=lambda r: r["confidence"], reverse=True)
