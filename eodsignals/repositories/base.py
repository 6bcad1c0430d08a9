"""Storage contracts consumed by the engine.

The engine never talks to a database directly; it is handed objects that
satisfy these protocols. ``repositories.sql`` implements them on top of
SQLAlchemy and ``repositories.memory`` keeps everything in dictionaries.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Protocol, Sequence

from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market
from eodsignals.domain.portfolio import Position, StopLossState
from eodsignals.domain.price import Bar
from eodsignals.domain.sectors import SectorStrength
from eodsignals.domain.signals import SignalDecision

if TYPE_CHECKING:
    from eodsignals.engine.deep_dive import DeepDiveReport


class BarStore(Protocol):
    """Daily bar history."""

    def get_bars(
        self,
        symbol: str,
        market: Market,
        start_date: date,
        end_date: date,
    ) -> list[Bar]:
        """Bars within [start_date, end_date], ascending. May be short."""
        ...

    def save_bars(self, symbol: str, market: Market, bars: Sequence[Bar]) -> int:
        """Upsert bars keyed by (symbol, market, date). Returns rows written."""
        ...


class SnapshotStore(Protocol):
    """Feature snapshots keyed by (symbol, market, date)."""

    def get_snapshot(
        self, symbol: str, market: Market, as_of: date
    ) -> FeatureSnapshot | None:
        ...

    def get_previous_snapshot(
        self, symbol: str, market: Market, as_of: date
    ) -> FeatureSnapshot | None:
        """Latest snapshot strictly before ``as_of``."""
        ...

    def put_snapshot(self, snapshot: FeatureSnapshot) -> None:
        """Upsert; recomputing a date overwrites it in place."""
        ...

    def list_snapshots(
        self, as_of: date, market: Market | None = None
    ) -> list[FeatureSnapshot]:
        ...

    def get_history(
        self, symbol: str, market: Market, start_date: date, end_date: date
    ) -> list[FeatureSnapshot]:
        """Snapshots within [start_date, end_date], ascending."""
        ...


class StopStateStore(Protocol):
    """Trailing stop state keyed by (portfolio_id, symbol_id)."""

    def get_stop_state(
        self, portfolio_id: str, symbol_id: str
    ) -> StopLossState | None:
        ...

    def put_stop_state(self, state: StopLossState) -> StopLossState:
        """Ratcheting upsert.

        The stored ``current_stop_loss`` becomes max(stored, new); the
        returned state is what is persisted afterwards.
        """
        ...

    def list_stop_states(self, portfolio_id: str) -> list[StopLossState]:
        ...


class PositionReader(Protocol):
    """Read-only portfolio holdings."""

    def get_position(self, portfolio_id: str, symbol_id: str) -> Position | None:
        ...

    def list_positions(self, portfolio_id: str) -> list[Position]:
        ...

    def list_portfolios(self) -> list[str]:
        ...


class SectorTagReader(Protocol):
    """Externally assigned sector tags."""

    def get_sector_tags(self, market: Market) -> dict[str, str | None]:
        """symbol -> sector (None when untagged) for one market.

        Tags are per market; the same ticker may sit in different sectors
        on different exchanges.
        """
        ...


class DecisionStore(Protocol):
    """Per-portfolio daily signal decisions."""

    def put_decision(self, portfolio_id: str, symbol_id: str, decision: SignalDecision) -> None:
        ...

    def list_decisions(self, as_of: date) -> dict[tuple[str, str], SignalDecision]:
        """(portfolio_id, symbol_id) -> decision for ``as_of``."""
        ...


class SectorListStore(Protocol):
    """Daily ranked sector lists."""

    def save_sector_list(
        self, as_of: date, market: Market | None, strengths: Sequence[SectorStrength]
    ) -> None:
        ...

    def get_sector_list(
        self, as_of: date, market: Market | None = None, top_n: int | None = None
    ) -> list[SectorStrength]:
        ...


class ReportStore(Protocol):
    """Deep-dive reports keyed by (symbol, market, date)."""

    def put_report(self, report: "DeepDiveReport") -> None:
        ...

    def get_report(self, symbol: str, market: Market, as_of: date) -> dict[str, Any] | None:
        """Serialized report (``DeepDiveReport.to_dict``) or None."""
        ...

    def list_reports(self, as_of: date, market: Market | None = None) -> list[dict[str, Any]]:
        """Reports for ``as_of``, highest confidence first."""
        ...
