"""SQLAlchemy-backed stores.

Each store takes an optional ``sessionmaker``; without one the global
factory from ``database.connection`` is used. Upserts use the dialect's
``INSERT ... ON CONFLICT DO UPDATE`` (PostgreSQL in production, SQLite in
tests). Any ``SQLAlchemyError`` surfaces as ``UpstreamUnavailableError``.

Usage:
    from eodsignals.repositories.sql import SqlSnapshotStore

    store = SqlSnapshotStore()
    store.put_snapshot(snapshot)
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from typing import TYPE_CHECKING, Any, Sequence

from sqlalchemy import and_, case, delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from eodsignals.core.exceptions import UpstreamUnavailableError
from eodsignals.core.logging import get_logger
from eodsignals.database.connection import get_session
from eodsignals.database.orm import (
    ALL_MARKETS,
    DailySectorList,
    DailySymbolFeatures,
    DeepDiveReportRecord,
    MarketDailyBar,
    PortfolioDailyDecision,
    PortfolioPosition,
    StopRulesState,
    SymbolSectorMap,
)
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market
from eodsignals.domain.portfolio import Position, StopLossState
from eodsignals.domain.price import Bar
from eodsignals.domain.sectors import SectorStrength
from eodsignals.domain.signals import SignalDecision

if TYPE_CHECKING:
    from eodsignals.engine.deep_dive import DeepDiveReport


logger = get_logger("repositories.sql")

_SNAPSHOT_COLUMNS = [
    name for name in FeatureSnapshot.model_fields if name not in ("symbol", "market", "date")
]


def _insert(session: Session, table):
    """Dialect-specific insert supporting ``on_conflict_do_update``."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


class _SqlStore:
    """Shared session handling and error translation."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str, **context: Any) -> Iterator[Session]:
        try:
            with get_session(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(f"Storage failure during {operation}: {exc}")
            raise UpstreamUnavailableError(
                f"Storage unavailable during {operation}",
                details={key: str(value) for key, value in context.items()},
            ) from exc


# =============================================================================
# BARS
# =============================================================================


class SqlBarStore(_SqlStore):
    def get_bars(self, symbol: str, market: Market, start_date: date, end_date: date) -> list[Bar]:
        with self._session("get_bars", symbol=symbol, market=market.value) as session:
            rows = session.scalars(
                select(MarketDailyBar)
                .where(
                    and_(
                        MarketDailyBar.symbol == symbol,
                        MarketDailyBar.market == market.value,
                        MarketDailyBar.date >= start_date,
                        MarketDailyBar.date <= end_date,
                    )
                )
                .order_by(MarketDailyBar.date.asc())
            ).all()
            return [Bar.model_validate(row) for row in rows]

    def save_bars(self, symbol: str, market: Market, bars: Sequence[Bar]) -> int:
        if not bars:
            return 0
        with self._session("save_bars", symbol=symbol, market=market.value) as session:
            for bar in bars:
                values = {
                    "open": bar.open,
                    "high": bar.high,
                    "low": bar.low,
                    "close": bar.close,
                    "volume": bar.volume,
                }
                stmt = _insert(session, MarketDailyBar).values(
                    symbol=symbol, market=market.value, date=bar.date, **values
                ).on_conflict_do_update(
                    index_elements=["symbol", "market", "date"],
                    set_=values,
                )
                session.execute(stmt)
        logger.debug(f"Saved {len(bars)} bars for {symbol} ({market.value})")
        return len(bars)


# =============================================================================
# FEATURE SNAPSHOTS
# =============================================================================


def _to_snapshot(row: DailySymbolFeatures) -> FeatureSnapshot:
    data = {name: getattr(row, name) for name in _SNAPSHOT_COLUMNS}
    return FeatureSnapshot(symbol=row.symbol, market=Market(row.market), date=row.date, **data)


class SqlSnapshotStore(_SqlStore):
    def get_snapshot(self, symbol: str, market: Market, as_of: date) -> FeatureSnapshot | None:
        with self._session("get_snapshot", symbol=symbol, market=market.value, date=as_of) as session:
            row = session.scalars(
                select(DailySymbolFeatures).where(
                    DailySymbolFeatures.symbol == symbol,
                    DailySymbolFeatures.market == market.value,
                    DailySymbolFeatures.date == as_of,
                )
            ).first()
            return _to_snapshot(row) if row else None

    def get_previous_snapshot(
        self, symbol: str, market: Market, as_of: date
    ) -> FeatureSnapshot | None:
        with self._session(
            "get_previous_snapshot", symbol=symbol, market=market.value, date=as_of
        ) as session:
            row = session.scalars(
                select(DailySymbolFeatures)
                .where(
                    DailySymbolFeatures.symbol == symbol,
                    DailySymbolFeatures.market == market.value,
                    DailySymbolFeatures.date < as_of,
                )
                .order_by(DailySymbolFeatures.date.desc())
                .limit(1)
            ).first()
            return _to_snapshot(row) if row else None

    def put_snapshot(self, snapshot: FeatureSnapshot) -> None:
        values = {name: getattr(snapshot, name) for name in _SNAPSHOT_COLUMNS}
        with self._session(
            "put_snapshot",
            symbol=snapshot.symbol,
            market=snapshot.market.value,
            date=snapshot.date,
        ) as session:
            stmt = _insert(session, DailySymbolFeatures).values(
                symbol=snapshot.symbol,
                market=snapshot.market.value,
                date=snapshot.date,
                **values,
            ).on_conflict_do_update(
                index_elements=["symbol", "market", "date"],
                set_=values,
            )
            session.execute(stmt)

    def list_snapshots(self, as_of: date, market: Market | None = None) -> list[FeatureSnapshot]:
        with self._session("list_snapshots", date=as_of) as session:
            query = select(DailySymbolFeatures).where(DailySymbolFeatures.date == as_of)
            if market is not None:
                query = query.where(DailySymbolFeatures.market == market.value)
            rows = session.scalars(query.order_by(DailySymbolFeatures.symbol)).all()
            return [_to_snapshot(row) for row in rows]

    def get_history(
        self, symbol: str, market: Market, start_date: date, end_date: date
    ) -> list[FeatureSnapshot]:
        with self._session("get_history", symbol=symbol, market=market.value) as session:
            rows = session.scalars(
                select(DailySymbolFeatures)
                .where(
                    DailySymbolFeatures.symbol == symbol,
                    DailySymbolFeatures.market == market.value,
                    DailySymbolFeatures.date >= start_date,
                    DailySymbolFeatures.date <= end_date,
                )
                .order_by(DailySymbolFeatures.date.asc())
            ).all()
            return [_to_snapshot(row) for row in rows]


# =============================================================================
# STOP STATE
# =============================================================================


def _to_stop_state(row: StopRulesState) -> StopLossState:
    return StopLossState(
        portfolio_id=row.portfolio_id,
        symbol_id=row.symbol_id,
        initial_stop_loss=row.initial_stop_loss,
        current_stop_loss=row.current_stop_loss,
        last_updated_date=row.last_updated_date,
        stop_loss_type=row.stop_loss_type,
        atr_multiplier=row.atr_multiplier,
        symbol=row.symbol,
        market=Market(row.market) if row.market else None,
    )


class SqlStopStateStore(_SqlStore):
    def get_stop_state(self, portfolio_id: str, symbol_id: str) -> StopLossState | None:
        with self._session("get_stop_state", portfolio_id=portfolio_id, symbol_id=symbol_id) as session:
            row = session.scalars(
                select(StopRulesState).where(
                    StopRulesState.portfolio_id == portfolio_id,
                    StopRulesState.symbol_id == symbol_id,
                )
            ).first()
            return _to_stop_state(row) if row else None

    def put_stop_state(self, state: StopLossState) -> StopLossState:
        """Insert, or raise the stored stop only if the new one is higher.

        The comparison happens inside the UPDATE, so a writer holding a
        stale read can never lower the persisted value.
        """
        with self._session(
            "put_stop_state", portfolio_id=state.portfolio_id, symbol_id=state.symbol_id
        ) as session:
            stmt = _insert(session, StopRulesState).values(
                portfolio_id=state.portfolio_id,
                symbol_id=state.symbol_id,
                symbol=state.symbol,
                market=state.market.value if state.market else None,
                initial_stop_loss=state.initial_stop_loss,
                current_stop_loss=state.current_stop_loss,
                last_updated_date=state.last_updated_date,
                stop_loss_type=state.stop_loss_type.value,
                atr_multiplier=state.atr_multiplier,
            )
            raised = stmt.excluded.current_stop_loss > StopRulesState.current_stop_loss

            def ratchet(column: str):
                return case(
                    (raised, getattr(stmt.excluded, column)),
                    else_=getattr(StopRulesState, column),
                )

            stmt = stmt.on_conflict_do_update(
                index_elements=["portfolio_id", "symbol_id"],
                set_={
                    "current_stop_loss": ratchet("current_stop_loss"),
                    "last_updated_date": ratchet("last_updated_date"),
                    "stop_loss_type": ratchet("stop_loss_type"),
                    "atr_multiplier": ratchet("atr_multiplier"),
                },
            )
            session.execute(stmt)
            session.flush()

            row = session.scalars(
                select(StopRulesState)
                .where(
                    StopRulesState.portfolio_id == state.portfolio_id,
                    StopRulesState.symbol_id == state.symbol_id,
                )
                .execution_options(populate_existing=True)
            ).one()
            return _to_stop_state(row)

    def list_stop_states(self, portfolio_id: str) -> list[StopLossState]:
        with self._session("list_stop_states", portfolio_id=portfolio_id) as session:
            rows = session.scalars(
                select(StopRulesState)
                .where(StopRulesState.portfolio_id == portfolio_id)
                .order_by(StopRulesState.symbol_id)
            ).all()
            return [_to_stop_state(row) for row in rows]


# =============================================================================
# POSITIONS & SECTOR TAGS
# =============================================================================


def _to_position(row: PortfolioPosition) -> Position:
    return Position(
        portfolio_id=row.portfolio_id,
        symbol_id=row.symbol_id,
        symbol=row.symbol,
        market=Market(row.market),
        quantity=row.quantity,
        buy_price=row.buy_price,
    )


class SqlPositionReader(_SqlStore):
    def get_position(self, portfolio_id: str, symbol_id: str) -> Position | None:
        with self._session("get_position", portfolio_id=portfolio_id, symbol_id=symbol_id) as session:
            row = session.scalars(
                select(PortfolioPosition).where(
                    PortfolioPosition.portfolio_id == portfolio_id,
                    PortfolioPosition.symbol_id == symbol_id,
                )
            ).first()
            return _to_position(row) if row else None

    def list_positions(self, portfolio_id: str) -> list[Position]:
        with self._session("list_positions", portfolio_id=portfolio_id) as session:
            rows = session.scalars(
                select(PortfolioPosition)
                .where(PortfolioPosition.portfolio_id == portfolio_id)
                .order_by(PortfolioPosition.id)
            ).all()
            return [_to_position(row) for row in rows]

    def list_portfolios(self) -> list[str]:
        with self._session("list_portfolios") as session:
            rows = session.scalars(
                select(PortfolioPosition.portfolio_id)
                .distinct()
                .order_by(PortfolioPosition.portfolio_id)
            ).all()
            return list(rows)

    def save_position(self, position: Position) -> None:
        """Seed a holding. Portfolio management itself lives outside the engine."""
        values = {
            "symbol": position.symbol,
            "market": position.market.value,
            "quantity": position.quantity,
            "buy_price": position.buy_price,
        }
        with self._session("save_position", portfolio_id=position.portfolio_id) as session:
            stmt = _insert(session, PortfolioPosition).values(
                portfolio_id=position.portfolio_id, symbol_id=position.symbol_id, **values
            ).on_conflict_do_update(
                index_elements=["portfolio_id", "symbol_id"],
                set_=values,
            )
            session.execute(stmt)


class SqlSectorTagReader(_SqlStore):
    def get_sector_tags(self, market: Market) -> dict[str, str | None]:
        with self._session("get_sector_tags", market=market.value) as session:
            query = (
                select(SymbolSectorMap)
                .where(SymbolSectorMap.market == market.value)
                .order_by(SymbolSectorMap.id)
            )
            return {row.symbol: row.sector for row in session.scalars(query).all()}

    def set_sector(self, symbol: str, market: Market, sector: str | None) -> None:
        with self._session("set_sector", symbol=symbol) as session:
            stmt = _insert(session, SymbolSectorMap).values(
                symbol=symbol, market=market.value, sector=sector
            ).on_conflict_do_update(
                index_elements=["symbol", "market"],
                set_={"sector": sector},
            )
            session.execute(stmt)


# =============================================================================
# DECISIONS, SECTOR LISTS, REPORTS
# =============================================================================


class SqlDecisionStore(_SqlStore):
    def put_decision(self, portfolio_id: str, symbol_id: str, decision: SignalDecision) -> None:
        values = {
            "symbol": decision.symbol,
            "market": decision.market.value,
            "signal": decision.signal.value,
            "confidence": decision.confidence,
            "score": decision.score,
            "reasons": list(decision.reasons),
            "change_details": decision.change_details.model_dump(mode="json"),
        }
        with self._session("put_decision", portfolio_id=portfolio_id, symbol_id=symbol_id) as session:
            stmt = _insert(session, PortfolioDailyDecision).values(
                portfolio_id=portfolio_id, symbol_id=symbol_id, date=decision.date, **values
            ).on_conflict_do_update(
                index_elements=["portfolio_id", "symbol_id", "date"],
                set_=values,
            )
            session.execute(stmt)

    def list_decisions(self, as_of: date) -> dict[tuple[str, str], SignalDecision]:
        with self._session("list_decisions", date=as_of) as session:
            rows = session.scalars(
                select(PortfolioDailyDecision).where(PortfolioDailyDecision.date == as_of)
            ).all()
            return {
                (row.portfolio_id, row.symbol_id): SignalDecision(
                    symbol=row.symbol,
                    market=Market(row.market),
                    date=row.date,
                    signal=row.signal,
                    confidence=row.confidence,
                    score=row.score,
                    reasons=row.reasons,
                    change_details=row.change_details,
                )
                for row in rows
            }


class SqlSectorListStore(_SqlStore):
    def save_sector_list(
        self, as_of: date, market: Market | None, strengths: Sequence[SectorStrength]
    ) -> None:
        """Replace the whole ranked list for (date, market)."""
        scope = market.value if market else ALL_MARKETS
        with self._session("save_sector_list", date=as_of, market=scope) as session:
            session.execute(
                delete(DailySectorList).where(
                    DailySectorList.date == as_of,
                    DailySectorList.market_scope == scope,
                )
            )
            session.add_all(
                DailySectorList(
                    date=as_of,
                    market_scope=scope,
                    sector=s.sector,
                    rank=s.rank,
                    score=s.score,
                    symbol_count=s.symbol_count,
                    avg_rsi=s.avg_rsi,
                    avg_sma20_dist=s.avg_sma20_dist,
                    avg_vol_ratio=s.avg_vol_ratio,
                    strong_symbols=s.strong_symbols,
                    weak_symbols=s.weak_symbols,
                )
                for s in strengths
            )
        logger.info(f"Saved {len(strengths)} sectors for {as_of} ({scope})")

    def get_sector_list(
        self, as_of: date, market: Market | None = None, top_n: int | None = None
    ) -> list[SectorStrength]:
        scope = market.value if market else ALL_MARKETS
        with self._session("get_sector_list", date=as_of, market=scope) as session:
            query = (
                select(DailySectorList)
                .where(DailySectorList.date == as_of, DailySectorList.market_scope == scope)
                .order_by(DailySectorList.rank.asc())
            )
            if top_n is not None:
                query = query.limit(top_n)
            return [
                SectorStrength(
                    sector=row.sector,
                    date=row.date,
                    market=market,
                    symbol_count=row.symbol_count,
                    avg_rsi=row.avg_rsi,
                    avg_sma20_dist=row.avg_sma20_dist,
                    avg_vol_ratio=row.avg_vol_ratio,
                    strong_symbols=row.strong_symbols,
                    weak_symbols=row.weak_symbols,
                    score=row.score,
                    rank=row.rank,
                )
                for row in session.scalars(query).all()
            ]


class SqlReportStore(_SqlStore):
    def put_report(self, report: "DeepDiveReport") -> None:
        payload = report.to_dict()
        values = {
            "signal": report.signal.value,
            "confidence": report.confidence,
            "summary": report.summary,
            "payload": payload,
        }
        with self._session("put_report", symbol=report.symbol, date=report.date) as session:
            stmt = _insert(session, DeepDiveReportRecord).values(
                symbol=report.symbol,
                market=report.market.value,
                date=report.date,
                **values,
            ).on_conflict_do_update(
                index_elements=["symbol", "market", "date"],
                set_=values,
            )
            session.execute(stmt)
        logger.info(f"Saved deep dive report for {report.symbol}")

    def get_report(self, symbol: str, market: Market, as_of: date) -> dict[str, Any] | None:
        with self._session("get_report", symbol=symbol, date=as_of) as session:
            row = session.scalars(
                select(DeepDiveReportRecord).where(
                    DeepDiveReportRecord.symbol == symbol,
                    DeepDiveReportRecord.market == market.value,
                    DeepDiveReportRecord.date == as_of,
                )
            ).first()
            return dict(row.payload) if row else None

    def list_reports(self, as_of: date, market: Market | None = None) -> list[dict[str, Any]]:
        with self._session("list_reports", date=as_of) as session:
            query = select(DeepDiveReportRecord).where(DeepDiveReportRecord.date == as_of)
            if market is not None:
                query = query.where(DeepDiveReportRecord.market == market.value)
            rows = session.scalars(query.order_by(DeepDiveReportRecord.confidence.desc())).all()
            return [dict(row.payload) for row in rows]
