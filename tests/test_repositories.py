"""Tests for the SQLAlchemy and in-memory stores."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from eodsignals.core.exceptions import UpstreamUnavailableError
from eodsignals.database.connection import create_db_engine
from eodsignals.domain import (
    Market,
    SectorStrength,
    SignalDecision,
    SignalType,
    StopLossState,
    StopLossType,
)
from eodsignals.engine.deep_dive import generate_deep_dive
from eodsignals.engine.features import calculate_features
from eodsignals.repositories import (
    MemorySectorListStore,
    MemorySectorTagReader,
    MemoryStopStateStore,
    SqlBarStore,
    SqlDecisionStore,
    SqlPositionReader,
    SqlReportStore,
    SqlSectorListStore,
    SqlSectorTagReader,
    SqlSnapshotStore,
    SqlStopStateStore,
)

from factories import START, make_bars, make_position, make_snapshot, trend_closes


def _stop(current: str, day=START, stop_type=StopLossType.ATR_TRAILING) -> StopLossState:
    return StopLossState(
        portfolio_id="pf-1",
        symbol_id="sym-AAPL",
        initial_stop_loss=Decimal("90.00"),
        current_stop_loss=Decimal(current),
        last_updated_date=day,
        stop_loss_type=stop_type,
        atr_multiplier=Decimal("2.0"),
        symbol="AAPL",
        market=Market.US,
    )


def _strength(sector: str, rank: int, score: str) -> SectorStrength:
    return SectorStrength(
        sector=sector,
        date=START,
        market=Market.US,
        symbol_count=2,
        avg_rsi=Decimal("55.00"),
        score=Decimal(score),
        rank=rank,
    )


class TestSqlBarStore:
    """Daily bar persistence."""

    def test_save_and_range_query(self, session_factory):
        store = SqlBarStore(session_factory)
        bars = make_bars(trend_closes(10))

        assert store.save_bars("AAPL", Market.US, bars) == 10

        loaded = store.get_bars("AAPL", Market.US, bars[2].date, bars[5].date)
        assert [b.date for b in loaded] == [b.date for b in bars[2:6]]
        assert loaded[0].close == bars[2].close

    def test_upsert_overwrites(self, session_factory):
        store = SqlBarStore(session_factory)
        bars = make_bars([100.0, 101.0])
        store.save_bars("AAPL", Market.US, bars)
        store.save_bars("AAPL", Market.US, make_bars([100.0, 105.0]))

        loaded = store.get_bars("AAPL", Market.US, START, START + timedelta(days=5))
        assert len(loaded) == 2
        assert loaded[1].close == Decimal("105")

    def test_markets_are_separate(self, session_factory):
        store = SqlBarStore(session_factory)
        store.save_bars("TEVA", Market.TASE, make_bars([10.0]))

        assert store.get_bars("TEVA", Market.US, START, START) == []


class TestSqlSnapshotStore:
    """Feature snapshot persistence."""

    def test_round_trip(self, session_factory, uptrend_bars):
        store = SqlSnapshotStore(session_factory)
        snapshot = calculate_features("AAPL", Market.US, uptrend_bars[-1].date, uptrend_bars)

        store.put_snapshot(snapshot)
        loaded = store.get_snapshot("AAPL", Market.US, snapshot.date)

        assert loaded == snapshot

    def test_recompute_overwrites_in_place(self, session_factory):
        store = SqlSnapshotStore(session_factory)
        store.put_snapshot(make_snapshot(close_price="100", rsi_14="40"))
        store.put_snapshot(make_snapshot(close_price="101", rsi_14="45"))

        snapshots = store.list_snapshots(START)
        assert len(snapshots) == 1
        assert snapshots[0].rsi_14 == Decimal("45")

    def test_previous_snapshot_is_strictly_earlier(self, session_factory):
        store = SqlSnapshotStore(session_factory)
        for offset in (0, 1, 3):
            store.put_snapshot(make_snapshot(day=START + timedelta(days=offset)))

        previous = store.get_previous_snapshot("AAPL", Market.US, START + timedelta(days=3))

        assert previous.date == START + timedelta(days=1)
        assert store.get_previous_snapshot("AAPL", Market.US, START) is None

    def test_list_by_market_and_history(self, session_factory):
        store = SqlSnapshotStore(session_factory)
        store.put_snapshot(make_snapshot(symbol="AAPL"))
        store.put_snapshot(make_snapshot(symbol="TEVA", market=Market.TASE))
        store.put_snapshot(make_snapshot(symbol="AAPL", day=START + timedelta(days=1)))

        assert [s.symbol for s in store.list_snapshots(START, Market.TASE)] == ["TEVA"]
        assert len(store.list_snapshots(START)) == 2

        history = store.get_history("AAPL", Market.US, START, START + timedelta(days=7))
        assert [s.date for s in history] == [START, START + timedelta(days=1)]


class TestSqlStopStateStore:
    """The ratchet is enforced by the upsert itself."""

    def test_insert(self, session_factory):
        store = SqlStopStateStore(session_factory)
        stored = store.put_stop_state(_stop("95.00"))

        assert stored.current_stop_loss == Decimal("95.00")
        assert store.get_stop_state("pf-1", "sym-AAPL") == stored

    def test_lower_write_is_ignored(self, session_factory):
        store = SqlStopStateStore(session_factory)
        store.put_stop_state(_stop("95.00"))

        stored = store.put_stop_state(
            _stop("93.00", day=START + timedelta(days=1), stop_type=StopLossType.PERCENTAGE)
        )

        assert stored.current_stop_loss == Decimal("95.00")
        assert stored.last_updated_date == START
        assert stored.stop_loss_type == StopLossType.ATR_TRAILING

    def test_higher_write_raises(self, session_factory):
        store = SqlStopStateStore(session_factory)
        store.put_stop_state(_stop("95.00"))

        stored = store.put_stop_state(
            _stop("98.50", day=START + timedelta(days=1), stop_type=StopLossType.ATR_TRAILING_MIN)
        )

        assert stored.current_stop_loss == Decimal("98.50")
        assert stored.last_updated_date == START + timedelta(days=1)
        assert stored.stop_loss_type == StopLossType.ATR_TRAILING_MIN
        assert stored.initial_stop_loss == Decimal("90.00")

    def test_sequence_never_decreases(self, session_factory):
        store = SqlStopStateStore(session_factory)
        for value in ("95.00", "97.00", "96.00", "99.10", "90.00"):
            store.put_stop_state(_stop(value))

        assert store.get_stop_state("pf-1", "sym-AAPL").current_stop_loss == Decimal("99.10")
        assert len(store.list_stop_states("pf-1")) == 1


class TestSqlPortfolioStores:
    """Positions, sector tags and decisions."""

    def test_positions(self, session_factory):
        reader = SqlPositionReader(session_factory)
        reader.save_position(make_position("AAPL"))
        reader.save_position(make_position("MSFT", buy_price="300"))

        positions = reader.list_positions("pf-1")

        assert [p.symbol for p in positions] == ["AAPL", "MSFT"]
        assert reader.get_position("pf-1", "sym-MSFT").buy_price == Decimal("300")
        assert reader.get_position("pf-2", "sym-MSFT") is None

    def test_sector_tags(self, session_factory):
        reader = SqlSectorTagReader(session_factory)
        reader.set_sector("AAPL", Market.US, "Technology")
        reader.set_sector("XOM", Market.US, None)
        reader.set_sector("TEVA", Market.TASE, "Healthcare")
        reader.set_sector("XOM", Market.US, "Energy")

        assert reader.get_sector_tags(Market.US) == {"AAPL": "Technology", "XOM": "Energy"}
        assert reader.get_sector_tags(Market.TASE) == {"TEVA": "Healthcare"}

    @pytest.mark.parametrize("backend", ["sql", "memory"])
    def test_dual_listed_ticker_keeps_both_sectors(self, backend, session_factory):
        if backend == "sql":
            reader = SqlSectorTagReader(session_factory)
            reader.set_sector("TEVA", Market.US, "Pharmaceuticals")
            reader.set_sector("TEVA", Market.TASE, "Healthcare")
        else:
            reader = MemorySectorTagReader(
                {("TEVA", Market.US): "Pharmaceuticals", ("TEVA", Market.TASE): "Healthcare"}
            )

        assert reader.get_sector_tags(Market.US) == {"TEVA": "Pharmaceuticals"}
        assert reader.get_sector_tags(Market.TASE) == {"TEVA": "Healthcare"}

    def test_decisions(self, session_factory):
        store = SqlDecisionStore(session_factory)
        decision = SignalDecision(
            symbol="AAPL",
            market=Market.US,
            date=START,
            signal=SignalType.BUY,
            confidence=66,
            score=20,
            reasons=["RSI strong (>60)", "Price above SMA20"],
        )
        store.put_decision("pf-1", "sym-AAPL", decision)

        loaded = store.list_decisions(START)

        assert loaded[("pf-1", "sym-AAPL")] == decision
        assert store.list_decisions(START + timedelta(days=1)) == {}


class TestSectorListStores:
    """Ranked sector lists, replaced as a whole."""

    @pytest.mark.parametrize("backend", ["sql", "memory"])
    def test_save_and_top_n(self, backend, session_factory):
        store = SqlSectorListStore(session_factory) if backend == "sql" else MemorySectorListStore()
        store.save_sector_list(
            START,
            Market.US,
            [_strength("Tech", 1, "70.00"), _strength("Energy", 2, "60.00"), _strength("Utilities", 3, "40.00")],
        )

        top = store.get_sector_list(START, Market.US, top_n=2)

        assert [s.sector for s in top] == ["Tech", "Energy"]
        assert top[0].score == Decimal("70.00")
        assert store.get_sector_list(START, None) == []

    def test_resave_replaces(self, session_factory):
        store = SqlSectorListStore(session_factory)
        store.save_sector_list(START, Market.US, [_strength("Tech", 1, "70.00")])
        store.save_sector_list(START, Market.US, [_strength("Energy", 1, "65.00")])

        assert [s.sector for s in store.get_sector_list(START, Market.US)] == ["Energy"]


class TestSqlReportStore:
    """Deep-dive report persistence."""

    def test_put_get_list(self, session_factory):
        store = SqlReportStore(session_factory)
        snapshot = make_snapshot(close_price="110", sma_20="105", sma_50="100", rsi_14="65")
        decision = SignalDecision(
            symbol="AAPL",
            market=Market.US,
            date=START,
            signal=SignalType.STRONG_BUY,
            confidence=90,
            score=45,
        )
        report = generate_deep_dive(decision, [snapshot])

        store.put_report(report)
        store.put_report(report)

        loaded = store.get_report("AAPL", Market.US, START)
        assert loaded == report.to_dict()
        assert len(store.list_reports(START)) == 1
        assert store.list_reports(START, Market.TASE) == []


class TestStorageFailures:
    """Database errors surface as UpstreamUnavailableError."""

    def test_missing_schema(self):
        engine = create_db_engine("sqlite://")
        store = SqlSnapshotStore(sessionmaker(bind=engine))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            store.get_snapshot("AAPL", Market.US, START)

        assert exc_info.value.retryable
        assert exc_info.value.details["symbol"] == "AAPL"
        engine.dispose()


class TestMemoryStopStateStore:
    """The in-memory store follows the same ratchet."""

    def test_ratchet(self):
        store = MemoryStopStateStore()
        store.put_stop_state(_stop("95.00"))

        assert store.put_stop_state(_stop("93.00")).current_stop_loss == Decimal("95.00")
        assert store.put_stop_state(_stop("96.00")).current_stop_loss == Decimal("96.00")
