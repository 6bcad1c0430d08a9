"""Tests for the daily pipeline driver."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import numpy as np
import pytest

from eodsignals.core.exceptions import UpstreamUnavailableError
from eodsignals.core.logging import run_id_var
from eodsignals.domain import Market, SectorStrength, SignalType, StopLossType
from eodsignals.engine.pipeline import DailyPipeline, Stores
from eodsignals.engine.stop_loss import PortfolioStopResult, StopLossCalculation
from eodsignals.repositories import MemoryBarStore, MemorySnapshotStore
from eodsignals.services.data_providers import MockProvider

from factories import make_bars, make_position, make_snapshot, trend_closes


AS_OF = date(2024, 6, 3)


class _FlakyBarStore(MemoryBarStore):
    """Fails for one symbol, works for the rest."""

    def __init__(self, bad_symbol: str, error: Exception):
        super().__init__()
        self.bad_symbol = bad_symbol
        self.error = error

    def get_bars(self, symbol, market, start_date, end_date):
        if symbol == self.bad_symbol:
            raise self.error
        return super().get_bars(symbol, market, start_date, end_date)


class _CorruptSnapshotStore(MemorySnapshotStore):
    """Raises a plain ValueError when one symbol's row is read."""

    def __init__(self, bad_symbol: str):
        super().__init__()
        self.bad_symbol = bad_symbol

    def get_snapshot(self, symbol, market, as_of):
        if symbol == self.bad_symbol:
            raise ValueError("invalid decimal in stored row")
        return super().get_snapshot(symbol, market, as_of)


def _stop_calc(symbol: str, current: str, previous: str, should_update: bool) -> StopLossCalculation:
    return StopLossCalculation(
        portfolio_id="pf-1",
        symbol_id=f"sym-{symbol}",
        date=AS_OF,
        current_price=Decimal("110.00"),
        buy_price=Decimal("100.00"),
        initial_stop_loss=Decimal("90.00"),
        current_stop_loss=Decimal(current),
        recommended_stop_loss=Decimal(current),
        atr=Decimal("2.00"),
        atr_multiplier=Decimal("2.0"),
        stop_loss_percent=Decimal("5.00"),
        stop_loss_type=StopLossType.ATR_TRAILING,
        should_update=should_update,
        risk_amount=Decimal("50.00"),
        previous_stop_loss=Decimal(previous),
        symbol=symbol,
        market=Market.US,
    )


def _sector(name: str, day: date, rank: int) -> SectorStrength:
    return SectorStrength(
        sector=name, date=day, market=Market.US, symbol_count=1, score=Decimal("50.00"), rank=rank
    )


def _seeded_stores(symbols=("AAPL", "MSFT", "XOM"), bar_store=None) -> Stores:
    stores = Stores.in_memory(
        positions=[make_position(symbol) for symbol in symbols],
        sector_tags={
            ("AAPL", Market.US): "Technology",
            ("MSFT", Market.US): "Technology",
            ("XOM", Market.US): "Energy",
        },
    )
    if bar_store is not None:
        stores.bars = bar_store
    start = AS_OF - timedelta(days=200)
    for i, symbol in enumerate(symbols):
        bars = make_bars(trend_closes(140, start_price=50 + 10 * i, daily_pct=0.3 - 0.3 * i), start=start)
        stores.bars.save_bars(symbol, Market.US, bars)
    return stores


class TestUniverseFeatures:
    """Per-symbol failures are collected, never raised."""

    @pytest.mark.parametrize("workers", [1, 4])
    def test_partial_failure(self, workers):
        bar_store = _FlakyBarStore("MSFT", ConnectionError("connection reset"))
        stores = _seeded_stores(bar_store=bar_store)
        pipeline = DailyPipeline(stores, workers=workers)
        universe = [("AAPL", Market.US), ("MSFT", Market.US), ("XOM", "US")]
        last_day = stores.bars.get_bars("AAPL", Market.US, date(2023, 1, 1), AS_OF)[-1].date

        result = pipeline.run_universe_features(universe, last_day)

        assert result.total == 3
        assert result.successful == 2
        assert result.failed == 1
        symbol, market, message = result.errors[0]
        assert (symbol, market) == ("MSFT", "US")
        assert "connection reset" in message
        assert stores.snapshots.get_snapshot("AAPL", Market.US, last_day) is not None
        assert stores.snapshots.get_snapshot("MSFT", Market.US, last_day) is None

    def test_unexpected_error_is_collected(self):
        stores = _seeded_stores(bar_store=_FlakyBarStore("XOM", RuntimeError("boom")))
        pipeline = DailyPipeline(stores, workers=1)

        result = pipeline.run_universe_features([("XOM", Market.US), ("AAPL", Market.US)], AS_OF)

        assert result.failed == 1
        assert result.errors == [("XOM", "US", "boom")]

    def test_to_dict(self):
        stores = _seeded_stores(bar_store=_FlakyBarStore("XOM", UpstreamUnavailableError("db down")))
        result = DailyPipeline(stores).run_universe_features([("XOM", Market.US)], AS_OF)

        assert result.to_dict()["errors"] == [
            {"symbol": "XOM", "market": "US", "error": "Feature calculation failed for XOM (US): db down"}
        ]


class TestBarSync:
    """Provider selection and bar upserts."""

    def test_sync_with_mock_provider(self):
        stores = Stores.in_memory()
        pipeline = DailyPipeline(stores, providers=[MockProvider(seed=1)])

        result = pipeline.sync_bars([("AAPL", Market.US), ("TEVA", Market.TASE)], AS_OF, lookback_days=30)

        assert result.successful == 2
        bars = stores.bars.get_bars("TEVA", Market.TASE, AS_OF - timedelta(days=30), AS_OF)
        assert len(bars) > 15
        assert all(bar.date.weekday() < 5 for bar in bars)

    def test_no_provider_is_recorded(self):
        pipeline = DailyPipeline(Stores.in_memory(), providers=[MockProvider()])

        result = pipeline.sync_bars([("AAPL", Market.US)], AS_OF, provider_name="yfinance")

        assert result.failed == 1
        assert "Provider 'yfinance' not found" in result.errors[0][2]


class TestBackfill:
    """Backfilled snapshots equal a daily recompute of the same date."""

    @staticmethod
    def _walk_bars(count: int = 260):
        rng = np.random.default_rng(11)
        closes = [round(float(v), 2) for v in 100 + np.cumsum(rng.normal(0, 1, count))]
        return make_bars(closes, start=AS_OF - timedelta(days=400))

    def _assert_recompute_matches(self, stores: Stores, bars) -> None:
        pipeline = DailyPipeline(stores)
        stores.bars.save_bars("AAPL", Market.US, bars)

        assert pipeline.backfill_features("AAPL", "US", bars) == len(bars)

        backfilled = stores.snapshots.get_history("AAPL", Market.US, bars[0].date, bars[-1].date)
        assert [s.date for s in backfilled] == [b.date for b in bars]
        for snapshot in backfilled:
            recomputed = pipeline.features.calculate_and_store("AAPL", Market.US, snapshot.date)
            assert recomputed == snapshot, snapshot.date

    def test_every_date_matches_daily_recompute(self):
        self._assert_recompute_matches(Stores.in_memory(), self._walk_bars())

    def test_every_date_matches_with_sql_stores(self, session_factory):
        self._assert_recompute_matches(Stores.sql(session_factory), self._walk_bars(120))

    def test_empty(self):
        assert DailyPipeline(Stores.in_memory()).backfill_features("AAPL", Market.US, []) == 0


class TestPortfolioPasses:
    """Decisions, stops and deep dives."""

    def test_detect_changes_records_missing_snapshot(self):
        stores = Stores.in_memory()
        stores.snapshots.put_snapshot(make_snapshot(day=AS_OF, close_price="100", rsi_14="25"))
        pipeline = DailyPipeline(stores)

        changes = pipeline.detect_portfolio_changes(
            [make_position("AAPL"), make_position("MSFT")], AS_OF
        )

        assert list(changes.decisions) == [("pf-1", "sym-AAPL")]
        assert changes.signal_counts[SignalType.BUY] == 1
        assert [symbol for symbol, _ in changes.errors] == ["MSFT"]
        assert stores.decisions.list_decisions(AS_OF)[("pf-1", "sym-AAPL")].score == 20

    def test_detect_changes_collects_unexpected_errors(self):
        stores = Stores.in_memory()
        stores.snapshots = _CorruptSnapshotStore("MSFT")
        for symbol in ("AAPL", "MSFT", "XOM"):
            stores.snapshots.put_snapshot(make_snapshot(symbol=symbol, day=AS_OF, rsi_14="25"))
        pipeline = DailyPipeline(stores)

        changes = pipeline.detect_portfolio_changes(
            [make_position("AAPL"), make_position("MSFT"), make_position("XOM")], AS_OF
        )

        assert list(changes.decisions) == [("pf-1", "sym-AAPL"), ("pf-1", "sym-XOM")]
        assert changes.errors == [("MSFT", "invalid decimal in stored row")]

    def test_deep_dives_only_for_strong(self):
        stores = Stores.in_memory()
        strong = make_snapshot(
            symbol="AAPL",
            day=AS_OF,
            close_price="102",
            sma_20="100",
            sma_50="95",
            rsi_14="25",
            volume_ratio="2.5",
            macd="1",
            macd_histogram="0.5",
        )
        weak = make_snapshot(symbol="MSFT", day=AS_OF, rsi_14="50")
        stores.snapshots.put_snapshot(strong)
        stores.snapshots.put_snapshot(weak)
        pipeline = DailyPipeline(stores)

        changes = pipeline.detect_portfolio_changes(
            [make_position("AAPL"), make_position("MSFT"), make_position("AAPL", portfolio_id="pf-2")],
            AS_OF,
        )
        reports = pipeline.run_deep_dives(changes.decisions.values(), AS_OF)

        assert [r.symbol for r in reports] == ["AAPL"]
        assert stores.reports.get_report("AAPL", Market.US, AS_OF)["signal"] == "STRONG_BUY"


class TestDailyDeltaPass:
    """Delta assembled from the stores and the day's stop results."""

    def test_only_rewritten_stops_are_counted(self):
        stores = Stores.in_memory()
        stores.snapshots.put_snapshot(make_snapshot(day=AS_OF, close_price="110"))
        pipeline = DailyPipeline(stores)
        result = PortfolioStopResult(
            portfolio_id="pf-1",
            date=AS_OF,
            calculations=[
                _stop_calc("AAPL", current="104.00", previous="100.00", should_update=True),
                _stop_calc("MSFT", current="100.00", previous="100.00", should_update=False),
            ],
        )

        delta = pipeline.daily_delta(AS_OF, stop_results=[result])

        stops = delta.stop_loss_changes
        assert stops.total_stops == 1
        assert stops.raised == 1
        assert stops.unchanged == 0
        assert stops.avg_raise == Decimal("4.00")

    def test_new_symbols_and_sectors(self):
        previous_day = AS_OF - timedelta(days=3)
        stores = Stores.in_memory()
        stores.snapshots.put_snapshot(make_snapshot("AAPL", day=previous_day, close_price="100"))
        stores.snapshots.put_snapshot(make_snapshot("AAPL", day=AS_OF, close_price="101"))
        stores.snapshots.put_snapshot(make_snapshot("MSFT", day=AS_OF, close_price="300"))
        stores.sector_lists.save_sector_list(
            previous_day, Market.US, [_sector("Technology", previous_day, 1)]
        )
        stores.sector_lists.save_sector_list(
            AS_OF, Market.US, [_sector("Technology", AS_OF, 1), _sector("Energy", AS_OF, 2)]
        )
        pipeline = DailyPipeline(stores)

        delta = pipeline.daily_delta(AS_OF, previous_date=previous_day, new_reports=2)

        assert delta.new_activity.new_symbols == 1
        assert delta.new_activity.new_sectors == 1
        assert delta.new_activity.new_reports == 2
        assert delta.to_dict()["new_activity"] == {
            "new_symbols": 1,
            "new_reports": 2,
            "new_sectors": 1,
        }


class TestRunDaily:
    """Every stage in one call."""

    def test_end_to_end(self):
        stores = _seeded_stores()
        pipeline = DailyPipeline(stores, workers=2)
        universe = [("AAPL", Market.US), ("MSFT", Market.US), ("XOM", Market.US)]
        last_day = stores.bars.get_bars("AAPL", Market.US, date(2023, 1, 1), AS_OF)[-1].date
        previous_day = last_day - timedelta(days=1)
        pipeline.run_universe_features(universe, previous_day)

        summary = pipeline.run_daily(universe, ["pf-1"], last_day, previous_date=previous_day)

        assert len(summary.run_id) == 12
        assert run_id_var.get() is None
        assert summary.sync is None
        assert summary.features.successful == 3
        assert len(summary.changes.decisions) == 3
        assert summary.stops[0].total_positions == 3
        assert {s.sector for s in summary.sectors} == {"Technology", "Energy"}
        assert [s.rank for s in summary.sectors] == [1, 2]
        assert stores.sector_lists.get_sector_list(last_day, Market.US)[0].rank == 1
        assert summary.delta.summary.startswith("Market: ")
        assert summary.delta.price_changes.total_symbols == 3

    def test_with_provider_sync(self):
        stores = Stores.in_memory(positions=[make_position("AAPL")])
        pipeline = DailyPipeline(stores, providers=[MockProvider()])

        summary = pipeline.run_daily([("AAPL", "US")], ["pf-1"], AS_OF)

        assert summary.sync.successful == 1
        assert summary.features.successful == 1
        assert stores.stop_states.get_stop_state("pf-1", "sym-AAPL") is not None
