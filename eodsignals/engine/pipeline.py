"""
Daily pipeline driver.

Runs the engine once per calendar date: bar sync, universe-wide feature
calculation, per-portfolio signals and stops, sector ranking, deep dives
and the daily delta. Run bookkeeping (job records, retries) belongs to
the caller; this module only aggregates outcomes and logs them.

Usage:
    stores = Stores.in_memory()
    pipeline = DailyPipeline(stores, providers=[MockProvider()])
    summary = pipeline.run_daily(universe, ["pf-1"], date(2024, 6, 3))
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Iterable, Sequence

from sqlalchemy.orm import Session, sessionmaker

from eodsignals.core.config import settings
from eodsignals.core.exceptions import AppException, NotFoundError
from eodsignals.core.locks import KeyedLock
from eodsignals.core.logging import run_id_var
from eodsignals.domain.market import Market, parse_market
from eodsignals.domain.portfolio import Position
from eodsignals.domain.price import Bar
from eodsignals.domain.sectors import SectorStrength
from eodsignals.domain.signals import SignalDecision, SignalType
from eodsignals.engine.daily_delta import DailyDelta, calculate_daily_delta
from eodsignals.engine.deep_dive import DeepDiveReport, generate_deep_dive, is_deep_dive_candidate
from eodsignals.engine.features import FeatureCalculatorService
from eodsignals.engine.frames import backfill_snapshots
from eodsignals.engine.sectors import aggregate_sector_strength
from eodsignals.engine.signals import score_signal, summarize_signals
from eodsignals.engine.stop_loss import PortfolioStopResult, StopLossConfig, StopLossService
from eodsignals.repositories import (
    BarStore,
    DecisionStore,
    MemoryBarStore,
    MemoryDecisionStore,
    MemoryPositionReader,
    MemoryReportStore,
    MemorySectorListStore,
    MemorySectorTagReader,
    MemorySnapshotStore,
    MemoryStopStateStore,
    PositionReader,
    ReportStore,
    SectorListStore,
    SectorTagReader,
    SnapshotStore,
    SqlBarStore,
    SqlDecisionStore,
    SqlPositionReader,
    SqlReportStore,
    SqlSectorListStore,
    SqlSectorTagReader,
    SqlSnapshotStore,
    SqlStopStateStore,
    StopStateStore,
)
from eodsignals.services.data_providers import MarketDataProvider, select_provider

logger = logging.getLogger(__name__)

UniverseEntry = tuple[str, Market]


@dataclass
class Stores:
    """Every store the pipeline talks to."""

    bars: BarStore
    snapshots: SnapshotStore
    stop_states: StopStateStore
    positions: PositionReader
    sector_tags: SectorTagReader
    decisions: DecisionStore
    sector_lists: SectorListStore
    reports: ReportStore

    @classmethod
    def in_memory(
        cls,
        positions: Iterable[Position] = (),
        sector_tags: dict[UniverseEntry, str | None] | None = None,
    ) -> "Stores":
        return cls(
            bars=MemoryBarStore(),
            snapshots=MemorySnapshotStore(),
            stop_states=MemoryStopStateStore(),
            positions=MemoryPositionReader(positions),
            sector_tags=MemorySectorTagReader(sector_tags),
            decisions=MemoryDecisionStore(),
            sector_lists=MemorySectorListStore(),
            reports=MemoryReportStore(),
        )

    @classmethod
    def sql(cls, session_factory: sessionmaker[Session] | None = None) -> "Stores":
        return cls(
            bars=SqlBarStore(session_factory),
            snapshots=SqlSnapshotStore(session_factory),
            stop_states=SqlStopStateStore(session_factory),
            positions=SqlPositionReader(session_factory),
            sector_tags=SqlSectorTagReader(session_factory),
            decisions=SqlDecisionStore(session_factory),
            sector_lists=SqlSectorListStore(session_factory),
            reports=SqlReportStore(session_factory),
        )


@dataclass
class UniversePassResult:
    """Aggregate outcome of a per-symbol pass over the universe."""

    date: date
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[tuple[str, str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "errors": [
                {"symbol": symbol, "market": market, "error": message}
                for symbol, market, message in self.errors
            ],
        }


@dataclass
class PortfolioChanges:
    """Decisions produced for a set of positions."""

    date: date
    decisions: dict[tuple[str, str], SignalDecision] = field(default_factory=dict)
    signal_counts: dict[SignalType, int] = field(default_factory=dict)
    errors: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class DailyRunSummary:
    date: date
    run_id: str
    sync: UniversePassResult | None = None
    features: UniversePassResult | None = None
    changes: PortfolioChanges | None = None
    stops: list[PortfolioStopResult] = field(default_factory=list)
    sectors: list[SectorStrength] = field(default_factory=list)
    reports: list[DeepDiveReport] = field(default_factory=list)
    delta: DailyDelta | None = None


class DailyPipeline:
    """Thin driver wiring the engine components to their stores."""

    def __init__(
        self,
        stores: Stores,
        providers: Sequence[MarketDataProvider] = (),
        stop_config: StopLossConfig | None = None,
        workers: int | None = None,
        locks: KeyedLock | None = None,
    ):
        self.stores = stores
        self.providers = list(providers)
        self.workers = workers or settings.universe_workers
        self.features = FeatureCalculatorService(stores.bars, stores.snapshots)
        self.stops = StopLossService(
            stores.positions,
            stores.snapshots,
            stores.stop_states,
            config=stop_config or settings.stop_loss_config(),
            locks=locks,
        )

    # -------------------------------------------------------------------------
    # Universe passes
    # -------------------------------------------------------------------------

    def _run_per_symbol(
        self,
        label: str,
        universe: Sequence[UniverseEntry],
        as_of: date,
        task: Callable[[str, Market], Any],
    ) -> UniversePassResult:
        """Run ``task`` for every symbol; failures are collected, never raised."""
        result = UniversePassResult(date=as_of, total=len(universe))

        def guarded(symbol: str, market: Market) -> str | None:
            try:
                task(symbol, market)
            except AppException as exc:
                logger.error(f"{label} failed for {symbol} ({market.value}): {exc.message}")
                return exc.message
            except Exception as exc:
                logger.exception(f"{label} crashed for {symbol} ({market.value})")
                return str(exc) or type(exc).__name__
            return None

        entries = [(symbol, parse_market(market)) for symbol, market in universe]
        if self.workers > 1 and len(entries) > 1:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=label) as pool:
                futures = [
                    pool.submit(copy_context().run, guarded, symbol, market)
                    for symbol, market in entries
                ]
                outcomes = [future.result() for future in futures]
        else:
            outcomes = [guarded(symbol, market) for symbol, market in entries]

        for (symbol, market), error in zip(entries, outcomes):
            if error is None:
                result.successful += 1
            else:
                result.failed += 1
                result.errors.append((symbol, market.value, error))

        logger.info(
            f"{label} complete for {as_of}: {result.successful} succeeded, {result.failed} failed"
        )
        return result

    def sync_bars(
        self,
        universe: Sequence[UniverseEntry],
        as_of: date,
        lookback_days: int | None = None,
        provider_name: str | None = None,
    ) -> UniversePassResult:
        """Fetch bars from the selected provider and upsert them."""
        start = as_of - timedelta(days=lookback_days or settings.feature_lookback_days)

        def sync(symbol: str, market: Market) -> None:
            provider = select_provider(self.providers, market, provider_name)
            bars = provider.get_daily_bars(symbol, market, start, as_of)
            self.stores.bars.save_bars(symbol, market, bars)
            logger.debug(f"Synced {len(bars)} bars for {symbol} from {provider.name}")

        return self._run_per_symbol("bar_sync", universe, as_of, sync)

    def run_universe_features(
        self,
        universe: Sequence[UniverseEntry],
        as_of: date,
    ) -> UniversePassResult:
        """Calculate and store features for every (symbol, market)."""
        return self._run_per_symbol(
            "features",
            universe,
            as_of,
            lambda symbol, market: self.features.calculate_and_store(symbol, market, as_of),
        )

    def backfill_features(self, symbol: str, market: Market | str, bars: Sequence[Bar]) -> int:
        """Compute and store snapshots for every bar date, oldest first.

        ``bars`` should be what the bar store holds for the symbol, so a
        later daily recompute of any date sees the same window.
        """
        market = parse_market(market)
        bars = list(bars)
        if not bars:
            return 0

        first = min(bar.date for bar in bars)
        snapshots = backfill_snapshots(
            symbol,
            market,
            bars,
            lookback_days=self.features.lookback_days,
            previous=self.stores.snapshots.get_previous_snapshot(symbol, market, first),
            engine_version=self.features.engine_version,
        )
        for snapshot in snapshots:
            self.stores.snapshots.put_snapshot(snapshot)
        logger.info(f"Backfilled {len(snapshots)} snapshots for {symbol} ({market.value})")
        return len(snapshots)

    # -------------------------------------------------------------------------
    # Portfolio passes
    # -------------------------------------------------------------------------

    def detect_portfolio_changes(
        self,
        positions: Iterable[Position],
        as_of: date,
    ) -> PortfolioChanges:
        """Score every position's symbol and store the decision."""
        changes = PortfolioChanges(date=as_of)
        snapshots = self.stores.snapshots

        for position in positions:
            try:
                current = snapshots.get_snapshot(position.symbol, position.market, as_of)
                if current is None:
                    raise NotFoundError(f"No features found for {position.symbol} on {as_of}")
                previous = snapshots.get_previous_snapshot(position.symbol, position.market, as_of)
                decision = score_signal(current, previous)
                self.stores.decisions.put_decision(position.portfolio_id, position.symbol_id, decision)
            except AppException as exc:
                logger.warning(f"No decision for {position.symbol}: {exc.message}")
                changes.errors.append((position.symbol, exc.message))
                continue
            except Exception as exc:
                logger.exception(f"Signal detection crashed for {position.symbol}")
                changes.errors.append((position.symbol, str(exc) or type(exc).__name__))
                continue
            changes.decisions[position.key] = decision

        changes.signal_counts = summarize_signals(changes.decisions.values())
        logger.info(
            f"Detected changes for {len(changes.decisions)} positions on {as_of}: "
            + ", ".join(f"{k.value}={v}" for k, v in changes.signal_counts.items())
        )
        return changes

    def update_stops(self, portfolio_ids: Iterable[str], as_of: date) -> list[PortfolioStopResult]:
        return [self.stops.update_portfolio_stops(pid, as_of) for pid in portfolio_ids]

    # -------------------------------------------------------------------------
    # Market-wide outputs
    # -------------------------------------------------------------------------

    def run_sector_selection(self, as_of: date, market: Market | str) -> list[SectorStrength]:
        """Rank one market's sectors for the date and persist the list."""
        market = parse_market(market)
        tags = self.stores.sector_tags.get_sector_tags(market)
        snapshots = self.stores.snapshots.list_snapshots(as_of, market)
        strengths = aggregate_sector_strength(as_of, snapshots, tags, market=market)
        self.stores.sector_lists.save_sector_list(as_of, market, strengths)
        return strengths

    def run_deep_dives(
        self,
        decisions: Iterable[SignalDecision],
        as_of: date,
    ) -> list[DeepDiveReport]:
        """Generate and store reports for the strong decisions of ``as_of``."""
        window = settings.deep_dive_window_days
        reports: list[DeepDiveReport] = []
        seen: set[tuple[str, Market]] = set()

        for decision in decisions:
            if decision.date != as_of or not is_deep_dive_candidate(decision):
                continue
            if (decision.symbol, decision.market) in seen:
                continue
            seen.add((decision.symbol, decision.market))

            history = self.stores.snapshots.get_history(
                decision.symbol, decision.market, as_of - timedelta(days=window), as_of
            )
            try:
                report = generate_deep_dive(decision, history, window_days=window)
            except AppException as exc:
                logger.error(f"Deep dive failed for {decision.symbol}: {exc.message}")
                continue
            self.stores.reports.put_report(report)
            reports.append(report)

        logger.info(f"Generated {len(reports)} deep dive reports for {as_of}")
        return reports

    def daily_delta(
        self,
        as_of: date,
        previous_date: date | None = None,
        stop_results: Sequence[PortfolioStopResult] = (),
        new_reports: int = 0,
    ) -> DailyDelta:
        """Compare ``as_of`` with the previous date (default: the day before).

        Only stops rewritten on ``as_of`` count towards the stop changes.
        """
        previous_date = previous_date or as_of - timedelta(days=1)
        calculations = [calc for result in stop_results for calc in result.calculations]

        snapshots = self.stores.snapshots
        current_snapshots = snapshots.list_snapshots(as_of)
        new_symbols = sum(
            1
            for snap in current_snapshots
            if snapshots.get_previous_snapshot(snap.symbol, snap.market, as_of) is None
        )

        markets = sorted({snap.market for snap in current_snapshots}, key=lambda m: m.value)
        sector_lists = self.stores.sector_lists

        return calculate_daily_delta(
            as_of,
            current_snapshots=current_snapshots,
            previous_snapshots=snapshots.list_snapshots(previous_date),
            current_decisions=self.stores.decisions.list_decisions(as_of),
            previous_decisions=self.stores.decisions.list_decisions(previous_date),
            current_stops=[calc.to_state() for calc in calculations if calc.should_update],
            previous_stops={
                (calc.portfolio_id, calc.symbol_id): calc.previous_stop_loss
                for calc in calculations
                if calc.previous_stop_loss is not None
            },
            new_reports=new_reports,
            new_symbols=new_symbols,
            current_sectors=[s for m in markets for s in sector_lists.get_sector_list(as_of, m)],
            previous_sectors=[
                s for m in markets for s in sector_lists.get_sector_list(previous_date, m)
            ],
        )

    # -------------------------------------------------------------------------
    # Full day
    # -------------------------------------------------------------------------

    def run_daily(
        self,
        universe: Sequence[UniverseEntry],
        portfolio_ids: Sequence[str],
        as_of: date,
        previous_date: date | None = None,
        sync: bool = True,
    ) -> DailyRunSummary:
        """Run every stage for ``as_of`` under one run id."""
        run_id = uuid.uuid4().hex[:12]
        token = run_id_var.set(run_id)
        try:
            logger.info(f"Daily run {run_id} starting for {as_of}")
            summary = DailyRunSummary(date=as_of, run_id=run_id)

            if sync and self.providers:
                summary.sync = self.sync_bars(universe, as_of)
            summary.features = self.run_universe_features(universe, as_of)

            positions = [
                position
                for pid in portfolio_ids
                for position in self.stores.positions.list_positions(pid)
            ]
            summary.changes = self.detect_portfolio_changes(positions, as_of)
            summary.stops = self.update_stops(portfolio_ids, as_of)

            markets = sorted({parse_market(m) for _, m in universe}, key=lambda m: m.value)
            for market in markets:
                summary.sectors.extend(self.run_sector_selection(as_of, market))

            summary.reports = self.run_deep_dives(summary.changes.decisions.values(), as_of)
            summary.delta = self.daily_delta(
                as_of,
                previous_date,
                stop_results=summary.stops,
                new_reports=len(summary.reports),
            )
            logger.info(f"Daily run {run_id} finished: {summary.delta.summary}")
            return summary
        finally:
            run_id_var.reset(token)


__all__ = [
    "DailyPipeline",
    "DailyRunSummary",
    "PortfolioChanges",
    "Stores",
    "UniversePassResult",
]
