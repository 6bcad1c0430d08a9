"""Scheduled job definitions.

The daily signals job wires the SQL stores and the yfinance provider into
the pipeline and runs every stage for one trading date. Scheduling lives
outside the engine (cron, a workflow runner); the job only returns a
status message and raises on infrastructure failures.
"""

from __future__ import annotations

import time
from datetime import date
from typing import Sequence

from eodsignals.core.config import settings
from eodsignals.core.logging import LoggerAdapter, get_logger
from eodsignals.domain.market import Market
from eodsignals.engine.pipeline import DailyPipeline, Stores, UniverseEntry
from eodsignals.services.data_providers import MarketDataProvider, YFinanceProvider


logger = get_logger("jobs")


def build_universe(stores: Stores, markets: Sequence[Market]) -> list[UniverseEntry]:
    """Every sector-tagged symbol plus every held symbol in ``markets``.

    Order is deterministic: tagged symbols first (sorted), then holdings
    that carry no tag.
    """
    wanted = set(markets)
    universe: list[UniverseEntry] = []
    seen: set[UniverseEntry] = set()

    for market in markets:
        for symbol in sorted(stores.sector_tags.get_sector_tags(market)):
            entry = (symbol, market)
            if entry not in seen:
                seen.add(entry)
                universe.append(entry)

    for portfolio_id in stores.positions.list_portfolios():
        for position in stores.positions.list_positions(portfolio_id):
            entry = (position.symbol, position.market)
            if position.market in wanted and entry not in seen:
                seen.add(entry)
                universe.append(entry)

    return universe


def daily_signals_job(
    as_of: date | None = None,
    stores: Stores | None = None,
    providers: Sequence[MarketDataProvider] | None = None,
    sync: bool = True,
) -> str:
    """
    Nightly end-of-day run.

    Syncs bars, computes features for the whole universe, then scores
    every portfolio, ratchets stops, ranks sectors and writes deep dives
    and the daily delta.

    Schedule: weekdays after the US close (30 22 * * 1-5)
    """
    log = LoggerAdapter(logger, {"extra_fields": {"job": "daily_signals"}})
    as_of = as_of or date.today()
    job_start = time.monotonic()

    if stores is None:
        from eodsignals.database.connection import init_db

        init_db()
        stores = Stores.sql()
    if providers is None:
        providers = [YFinanceProvider()]

    universe = build_universe(stores, settings.markets())
    portfolio_ids = stores.positions.list_portfolios()
    if not universe:
        log.info("No symbols to process")
        return "No symbols to process"

    log.info(f"Starting daily_signals for {as_of}: {len(universe)} symbols, {len(portfolio_ids)} portfolios")
    pipeline = DailyPipeline(stores, providers=providers)
    summary = pipeline.run_daily(universe, portfolio_ids, as_of, sync=sync)

    duration_ms = int((time.monotonic() - job_start) * 1000)
    message = (
        f"Run {summary.run_id}: {summary.features.successful}/{summary.features.total} symbols, "
        f"{len(summary.changes.decisions)} decisions, {len(summary.reports)} deep dives "
        f"in {duration_ms}ms"
    )
    if summary.features.failed:
        log.warning(f"daily_signals finished with {summary.features.failed} failed symbols")
    log.info(message)
    return message
