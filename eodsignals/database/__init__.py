"""Database module with SQLAlchemy engine management and ORM models."""

from .connection import (
    create_db_engine,
    get_session,
    get_session_factory,
    init_db,
    init_engine,
    reset_engine,
)
from .orm import (
    ALL_MARKETS,
    Base,
    DailySectorList,
    DailySymbolFeatures,
    DeepDiveReportRecord,
    MarketDailyBar,
    PortfolioDailyDecision,
    PortfolioPosition,
    StopRulesState,
    SymbolSectorMap,
)

__all__ = [
    "ALL_MARKETS",
    "Base",
    "DailySectorList",
    "DailySymbolFeatures",
    "DeepDiveReportRecord",
    "MarketDailyBar",
    "PortfolioDailyDecision",
    "PortfolioPosition",
    "StopRulesState",
    "SymbolSectorMap",
    "create_db_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "init_engine",
    "reset_engine",
]
