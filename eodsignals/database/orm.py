"""SQLAlchemy ORM models for eodsignals.

All tables use SQLAlchemy 2.0 declarative style. Prices and indicators
are ``Numeric`` columns so they load back as ``Decimal``.

Usage:
    from eodsignals.database.orm import DailySymbolFeatures
    from eodsignals.database.connection import get_session

    with get_session() as session:
        row = session.get(DailySymbolFeatures, 1)
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Date,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Naming convention for constraints and indexes
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Sector lists computed across every market
ALL_MARKETS = "ALL"


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# MARKET DATA
# =============================================================================


class MarketDailyBar(Base):
    """Daily OHLCV bar."""
    __tablename__ = "market_daily_bar"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    market: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    open: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    high: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    low: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    close: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    volume: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("symbol", "market", "date", name="uq_market_daily_bar"),
        Index("idx_market_daily_bar_symbol_date", "symbol", "market", "date"),
    )


class DailySymbolFeatures(Base):
    """Feature snapshot per (symbol, market, date)."""
    __tablename__ = "daily_symbol_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    market: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    close_price: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    volume: Mapped[int | None] = mapped_column(BigInteger)

    sma_20: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    sma_50: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    sma_200: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    ema_12: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    ema_26: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))

    rsi_14: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    macd: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    macd_signal: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    macd_histogram: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))

    bb_upper: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    bb_middle: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    bb_lower: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    atr_14: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))

    volume_sma_20: Mapped[int | None] = mapped_column(BigInteger)
    volume_ratio: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))

    # Unrounded EMA carry state for the next day's MACD
    ema_fast_state: Mapped[Decimal | None] = mapped_column(Numeric(24, 8))
    ema_slow_state: Mapped[Decimal | None] = mapped_column(Numeric(24, 8))
    macd_signal_state: Mapped[Decimal | None] = mapped_column(Numeric(24, 8))

    engine_version: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("symbol", "market", "date", name="uq_daily_symbol_features"),
        Index("idx_daily_symbol_features_date", "date"),
    )


# =============================================================================
# PORTFOLIO & RISK
# =============================================================================


class PortfolioPosition(Base):
    """Holding per (portfolio, symbol). Managed outside the engine."""
    __tablename__ = "portfolio_position"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    portfolio_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    market: Mapped[str] = mapped_column(String(10), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    buy_price: Mapped[Decimal] = mapped_column(Numeric(16, 6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol_id", name="uq_portfolio_position"),
        Index("idx_portfolio_position_portfolio", "portfolio_id"),
    )


class StopRulesState(Base):
    """Trailing stop per position; current_stop_loss only moves up."""
    __tablename__ = "stop_rules_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    portfolio_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str | None] = mapped_column(String(20))
    market: Mapped[str | None] = mapped_column(String(10))
    initial_stop_loss: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    current_stop_loss: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    last_updated_date: Mapped[date] = mapped_column(Date, nullable=False)
    stop_loss_type: Mapped[str] = mapped_column(String(30), nullable=False)
    atr_multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol_id", name="uq_stop_rules_state"),
        Index("idx_stop_rules_state_portfolio", "portfolio_id"),
    )


class PortfolioDailyDecision(Base):
    """Signal decision per position per day."""
    __tablename__ = "portfolio_daily_decision"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    portfolio_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    market: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    signal: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reasons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    change_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("portfolio_id", "symbol_id", "date", name="uq_portfolio_daily_decision"),
        Index("idx_portfolio_daily_decision_date", "date"),
    )


# =============================================================================
# SECTORS & REPORTS
# =============================================================================


class SymbolSectorMap(Base):
    """Externally assigned sector tag."""
    __tablename__ = "symbol_sector_map"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    market: Mapped[str] = mapped_column(String(10), nullable=False)
    sector: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("symbol", "market", name="uq_symbol_sector_map"),
    )


class DailySectorList(Base):
    """Ranked sector strength per day and market scope."""
    __tablename__ = "daily_sector_list"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    market_scope: Mapped[str] = mapped_column(String(10), nullable=False, default=ALL_MARKETS)
    sector: Mapped[str] = mapped_column(String(100), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    symbol_count: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_rsi: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    avg_sma20_dist: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    avg_vol_ratio: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    strong_symbols: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weak_symbols: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("date", "market_scope", "sector", name="uq_daily_sector_list"),
        Index("idx_daily_sector_list_date_rank", "date", "market_scope", "rank"),
    )


class DeepDiveReportRecord(Base):
    """Narrative report for a strong signal."""
    __tablename__ = "deep_dive_report"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    market: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    signal: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("symbol", "market", "date", name="uq_deep_dive_report"),
        Index("idx_deep_dive_report_date", "date"),
    )
