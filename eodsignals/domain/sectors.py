"""Sector strength domain model."""

from __future__ import annotations

from datetime import date as DateType
from decimal import Decimal

from pydantic import BaseModel, Field

from eodsignals.domain.market import Market


class SectorStrength(BaseModel):
    """Composite strength of one sector on one date."""

    sector: str
    date: DateType
    market: Market | None = None
    symbol_count: int = Field(..., ge=1)
    avg_rsi: Decimal | None = None
    avg_sma20_dist: Decimal | None = Field(
        default=None, description="Mean % distance of close from SMA20"
    )
    avg_vol_ratio: Decimal | None = None
    strong_symbols: int = Field(default=0, description="RSI > 60")
    weak_symbols: int = Field(default=0, description="RSI < 40")
    score: Decimal = Field(..., ge=0, le=100)
    rank: int = Field(..., ge=1)

    model_config = {"frozen": True}
