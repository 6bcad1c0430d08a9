"""Signal decision domain model."""

from __future__ import annotations

from datetime import date as DateType
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from eodsignals.domain.market import Market


class SignalType(str, Enum):
    """Five-value signal taxonomy."""

    STRONG_SELL = "STRONG_SELL"
    SELL = "SELL"
    HOLD = "HOLD"
    BUY = "BUY"
    STRONG_BUY = "STRONG_BUY"

    @property
    def rank(self) -> int:
        """1 (STRONG_SELL) through 5 (STRONG_BUY)."""
        return _SIGNAL_RANK[self]

    @property
    def is_strong(self) -> bool:
        return self in (SignalType.STRONG_BUY, SignalType.STRONG_SELL)

    @property
    def is_buy(self) -> bool:
        return self in (SignalType.BUY, SignalType.STRONG_BUY)


_SIGNAL_RANK = {
    SignalType.STRONG_SELL: 1,
    SignalType.SELL: 2,
    SignalType.HOLD: 3,
    SignalType.BUY: 4,
    SignalType.STRONG_BUY: 5,
}


class ChangeDetails(BaseModel):
    """Raw observations behind a decision."""

    rsi_change: Decimal | None = None
    price_change: Decimal | None = None
    volume_spike: bool = False
    sma_breakout: str | None = None
    bb_position: str | None = None

    model_config = {"frozen": True}


class SignalDecision(BaseModel):
    """Scored signal for one (symbol, market, date)."""

    symbol: str
    market: Market
    date: DateType
    signal: SignalType
    confidence: int = Field(..., ge=0, le=100)
    score: int = Field(default=0, description="Signed additive score")
    reasons: list[str] = Field(default_factory=list)
    change_details: ChangeDetails = Field(default_factory=ChangeDetails)

    model_config = {"frozen": True}
