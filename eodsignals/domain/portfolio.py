"""Position and stop-loss state domain models."""

from __future__ import annotations

from datetime import date as DateType
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from eodsignals.domain.market import Market


class StopLossType(str, Enum):
    """How the current stop was derived."""

    PERCENTAGE = "PERCENTAGE"
    ATR_TRAILING = "ATR_TRAILING"
    ATR_TRAILING_CAPPED = "ATR_TRAILING_CAPPED"
    ATR_TRAILING_MIN = "ATR_TRAILING_MIN"


class Position(BaseModel):
    """Read-only view of a portfolio holding."""

    portfolio_id: str
    symbol_id: str
    symbol: str
    market: Market = Market.US
    quantity: Decimal = Field(..., ge=0)
    buy_price: Decimal = Field(..., gt=0)

    model_config = {"frozen": True, "from_attributes": True}

    @property
    def key(self) -> tuple[str, str]:
        return (self.portfolio_id, self.symbol_id)


class StopLossState(BaseModel):
    """Persisted trailing stop for one (portfolio, symbol) pair.

    ``current_stop_loss`` only ever moves up over the state's lifetime.
    """

    portfolio_id: str
    symbol_id: str
    initial_stop_loss: Decimal
    current_stop_loss: Decimal
    last_updated_date: DateType
    stop_loss_type: StopLossType
    atr_multiplier: Decimal = Decimal("0")
    symbol: str | None = None
    market: Market | None = None

    model_config = {"frozen": True, "from_attributes": True}

    @property
    def key(self) -> tuple[str, str]:
        return (self.portfolio_id, self.symbol_id)
