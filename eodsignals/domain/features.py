"""Feature snapshot domain model."""

from __future__ import annotations

from datetime import date as DateType
from decimal import Decimal

from pydantic import BaseModel, Field

from eodsignals.domain.market import Market


INDICATOR_FIELDS: tuple[str, ...] = (
    "sma_20",
    "sma_50",
    "sma_200",
    "ema_12",
    "ema_26",
    "rsi_14",
    "macd",
    "macd_signal",
    "macd_histogram",
    "bb_upper",
    "bb_middle",
    "bb_lower",
    "atr_14",
    "volume_sma_20",
    "volume_ratio",
)


class FeatureSnapshot(BaseModel):
    """Technical features for one (symbol, market, date).

    Any indicator is None when the bar window is too short for it.
    The ``*_state`` fields carry unrounded EMA values into the next
    trading day's MACD calculation.
    """

    symbol: str
    market: Market
    date: DateType

    close_price: Decimal | None = None
    volume: int | None = None

    sma_20: Decimal | None = None
    sma_50: Decimal | None = None
    sma_200: Decimal | None = None
    ema_12: Decimal | None = None
    ema_26: Decimal | None = None

    rsi_14: Decimal | None = None
    macd: Decimal | None = None
    macd_signal: Decimal | None = None
    macd_histogram: Decimal | None = None

    bb_upper: Decimal | None = None
    bb_middle: Decimal | None = None
    bb_lower: Decimal | None = None
    atr_14: Decimal | None = None

    volume_sma_20: int | None = None
    volume_ratio: Decimal | None = None

    ema_fast_state: Decimal | None = Field(default=None, description="Unrounded EMA(12)")
    ema_slow_state: Decimal | None = Field(default=None, description="Unrounded EMA(26)")
    macd_signal_state: Decimal | None = Field(
        default=None, description="Unrounded EMA(9) of the MACD line"
    )

    engine_version: str = "1.0.0"

    model_config = {
        "frozen": True,
        "from_attributes": True,
    }

    @classmethod
    def empty(
        cls,
        symbol: str,
        market: Market,
        date: DateType,
        engine_version: str = "1.0.0",
    ) -> "FeatureSnapshot":
        """Snapshot for a symbol with no bars at all."""
        return cls(symbol=symbol, market=market, date=date, engine_version=engine_version)

    @property
    def key(self) -> tuple[str, Market, DateType]:
        return (self.symbol, self.market, self.date)

    @property
    def has_indicators(self) -> bool:
        return any(getattr(self, name) is not None for name in INDICATOR_FIELDS)

    @property
    def has_ema_state(self) -> bool:
        return self.ema_fast_state is not None and self.ema_slow_state is not None
