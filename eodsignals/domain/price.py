"""Price domain models.

Type-safe representations of daily OHLCV history.
"""

from __future__ import annotations

from datetime import date as DateType
from decimal import Decimal
from typing import Iterator

import pandas as pd
from pydantic import BaseModel, Field, field_validator

from eodsignals.core.numeric import to_decimal
from eodsignals.domain.market import Market


class Bar(BaseModel):
    """Single daily OHLCV bar.

    One per symbol per trading day; never mutated.
    """

    date: DateType = Field(..., description="Trading date")
    open: Decimal = Field(..., ge=0, description="Opening price")
    high: Decimal = Field(..., ge=0, description="High price")
    low: Decimal = Field(..., ge=0, description="Low price")
    close: Decimal = Field(..., ge=0, description="Closing price")
    volume: int = Field(default=0, ge=0, description="Trading volume")

    model_config = {
        "frozen": True,
        "from_attributes": True,
    }

    @field_validator("open", "high", "low", "close", mode="before")
    @classmethod
    def coerce_price(cls, v):
        dec = to_decimal(v)
        if dec is None:
            raise ValueError(f"price must be a finite number, got {v!r}")
        return dec


class BarHistory(BaseModel):
    """Ascending daily bars for one symbol."""

    symbol: str = Field(..., description="Ticker symbol")
    market: Market = Field(default=Market.US)
    bars: list[Bar] = Field(default_factory=list, description="Bars (chronological)")

    model_config = {
        "from_attributes": True,
    }

    def __len__(self) -> int:
        return len(self.bars)

    def __iter__(self) -> Iterator[Bar]:
        return iter(self.bars)

    def __getitem__(self, index: int) -> Bar:
        return self.bars[index]

    @property
    def start_date(self) -> DateType | None:
        return self.bars[0].date if self.bars else None

    @property
    def end_date(self) -> DateType | None:
        return self.bars[-1].date if self.bars else None

    def until(self, as_of: DateType) -> list[Bar]:
        """Bars dated on or before ``as_of``."""
        return [bar for bar in self.bars if bar.date <= as_of]

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to a float DataFrame indexed by date."""
        columns = ["open", "high", "low", "close", "volume"]
        if not self.bars:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame(
            [
                {
                    "date": bar.date,
                    "open": float(bar.open),
                    "high": float(bar.high),
                    "low": float(bar.low),
                    "close": float(bar.close),
                    "volume": bar.volume,
                }
                for bar in self.bars
            ]
        )
        df.set_index("date", inplace=True)
        return df[columns]

    @classmethod
    def from_dataframe(
        cls,
        symbol: str,
        df: pd.DataFrame | None,
        market: Market = Market.US,
    ) -> "BarHistory":
        """Create a history from an OHLCV DataFrame with a date index.

        Column names are matched case-insensitively. Rows with missing or
        invalid prices are skipped.
        """
        if df is None or df.empty:
            return cls(symbol=symbol, market=market, bars=[])

        frame = df.copy()
        if isinstance(frame.columns, pd.MultiIndex):
            frame.columns = frame.columns.get_level_values(0)
        frame.columns = [str(c).lower().replace(" ", "_") for c in frame.columns]

        bars = []
        for idx, row in frame.iterrows():
            if hasattr(idx, "date"):
                bar_date = idx.date() if callable(idx.date) else idx.date
            else:
                bar_date = idx

            try:
                volume = row.get("volume", 0)
                bars.append(
                    Bar(
                        date=bar_date,
                        open=float(row["open"]),
                        high=float(row["high"]),
                        low=float(row["low"]),
                        close=float(row["close"]),
                        volume=0 if pd.isna(volume) else int(volume),
                    )
                )
            except (ValueError, TypeError, KeyError):
                continue

        bars.sort(key=lambda b: b.date)
        return cls(symbol=symbol, market=market, bars=bars)
