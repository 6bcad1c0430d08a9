"""Synthetic market data for tests and local runs.

Prices follow a random walk seeded from the symbol, so the same request
always yields the same bars.
"""

from __future__ import annotations

import zlib
from datetime import date, timedelta

import numpy as np

from eodsignals.core.logging import get_logger
from eodsignals.domain.market import Market
from eodsignals.domain.price import Bar


logger = get_logger("data_providers.mock")


class MockProvider:
    """Deterministic random-walk bars on weekdays."""

    name = "mock"
    supported_markets = (Market.US, Market.TASE)

    def __init__(self, seed: int = 0):
        self.seed = seed

    def supports_market(self, market: Market) -> bool:
        return market in self.supported_markets

    def _rng(self, symbol: str, market: Market) -> np.random.Generator:
        key = zlib.crc32(f"{symbol}:{market.value}".encode())
        return np.random.default_rng([self.seed, key])

    def get_daily_bars(
        self,
        symbol: str,
        market: Market,
        start_date: date,
        end_date: date,
    ) -> list[Bar]:
        rng = self._rng(symbol, market)
        price = 100 + rng.random() * 100

        bars = []
        day = start_date
        while day <= end_date:
            if day.weekday() < 5:
                open_ = price
                close = max(open_ + (rng.random() - 0.5) * 5, 1.0)
                high = max(open_, close) + rng.random() * 2
                low = max(min(open_, close) - rng.random() * 2, 0.01)
                bars.append(
                    Bar(
                        date=day,
                        open=round(open_, 2),
                        high=round(high, 2),
                        low=round(low, 2),
                        close=round(close, 2),
                        volume=int(1_000_000 + rng.random() * 9_000_000),
                    )
                )
                price = close
            day += timedelta(days=1)

        logger.debug(f"Generated {len(bars)} mock bars for {symbol} ({market.value})")
        return bars
