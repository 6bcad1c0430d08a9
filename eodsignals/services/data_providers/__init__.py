"""Data providers - market data sources behind one capability interface."""

from .base import MarketDataProvider, select_provider
from .mock_provider import MockProvider
from .yfinance_provider import YFinanceProvider, yahoo_ticker


__all__ = [
    "MarketDataProvider",
    "MockProvider",
    "YFinanceProvider",
    "select_provider",
    "yahoo_ticker",
]
