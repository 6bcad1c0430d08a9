"""Yahoo Finance daily bars via yfinance.

Blocking calls; the pipeline decides whether to run them on a pool.
TASE listings are requested with Yahoo's ``.TA`` suffix.
"""

from __future__ import annotations

from datetime import date, timedelta

import pandas as pd
import yfinance as yf

from eodsignals.core.exceptions import ExternalServiceError
from eodsignals.core.logging import get_logger
from eodsignals.domain.market import Market
from eodsignals.domain.price import Bar, BarHistory


logger = get_logger("data_providers.yfinance")

_SUFFIX = {
    Market.US: "",
    Market.TASE: ".TA",
}


def yahoo_ticker(symbol: str, market: Market) -> str:
    """Yahoo ticker for a (symbol, market) pair."""
    suffix = _SUFFIX[market]
    upper = symbol.upper()
    return upper if not suffix or upper.endswith(suffix) else f"{upper}{suffix}"


class YFinanceProvider:
    """Daily bars from Yahoo Finance."""

    name = "yfinance"

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    def supports_market(self, market: Market) -> bool:
        return market in _SUFFIX

    def _download(self, ticker: str, start_date: date, end_date: date) -> pd.DataFrame:
        # yfinance treats ``end`` as exclusive
        df = yf.download(
            ticker,
            start=start_date.isoformat(),
            end=(end_date + timedelta(days=1)).isoformat(),
            interval="1d",
            auto_adjust=True,
            progress=False,
            timeout=self.timeout,
        )
        if df is None or df.empty:
            return pd.DataFrame()

        # Handle MultiIndex columns (newer yfinance)
        if isinstance(df.columns, pd.MultiIndex):
            if ticker in df.columns.get_level_values(1):
                df = df.xs(ticker, axis=1, level=1)
            else:
                df.columns = df.columns.droplevel(1)
        return df

    def get_daily_bars(
        self,
        symbol: str,
        market: Market,
        start_date: date,
        end_date: date,
    ) -> list[Bar]:
        ticker = yahoo_ticker(symbol, market)
        try:
            df = self._download(ticker, start_date, end_date)
        except Exception as e:
            logger.warning(f"yfinance price history failed for {ticker}: {e}")
            raise ExternalServiceError(
                f"yfinance download failed for {ticker}",
                details={"symbol": symbol, "market": market.value, "error": str(e)},
            ) from e

        history = BarHistory.from_dataframe(symbol, df, market)
        bars = [bar for bar in history if start_date <= bar.date <= end_date]
        logger.debug(f"Fetched {len(bars)} bars for {ticker}")
        return bars
