"""Market data provider capability interface and explicit selection.

There is no process-wide registry: callers hold their own list of
providers and pass it to ``select_provider``.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, Sequence

from eodsignals.core.exceptions import ConfigurationError
from eodsignals.domain.market import Market
from eodsignals.domain.price import Bar


class MarketDataProvider(Protocol):
    """Protocol for daily bar sources."""

    name: str

    def supports_market(self, market: Market) -> bool:
        ...

    def get_daily_bars(
        self,
        symbol: str,
        market: Market,
        start_date: date,
        end_date: date,
    ) -> list[Bar]:
        """Ascending bars within [start_date, end_date]; may be short or empty."""
        ...


def select_provider(
    providers: Sequence[MarketDataProvider],
    market: Market,
    name: str | None = None,
) -> MarketDataProvider:
    """
    Pick a provider for ``market``.

    With ``name`` the named provider must exist and support the market.
    Without it the first provider (in the given order) supporting the
    market wins.

    Raises:
        ConfigurationError: no matching provider
    """
    if name is not None:
        provider = next((p for p in providers if p.name == name), None)
        if provider is None:
            raise ConfigurationError(
                f"Provider '{name}' not found",
                details={"provider": name, "available": [p.name for p in providers]},
            )
        if not provider.supports_market(market):
            raise ConfigurationError(
                f"Provider '{name}' does not support {market.value} market",
                details={"provider": name, "market": market.value},
            )
        return provider

    for provider in providers:
        if provider.supports_market(market):
            return provider

    raise ConfigurationError(
        f"No provider available for {market.value} market",
        details={"market": market.value},
    )
