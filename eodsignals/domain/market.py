"""Market codes."""

from __future__ import annotations

from enum import Enum

from eodsignals.core.exceptions import ConfigurationError


class Market(str, Enum):
    """Exchanges the engine tracks."""

    US = "US"
    TASE = "TASE"


def parse_market(code: str | Market) -> Market:
    """Parse a market code, failing fast on anything unknown."""
    if isinstance(code, Market):
        return code
    try:
        return Market(str(code).strip().upper())
    except ValueError:
        raise ConfigurationError(
            f"Unknown market code: {code!r}",
            details={"market": code, "valid": [m.value for m in Market]},
        ) from None
