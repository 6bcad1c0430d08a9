"""Domain models for strongly-typed data throughout the engine.

Usage:
    from eodsignals.domain import Bar, FeatureSnapshot, SignalDecision

    snapshot: FeatureSnapshot = calculate_features("AAPL", Market.US, day, bars)
    data = snapshot.model_dump()
"""

from eodsignals.domain.features import INDICATOR_FIELDS, FeatureSnapshot
from eodsignals.domain.market import Market, parse_market
from eodsignals.domain.portfolio import Position, StopLossState, StopLossType
from eodsignals.domain.price import Bar, BarHistory
from eodsignals.domain.sectors import SectorStrength
from eodsignals.domain.signals import ChangeDetails, SignalDecision, SignalType

__all__ = [
    # Market
    "Market",
    "parse_market",
    # Price
    "Bar",
    "BarHistory",
    # Features
    "FeatureSnapshot",
    "INDICATOR_FIELDS",
    # Signals
    "ChangeDetails",
    "SignalDecision",
    "SignalType",
    # Portfolio
    "Position",
    "StopLossState",
    "StopLossType",
    # Sectors
    "SectorStrength",
]
