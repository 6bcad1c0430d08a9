"""Decision engine: features, signals, stops, sectors and deep dives.

Usage:
    from eodsignals.engine import calculate_features, score_signal, compute_stop

    snapshot = calculate_features("AAPL", Market.US, day, bars)
    decision = score_signal(snapshot, previous)
"""

from .daily_delta import DailyDelta, calculate_daily_delta
from .deep_dive import DeepDiveReport, generate_deep_dive, is_deep_dive_candidate
from .features import FeatureCalculatorService, calculate_features
from .frames import backfill_snapshots, bars_to_frame
from .sectors import aggregate_sector_strength
from .signals import SCORING_RULES, map_score, score_signal, summarize_signals
from .stop_loss import (
    StopLossCalculation,
    StopLossConfig,
    StopLossService,
    StopLossViolation,
    check_violation,
    compute_stop,
    scan_violations,
)

__all__ = [
    # Features
    "FeatureCalculatorService",
    "backfill_snapshots",
    "bars_to_frame",
    "calculate_features",
    # Signals
    "SCORING_RULES",
    "map_score",
    "score_signal",
    "summarize_signals",
    # Stops
    "StopLossCalculation",
    "StopLossConfig",
    "StopLossService",
    "StopLossViolation",
    "check_violation",
    "compute_stop",
    "scan_violations",
    # Sectors, reports, deltas
    "DailyDelta",
    "DeepDiveReport",
    "aggregate_sector_strength",
    "calculate_daily_delta",
    "generate_deep_dive",
    "is_deep_dive_candidate",
]
