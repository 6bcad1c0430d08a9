"""End-of-day technical features, trading signals and trailing stop-loss engine."""

__version__ = "1.0.0"
