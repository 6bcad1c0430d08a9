"""Tests for deep-dive report generation."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from eodsignals.core.exceptions import NotFoundError, ValidationError
from eodsignals.domain import Market, SignalDecision, SignalType
from eodsignals.engine.deep_dive import (
    Momentum,
    RiskLevel,
    Trend,
    Volatility,
    VolumeActivity,
    analyze_momentum,
    analyze_trend,
    analyze_volatility,
    analyze_volume,
    assess_risk,
    generate_deep_dive,
    is_deep_dive_candidate,
)

from factories import START, make_snapshot


TODAY = START + timedelta(days=60)


def _decision(signal=SignalType.STRONG_BUY, confidence=55, reasons=None, day=TODAY):
    return SignalDecision(
        symbol="AAPL",
        market=Market.US,
        date=day,
        signal=signal,
        confidence=confidence,
        score=45,
        reasons=reasons if reasons is not None else ["RSI strong (>60)", "Price above SMA20"],
    )


@pytest.fixture
def overbought_uptrend():
    return make_snapshot(
        day=TODAY,
        close_price="110",
        sma_20="105",
        sma_50="100",
        sma_200="90",
        rsi_14="75",
        atr_14="4",
        volume_ratio="1.0",
        bb_upper="115",
        bb_middle="105",
        bb_lower="95",
    )


class TestClassifiers:
    """Band classification of a single snapshot."""

    def test_trend_levels(self):
        cases = [
            (("110", "105", "100", "90"), Trend.STRONG_UPTREND),
            (("110", "105", "100", None), Trend.UPTREND),
            (("80", "85", "90", "95"), Trend.STRONG_DOWNTREND),
            (("80", "85", "90", "70"), Trend.DOWNTREND),
            (("100", "105", "95", "90"), Trend.MIXED),
            (("100", None, "95", "90"), Trend.INSUFFICIENT_DATA),
        ]
        for (close, sma20, sma50, sma200), expected in cases:
            snapshot = make_snapshot(close_price=close, sma_20=sma20, sma_50=sma50, sma_200=sma200)
            assert analyze_trend(snapshot).level == expected

    def test_trend_description(self, overbought_uptrend):
        assert analyze_trend(overbought_uptrend).description == "STRONG_UPTREND (all SMAs aligned)"

    def test_momentum_levels(self):
        cases = {
            "75": Momentum.OVERBOUGHT,
            "65": Momentum.STRONG,
            "50": Momentum.NEUTRAL,
            "35": Momentum.WEAK,
            "25": Momentum.OVERSOLD,
        }
        for rsi, expected in cases.items():
            assert analyze_momentum(make_snapshot(rsi_14=rsi)).level == expected
        assert analyze_momentum(make_snapshot()).level == Momentum.INSUFFICIENT_DATA

    def test_volatility_levels(self):
        high = analyze_volatility(make_snapshot(close_price="110", atr_14="4"))
        moderate = analyze_volatility(make_snapshot(close_price="100", atr_14="2"))
        low = analyze_volatility(make_snapshot(close_price="100", atr_14="1"))

        assert high.level == Volatility.HIGH
        assert high.description == "HIGH (ATR 3.6% of price) - significant daily swings"
        assert moderate.level == Volatility.MODERATE
        assert low.level == Volatility.LOW
        assert analyze_volatility(make_snapshot(atr_14="1")).level == Volatility.INSUFFICIENT_DATA

    def test_volume_levels(self):
        cases = {
            "2.5": VolumeActivity.HIGH_SPIKE,
            "1.8": VolumeActivity.ELEVATED,
            "1.0": VolumeActivity.NORMAL,
            "0.4": VolumeActivity.LOW,
        }
        for ratio, expected in cases.items():
            assert analyze_volume(make_snapshot(volume_ratio=ratio)).level == expected


class TestAssessRisk:
    """Additive risk scoring."""

    def test_high_risk(self, overbought_uptrend):
        risk = assess_risk(overbought_uptrend, confidence=55)

        assert risk.level == RiskLevel.HIGH
        assert risk.score == 4
        assert risk.factors == [
            "High volatility (ATR > 3% of price)",
            "Overbought conditions (RSI > 70)",
            "Low signal confidence (<60%)",
        ]

    def test_no_factors(self):
        snapshot = make_snapshot(close_price="100", atr_14="1", rsi_14="50", volume_ratio="1")
        risk = assess_risk(snapshot, confidence=90)

        assert risk.level == RiskLevel.LOW
        assert risk.score == 0
        assert risk.factors == ["No significant risk factors identified"]

    def test_medium_risk(self):
        snapshot = make_snapshot(close_price="100", atr_14="2", volume_ratio="0.3")
        risk = assess_risk(snapshot, confidence=90)

        assert risk.level == RiskLevel.MEDIUM
        assert risk.score == 2


class TestGenerateDeepDive:
    """End-to-end report assembly."""

    def test_only_strong_signals(self, overbought_uptrend):
        assert not is_deep_dive_candidate(_decision(signal=SignalType.BUY))
        with pytest.raises(ValidationError):
            generate_deep_dive(_decision(signal=SignalType.BUY), [overbought_uptrend])

    def test_missing_snapshot(self):
        with pytest.raises(NotFoundError):
            generate_deep_dive(_decision(), [make_snapshot(day=TODAY - timedelta(days=1))])

    def test_strong_buy_report(self, overbought_uptrend):
        report = generate_deep_dive(_decision(), [overbought_uptrend])

        assert report.summary == (
            "AAPL generated a STRONG_BUY signal with 55% confidence. "
            "The stock is in a STRONG_UPTREND (all SMAs aligned). "
            "Momentum is OVERBOUGHT (RSI > 70) - potential pullback. "
            "Key factors: RSI strong (>60), Price above SMA20."
        )
        assert report.recommendations == [
            "STRONG BUY: Consider entering or adding to position",
            "Use smaller position size due to high risk",
            "Wait for pullback before entering (overbought conditions)",
            "Implement tight stop-loss due to high volatility",
            "Consider using smaller position size",
            "Signal aligned with strong uptrend - high conviction",
            "Monitor RSI and volume for confirmation",
            "Review position daily for changes in technical setup",
        ]
        assert report.key_metrics["atr_percent"] == Decimal("3.64")
        assert report.bb_position == "ABOVE_MIDDLE"

    def test_strong_sell_report(self):
        snapshot = make_snapshot(
            day=TODAY, close_price="80", sma_20="85", sma_50="90", rsi_14="25"
        )
        decision = _decision(signal=SignalType.STRONG_SELL, confidence=90, reasons=[])

        report = generate_deep_dive(decision, [snapshot])

        assert report.trend.level == Trend.DOWNTREND
        assert report.risk_assessment.level == RiskLevel.LOW
        assert report.recommendations == [
            "STRONG SELL: Consider exiting position or avoiding entry",
            "Monitor RSI and volume for confirmation",
            "Review position daily for changes in technical setup",
        ]
        assert "Key factors" not in report.summary

    def test_history_window(self, overbought_uptrend):
        history = [
            overbought_uptrend,
            make_snapshot(day=TODAY - timedelta(days=10)),
            make_snapshot(day=TODAY - timedelta(days=40)),
            make_snapshot(symbol="MSFT", day=TODAY - timedelta(days=5)),
        ]

        report = generate_deep_dive(_decision(), history, window_days=30)

        assert report.historical_data_points == 2

    def test_to_dict(self, overbought_uptrend):
        data = generate_deep_dive(_decision(), [overbought_uptrend]).to_dict()

        assert data["signal"] == "STRONG_BUY"
        assert data["market"] == "US"
        assert data["classifications"]["trend"] == "STRONG_UPTREND"
        assert data["technical_analysis"]["momentum"].startswith("OVERBOUGHT")
        assert data["key_metrics"]["current_price"] == "110"
        assert data["risk_assessment"]["level"] == "HIGH"
        assert data["supporting_data"]["historical_data_points"] == 1
