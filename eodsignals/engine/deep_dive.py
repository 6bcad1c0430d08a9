"""
Deep-Dive Narrator.

Templated narrative reports for high-conviction (STRONG_BUY / STRONG_SELL)
decisions. Everything here is classification and text assembly over
already computed snapshots; no new numbers are derived beyond ATR as a
percentage of price.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

from eodsignals.core.config import settings
from eodsignals.core.exceptions import NotFoundError, ValidationError
from eodsignals.core.numeric import HUNDRED, quantize
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market
from eodsignals.domain.signals import SignalDecision, SignalType

logger = logging.getLogger(__name__)

RSI_OVERBOUGHT = Decimal("70")
RSI_STRONG = Decimal("60")
RSI_WEAK = Decimal("40")
RSI_OVERSOLD = Decimal("30")

ATR_HIGH_PCT = Decimal("3")
ATR_MODERATE_PCT = Decimal("1.5")

VOLUME_SPIKE = Decimal("2")
VOLUME_ELEVATED = Decimal("1.5")
VOLUME_NORMAL = Decimal("0.8")
VOLUME_THIN = Decimal("0.5")

LOW_CONFIDENCE = 60
NO_RISK_FACTORS = "No significant risk factors identified"


class Trend(str, Enum):
    """SMA alignment of price/SMA20/SMA50/SMA200."""

    STRONG_UPTREND = "STRONG_UPTREND"
    UPTREND = "UPTREND"
    STRONG_DOWNTREND = "STRONG_DOWNTREND"
    DOWNTREND = "DOWNTREND"
    MIXED = "MIXED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class Momentum(str, Enum):
    """RSI band."""

    OVERBOUGHT = "OVERBOUGHT"
    STRONG = "STRONG"
    OVERSOLD = "OVERSOLD"
    WEAK = "WEAK"
    NEUTRAL = "NEUTRAL"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class Volatility(str, Enum):
    """ATR as a percentage of price."""

    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class VolumeActivity(str, Enum):
    """Volume ratio band."""

    HIGH_SPIKE = "HIGH_SPIKE"
    ELEVATED = "ELEVATED"
    NORMAL = "NORMAL"
    LOW = "LOW"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(frozen=True)
class Classification:
    """An enum band plus the sentence fragment used in the narrative."""

    level: Enum
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"level": self.level.value, "description": self.description}


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    score: int
    factors: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"level": self.level.value, "score": self.score, "factors": list(self.factors)}


@dataclass
class DeepDiveReport:
    """Narrative report for one STRONG_* decision."""

    symbol: str
    market: Market
    date: date
    signal: SignalType
    confidence: int
    summary: str
    trend: Classification
    momentum: Classification
    volatility: Classification
    volume: Classification
    key_metrics: dict[str, Decimal | int | None]
    risk_assessment: RiskAssessment
    recommendations: list[str]
    reasons: list[str] = field(default_factory=list)
    historical_data_points: int = 0
    bb_position: str | None = None

    @property
    def key(self) -> tuple[str, Market, date]:
        return (self.symbol, self.market, self.date)

    @property
    def technical_analysis(self) -> dict[str, str]:
        return {
            "trend": self.trend.description,
            "momentum": self.momentum.description,
            "volatility": self.volatility.description,
            "volume": self.volume.description,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "symbol": self.symbol,
            "market": self.market.value,
            "date": self.date.isoformat(),
            "signal": self.signal.value,
            "confidence": self.confidence,
            "summary": self.summary,
            "technical_analysis": self.technical_analysis,
            "classifications": {
                "trend": self.trend.level.value,
                "momentum": self.momentum.level.value,
                "volatility": self.volatility.level.value,
                "volume": self.volume.level.value,
            },
            "key_metrics": {
                name: (str(value) if isinstance(value, Decimal) else value)
                for name, value in self.key_metrics.items()
            },
            "risk_assessment": self.risk_assessment.to_dict(),
            "recommendations": list(self.recommendations),
            "supporting_data": {
                "reasons": list(self.reasons),
                "historical_data_points": self.historical_data_points,
                "bb_position": self.bb_position,
            },
        }


def is_deep_dive_candidate(decision: SignalDecision) -> bool:
    return decision.signal.is_strong


def _atr_percent(snapshot: FeatureSnapshot) -> Decimal | None:
    if snapshot.atr_14 is None or not snapshot.close_price:
        return None
    return snapshot.atr_14 / snapshot.close_price * HUNDRED


def analyze_trend(snapshot: FeatureSnapshot) -> Classification:
    price, sma20, sma50, sma200 = (
        snapshot.close_price,
        snapshot.sma_20,
        snapshot.sma_50,
        snapshot.sma_200,
    )
    if price is None or sma20 is None or sma50 is None:
        return Classification(Trend.INSUFFICIENT_DATA, Trend.INSUFFICIENT_DATA.value)

    if price > sma20 > sma50:
        if sma200 is not None and sma50 > sma200:
            return Classification(Trend.STRONG_UPTREND, "STRONG_UPTREND (all SMAs aligned)")
        return Classification(Trend.UPTREND, "UPTREND (price > SMA20 > SMA50)")
    if price < sma20 < sma50:
        if sma200 is not None and sma50 < sma200:
            return Classification(Trend.STRONG_DOWNTREND, "STRONG_DOWNTREND (all SMAs aligned)")
        return Classification(Trend.DOWNTREND, "DOWNTREND (price < SMA20 < SMA50)")
    return Classification(Trend.MIXED, "MIXED (SMAs not aligned)")


def analyze_momentum(snapshot: FeatureSnapshot) -> Classification:
    rsi = snapshot.rsi_14
    if rsi is None:
        return Classification(Momentum.INSUFFICIENT_DATA, Momentum.INSUFFICIENT_DATA.value)
    if rsi > RSI_OVERBOUGHT:
        return Classification(Momentum.OVERBOUGHT, "OVERBOUGHT (RSI > 70) - potential pullback")
    if rsi > RSI_STRONG:
        return Classification(Momentum.STRONG, "STRONG (RSI > 60) - bullish momentum")
    if rsi < RSI_OVERSOLD:
        return Classification(Momentum.OVERSOLD, "OVERSOLD (RSI < 30) - potential bounce")
    if rsi < RSI_WEAK:
        return Classification(Momentum.WEAK, "WEAK (RSI < 40) - bearish momentum")
    return Classification(Momentum.NEUTRAL, "NEUTRAL (RSI 40-60)")


def analyze_volatility(snapshot: FeatureSnapshot) -> Classification:
    atr_pct = _atr_percent(snapshot)
    if atr_pct is None:
        return Classification(Volatility.INSUFFICIENT_DATA, Volatility.INSUFFICIENT_DATA.value)
    if atr_pct > ATR_HIGH_PCT:
        return Classification(
            Volatility.HIGH, f"HIGH (ATR {atr_pct:.1f}% of price) - significant daily swings"
        )
    if atr_pct > ATR_MODERATE_PCT:
        return Classification(Volatility.MODERATE, f"MODERATE (ATR {atr_pct:.1f}% of price)")
    return Classification(
        Volatility.LOW, f"LOW (ATR {atr_pct:.1f}% of price) - stable price action"
    )


def analyze_volume(snapshot: FeatureSnapshot) -> Classification:
    ratio = snapshot.volume_ratio
    if ratio is None:
        return Classification(
            VolumeActivity.INSUFFICIENT_DATA, VolumeActivity.INSUFFICIENT_DATA.value
        )
    if ratio > VOLUME_SPIKE:
        return Classification(
            VolumeActivity.HIGH_SPIKE, f"HIGH SPIKE ({ratio:.1f}x average) - strong interest"
        )
    if ratio > VOLUME_ELEVATED:
        return Classification(
            VolumeActivity.ELEVATED, f"ELEVATED ({ratio:.1f}x average) - increased activity"
        )
    if ratio > VOLUME_NORMAL:
        return Classification(VolumeActivity.NORMAL, f"NORMAL ({ratio:.1f}x average)")
    return Classification(VolumeActivity.LOW, f"LOW ({ratio:.1f}x average) - reduced interest")


def assess_risk(snapshot: FeatureSnapshot, confidence: int) -> RiskAssessment:
    """Additive risk score: LOW below 2, MEDIUM 2-3, HIGH from 4."""
    factors: list[str] = []
    score = 0

    atr_pct = _atr_percent(snapshot)
    if atr_pct is not None:
        if atr_pct > ATR_HIGH_PCT:
            factors.append("High volatility (ATR > 3% of price)")
            score += 2
        elif atr_pct > ATR_MODERATE_PCT:
            factors.append("Moderate volatility")
            score += 1

    rsi = snapshot.rsi_14
    if rsi is not None:
        if rsi > RSI_OVERBOUGHT:
            factors.append("Overbought conditions (RSI > 70)")
            score += 1
        elif rsi < RSI_OVERSOLD:
            factors.append("Oversold conditions (RSI < 30)")
            score += 1

    if confidence < LOW_CONFIDENCE:
        factors.append("Low signal confidence (<60%)")
        score += 1

    if snapshot.volume_ratio is not None and snapshot.volume_ratio < VOLUME_THIN:
        factors.append("Low volume (< 0.5x average)")
        score += 1

    if score >= 4:
        level = RiskLevel.HIGH
    elif score >= 2:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    return RiskAssessment(level=level, score=score, factors=factors or [NO_RISK_FACTORS])


def build_recommendations(
    signal: SignalType,
    trend: Trend,
    momentum: Momentum,
    risk: RiskLevel,
) -> list[str]:
    recommendations: list[str] = []

    if signal == SignalType.STRONG_BUY:
        recommendations.append("STRONG BUY: Consider entering or adding to position")
        if risk == RiskLevel.HIGH:
            recommendations.append("Use smaller position size due to high risk")
    elif signal == SignalType.STRONG_SELL:
        recommendations.append("STRONG SELL: Consider exiting position or avoiding entry")

    if signal.is_buy:
        if momentum == Momentum.OVERBOUGHT:
            recommendations.append("Wait for pullback before entering (overbought conditions)")
        elif momentum == Momentum.OVERSOLD:
            recommendations.append("Good entry opportunity (oversold conditions)")

    if risk == RiskLevel.HIGH:
        recommendations.append("Implement tight stop-loss due to high volatility")
        recommendations.append("Consider using smaller position size")
    elif risk == RiskLevel.MEDIUM:
        recommendations.append("Standard stop-loss recommended")

    if signal.is_buy:
        if trend == Trend.STRONG_UPTREND:
            recommendations.append("Signal aligned with strong uptrend - high conviction")
        elif trend in (Trend.DOWNTREND, Trend.STRONG_DOWNTREND):
            recommendations.append("CAUTION: Buy signal against downtrend - counter-trend trade")

    recommendations.append("Monitor RSI and volume for confirmation")
    recommendations.append("Review position daily for changes in technical setup")
    return recommendations


def build_summary(
    decision: SignalDecision,
    trend: Classification,
    momentum: Classification,
) -> str:
    parts = [
        f"{decision.symbol} generated a {decision.signal.value} signal "
        f"with {decision.confidence}% confidence.",
        f"The stock is in a {trend.description}.",
        f"Momentum is {momentum.description}.",
    ]
    if decision.reasons:
        parts.append(f"Key factors: {', '.join(decision.reasons[:3])}.")
    return " ".join(parts)


def bollinger_position(snapshot: FeatureSnapshot) -> str | None:
    price = snapshot.close_price
    if None in (price, snapshot.bb_upper, snapshot.bb_middle, snapshot.bb_lower):
        return None
    if price > snapshot.bb_upper:
        return "ABOVE_UPPER"
    if price < snapshot.bb_lower:
        return "BELOW_LOWER"
    if price > snapshot.bb_middle:
        return "ABOVE_MIDDLE"
    return "BELOW_MIDDLE"


def generate_deep_dive(
    decision: SignalDecision,
    snapshots: Iterable[FeatureSnapshot],
    window_days: int | None = None,
) -> DeepDiveReport:
    """
    Build the narrative report for a STRONG_* decision.

    Args:
        decision: The flagged decision
        snapshots: Recent snapshots for the symbol; must include the one
            dated ``decision.date``
        window_days: History window in calendar days (settings default 30)

    Raises:
        ValidationError: decision is not STRONG_BUY or STRONG_SELL
        NotFoundError: no snapshot for the decision date
    """
    if not is_deep_dive_candidate(decision):
        raise ValidationError(
            f"Deep dives are only generated for strong signals, got {decision.signal.value}",
            details={"symbol": decision.symbol, "signal": decision.signal.value},
        )

    days = window_days if window_days is not None else settings.deep_dive_window_days
    start = decision.date - timedelta(days=days)

    history = sorted(
        (
            snap
            for snap in snapshots
            if snap.symbol == decision.symbol
            and snap.market == decision.market
            and start <= snap.date <= decision.date
        ),
        key=lambda s: s.date,
    )
    current = next((snap for snap in history if snap.date == decision.date), None)
    if current is None:
        raise NotFoundError(
            f"No features found for {decision.symbol} on {decision.date}",
            details={"symbol": decision.symbol, "date": decision.date.isoformat()},
        )

    logger.info(f"Generating deep dive report for {decision.symbol} ({decision.market.value})")

    trend = analyze_trend(current)
    momentum = analyze_momentum(current)
    risk = assess_risk(current, decision.confidence)

    return DeepDiveReport(
        symbol=decision.symbol,
        market=decision.market,
        date=decision.date,
        signal=decision.signal,
        confidence=decision.confidence,
        summary=build_summary(decision, trend, momentum),
        trend=trend,
        momentum=momentum,
        volatility=analyze_volatility(current),
        volume=analyze_volume(current),
        key_metrics={
            "current_price": current.close_price,
            "sma_20": current.sma_20,
            "sma_50": current.sma_50,
            "sma_200": current.sma_200,
            "rsi": current.rsi_14,
            "atr": current.atr_14,
            "atr_percent": quantize(_atr_percent(current)),
            "volume_ratio": current.volume_ratio,
        },
        risk_assessment=risk,
        recommendations=build_recommendations(
            decision.signal, trend.level, momentum.level, risk.level
        ),
        reasons=list(decision.reasons),
        historical_data_points=len(history),
        bb_position=bollinger_position(current),
    )
