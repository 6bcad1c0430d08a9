"""
Signal Scorer.

Additive point scoring over one feature snapshot (plus the prior trading
day's snapshot when available). Rules live in an ordered table; the
order of ``SCORING_RULES`` is the order reasons appear in a decision.

Usage:
    from eodsignals.engine.signals import score_signal

    decision = score_signal(today, yesterday)
    decision.signal, decision.confidence, decision.reasons
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable

from eodsignals.core.numeric import HUNDRED, round_int
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.signals import ChangeDetails, SignalDecision, SignalType


# RSI bands
RSI_OVERBOUGHT = Decimal("70")
RSI_OVERSOLD = Decimal("30")
RSI_STRONG = Decimal("60")
RSI_WEAK = Decimal("40")
RSI_SWING = Decimal("10")

# Distances, in percent
SMA_FAR_PCT = Decimal("5")
CROSS_CONFIRM_PCT = Decimal("2")
PRICE_MOVE_PCT = Decimal("5")

# Volume ratio bands
VOLUME_SPIKE = Decimal("2")
VOLUME_ELEVATED = Decimal("1.5")

# Score thresholds
STRONG_THRESHOLD = 40
SIGNAL_THRESHOLD = 20


@dataclass(frozen=True)
class RuleHit:
    """One triggered rule: score delta and its human-readable reason."""

    delta: int
    reason: str


@dataclass
class ScoringContext:
    """Inputs shared by every rule, plus the observations they record."""

    current: FeatureSnapshot
    previous: FeatureSnapshot | None = None
    rsi_change: Decimal | None = None
    price_change: Decimal | None = None
    volume_spike: bool = False
    sma_breakout: str | None = None
    bb_position: str | None = None
    hits: list[RuleHit] = field(default_factory=list)

    def details(self) -> ChangeDetails:
        return ChangeDetails(
            rsi_change=self.rsi_change,
            price_change=self.price_change,
            volume_spike=self.volume_spike,
            sma_breakout=self.sma_breakout,
            bb_position=self.bb_position,
        )


Rule = Callable[[ScoringContext], RuleHit | None]


def _rsi_level(ctx: ScoringContext) -> RuleHit | None:
    rsi = ctx.current.rsi_14
    if rsi is None:
        return None
    if rsi > RSI_OVERBOUGHT:
        return RuleHit(-15, "RSI overbought (>70)")
    if rsi < RSI_OVERSOLD:
        return RuleHit(20, "RSI oversold (<30)")
    if rsi > RSI_STRONG:
        return RuleHit(10, "RSI strong (>60)")
    if rsi < RSI_WEAK:
        return RuleHit(-10, "RSI weak (<40)")
    return None


def _rsi_change(ctx: ScoringContext) -> RuleHit | None:
    rsi = ctx.current.rsi_14
    prev_rsi = ctx.previous.rsi_14 if ctx.previous else None
    if rsi is None or prev_rsi is None:
        return None

    change = rsi - prev_rsi
    ctx.rsi_change = change
    if change > RSI_SWING:
        return RuleHit(10, f"RSI surge (+{change:.1f})")
    if change < -RSI_SWING:
        return RuleHit(-10, f"RSI drop ({change:.1f})")
    return None


def _has_sma_context(snapshot: FeatureSnapshot) -> bool:
    return (
        snapshot.close_price is not None
        and snapshot.sma_20 is not None
        and snapshot.sma_50 is not None
        and snapshot.sma_20 != 0
        and snapshot.sma_50 != 0
    )


def _price_vs_sma20(ctx: ScoringContext) -> RuleHit | None:
    snap = ctx.current
    if not _has_sma_context(snap):
        return None

    price, sma20 = snap.close_price, snap.sma_20
    if price > sma20:
        ctx.sma_breakout = "ABOVE_SMA20"
        distance = (price - sma20) / sma20 * HUNDRED
        if distance > SMA_FAR_PCT:
            return RuleHit(10, f"Price well above SMA20 (+{distance:.1f}%)")
        return RuleHit(5, "Price above SMA20")

    ctx.sma_breakout = "BELOW_SMA20"
    distance = (sma20 - price) / sma20 * HUNDRED
    if distance > SMA_FAR_PCT:
        return RuleHit(-10, f"Price well below SMA20 (-{distance:.1f}%)")
    return RuleHit(-5, "Price below SMA20")


def _sma_cross(ctx: ScoringContext) -> RuleHit | None:
    snap = ctx.current
    if not _has_sma_context(snap):
        return None

    sma20, sma50 = snap.sma_20, snap.sma_50
    if sma20 > sma50:
        if (sma20 - sma50) / sma50 * HUNDRED > CROSS_CONFIRM_PCT:
            return RuleHit(15, "Golden Cross confirmed (SMA20 > SMA50)")
    elif (sma50 - sma20) / sma50 * HUNDRED > CROSS_CONFIRM_PCT:
        return RuleHit(-15, "Death Cross confirmed (SMA20 < SMA50)")
    return None


def _bollinger(ctx: ScoringContext) -> RuleHit | None:
    snap = ctx.current
    if None in (snap.close_price, snap.bb_upper, snap.bb_middle, snap.bb_lower):
        return None

    price = snap.close_price
    if price < snap.bb_lower:
        ctx.bb_position = "BELOW_LOWER"
        return RuleHit(15, "Price below lower Bollinger Band")
    if price > snap.bb_upper:
        ctx.bb_position = "ABOVE_UPPER"
        return RuleHit(-10, "Price above upper Bollinger Band")
    ctx.bb_position = "ABOVE_MIDDLE" if price > snap.bb_middle else "BELOW_MIDDLE"
    return None


def _volume(ctx: ScoringContext) -> RuleHit | None:
    ratio = ctx.current.volume_ratio
    if ratio is None:
        return None
    if ratio > VOLUME_SPIKE:
        ctx.volume_spike = True
        return RuleHit(10, f"High volume spike ({ratio:.1f}x avg)")
    if ratio > VOLUME_ELEVATED:
        return RuleHit(5, f"Elevated volume ({ratio:.1f}x avg)")
    return None


def _price_change(ctx: ScoringContext) -> RuleHit | None:
    close = ctx.current.close_price
    prev_close = ctx.previous.close_price if ctx.previous else None
    if close is None or not prev_close:
        return None

    change = (close - prev_close) / prev_close * HUNDRED
    ctx.price_change = change
    if change > PRICE_MOVE_PCT:
        return RuleHit(10, f"Strong price gain (+{change:.1f}%)")
    if change < -PRICE_MOVE_PCT:
        return RuleHit(-15, f"Sharp price drop ({change:.1f}%)")
    return None


def _macd(ctx: ScoringContext) -> RuleHit | None:
    snap = ctx.current
    if snap.macd is None or snap.macd_histogram is None:
        return None
    if snap.macd_histogram > 0:
        return RuleHit(5, "MACD histogram positive")
    return RuleHit(-5, "MACD histogram negative")


SCORING_RULES: tuple[tuple[str, Rule], ...] = (
    ("rsi_level", _rsi_level),
    ("rsi_change", _rsi_change),
    ("price_vs_sma20", _price_vs_sma20),
    ("sma_cross", _sma_cross),
    ("bollinger", _bollinger),
    ("volume", _volume),
    ("price_change", _price_change),
    ("macd", _macd),
)


def map_score(score: int) -> tuple[SignalType, int]:
    """Map a final score to (signal, confidence); first match wins."""
    magnitude = Decimal(abs(score))
    if score >= STRONG_THRESHOLD:
        signal, confidence = SignalType.STRONG_BUY, min(Decimal(90), 50 + magnitude)
    elif score >= SIGNAL_THRESHOLD:
        signal, confidence = SignalType.BUY, min(Decimal(80), 50 + magnitude * Decimal("0.8"))
    elif score <= -STRONG_THRESHOLD:
        signal, confidence = SignalType.STRONG_SELL, min(Decimal(90), 50 + magnitude)
    elif score <= -SIGNAL_THRESHOLD:
        signal, confidence = SignalType.SELL, min(Decimal(80), 50 + magnitude * Decimal("0.8"))
    else:
        signal, confidence = SignalType.HOLD, max(Decimal(40), 70 - magnitude * 2)
    return signal, round_int(confidence)


def score_signal(
    current: FeatureSnapshot,
    previous: FeatureSnapshot | None = None,
) -> SignalDecision:
    """
    Score one snapshot into a SignalDecision.

    Rules whose inputs are missing are skipped, so a fully empty snapshot
    scores 0 and maps to HOLD at confidence 70. A ``previous`` snapshot
    that is not strictly older than ``current`` is ignored.
    """
    if previous is not None and previous.date >= current.date:
        previous = None

    ctx = ScoringContext(current=current, previous=previous)
    for _name, rule in SCORING_RULES:
        hit = rule(ctx)
        if hit is not None:
            ctx.hits.append(hit)

    score = sum(hit.delta for hit in ctx.hits)
    signal, confidence = map_score(score)

    return SignalDecision(
        symbol=current.symbol,
        market=current.market,
        date=current.date,
        signal=signal,
        confidence=confidence,
        score=score,
        reasons=[hit.reason for hit in ctx.hits],
        change_details=ctx.details(),
    )


def summarize_signals(decisions: Iterable[SignalDecision]) -> dict[SignalType, int]:
    """Count decisions per signal type (all five keys present)."""
    counts = {signal: 0 for signal in SignalType}
    for decision in decisions:
        counts[decision.signal] += 1
    return counts
