"""
Sector Strength Aggregator.

Ranks sectors by a composite score built from the day's feature
snapshots of their member symbols.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping

from eodsignals.core.numeric import HUNDRED, ZERO, mean, pct_diff, quantize
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market
from eodsignals.domain.sectors import SectorStrength

logger = logging.getLogger(__name__)

BASE_SCORE = Decimal("50")
RSI_NEUTRAL = Decimal("50")
RSI_STRONG = Decimal("60")
RSI_WEAK = Decimal("40")
HALF = Decimal("0.5")
TEN = Decimal("10")
ONE = Decimal("1")


def _group_by_sector(sector_tags: Mapping[str, str | None]) -> dict[str, list[str]]:
    """sector -> symbols, in order of first appearance. Untagged symbols are dropped."""
    groups: dict[str, list[str]] = {}
    for symbol, sector in sector_tags.items():
        if not sector:
            continue
        groups.setdefault(sector, []).append(symbol)
    return groups


def sector_score(
    avg_rsi: Decimal | None,
    avg_sma20_dist: Decimal | None,
    avg_vol_ratio: Decimal | None,
    strong: int,
    weak: int,
    total: int,
) -> Decimal:
    """Composite 0-100 score; missing averages contribute nothing."""
    score = BASE_SCORE
    if avg_rsi is not None:
        score += (avg_rsi - RSI_NEUTRAL) * HALF
    if avg_sma20_dist is not None:
        score += avg_sma20_dist * HALF
    if avg_vol_ratio is not None:
        score += (avg_vol_ratio - ONE) * TEN
    score += Decimal(strong) / Decimal(total) * TEN
    score -= Decimal(weak) / Decimal(total) * TEN
    return max(ZERO, min(HUNDRED, score))


def aggregate_sector_strength(
    as_of: date,
    snapshots: Iterable[FeatureSnapshot],
    sector_tags: Mapping[str, str | None],
    market: Market | None = None,
) -> list[SectorStrength]:
    """
    Score and rank sectors for ``as_of``.

    Args:
        as_of: Target date; snapshots for other dates are ignored
        snapshots: Candidate feature snapshots
        sector_tags: symbol -> sector (None for untagged)
        market: Restrict to one market

    Returns:
        SectorStrength list ordered by score descending, rank 1-based.
        Ties keep the order sectors first appear in ``sector_tags``.
        Sectors with no snapshot on the date are left out.
    """
    by_symbol: dict[str, list[FeatureSnapshot]] = {}
    for snap in snapshots:
        if snap.date != as_of:
            continue
        if market is not None and snap.market != market:
            continue
        by_symbol.setdefault(snap.symbol, []).append(snap)

    scored: list[dict] = []
    for sector, symbols in _group_by_sector(sector_tags).items():
        features = [snap for symbol in symbols for snap in by_symbol.get(symbol, [])]
        if not features:
            logger.debug(f"No features found for sector {sector} on {as_of}")
            continue

        rsi_values = [f.rsi_14 for f in features if f.rsi_14 is not None]
        dist_values = [
            pct_diff(f.close_price, f.sma_20)
            for f in features
            if f.close_price is not None and f.sma_20
        ]
        vol_values = [f.volume_ratio for f in features if f.volume_ratio is not None]

        avg_rsi = mean(rsi_values)
        avg_dist = mean(dist_values)
        avg_vol = mean(vol_values)
        strong = sum(1 for r in rsi_values if r > RSI_STRONG)
        weak = sum(1 for r in rsi_values if r < RSI_WEAK)

        score = sector_score(avg_rsi, avg_dist, avg_vol, strong, weak, len(features))

        scored.append(
            {
                "sector": sector,
                "date": as_of,
                "market": market,
                "symbol_count": len(features),
                "avg_rsi": quantize(avg_rsi),
                "avg_sma20_dist": quantize(avg_dist),
                "avg_vol_ratio": quantize(avg_vol),
                "strong_symbols": strong,
                "weak_symbols": weak,
                "score": quantize(score),
            }
        )

    scored.sort(key=lambda row: row["score"], reverse=True)

    ranked = [SectorStrength(**row, rank=i + 1) for i, row in enumerate(scored)]
    logger.info(f"Calculated strength for {len(ranked)} sectors on {as_of}")
    return ranked
