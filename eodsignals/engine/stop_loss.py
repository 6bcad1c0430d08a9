"""
Stop-Loss Engine.

ATR-based trailing stops with a ratchet: once persisted, a position's
``current_stop_loss`` can only move up. ``compute_stop`` is pure;
``StopLossService`` adds storage and per-position serialization.

Usage:
    calc = compute_stop(position, snapshot, existing_state)
    if calc.should_update:
        store.put_stop_state(calc.to_state())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from eodsignals.core.exceptions import (
    AppException,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from eodsignals.core.locks import KeyedLock
from eodsignals.core.numeric import HUNDRED, ZERO, quantize, to_decimal
from eodsignals.domain.features import FeatureSnapshot
from eodsignals.domain.market import Market
from eodsignals.domain.portfolio import Position, StopLossState, StopLossType
from eodsignals.repositories.base import PositionReader, SnapshotStore, StopStateStore

logger = logging.getLogger(__name__)

ONE = Decimal("1")


@dataclass(frozen=True)
class StopLossConfig:
    """Risk profile for stop placement.

    Percentages are fractions of price (0.10 = 10%).
    """

    default_pct: Decimal = Decimal("0.10")
    atr_multiplier: Decimal = Decimal("2.0")
    min_pct: Decimal = Decimal("0.05")
    max_pct: Decimal = Decimal("0.20")

    def __post_init__(self) -> None:
        problems = []
        if not ZERO < self.default_pct < ONE:
            problems.append("default_pct must be between 0 and 1")
        if self.atr_multiplier <= ZERO:
            problems.append("atr_multiplier must be positive")
        if not ZERO < self.min_pct < ONE or not ZERO < self.max_pct < ONE:
            problems.append("min_pct and max_pct must be between 0 and 1")
        elif self.min_pct >= self.max_pct:
            problems.append("min_pct must be below max_pct")
        if problems:
            raise ConfigurationError(
                "Invalid stop-loss risk profile",
                details={"problems": problems},
            )

    @classmethod
    def from_floats(
        cls,
        default_pct: float,
        atr_multiplier: float,
        min_pct: float,
        max_pct: float,
    ) -> "StopLossConfig":
        values = {
            "default_pct": to_decimal(default_pct),
            "atr_multiplier": to_decimal(atr_multiplier),
            "min_pct": to_decimal(min_pct),
            "max_pct": to_decimal(max_pct),
        }
        missing = [name for name, value in values.items() if value is None]
        if missing:
            raise ConfigurationError(
                "Invalid stop-loss risk profile",
                details={"problems": [f"{name} must be a finite number" for name in missing]},
            )
        return cls(**values)


DEFAULT_STOP_CONFIG = StopLossConfig()


@dataclass(frozen=True)
class StopLossCalculation:
    """Full record of one stop-loss computation."""

    portfolio_id: str
    symbol_id: str
    date: date
    current_price: Decimal
    buy_price: Decimal
    initial_stop_loss: Decimal
    current_stop_loss: Decimal
    recommended_stop_loss: Decimal
    atr: Decimal | None
    atr_multiplier: Decimal
    stop_loss_percent: Decimal
    stop_loss_type: StopLossType
    should_update: bool
    risk_amount: Decimal
    previous_stop_loss: Decimal | None = None
    symbol: str | None = None
    market: Market | None = None

    def to_state(self) -> StopLossState:
        """State to persist when ``should_update`` is set."""
        return StopLossState(
            portfolio_id=self.portfolio_id,
            symbol_id=self.symbol_id,
            initial_stop_loss=self.initial_stop_loss,
            current_stop_loss=self.current_stop_loss,
            last_updated_date=self.date,
            stop_loss_type=self.stop_loss_type,
            atr_multiplier=self.atr_multiplier,
            symbol=self.symbol,
            market=self.market,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "portfolio_id": self.portfolio_id,
            "symbol_id": self.symbol_id,
            "date": self.date.isoformat(),
            "current_price": str(self.current_price),
            "buy_price": str(self.buy_price),
            "initial_stop_loss": str(self.initial_stop_loss),
            "current_stop_loss": str(self.current_stop_loss),
            "recommended_stop_loss": str(self.recommended_stop_loss),
            "atr": str(self.atr) if self.atr is not None else None,
            "atr_multiplier": str(self.atr_multiplier),
            "stop_loss_percent": str(self.stop_loss_percent),
            "stop_loss_type": self.stop_loss_type.value,
            "should_update": self.should_update,
            "risk_amount": str(self.risk_amount),
            "previous_stop_loss": (
                str(self.previous_stop_loss) if self.previous_stop_loss is not None else None
            ),
        }


def recommend_stop(
    current_price: Decimal,
    atr: Decimal | None,
    config: StopLossConfig = DEFAULT_STOP_CONFIG,
) -> tuple[Decimal, StopLossType, Decimal]:
    """
    Candidate stop for today's price, before the ratchet.

    Returns:
        (recommended_stop, stop_type, atr_multiplier_used), stop rounded
        to two decimals
    """
    if atr is None or atr <= ZERO:
        recommended = current_price * (ONE - config.default_pct)
        return quantize(recommended), StopLossType.PERCENTAGE, ZERO

    recommended = current_price - atr * config.atr_multiplier
    stop_type = StopLossType.ATR_TRAILING

    widest = current_price * (ONE - config.max_pct)
    tightest = current_price * (ONE - config.min_pct)
    if recommended < widest:
        recommended = widest
        stop_type = StopLossType.ATR_TRAILING_CAPPED
    elif recommended > tightest:
        recommended = tightest
        stop_type = StopLossType.ATR_TRAILING_MIN

    return quantize(recommended), stop_type, config.atr_multiplier


def compute_stop(
    position: Position,
    snapshot: FeatureSnapshot,
    existing: StopLossState | None = None,
    config: StopLossConfig = DEFAULT_STOP_CONFIG,
) -> StopLossCalculation:
    """
    Compute the ratcheted stop for one position.

    Args:
        position: Holding with buy price and quantity
        snapshot: Today's features (close price and ATR)
        existing: Previously persisted state, None on first calculation
        config: Risk profile

    Returns:
        StopLossCalculation; ``should_update`` tells the caller whether
        the stop moved (always True on first calculation). A recommended
        stop below the existing one is discarded.

    Raises:
        ValidationError: snapshot has no close price
    """
    current_price = snapshot.close_price
    if current_price is None or current_price <= ZERO:
        raise ValidationError(
            f"No close price for {position.symbol} on {snapshot.date}",
            details={"symbol": position.symbol, "date": snapshot.date.isoformat()},
        )

    recommended, stop_type, multiplier = recommend_stop(current_price, snapshot.atr_14, config)

    if existing is not None:
        initial = existing.initial_stop_loss
        current_stop = max(existing.current_stop_loss, recommended)
        should_update = recommended > existing.current_stop_loss
    else:
        initial = quantize(position.buy_price * (ONE - config.default_pct))
        current_stop = max(initial, recommended)
        should_update = True

    distance = current_price - current_stop

    return StopLossCalculation(
        portfolio_id=position.portfolio_id,
        symbol_id=position.symbol_id,
        date=snapshot.date,
        current_price=current_price,
        buy_price=position.buy_price,
        initial_stop_loss=initial,
        current_stop_loss=current_stop,
        recommended_stop_loss=recommended,
        atr=snapshot.atr_14,
        atr_multiplier=multiplier,
        stop_loss_percent=quantize(distance / current_price * HUNDRED),
        stop_loss_type=stop_type,
        should_update=should_update,
        risk_amount=quantize(distance * position.quantity),
        previous_stop_loss=existing.current_stop_loss if existing is not None else None,
        symbol=position.symbol,
        market=position.market,
    )


@dataclass(frozen=True)
class StopLossViolation:
    """A close below the persisted stop."""

    portfolio_id: str
    symbol_id: str
    symbol: str | None
    current_price: Decimal
    stop_loss: Decimal
    violation_amount: Decimal
    violation_percent: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "portfolio_id": self.portfolio_id,
            "symbol_id": self.symbol_id,
            "symbol": self.symbol,
            "current_price": str(self.current_price),
            "stop_loss": str(self.stop_loss),
            "violation_amount": str(self.violation_amount),
            "violation_percent": str(self.violation_percent),
        }


def check_violation(
    state: StopLossState,
    close_price: Decimal | None,
) -> StopLossViolation | None:
    """Read-only: report a violation if ``close_price`` is below the stop."""
    if close_price is None or not close_price < state.current_stop_loss:
        return None

    amount = state.current_stop_loss - close_price
    return StopLossViolation(
        portfolio_id=state.portfolio_id,
        symbol_id=state.symbol_id,
        symbol=state.symbol,
        current_price=close_price,
        stop_loss=state.current_stop_loss,
        violation_amount=quantize(amount),
        violation_percent=quantize(amount / state.current_stop_loss * HUNDRED),
    )


def scan_violations(
    states: Iterable[StopLossState],
    closes: Mapping[str, Decimal | None],
) -> list[StopLossViolation]:
    """Check many states; ``closes`` maps symbol_id to the day's close."""
    violations = []
    for state in states:
        violation = check_violation(state, closes.get(state.symbol_id))
        if violation is not None:
            logger.warning(
                f"STOP LOSS VIOLATED: {state.symbol or state.symbol_id} @ {violation.current_price} "
                f"(stop: {violation.stop_loss}, violation: {violation.violation_percent}%)"
            )
            violations.append(violation)
    return violations


@dataclass
class PortfolioStopResult:
    """Outcome of one portfolio-wide stop update."""

    portfolio_id: str
    date: date
    total_positions: int = 0
    updated: int = 0
    unchanged: int = 0
    calculations: list[StopLossCalculation] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)


class StopLossService:
    """
    Storage-backed stop maintenance.

    Each (portfolio_id, symbol_id) read-modify-write runs under a keyed
    lock, and the store's upsert itself only ratchets upwards, so a stale
    concurrent writer can never lower a stored stop.
    """

    def __init__(
        self,
        positions: PositionReader,
        snapshots: SnapshotStore,
        stop_states: StopStateStore,
        config: StopLossConfig | None = None,
        locks: KeyedLock | None = None,
    ):
        self.positions = positions
        self.snapshots = snapshots
        self.stop_states = stop_states
        self.config = config or DEFAULT_STOP_CONFIG
        self._locks = locks or KeyedLock()

    def calculate_stop(self, position: Position, as_of: date) -> StopLossCalculation:
        """Compute without persisting."""
        snapshot = self.snapshots.get_snapshot(position.symbol, position.market, as_of)
        if snapshot is None:
            raise NotFoundError(
                f"No features found for {position.symbol} on {as_of}",
                details={"symbol": position.symbol, "date": as_of.isoformat()},
            )
        existing = self.stop_states.get_stop_state(position.portfolio_id, position.symbol_id)
        return compute_stop(position, snapshot, existing, self.config)

    def update_stop(self, position: Position, as_of: date) -> StopLossCalculation:
        """Compute and persist if the stop moved, serialized per position."""
        with self._locks.hold(position.key):
            calc = self.calculate_stop(position, as_of)
            if not calc.should_update:
                logger.debug(
                    f"No update needed for {position.symbol} "
                    f"(stop already at {calc.current_stop_loss})"
                )
                return calc

            stored = self.stop_states.put_stop_state(calc.to_state())
            logger.info(
                f"Updated stop-loss for {position.symbol}: {stored.current_stop_loss} "
                f"({calc.stop_loss_percent}% below current price)"
            )
            return calc

    def update_portfolio_stops(self, portfolio_id: str, as_of: date) -> PortfolioStopResult:
        """Update every position; one failing position does not stop the rest."""
        positions = self.positions.list_positions(portfolio_id)
        result = PortfolioStopResult(
            portfolio_id=portfolio_id,
            date=as_of,
            total_positions=len(positions),
        )

        for position in positions:
            try:
                calc = self.update_stop(position, as_of)
            except AppException as exc:
                logger.error(f"Failed to calculate stop-loss for {position.symbol}: {exc.message}")
                result.errors.append((position.symbol, exc.message))
                continue

            result.calculations.append(calc)
            if calc.should_update:
                result.updated += 1
            else:
                result.unchanged += 1

        logger.info(
            f"Portfolio {portfolio_id}: {result.updated} stops updated, "
            f"{result.unchanged} unchanged"
        )
        return result

    def check_violations(self, portfolio_id: str, as_of: date) -> list[StopLossViolation]:
        """Compare persisted stops with the day's closes; never mutates state."""
        states = self.stop_states.list_stop_states(portfolio_id)
        closes: dict[str, Decimal | None] = {}
        for state in states:
            if state.symbol is None or state.market is None:
                continue
            snapshot = self.snapshots.get_snapshot(state.symbol, state.market, as_of)
            closes[state.symbol_id] = snapshot.close_price if snapshot else None
        return scan_violations(states, closes)
