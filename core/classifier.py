"""
Day-type blueprint classification.

``classify`` is a pure function of one snapshot and its ADR: no clock, no
store access, no mutation. Every rule is evaluated independently, so a
symbol can match several blueprints in one pass. Rules that divide by the
session range are skipped when the range is zero.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from config.settings import (
    REJECTION_RANGE_ADR_MULTIPLE,
    REJECTION_TAIL_TO_BODY,
    REJECTION_CLOSE_POSITION_BULL,
    REJECTION_CLOSE_POSITION_BEAR,
    REJECTION_MIN_CHANGE_PCT,
    FAILED_EXTREME_CHANGE_PCT,
    FAILED_EXTREME_MIN_MOVE_PCT,
    OUTSIDE_DAY_MIN_CHANGE_PCT,
    OUTSIDE_DAY_MIN_RANGE_TO_PRICE,
    ABSORPTION_MIN_BODY_RATIO,
    ABSORPTION_MIN_CHANGE_PCT,
    ABSORPTION_MIN_VOLUME,
    STOP_RUN_MIN_WICK_RATIO,
    STOP_RUN_MAX_CHANGE_PCT,
    CONFIDENCE_HIGH_CHANGE_PCT,
    CONFIDENCE_HIGH_VOLUME,
    CONFIDENCE_MEDIUM_CHANGE_PCT,
    CONFIDENCE_MEDIUM_VOLUME,
)
from core.baseline import BaselineProvider
from models.types import BlueprintResult, BlueprintType, Confidence, InstrumentSnapshot


@dataclass(frozen=True)
class SessionMetrics:
    range: float
    body: float
    upper_wick: float
    lower_wick: float
    change_percent: float

    @classmethod
    def from_snapshot(cls, snap: InstrumentSnapshot) -> "SessionMetrics":
        return cls(
            range=snap.high_24h - snap.low_24h,
            body=abs(snap.close - snap.open),
            upper_wick=snap.high_24h - max(snap.open, snap.close),
            lower_wick=min(snap.open, snap.close) - snap.low_24h,
            change_percent=abs(snap.change_24h),
        )


def grade_confidence(change_percent: float, volume: float) -> Confidence:
    if change_percent > CONFIDENCE_HIGH_CHANGE_PCT and volume > CONFIDENCE_HIGH_VOLUME:
        return Confidence.HIGH
    if change_percent > CONFIDENCE_MEDIUM_CHANGE_PCT and volume > CONFIDENCE_MEDIUM_VOLUME:
        return Confidence.MEDIUM
    return Confidence.LOW


# ----------------------------------------------------------------------
# Rules. Each returns (blueprint, details) or None.
# ----------------------------------------------------------------------
def _check_rejection_day(snap: InstrumentSnapshot, m: SessionMetrics, adr: float):
    if m.range <= 0 or adr <= 0:
        return None
    if m.range <= REJECTION_RANGE_ADR_MULTIPLE * adr:
        return None
    if m.change_percent <= REJECTION_MIN_CHANGE_PCT:
        return None

    if snap.close > snap.open:
        bullish, tail = True, m.lower_wick
    elif snap.close < snap.open:
        bullish, tail = False, m.upper_wick
    else:
        # No body, no rejection
        return None

    tail_to_body = tail / m.body if m.body > 0 else 0.0
    if tail_to_body <= REJECTION_TAIL_TO_BODY:
        return None

    close_position = (snap.close - snap.low_24h) / m.range
    if bullish and close_position < REJECTION_CLOSE_POSITION_BULL:
        return None
    if not bullish and close_position > REJECTION_CLOSE_POSITION_BEAR:
        return None

    blueprint = BlueprintType.LONG_REJECTION_DAY if bullish else BlueprintType.SHORT_REJECTION_DAY
    details = (
        f"{'Bullish' if bullish else 'Bearish'} rejection: range {m.range / adr * 100:.1f}% of ADR, "
        f"tail/body {tail_to_body:.2f}, close at {close_position * 100:.1f}% of range"
    )
    return blueprint, details


def _check_failed_new_high(snap: InstrumentSnapshot, m: SessionMetrics):
    if (
        snap.change_24h < -FAILED_EXTREME_CHANGE_PCT
        and snap.close < snap.open
        and m.change_percent > FAILED_EXTREME_MIN_MOVE_PCT
    ):
        return (
            BlueprintType.FAILED_NEW_HIGH,
            f"Failed to sustain new highs, showing weakness with {m.change_percent:.2f}% reversal",
        )
    return None


def _check_failed_new_low(snap: InstrumentSnapshot, m: SessionMetrics):
    if (
        snap.change_24h > FAILED_EXTREME_CHANGE_PCT
        and snap.close > snap.open
        and m.change_percent > FAILED_EXTREME_MIN_MOVE_PCT
    ):
        return (
            BlueprintType.FAILED_NEW_LOW,
            f"Failed to sustain new lows, showing strength with {m.change_percent:.2f}% recovery",
        )
    return None


def _check_outside_day(snap: InstrumentSnapshot, m: SessionMetrics):
    if m.range <= 0 or snap.price <= 0:
        return None
    range_to_price = m.range / snap.price
    if m.change_percent > OUTSIDE_DAY_MIN_CHANGE_PCT and range_to_price > OUTSIDE_DAY_MIN_RANGE_TO_PRICE:
        blueprint = BlueprintType.BULLISH_OUTSIDE_DAY if snap.change_24h > 0 else BlueprintType.BEARISH_OUTSIDE_DAY
        return (
            blueprint,
            f"High volatility outside day with {m.change_percent:.2f}% move, "
            f"range {range_to_price * 100:.1f}% of price",
        )
    return None


def _check_absorption_day(snap: InstrumentSnapshot, m: SessionMetrics):
    if m.range <= 0:
        return None
    body_ratio = m.body / m.range
    if (
        body_ratio > ABSORPTION_MIN_BODY_RATIO
        and m.change_percent > ABSORPTION_MIN_CHANGE_PCT
        and snap.volume > ABSORPTION_MIN_VOLUME
    ):
        blueprint = BlueprintType.BULLISH_ABSORPTION_DAY if snap.change_24h > 0 else BlueprintType.BEARISH_ABSORPTION_DAY
        return blueprint, f"High volume absorption with {body_ratio * 100:.1f}% body ratio"
    return None


def _check_stop_run_day(snap: InstrumentSnapshot, m: SessionMetrics):
    if m.range <= 0:
        return None
    wick_ratio = max(m.upper_wick, m.lower_wick) / m.range
    if wick_ratio > STOP_RUN_MIN_WICK_RATIO and m.change_percent < STOP_RUN_MAX_CHANGE_PCT:
        blueprint = BlueprintType.STOP_RUN_DAY_HIGH if m.upper_wick > m.lower_wick else BlueprintType.STOP_RUN_DAY_LOW
        return blueprint, f"Stop run detected with {wick_ratio * 100:.1f}% wick"
    return None


# ----------------------------------------------------------------------
# Public entry
# ----------------------------------------------------------------------
def classify(snapshot: InstrumentSnapshot, adr: float) -> List[BlueprintResult]:
    m = SessionMetrics.from_snapshot(snapshot)
    confidence = grade_confidence(m.change_percent, snapshot.volume)

    matches = [
        _check_rejection_day(snapshot, m, adr),
        _check_failed_new_high(snapshot, m),
        _check_failed_new_low(snapshot, m),
        _check_outside_day(snapshot, m),
        _check_absorption_day(snapshot, m),
        _check_stop_run_day(snapshot, m),
    ]

    results: List[BlueprintResult] = []
    for match in matches:
        if match is None:
            continue
        blueprint, details = match
        results.append(
            BlueprintResult(
                symbol=snapshot.symbol,
                blueprint_type=blueprint,
                confidence=confidence,
                price=snapshot.price,
                change_24h=snapshot.change_24h,
                volume=snapshot.volume,
                details=details,
            )
        )
    return results


def classify_all(
    snapshots: Iterable[InstrumentSnapshot],
    baselines: Optional[BaselineProvider] = None,
) -> List[BlueprintResult]:
    """Classify many snapshots; ADR comes from the provider (or the 0.8x range fallback)."""
    provider = baselines or BaselineProvider()
    results: List[BlueprintResult] = []
    for snap in snapshots:
        adr = provider.compute_adr(snap.symbol, snap.range)
        results.extend(classify(snap, adr))
    return results

