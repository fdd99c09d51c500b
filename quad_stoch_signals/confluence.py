from __future__ import annotations

from typing import Optional, Sequence, Tuple

from .config import SignalConfig
from .indicators import session_vwap, sma, volume_spike
from .models import (
    Candle,
    ChannelPosition,
    ConfluenceFlags,
    Direction,
    FlagResult,
    QuadSnapshot,
    RotationResult,
    RotationStrength,
    SignalStrength,
)


def vwap_confluence(price: float, vwap: Optional[float], direction: Direction) -> bool:
    """Longs want price below session VWAP (discount), shorts above it."""
    if vwap is None or vwap <= 0:
        return False
    if direction == Direction.LONG:
        return price < vwap
    return price > vwap


def ma_confluence(price: float, ma20: Optional[float], ma50: Optional[float], direction: Direction) -> bool:
    if not ma20 or not ma50:
        return False
    if direction == Direction.LONG:
        return ma20 > ma50 or price > ma20
    return ma20 < ma50 or price < ma20


def htf_alignment(snapshot: QuadSnapshot, direction: Direction) -> bool:
    if direction == Direction.LONG:
        return snapshot.slow.k > snapshot.slow.d
    return snapshot.slow.k < snapshot.slow.d


def confluence_flags(
    direction: Direction,
    candles: Sequence[Candle],
    snapshot: QuadSnapshot,
    rotation: RotationResult,
    flag: FlagResult,
    position: ChannelPosition,
    config: Optional[SignalConfig] = None,
) -> ConfluenceFlags:
    config = config or SignalConfig()
    is_long = direction == Direction.LONG
    closes = [c.close for c in candles]
    price = closes[-1]
    return ConfluenceFlags(
        quad_rotation=rotation.is_oversold_rotation if is_long else rotation.is_overbought_rotation,
        channel_extreme=position == (ChannelPosition.LOWER if is_long else ChannelPosition.UPPER),
        flag_pattern=flag.is_bull_flag if is_long else flag.is_bear_flag,
        vwap_confluence=vwap_confluence(price, session_vwap(candles), direction),
        ma_confluence=ma_confluence(price, sma(closes, 20), sma(closes, 50), direction),
        volume_spike=volume_spike(candles, config.volume_spike_multiplier),
        htf_alignment=htf_alignment(snapshot, direction),
    )


def score(
    flags: ConfluenceFlags,
    divergence_angle: Optional[float] = None,
    rotation_strength: RotationStrength = RotationStrength.NONE,
) -> Tuple[int, str]:
    """Weighted confluence score plus a human readable breakdown."""
    total = 0
    b = []

    if divergence_angle is not None:
        if divergence_angle >= 15:
            total += 3
            b.append(f"Divergence {divergence_angle:.1f}deg >=15 (+3)")
        elif divergence_angle >= 10:
            total += 2
            b.append(f"Divergence {divergence_angle:.1f}deg >=10 (+2)")
        elif divergence_angle >= 7:
            total += 1
            b.append(f"Divergence {divergence_angle:.1f}deg >=7 (+1)")
        else:
            b.append(f"Divergence {divergence_angle:.1f}deg shallow (+0)")

    if flags.quad_rotation:
        if rotation_strength == RotationStrength.EXTREME:
            total += 5
            b.append("Quad rotation EXTREME (+5)")
        elif rotation_strength == RotationStrength.STRONG:
            total += 4
            b.append("Quad rotation STRONG (+4)")
        else:
            total += 3
            b.append("Quad rotation (+3)")

    for on, pts, label in (
        (flags.channel_extreme, 2, "Channel extreme"),
        (flags.flag_pattern, 2, "20/20 flag"),
        (flags.vwap_confluence, 1, "VWAP"),
        (flags.ma_confluence, 1, "MA stack"),
        (flags.volume_spike, 1, "Volume spike"),
        (flags.htf_alignment, 1, "HTF aligned"),
    ):
        if on:
            total += pts
            b.append(f"{label} (+{pts})")

    return total, "\n".join(b)


def strength_tier(total: int) -> SignalStrength:
    if total >= 7:
        return SignalStrength.SUPER
    if total >= 5:
        return SignalStrength.STRONG
    if total >= 3:
        return SignalStrength.MODERATE
    return SignalStrength.WEAK


def should_take(strength: SignalStrength, has_rotation: bool, min_strength: SignalStrength = SignalStrength.MODERATE) -> bool:
    if has_rotation:
        return True
    return strength.rank >= min_strength.rank
