from __future__ import annotations

from typing import List, Sequence

from .models import INVALID_CHANNEL, Candle, ChannelBoundary, ChannelPosition

MIN_HEIGHT_PCT = 1.0
MAX_HEIGHT_PCT = 10.0
TOUCH_TOLERANCE = 0.05  # fraction of channel height
MIDDLE_BAND = 0.25  # fraction of channel height around the midline


def _is_swing_high(candles: Sequence[Candle], i: int) -> bool:
    h = candles[i].high
    return h > candles[i - 1].high and h > candles[i - 2].high and h > candles[i + 1].high and h > candles[i + 2].high


def _is_swing_low(candles: Sequence[Candle], i: int) -> bool:
    lo = candles[i].low
    return lo < candles[i - 1].low and lo < candles[i - 2].low and lo < candles[i + 1].low and lo < candles[i + 2].low


def detect_channel(candles: Sequence[Candle], lookback: int = 50) -> ChannelBoundary:
    """Channel from the two most extreme swing highs and lows of the last ``lookback`` candles.

    The channel is only usable (``is_valid``) when its height is between 1% and
    10% of the midline; outside that range price is trending rather than ranging.
    """
    if lookback < 5 or len(candles) < lookback:
        return INVALID_CHANNEL
    recent = candles[-lookback:]

    highs: List[float] = []
    lows: List[float] = []
    for i in range(2, len(recent) - 2):
        if _is_swing_high(recent, i):
            highs.append(recent[i].high)
        if _is_swing_low(recent, i):
            lows.append(recent[i].low)
    if len(highs) < 2 or len(lows) < 2:
        return INVALID_CHANNEL

    highs.sort(reverse=True)
    lows.sort()
    upper = (highs[0] + highs[1]) / 2.0
    lower = (lows[0] + lows[1]) / 2.0
    midline = (upper + lower) / 2.0
    height = upper - lower
    if midline <= 0:
        return INVALID_CHANNEL
    height_pct = height / midline * 100.0

    tol = height * TOUCH_TOLERANCE
    touches_upper = sum(1 for c in recent if abs(c.high - upper) <= tol)
    touches_lower = sum(1 for c in recent if abs(c.low - lower) <= tol)

    return ChannelBoundary(
        upper=upper,
        lower=lower,
        midline=midline,
        is_valid=MIN_HEIGHT_PCT <= height_pct <= MAX_HEIGHT_PCT,
        touches_upper=touches_upper,
        touches_lower=touches_lower,
        height=height,
        height_percent=height_pct,
    )


def channel_position(price: float, channel: ChannelBoundary, threshold_percent: float = 2.0) -> ChannelPosition:
    if not channel.is_valid:
        return ChannelPosition.OUTSIDE
    thr = channel.height * (threshold_percent / 100.0)
    if price >= channel.upper - thr:
        return ChannelPosition.UPPER
    if price <= channel.lower + thr:
        return ChannelPosition.LOWER
    if abs(price - channel.midline) <= channel.height * MIDDLE_BAND:
        return ChannelPosition.MIDDLE
    return ChannelPosition.OUTSIDE
