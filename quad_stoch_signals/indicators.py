from __future__ import annotations
from typing import List, Optional, Sequence
import logging
import math

from .models import Candle

log = logging.getLogger("indicators")

SESSION_SECONDS = 86_400


def sma(values: Sequence[float], length: int) -> Optional[float]:
    if length <= 0 or len(values) < length:
        return None
    return sum(values[-length:]) / float(length)


def sma_series(values: Sequence[Optional[float]], length: int) -> List[Optional[float]]:
    """Rolling mean aligned with ``values``; None until ``length`` consecutive defined inputs."""
    out: List[Optional[float]] = [None] * len(values)
    if length <= 0:
        return out
    run = 0
    total = 0.0
    for i, v in enumerate(values):
        if v is None:
            run = 0
            total = 0.0
            continue
        run += 1
        total += v
        if run > length:
            total -= values[i - length]
        if run >= length:
            out[i] = total / float(length)
    return out


def clamp_oscillator(value: Optional[float], *, label: str = "") -> float:
    if value is None or not math.isfinite(value):
        log.warning("oscillator_non_finite value=%s band=%s clamped=50", value, label or "-")
        return 50.0
    return max(0.0, min(100.0, value))


def candle_is_valid(c: Candle) -> bool:
    for v in (c.open, c.high, c.low, c.close, c.volume):
        if v is None or not math.isfinite(v):
            return False
    return c.high >= c.low


def validate_candles(candles: Sequence[Candle], min_length: int = 1) -> bool:
    if len(candles) < min_length:
        return False
    for i, c in enumerate(candles):
        if not candle_is_valid(c):
            log.warning("invalid_candle index=%d time=%s high=%s low=%s close=%s", i, c.time, c.high, c.low, c.close)
            return False
    return True


def session_vwap(candles: Sequence[Candle], session_s: int = SESSION_SECONDS) -> Optional[float]:
    """Volume weighted typical price since the start of the latest candle's session (UTC day)."""
    if not candles:
        return None
    session_start = candles[-1].time - (candles[-1].time % session_s)
    pv = 0.0
    vol = 0.0
    for c in reversed(candles):
        if c.time < session_start:
            break
        pv += (c.high + c.low + c.close) / 3.0 * c.volume
        vol += c.volume
    if vol <= 0:
        return None
    return pv / vol


def volume_spike(candles: Sequence[Candle], multiplier: float = 1.5, length: int = 20) -> bool:
    if len(candles) < length + 1:
        return False
    avg = sum(c.volume for c in candles[-length - 1:-1]) / float(length)
    return candles[-1].volume > avg * multiplier


def lowest_low(candles: Sequence[Candle], length: int) -> float:
    return min(c.low for c in candles[-length:])


def highest_high(candles: Sequence[Candle], length: int) -> float:
    return max(c.high for c in candles[-length:])
