from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence
import logging
import math

from .config import SignalConfig
from .models import (
    BANDS,
    NO_ROTATION,
    Band,
    BandReading,
    Candle,
    Crossover,
    FlagResult,
    OscillatorValue,
    QuadSnapshot,
    RotationResult,
    RotationStrength,
    Zone,
)
from .oscillator import bands_for_interval, compute_preset

log = logging.getLogger("quad")


def _align(values: Sequence[OscillatorValue], candles: Sequence[Candle]) -> List[OscillatorValue]:
    if len(values) == len(candles) and (not values or values[-1].time == candles[-1].time):
        return list(values)
    by_time = {v.time: v for v in values}
    return [by_time.get(c.time) or OscillatorValue(time=c.time, k=None, d=None) for c in candles]


def latest_valid(values: Sequence[OscillatorValue]) -> Optional[BandReading]:
    for v in reversed(values):
        if v.is_valid:
            return BandReading(k=v.k, d=v.d)
    return None


def crossover(previous: Optional[OscillatorValue], current: Optional[OscillatorValue]) -> Crossover:
    if previous is None or current is None or not previous.is_valid or not current.is_valid:
        return Crossover.NONE
    if previous.k < previous.d and current.k > current.d:
        return Crossover.BULLISH_CROSS
    if previous.k > previous.d and current.k < current.d:
        return Crossover.BEARISH_CROSS
    return Crossover.NONE


def slope(values: Sequence[OscillatorValue], lookback: int = 3) -> Optional[float]:
    """Average per-candle change of %K over the last ``lookback`` defined readings."""
    ks = [v.k for v in values if v.k is not None][-(lookback + 1):]
    if lookback < 1 or len(ks) < lookback + 1:
        return None
    return (ks[-1] - ks[0]) / float(lookback)


class QuadBandEngine:
    """Four stochastic bands over one candle series, time-aligned with it."""

    def __init__(
        self,
        candles: Sequence[Candle],
        config: Optional[SignalConfig] = None,
        *,
        series: Optional[Mapping[Band, Sequence[OscillatorValue]]] = None,
    ):
        self.candles = candles
        self.config = config or SignalConfig()
        if series is None:
            presets = bands_for_interval(self.config.interval)
            series = {band: compute_preset(candles, presets[band], label=band.value) for band in BANDS}
        self.series: Dict[Band, List[OscillatorValue]] = {
            band: _align(series.get(band) or [], candles) for band in BANDS
        }

    def band(self, band: Band) -> List[OscillatorValue]:
        return self.series[band]

    def snapshot(self) -> Optional[QuadSnapshot]:
        readings = {}
        for band in BANDS:
            r = latest_valid(self.series[band])
            if r is None:
                return None
            readings[band.value.lower()] = r
        return QuadSnapshot(**readings)

    def all_bullish(self) -> bool:
        snap = self.snapshot()
        return snap is not None and all(snap.reading(b).k > snap.reading(b).d for b in BANDS)

    def all_bearish(self) -> bool:
        snap = self.snapshot()
        return snap is not None and all(snap.reading(b).k < snap.reading(b).d for b in BANDS)

    def zone_of(self, value: Optional[float]) -> Zone:
        if value is None or not math.isfinite(value):
            return Zone.NEUTRAL
        if value <= self.config.oversold_level:
            return Zone.OVERSOLD
        if value >= self.config.overbought_level:
            return Zone.OVERBOUGHT
        return Zone.NEUTRAL

    def count_in_zone(self, zone: Zone) -> int:
        n = 0
        for band in BANDS:
            r = latest_valid(self.series[band])
            if r is not None and self.zone_of(r.k) == zone:
                n += 1
        return n

    def detect_rotation(self) -> RotationResult:
        snap = self.snapshot()
        if snap is None:
            return NO_ROTATION
        ks = snap.k_values()
        avg_k = sum(ks) / len(ks)
        oversold = all(k <= self.config.oversold_level for k in ks)
        overbought = all(k >= self.config.overbought_level for k in ks)

        strength = RotationStrength.NONE
        if oversold:
            if all(k <= 10 for k in ks):
                strength = RotationStrength.EXTREME
            elif all(k <= 15 for k in ks):
                strength = RotationStrength.STRONG
            else:
                strength = RotationStrength.MODERATE
        elif overbought:
            if all(k >= 90 for k in ks):
                strength = RotationStrength.EXTREME
            elif all(k >= 85 for k in ks):
                strength = RotationStrength.STRONG
            else:
                strength = RotationStrength.MODERATE

        return RotationResult(
            is_oversold_rotation=oversold,
            is_overbought_rotation=overbought,
            strength=strength,
            avg_k=avg_k,
        )

    def detect_flag(self) -> FlagResult:
        """20/20 flag: fast band pinned at one extreme while slow band holds the other."""
        snap = self.snapshot()
        if snap is None:
            return FlagResult(is_bull_flag=False, is_bear_flag=False)
        fast, slow = snap.fast, snap.slow
        lo, hi = self.config.oversold_level, self.config.overbought_level
        return FlagResult(
            is_bull_flag=fast.k <= lo and fast.d <= lo and slow.k >= hi,
            is_bear_flag=fast.k >= hi and fast.d >= hi and slow.k <= lo,
            fast_k=fast.k,
            fast_d=fast.d,
            slow_k=slow.k,
            slow_d=slow.d,
        )
