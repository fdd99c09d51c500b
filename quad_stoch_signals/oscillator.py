from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

from .indicators import clamp_oscillator, sma_series, validate_candles
from .models import Band, Candle, OscillatorValue

log = logging.getLogger("oscillator")


@dataclass(frozen=True)
class BandPreset:
    k_period: int
    d_period: int
    smoothing: int

    @property
    def warmup(self) -> int:
        """Number of candles before the first defined %D."""
        return self.k_period + self.smoothing + self.d_period - 2


# (kPeriod, dPeriod, smoothing) per candle interval. Unknown intervals use 1m.
BAND_PRESETS: Dict[str, Dict[Band, BandPreset]] = {
    "1m": {
        Band.FAST: BandPreset(9, 3, 3),
        Band.STANDARD: BandPreset(14, 3, 3),
        Band.MEDIUM: BandPreset(44, 3, 3),
        Band.SLOW: BandPreset(60, 10, 10),
    },
    "3m": {
        Band.FAST: BandPreset(5, 2, 2),
        Band.STANDARD: BandPreset(7, 3, 3),
        Band.MEDIUM: BandPreset(15, 3, 3),
        Band.SLOW: BandPreset(20, 5, 5),
    },
    "5m": {
        Band.FAST: BandPreset(3, 2, 2),
        Band.STANDARD: BandPreset(5, 2, 2),
        Band.MEDIUM: BandPreset(9, 3, 3),
        Band.SLOW: BandPreset(12, 4, 4),
    },
    "15m": {
        Band.FAST: BandPreset(3, 2, 2),
        Band.STANDARD: BandPreset(4, 2, 2),
        Band.MEDIUM: BandPreset(8, 3, 3),
        Band.SLOW: BandPreset(12, 4, 4),
    },
}


def bands_for_interval(interval: str) -> Dict[Band, BandPreset]:
    key = (interval or "").strip().lower()
    presets = BAND_PRESETS.get(key)
    if presets is None:
        log.debug("band_presets_fallback interval=%s using=1m", interval)
        return BAND_PRESETS["1m"]
    return presets


def raw_k(closes: Sequence[float], highs: Sequence[float], lows: Sequence[float]) -> float:
    hh = max(highs)
    ll = min(lows)
    rng = hh - ll
    if rng <= 0:
        return 50.0  # flat window
    return (closes[-1] - ll) / rng * 100.0


def compute_band(
    candles: Sequence[Candle],
    k_period: int,
    d_period: int,
    smoothing: int,
    *,
    label: str = "",
) -> List[OscillatorValue]:
    """Stochastic %K/%D for one band, aligned 1:1 with ``candles``.

    rawK over ``k_period`` is smoothed by an SMA of ``smoothing`` to give %K,
    and %D is an SMA of ``d_period`` over %K. Both stay undefined (None) until
    %D exists. Bad input (non-finite OHLC, high < low) or a history shorter
    than ``k_period`` yields an empty list.
    """
    if k_period < 1 or d_period < 1 or smoothing < 1:
        raise ValueError(f"invalid band periods k={k_period} d={d_period} smoothing={smoothing}")
    if len(candles) < k_period:
        return []
    if not validate_candles(candles, k_period):
        log.warning("band_skipped_bad_data band=%s candles=%d", label or "-", len(candles))
        return []

    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    closes = [c.close for c in candles]

    raw: List[Optional[float]] = [None] * len(candles)
    for i in range(k_period - 1, len(candles)):
        lo = i - k_period + 1
        raw[i] = raw_k(closes[lo:i + 1], highs[lo:i + 1], lows[lo:i + 1])

    k_line = sma_series(raw, smoothing)
    d_line = sma_series(k_line, d_period)

    out: List[OscillatorValue] = []
    for i, c in enumerate(candles):
        d = d_line[i]
        if d is None:
            out.append(OscillatorValue(time=c.time, k=None, d=None))
            continue
        out.append(OscillatorValue(
            time=c.time,
            k=clamp_oscillator(k_line[i], label=label),
            d=clamp_oscillator(d, label=label),
        ))
    return out


def compute_preset(candles: Sequence[Candle], preset: BandPreset, *, label: str = "") -> List[OscillatorValue]:
    return compute_band(candles, preset.k_period, preset.d_period, preset.smoothing, label=label)
