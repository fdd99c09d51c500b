from __future__ import annotations

from typing import Callable, List, Mapping, Optional, Sequence, Set
import logging
import math

from .config import SignalConfig
from .models import BANDS, Band, Candle, Divergence, DivergenceType, OscillatorValue, SwingPoint

log = logging.getLogger("divergence")

# Merge priority: slower bands first.
_BAND_PRIORITY = {Band.SLOW: 0, Band.MEDIUM: 1, Band.STANDARD: 2, Band.FAST: 2}


def find_swing_lows(
    candles: Sequence[Candle],
    values: Sequence[OscillatorValue],
    window: int = 3,
    min_swing_size: float = 0.0005,
) -> List[SwingPoint]:
    swings: List[SwingPoint] = []
    if window < 1 or len(candles) < window * 2 + 1:
        return swings
    for i in range(window, len(candles) - window):
        osc = values[i] if i < len(values) else None
        if osc is None or osc.k is None:
            continue
        low = candles[i].low
        if any(low >= candles[i - j].low or low >= candles[i + j].low for j in range(1, window + 1)):
            continue
        left_high = max(c.high for c in candles[i - window:i])
        if left_high <= 0 or (left_high - low) / left_high < min_swing_size:
            continue
        swings.append(SwingPoint(index=i, time=candles[i].time, price=low, k=osc.k, d=osc.d))
    return swings


def find_swing_highs(
    candles: Sequence[Candle],
    values: Sequence[OscillatorValue],
    window: int = 3,
    min_swing_size: float = 0.0005,
) -> List[SwingPoint]:
    swings: List[SwingPoint] = []
    if window < 1 or len(candles) < window * 2 + 1:
        return swings
    for i in range(window, len(candles) - window):
        osc = values[i] if i < len(values) else None
        if osc is None or osc.k is None:
            continue
        high = candles[i].high
        if any(high <= candles[i - j].high or high <= candles[i + j].high for j in range(1, window + 1)):
            continue
        left_low = min(c.low for c in candles[i - window:i])
        if high <= 0 or (high - left_low) / high < min_swing_size:
            continue
        swings.append(SwingPoint(index=i, time=candles[i].time, price=high, k=osc.k, d=osc.d))
    return swings


def pairwise_angle(earlier: SwingPoint, recent: SwingPoint) -> float:
    span = recent.index - earlier.index
    if span <= 0:
        return 0.0
    return abs(math.degrees(math.atan2(recent.k - earlier.k, span)))


def slope_angle(earlier: SwingPoint, recent: SwingPoint, candles: Sequence[Candle]) -> float:
    """Angle from the gap between normalized price slope and normalized oscillator slope."""
    span = recent.index - earlier.index
    if span <= 0:
        return 0.0
    segment = candles[earlier.index:recent.index + 1]
    price_range = max(c.high for c in segment) - min(c.low for c in segment)
    if price_range <= 0:
        return 0.0
    price_slope = (recent.price - earlier.price) / price_range / span
    osc_slope = (recent.k - earlier.k) / 100.0 / span
    return abs(math.degrees(math.atan(abs(price_slope - osc_slope) * 50.0)))


def _angle_fn(config: SignalConfig, candles: Sequence[Candle]) -> Callable[[SwingPoint, SwingPoint], float]:
    if config.divergence_angle_method == "slope":
        return lambda e, r: slope_angle(e, r, candles)
    return pairwise_angle


def _classify_pairs(
    swings: Sequence[SwingPoint],
    band: Band,
    config: SignalConfig,
    angle_of: Callable[[SwingPoint, SwingPoint], float],
    *,
    lows: bool,
) -> List[Divergence]:
    out: List[Divergence] = []
    seen: Set[str] = set()
    regular = DivergenceType.BULLISH if lows else DivergenceType.BEARISH
    hidden = DivergenceType.HIDDEN_BULLISH if lows else DivergenceType.HIDDEN_BEARISH

    # most recent pair first
    for i in range(len(swings) - 1, 0, -1):
        recent, earlier = swings[i], swings[i - 1]
        span = recent.index - earlier.index
        if span < config.min_divergence_span:
            continue

        if lows:
            is_regular = recent.price < earlier.price and recent.k > earlier.k
            is_hidden = recent.price > earlier.price and recent.k < earlier.k
        else:
            is_regular = recent.price > earlier.price and recent.k < earlier.k
            is_hidden = recent.price < earlier.price and recent.k > earlier.k

        for kind, hit, key in (
            (regular, is_regular, f"{earlier.index}-{recent.index}"),
            (hidden, is_hidden, f"hidden-{earlier.index}-{recent.index}"),
        ):
            if not hit or key in seen:
                continue
            angle = angle_of(earlier, recent)
            if angle < config.min_divergence_angle:
                continue
            seen.add(key)
            out.append(Divergence(
                type=kind,
                angle=angle,
                price_points=(earlier.price, recent.price),
                oscillator_points=(earlier.k, recent.k),
                candle_span=span,
                band=band,
            ))
    return out


def detect_band_divergences(
    candles: Sequence[Candle],
    values: Sequence[OscillatorValue],
    band: Band,
    config: Optional[SignalConfig] = None,
) -> List[Divergence]:
    """All divergences for one band over the last ``lookback_period`` candles, widest span first."""
    config = config or SignalConfig()
    n = config.lookback_period
    if len(candles) < n or len(values) < n:
        return []
    window = candles[-n:]
    osc = values[-n:]

    lows = find_swing_lows(window, osc, config.swing_window, config.min_swing_size)
    highs = find_swing_highs(window, osc, config.swing_window, config.min_swing_size)
    angle_of = _angle_fn(config, window)

    found = _classify_pairs(lows, band, config, angle_of, lows=True)
    found += _classify_pairs(highs, band, config, angle_of, lows=False)
    found.sort(key=lambda d: d.candle_span, reverse=True)
    return found


def merge_divergences(per_band: Mapping[Band, Sequence[Divergence]]) -> List[Divergence]:
    merged: List[Divergence] = []
    for band in BANDS:
        merged.extend(per_band.get(band) or [])
    # stable sort keeps per-band order for equal keys
    merged.sort(key=lambda d: (_BAND_PRIORITY[d.band], -d.angle))
    return merged


def detect_quad_divergences(
    candles: Sequence[Candle],
    series: Mapping[Band, Sequence[OscillatorValue]],
    config: Optional[SignalConfig] = None,
) -> List[Divergence]:
    per_band = {band: detect_band_divergences(candles, series.get(band) or [], band, config) for band in BANDS}
    merged = merge_divergences(per_band)
    if merged:
        log.debug("divergences_found count=%d top=%s/%s", len(merged), merged[0].band.value, merged[0].type.value)
    return merged
