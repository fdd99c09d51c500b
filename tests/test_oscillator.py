import math
import random

import pytest

from quad_stoch_signals.models import Band, Candle
from quad_stoch_signals.oscillator import BAND_PRESETS, bands_for_interval, compute_band, compute_preset


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1.0) -> Candle:
    return Candle(time=idx * 60, open=o, high=h, low=l, close=c, volume=v)


def _random_candles(n: int, seed: int = 7, flat_every: int = 0):
    rnd = random.Random(seed)
    out = []
    price = 100.0
    for i in range(n):
        if flat_every and i % flat_every == 0:
            out.append(_c(i, price, price, price, price))
            continue
        o = price
        c = max(1.0, o + rnd.uniform(-2, 2))
        h = max(o, c) + rnd.uniform(0, 1)
        l = min(o, c) - rnd.uniform(0, 1)
        out.append(_c(i, o, h, l, c, rnd.uniform(1, 10)))
        price = c
    return out


def test_raw_k_hand_computed():
    candles = [_c(0, 5, 10, 0, 5), _c(1, 5, 20, 5, 15), _c(2, 15, 12, 8, 10)]
    vals = compute_band(candles, 3, 1, 1)
    assert [v.k for v in vals[:2]] == [None, None]
    assert vals[2].k == pytest.approx(50.0)
    assert vals[2].d == pytest.approx(50.0)


def test_output_is_aligned_and_warmup_undefined():
    candles = _random_candles(40)
    vals = compute_band(candles, 9, 3, 3)
    assert len(vals) == len(candles)
    assert [v.time for v in vals] == [c.time for c in candles]
    # first %D needs k-1 + smoothing-1 + d-1 earlier candles
    assert vals[11].k is None and vals[11].d is None
    assert vals[12].k is not None and vals[12].d is not None


def test_values_stay_in_range_with_flat_candles_mixed_in():
    candles = _random_candles(300, seed=11, flat_every=5)
    for preset in BAND_PRESETS["1m"].values():
        for v in compute_preset(candles, preset):
            if v.k is None:
                assert v.d is None
                continue
            assert 0.0 <= v.k <= 100.0
            assert 0.0 <= v.d <= 100.0


def test_flat_market_is_neutral(flat_candles):
    candles = flat_candles(100)
    for preset in BAND_PRESETS["1m"].values():
        last = compute_preset(candles, preset)[-1]
        assert last.k == 50.0 and last.d == 50.0


def test_short_history_returns_empty():
    assert compute_band(_random_candles(8), 9, 3, 3) == []


def test_bad_candles_return_empty():
    candles = _random_candles(30)
    broken = list(candles)
    broken[10] = _c(10, 100, 90, 95, 92)  # high < low
    assert compute_band(broken, 9, 3, 3) == []

    nan = list(candles)
    nan[5] = _c(5, 100, 101, 99, math.nan)
    assert compute_band(nan, 9, 3, 3) == []


def test_invalid_periods_raise():
    with pytest.raises(ValueError):
        compute_band(_random_candles(30), 0, 3, 3)


def test_interval_presets_and_fallback():
    assert bands_for_interval("1m")[Band.SLOW].k_period == 60
    assert bands_for_interval("5m")[Band.FAST].k_period == 3
    assert bands_for_interval("15m")[Band.MEDIUM].k_period == 8
    assert bands_for_interval("4h") is BAND_PRESETS["1m"]
    assert BAND_PRESETS["1m"][Band.SLOW].warmup == 78
