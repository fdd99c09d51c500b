from quad_stoch_signals.config import SignalConfig
from quad_stoch_signals.models import Band, Candle, Crossover, OscillatorValue, RotationStrength, Zone
from quad_stoch_signals.quad import QuadBandEngine, crossover, slope


def _one_candle_engine(fast, standard, medium, slow, config=None):
    c = Candle(time=60, open=1, high=1, low=1, close=1, volume=1)
    series = {
        Band.FAST: [OscillatorValue(60, *fast)],
        Band.STANDARD: [OscillatorValue(60, *standard)],
        Band.MEDIUM: [OscillatorValue(60, *medium)],
        Band.SLOW: [OscillatorValue(60, *slow)],
    }
    return QuadBandEngine([c], config, series=series)


def test_flat_60_candles_on_1m_leave_slow_band_warming_up(flat_candles):
    eng = QuadBandEngine(flat_candles(60))
    assert eng.band(Band.FAST)[-1].k == 50.0
    assert eng.band(Band.STANDARD)[-1].k == 50.0
    assert eng.band(Band.MEDIUM)[-1].d == 50.0
    assert eng.band(Band.SLOW)[-1].k is None
    assert eng.snapshot() is None
    assert eng.detect_rotation().strength == RotationStrength.NONE


def test_flat_60_candles_on_5m_all_bands_neutral(flat_candles):
    eng = QuadBandEngine(flat_candles(60), SignalConfig(interval="5m"))
    snap = eng.snapshot()
    assert snap is not None
    for r in (snap.fast, snap.standard, snap.medium, snap.slow):
        assert r.k == 50.0 and r.d == 50.0
    assert eng.count_in_zone(Zone.NEUTRAL) == 4
    rot = eng.detect_rotation()
    assert not rot.is_oversold_rotation and not rot.is_overbought_rotation
    assert not eng.all_bullish() and not eng.all_bearish()


def test_snapshot_uses_latest_valid_reading():
    c = [Candle(time=t, open=1, high=1, low=1, close=1, volume=1) for t in (60, 120)]
    good = [OscillatorValue(60, 30.0, 25.0), OscillatorValue(120, None, None)]
    eng = QuadBandEngine(c, series={b: good for b in Band})
    snap = eng.snapshot()
    assert snap.fast.k == 30.0 and snap.slow.d == 25.0


def test_series_are_aligned_by_time():
    c = [Candle(time=t, open=1, high=1, low=1, close=1, volume=1) for t in (60, 120, 180)]
    partial = [OscillatorValue(180, 40.0, 35.0)]
    eng = QuadBandEngine(c, series={b: partial for b in Band})
    fast = eng.band(Band.FAST)
    assert len(fast) == 3
    assert fast[0].k is None and fast[2].k == 40.0


def test_rotation_strength_tiers():
    eng = _one_candle_engine((8, 5), (9, 6), (10, 7), (4, 3))
    rot = eng.detect_rotation()
    assert rot.is_oversold_rotation and rot.strength == RotationStrength.EXTREME
    assert rot.avg_k == (8 + 9 + 10 + 4) / 4
    assert eng.all_bullish()

    assert _one_candle_engine((14, 5), (9, 6), (10, 7), (4, 3)).detect_rotation().strength == RotationStrength.STRONG
    assert _one_candle_engine((19, 5), (9, 6), (10, 7), (4, 3)).detect_rotation().strength == RotationStrength.MODERATE
    none = _one_candle_engine((21, 5), (9, 6), (10, 7), (4, 3)).detect_rotation()
    assert not none.is_oversold_rotation and none.strength == RotationStrength.NONE

    top = _one_candle_engine((95, 97), (91, 99), (86, 90), (90, 92)).detect_rotation()
    assert top.is_overbought_rotation and top.strength == RotationStrength.STRONG


def test_zone_and_counts():
    eng = _one_candle_engine((10, 5), (50, 50), (85, 80), (20, 30))
    assert eng.zone_of(20.0) == Zone.OVERSOLD
    assert eng.zone_of(80.0) == Zone.OVERBOUGHT
    assert eng.zone_of(float("nan")) == Zone.NEUTRAL
    assert eng.count_in_zone(Zone.OVERSOLD) == 2
    assert eng.count_in_zone(Zone.OVERBOUGHT) == 1


def test_flag_needs_fast_k_and_d():
    bull = _one_candle_engine((10, 15), (50, 50), (50, 50), (85, 80)).detect_flag()
    assert bull.is_bull_flag and not bull.is_bear_flag

    # fast %D still above oversold
    assert not _one_candle_engine((10, 25), (50, 50), (50, 50), (85, 80)).detect_flag().is_bull_flag

    bear = _one_candle_engine((90, 85), (50, 50), (50, 50), (15, 18)).detect_flag()
    assert bear.is_bear_flag


def test_crossover_and_slope():
    assert crossover(OscillatorValue(1, 10, 20), OscillatorValue(2, 25, 20)) == Crossover.BULLISH_CROSS
    assert crossover(OscillatorValue(1, 30, 20), OscillatorValue(2, 15, 20)) == Crossover.BEARISH_CROSS
    assert crossover(OscillatorValue(1, None, None), OscillatorValue(2, 15, 20)) == Crossover.NONE
    vals = [OscillatorValue(i, 10.0 * i, 0.0) for i in range(5)]
    assert slope(vals, 3) == 10.0
    assert slope(vals[:2], 3) is None
