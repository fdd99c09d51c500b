import itertools

import pytest

from quad_stoch_signals.models import (
    BandReading,
    Candle,
    ConfluenceFlags,
    Direction,
    QuadSnapshot,
    Signal,
    SignalStrength,
)

T0 = 1_700_000_040  # some minute inside a UTC day

SNAP = QuadSnapshot(*(BandReading(10.0, 5.0) for _ in range(4)))
_ids = itertools.count()


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 100.0) -> Candle:
    return Candle(time=T0 + idx * 60, open=o, high=h, low=l, close=c, volume=v)


def make_flat(n: int, price: float = 50_000.0):
    return [_c(i, price, price, price, price) for i in range(n)]


def make_rotation(declines: int = 80, reversals: int = 3, start: float = 50_000.0):
    """Straight-line sell-off followed by a few green candles."""
    out = []
    prev = start
    for i in range(declines):
        o = prev
        c = o - 100.0
        out.append(_c(i, o, o + 5.0, c, c))
        prev = c
    for j in range(reversals):
        o = prev
        c = o + 20.0
        out.append(_c(declines + j, o, c, o, c))
        prev = c
    return out


def make_runup(advances: int = 80, reversals: int = 3, start: float = 30_000.0):
    """Straight-line rally followed by a few red candles."""
    out = []
    prev = start
    for i in range(advances):
        o = prev
        c = o + 100.0
        out.append(_c(i, o, c, o - 5.0, c))
        prev = c
    for j in range(reversals):
        o = prev
        c = o - 20.0
        out.append(_c(advances + j, o, o, c, c))
        prev = c
    return out


def make_signal(symbol="BTCUSDT", direction=Direction.LONG, created_at=1000.0, entry=100.0, size=2.0):
    """PENDING signal with 1% stop and 0.5/1/2% targets around ``entry``."""
    if direction == Direction.LONG:
        stop, t1, t2, t3 = entry * 0.99, entry * 1.005, entry * 1.01, entry * 1.02
    else:
        stop, t1, t2, t3 = entry * 1.01, entry * 0.995, entry * 0.99, entry * 0.98
    return Signal(
        id=f"sig_{next(_ids)}",
        symbol=symbol,
        direction=direction,
        strength=SignalStrength.MODERATE,
        entry_price=entry,
        stop_loss=stop,
        target1=t1,
        target2=t2,
        target3=t3,
        divergence=None,
        confluence=ConfluenceFlags(),
        confluence_score=3,
        snapshot=SNAP,
        risk_reward=0.5,
        position_size_percent=size,
        created_at=created_at,
    )


@pytest.fixture
def flat_candles():
    return make_flat


@pytest.fixture
def rotation_candles():
    return make_rotation()
