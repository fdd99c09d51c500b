from __future__ import annotations

from quad_stoch_signals.formatters import format_signal
from quad_stoch_signals.models import Candle
from quad_stoch_signals.quad import QuadBandEngine
from quad_stoch_signals.strategy import evaluate


def candle(idx: int, open_p: float, high: float, low: float, close: float, vol: float = 100.0) -> Candle:
    return Candle(time=1_700_000_040 + idx * 60, open=open_p, high=high, low=low, close=close, volume=vol)


def selloff_then_bounce(declines: int = 80, bounces: int = 3, start: float = 50_000.0):
    """Steady sell-off that drives every band oversold, then a few green candles."""
    out = []
    prev = start
    for i in range(declines):
        out.append(candle(i, prev, prev + 5, prev - 100, prev - 100))
        prev -= 100
    for j in range(bounces):
        out.append(candle(declines + j, prev, prev + 20, prev, prev + 20))
        prev += 20
    return out


def flat(n: int = 100, price: float = 50_000.0):
    return [candle(i, price, price, price, price) for i in range(n)]


def run_case(name: str, candles):
    eng = QuadBandEngine(candles)
    snap = eng.snapshot()
    rot = eng.detect_rotation()
    ks = "-" if snap is None else " ".join(f"{k:.1f}" for k in snap.k_values())
    print(f"{name}: candles={len(candles)} k=[{ks}] rotation={rot.strength.value}")
    for sig in evaluate("BTCUSDT", candles):
        print(format_signal(sig, parse_mode="MarkdownV2"))
        print("-" * 40)


def main():
    run_case("flat", flat())
    run_case("oversold_rotation", selloff_then_bounce())


if __name__ == "__main__":
    main()
