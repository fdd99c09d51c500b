from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterable, List, Optional
import logging

from .config import SignalConfig
from .indicators import candle_is_valid, clamp_oscillator
from .models import BANDS, Band, Candle, OscillatorValue, Signal
from .oscillator import BandPreset, bands_for_interval, raw_k
from .strategy import evaluate

log = logging.getLogger("incremental")

DEFAULT_RETENTION = 500
RESYNC_EVERY = 1000

# _fold outcomes
_IGNORED = "ignored"
_AMENDED = "amended"
_APPENDED = "appended"


class IncrementalSMA:
    """Rolling mean with a running sum. ``None`` until ``length`` values were pushed."""

    def __init__(self, length: int):
        if length < 1:
            raise ValueError("length must be >= 1")
        self.length = length
        self._buf: Deque[float] = deque(maxlen=length)
        self._sum = 0.0
        self._ops = 0

    @property
    def ready(self) -> bool:
        return len(self._buf) == self.length

    @property
    def value(self) -> Optional[float]:
        if not self.ready:
            return None
        return self._sum / float(self.length)

    def push(self, x: float) -> Optional[float]:
        if self.ready:
            self._sum -= self._buf[0]
        self._buf.append(x)
        self._sum += x
        self._tick()
        return self.value

    def replace_last(self, x: float) -> Optional[float]:
        if not self._buf:
            return self.push(x)
        self._sum += x - self._buf[-1]
        self._buf[-1] = x
        self._tick()
        return self.value

    def _tick(self) -> None:
        # bound floating drift of the running sum
        self._ops += 1
        if self._ops >= RESYNC_EVERY:
            self._sum = sum(self._buf)
            self._ops = 0


class IncrementalStochastic:
    """One band's %K/%D maintained candle by candle.

    ``push`` folds in a newly opened candle; ``amend`` rewrites the latest
    (still open) candle and recomputes only the trailing window. Output for
    a given history matches ``oscillator.compute_band`` over that history.
    """

    def __init__(self, preset: BandPreset, *, label: str = ""):
        self.preset = preset
        self.label = label
        self._highs: Deque[float] = deque(maxlen=preset.k_period)
        self._lows: Deque[float] = deque(maxlen=preset.k_period)
        self._closes: Deque[float] = deque(maxlen=preset.k_period)
        self._k = IncrementalSMA(preset.smoothing)
        self._d = IncrementalSMA(preset.d_period)
        # which stages the latest candle fed, so amend can rewrite them
        self._fed_k = False
        self._fed_d = False

    def push(self, c: Candle) -> OscillatorValue:
        self._highs.append(c.high)
        self._lows.append(c.low)
        self._closes.append(c.close)
        self._fed_k = False
        self._fed_d = False
        if len(self._closes) < self.preset.k_period:
            return OscillatorValue(time=c.time, k=None, d=None)

        k = self._k.push(raw_k(self._closes, self._highs, self._lows))
        self._fed_k = True
        d = None
        if k is not None:
            d = self._d.push(k)
            self._fed_d = True
        return self._emit(c.time, k, d)

    def amend(self, c: Candle) -> OscillatorValue:
        if not self._closes:
            return self.push(c)
        self._highs[-1] = c.high
        self._lows[-1] = c.low
        self._closes[-1] = c.close
        if not self._fed_k:
            return OscillatorValue(time=c.time, k=None, d=None)

        k = self._k.replace_last(raw_k(self._closes, self._highs, self._lows))
        d = self._d.replace_last(k) if self._fed_d else None
        return self._emit(c.time, k, d)

    def _emit(self, t: int, k: Optional[float], d: Optional[float]) -> OscillatorValue:
        if k is None or d is None:
            return OscillatorValue(time=t, k=None, d=None)
        return OscillatorValue(time=t, k=clamp_oscillator(k, label=self.label), d=clamp_oscillator(d, label=self.label))


class _SymbolState:
    def __init__(self, presets: Dict[Band, BandPreset], retention: int):
        self.candles: Deque[Candle] = deque(maxlen=retention)
        self.stochs = {band: IncrementalStochastic(presets[band], label=band.value) for band in BANDS}
        self.series: Dict[Band, Deque[OscillatorValue]] = {band: deque(maxlen=retention) for band in BANDS}

    def push(self, c: Candle) -> None:
        self.candles.append(c)
        for band in BANDS:
            self.series[band].append(self.stochs[band].push(c))

    def amend(self, c: Candle) -> None:
        self.candles[-1] = c
        for band in BANDS:
            self.series[band][-1] = self.stochs[band].amend(c)


class IncrementalEngine:
    """Per-symbol rolling oscillator state driving the signal pipeline tick by tick.

    Each symbol's state has a single owner: call ``on_tick`` for a given
    symbol from one task/thread only.
    """

    def __init__(self, config: Optional[SignalConfig] = None, *, retention: int = DEFAULT_RETENTION):
        self.config = config or SignalConfig()
        self.config.validate()
        self.presets = bands_for_interval(self.config.interval)
        longest = max(p.warmup for p in self.presets.values())
        need = max(longest, self.config.min_candles, self.config.lookback_period, self.config.channel_lookback)
        if retention < need:
            raise ValueError(f"retention={retention} is below the {need} candles the pipeline needs")
        self.retention = retention
        self._state: Dict[str, _SymbolState] = {}

    def _get(self, symbol: str) -> _SymbolState:
        st = self._state.get(symbol)
        if st is None:
            st = _SymbolState(self.presets, self.retention)
            self._state[symbol] = st
        return st

    def seed(self, symbol: str, candles: Iterable[Candle]) -> int:
        """Fold in a closed-candle history without evaluating signals."""
        st = self._get(symbol)
        n = 0
        for c in candles:
            if self._fold(symbol, st, c, True) != _IGNORED:
                n += 1
        return n

    def on_tick(self, symbol: str, candle: Candle, is_new_candle: bool) -> List[Signal]:
        """Fold one kline update in; the pipeline runs once per candle, when it is appended.

        Updates to the candle already held only move the oscillators.
        """
        st = self._get(symbol)
        if self._fold(symbol, st, candle, is_new_candle) != _APPENDED:
            return []
        return evaluate(symbol, list(st.candles), self.config, series=self.series(symbol))

    def _fold(self, symbol: str, st: _SymbolState, candle: Candle, is_new_candle: bool) -> str:
        if not candle_is_valid(candle):
            log.warning("tick_ignored symbol=%s time=%s reason=bad_ohlc", symbol, candle.time)
            return _IGNORED
        last = st.candles[-1] if st.candles else None
        if last is not None and candle.time < last.time:
            log.warning("tick_ignored symbol=%s time=%s last=%s reason=out_of_order", symbol, candle.time, last.time)
            return _IGNORED

        if last is not None and candle.time == last.time:
            st.amend(candle)
            return _AMENDED
        if is_new_candle or last is None:
            st.push(candle)
        else:
            # an update for a candle we never saw open
            log.debug("tick_amend_as_new symbol=%s time=%s", symbol, candle.time)
            st.push(candle)
        return _APPENDED

    def series(self, symbol: str) -> Dict[Band, List[OscillatorValue]]:
        st = self._state.get(symbol)
        if st is None:
            return {band: [] for band in BANDS}
        return {band: list(st.series[band]) for band in BANDS}

    def candles(self, symbol: str) -> List[Candle]:
        st = self._state.get(symbol)
        return list(st.candles) if st else []

    def latest(self, symbol: str, band: Band) -> Optional[OscillatorValue]:
        st = self._state.get(symbol)
        if st is None or not st.series[band]:
            return None
        return st.series[band][-1]

    def symbols(self) -> List[str]:
        return list(self._state)

    def reset(self, symbol: str) -> None:
        self._state.pop(symbol, None)
