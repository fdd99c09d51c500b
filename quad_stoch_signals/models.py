from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class Band(str, Enum):
    FAST = "FAST"
    STANDARD = "STANDARD"
    MEDIUM = "MEDIUM"
    SLOW = "SLOW"


# Evaluation order for anything that walks all four bands.
BANDS: Tuple[Band, ...] = (Band.FAST, Band.STANDARD, Band.MEDIUM, Band.SLOW)


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SignalStrength(str, Enum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"
    SUPER = "SUPER"

    @property
    def rank(self) -> int:
        return _STRENGTH_ORDER.index(self)


_STRENGTH_ORDER = [SignalStrength.WEAK, SignalStrength.MODERATE, SignalStrength.STRONG, SignalStrength.SUPER]


class SignalStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PARTIAL = "PARTIAL"
    TARGET1_HIT = "TARGET1_HIT"
    TARGET2_HIT = "TARGET2_HIT"
    TARGET3_HIT = "TARGET3_HIT"
    STOPPED = "STOPPED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (SignalStatus.STOPPED, SignalStatus.TARGET3_HIT, SignalStatus.EXPIRED)


class DivergenceType(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    HIDDEN_BULLISH = "HIDDEN_BULLISH"
    HIDDEN_BEARISH = "HIDDEN_BEARISH"

    @property
    def is_bullish(self) -> bool:
        return self in (DivergenceType.BULLISH, DivergenceType.HIDDEN_BULLISH)

    @property
    def is_bearish(self) -> bool:
        return self in (DivergenceType.BEARISH, DivergenceType.HIDDEN_BEARISH)

    @property
    def is_hidden(self) -> bool:
        return self in (DivergenceType.HIDDEN_BULLISH, DivergenceType.HIDDEN_BEARISH)


class Zone(str, Enum):
    OVERSOLD = "OVERSOLD"
    NEUTRAL = "NEUTRAL"
    OVERBOUGHT = "OVERBOUGHT"


class RotationStrength(str, Enum):
    EXTREME = "EXTREME"
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    NONE = "NONE"


class ChannelPosition(str, Enum):
    UPPER = "UPPER"
    LOWER = "LOWER"
    MIDDLE = "MIDDLE"
    OUTSIDE = "OUTSIDE"


class Crossover(str, Enum):
    BULLISH_CROSS = "BULLISH_CROSS"
    BEARISH_CROSS = "BEARISH_CROSS"
    NONE = "NONE"


@dataclass(frozen=True)
class Candle:
    time: int  # unix seconds, candle open
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class OscillatorValue:
    """One %K/%D reading. ``k``/``d`` are None while the band is warming up."""

    time: int
    k: Optional[float]
    d: Optional[float]

    @property
    def is_valid(self) -> bool:
        return self.k is not None and self.d is not None


@dataclass(frozen=True)
class BandReading:
    k: float
    d: float


@dataclass(frozen=True)
class QuadSnapshot:
    fast: BandReading
    standard: BandReading
    medium: BandReading
    slow: BandReading

    def reading(self, band: Band) -> BandReading:
        return getattr(self, band.value.lower())

    def k_values(self) -> List[float]:
        return [self.fast.k, self.standard.k, self.medium.k, self.slow.k]


@dataclass(frozen=True)
class SwingPoint:
    index: int
    time: int
    price: float
    k: float
    d: float


@dataclass(frozen=True)
class Divergence:
    type: DivergenceType
    angle: float  # degrees
    price_points: Tuple[float, float]  # (earlier, recent)
    oscillator_points: Tuple[float, float]
    candle_span: int
    band: Band


@dataclass(frozen=True)
class ChannelBoundary:
    upper: float
    lower: float
    midline: float
    is_valid: bool
    touches_upper: int
    touches_lower: int
    height: float
    height_percent: float


INVALID_CHANNEL = ChannelBoundary(
    upper=0.0,
    lower=0.0,
    midline=0.0,
    is_valid=False,
    touches_upper=0,
    touches_lower=0,
    height=0.0,
    height_percent=0.0,
)


@dataclass(frozen=True)
class RotationResult:
    is_oversold_rotation: bool
    is_overbought_rotation: bool
    strength: RotationStrength
    avg_k: float


NO_ROTATION = RotationResult(False, False, RotationStrength.NONE, 50.0)


@dataclass(frozen=True)
class FlagResult:
    is_bull_flag: bool
    is_bear_flag: bool
    fast_k: float = 50.0
    fast_d: float = 50.0
    slow_k: float = 50.0
    slow_d: float = 50.0


@dataclass(frozen=True)
class ConfluenceFlags:
    quad_rotation: bool = False
    channel_extreme: bool = False
    flag_pattern: bool = False
    vwap_confluence: bool = False
    ma_confluence: bool = False
    volume_spike: bool = False
    htf_alignment: bool = False

    def active(self) -> List[str]:
        return [name for name, on in vars(self).items() if on]


@dataclass
class Signal:
    id: str
    symbol: str
    direction: Direction
    strength: SignalStrength
    entry_price: float
    stop_loss: float
    target1: float
    target2: float
    target3: float
    divergence: Optional[Divergence]
    confluence: ConfluenceFlags
    confluence_score: int
    snapshot: QuadSnapshot
    risk_reward: float
    position_size_percent: float
    created_at: float  # unix seconds
    status: SignalStatus = SignalStatus.PENDING
    updated_at: Optional[float] = None
    pnl_percent: float = 0.0
    pnl_amount: float = 0.0
    actual_entry: Optional[float] = None
    actual_exit: Optional[float] = None
    entry_time: Optional[float] = None
    exit_time: Optional[float] = None
    notes: str = ""

    @property
    def is_long(self) -> bool:
        return self.direction == Direction.LONG

    def levels_ordered(self) -> bool:
        if self.is_long:
            return self.stop_loss < self.entry_price < self.target1 < self.target2 < self.target3
        return self.stop_loss > self.entry_price > self.target1 > self.target2 > self.target3


@dataclass(frozen=True)
class ScannerResult:
    symbol: str
    timestamp: float
    signals: List[Signal] = field(default_factory=list)

    @property
    def has_signal(self) -> bool:
        return bool(self.signals)

    @property
    def best_strength(self) -> Optional[SignalStrength]:
        if not self.signals:
            return None
        return max((s.strength for s in self.signals), key=lambda s: s.rank)
