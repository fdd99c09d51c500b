from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging
import time
import uuid

from .config import SignalConfig
from .indicators import highest_high, lowest_low
from .models import (
    Candle,
    ChannelBoundary,
    ConfluenceFlags,
    Direction,
    Divergence,
    QuadSnapshot,
    Signal,
    SignalStrength,
)

log = logging.getLogger("factory")

RECENT_RANGE = 20
MIN_STOP_DISTANCE = 0.01  # stop sits at least 1% from entry


class InvariantViolation(AssertionError):
    pass


@dataclass(frozen=True)
class PriceLevels:
    entry: float
    stop_loss: float
    target1: float
    target2: float
    target3: float

    @property
    def risk(self) -> float:
        return abs(self.entry - self.stop_loss)

    @property
    def reward(self) -> float:
        return abs(self.target1 - self.entry)

    @property
    def risk_reward(self) -> float:
        return self.reward / self.risk if self.risk > 0 else 0.0


def compute_levels(
    candles: Sequence[Candle],
    direction: Direction,
    channel: Optional[ChannelBoundary] = None,
    config: Optional[SignalConfig] = None,
) -> PriceLevels:
    config = config or SignalConfig()
    entry = candles[-1].close
    n = min(RECENT_RANGE, len(candles))
    buffer = entry * (config.stop_loss_buffer / 100.0)
    p1, p2, p3 = config.target1_percent / 100.0, config.target2_percent / 100.0, config.target3_percent / 100.0

    if direction == Direction.LONG:
        stop = min(lowest_low(candles, n) - buffer, entry * (1.0 - MIN_STOP_DISTANCE))
        t1, t2, t3 = entry * (1 + p1), entry * (1 + p2), entry * (1 + p3)
        # snap to the opposite boundary only if it keeps the targets ordered
        if channel is not None and channel.is_valid and t1 < channel.upper < t3:
            t2 = channel.upper
    else:
        stop = max(highest_high(candles, n) + buffer, entry * (1.0 + MIN_STOP_DISTANCE))
        t1, t2, t3 = entry * (1 - p1), entry * (1 - p2), entry * (1 - p3)
        if channel is not None and channel.is_valid and t3 < channel.lower < t1:
            t2 = channel.lower

    return PriceLevels(entry=entry, stop_loss=stop, target1=t1, target2=t2, target3=t3)


def position_size(strength: SignalStrength, config: Optional[SignalConfig] = None) -> float:
    config = config or SignalConfig()
    size = config.default_position_size
    if strength == SignalStrength.SUPER:
        size = config.max_position_size
    elif strength == SignalStrength.STRONG:
        size = config.default_position_size * 1.5
    return min(size, config.max_position_size)


def new_signal_id(now: Optional[float] = None) -> str:
    ts = int((now if now is not None else time.time()) * 1000)
    return f"sig_{ts:x}_{uuid.uuid4().hex[:8]}"


def build_signal(
    *,
    symbol: str,
    direction: Direction,
    strength: SignalStrength,
    levels: PriceLevels,
    divergence: Optional[Divergence],
    confluence: ConfluenceFlags,
    confluence_score: int,
    snapshot: QuadSnapshot,
    notes: str,
    config: Optional[SignalConfig] = None,
    now: Optional[float] = None,
) -> Optional[Signal]:
    """Assemble a PENDING signal; returns None when its price levels are out of order."""
    config = config or SignalConfig()
    now = time.time() if now is None else now
    sig = Signal(
        id=new_signal_id(now),
        symbol=symbol,
        direction=direction,
        strength=strength,
        entry_price=levels.entry,
        stop_loss=levels.stop_loss,
        target1=levels.target1,
        target2=levels.target2,
        target3=levels.target3,
        divergence=divergence,
        confluence=confluence,
        confluence_score=int(confluence_score),
        snapshot=snapshot,
        risk_reward=levels.risk_reward,
        position_size_percent=position_size(strength, config),
        created_at=now,
        updated_at=now,
        notes=notes,
    )
    if not sig.levels_ordered():
        msg = (
            f"price levels out of order symbol={symbol} side={direction.value} stop={levels.stop_loss} "
            f"entry={levels.entry} t1={levels.target1} t2={levels.target2} t3={levels.target3}"
        )
        if config.debug_invariants:
            raise InvariantViolation(msg)
        log.error("signal_dropped %s", msg)
        return None
    return sig


def rank_signals(signals: Sequence[Signal], limit: int = 3) -> List[Signal]:
    ranked = sorted(signals, key=lambda s: (-s.strength.rank, -s.confluence_score))
    return ranked[:max(0, limit)]
