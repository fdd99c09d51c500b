from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence
import logging
import time

from . import confluence as cf
from .channel import channel_position, detect_channel
from .config import SignalConfig
from .divergence import detect_quad_divergences
from .factory import build_signal, compute_levels, rank_signals
from .indicators import validate_candles
from .models import Band, Candle, Direction, Divergence, OscillatorValue, Signal
from .quad import QuadBandEngine

log = logging.getLogger("strategy")


@dataclass(frozen=True)
class Candidate:
    direction: Direction
    reason: str
    divergence: Optional[Divergence] = None


def _candidates(engine: QuadBandEngine, divergences: Sequence[Divergence]) -> List[Candidate]:
    out: List[Candidate] = []

    def has(direction: Direction) -> bool:
        return any(c.direction == direction for c in out)

    rotation = engine.detect_rotation()
    if rotation.is_oversold_rotation and engine.all_bullish():
        out.append(Candidate(Direction.LONG, "Quad oversold rotation"))
    if rotation.is_overbought_rotation and engine.all_bearish():
        out.append(Candidate(Direction.SHORT, "Quad overbought rotation"))

    for div in divergences:
        if div.type.is_bullish and not has(Direction.LONG):
            out.append(Candidate(Direction.LONG, f"{div.type.value} divergence on {div.band.value}", div))
        if div.type.is_bearish and not has(Direction.SHORT):
            out.append(Candidate(Direction.SHORT, f"{div.type.value} divergence on {div.band.value}", div))

    flag = engine.detect_flag()
    if flag.is_bull_flag and not has(Direction.LONG):
        out.append(Candidate(Direction.LONG, "20/20 bull flag"))
    if flag.is_bear_flag and not has(Direction.SHORT):
        out.append(Candidate(Direction.SHORT, "20/20 bear flag"))
    return out


def evaluate(
    symbol: str,
    candles: Sequence[Candle],
    config: Optional[SignalConfig] = None,
    *,
    now: Optional[float] = None,
    series: Optional[Mapping[Band, Sequence[OscillatorValue]]] = None,
) -> List[Signal]:
    """Run the full quad stochastic pipeline over one symbol's candle history.

    Stateless: the same candles and config always produce the same signal
    set (ids and timestamps aside). ``series`` lets a caller that already
    maintains the four oscillator series skip the batch recompute.

    Raises ValueError for an invalid config. Bad or short candle data yields [].
    """
    config = config or SignalConfig()
    config.validate()

    if len(candles) < config.min_candles:
        log.debug("evaluate_skipped symbol=%s reason=short_history candles=%d need=%d", symbol, len(candles), config.min_candles)
        return []
    if not validate_candles(candles):
        log.warning("evaluate_skipped symbol=%s reason=bad_candles", symbol)
        return []

    engine = QuadBandEngine(candles, config, series=series)
    snapshot = engine.snapshot()
    if snapshot is None:
        log.debug("evaluate_skipped symbol=%s reason=warmup", symbol)
        return []

    now = time.time() if now is None else now
    price = candles[-1].close
    rotation = engine.detect_rotation()
    flag = engine.detect_flag()
    channel = detect_channel(candles, config.channel_lookback)
    position = channel_position(price, channel, config.channel_threshold_pct)
    divergences = detect_quad_divergences(candles, engine.series, config)

    signals: List[Signal] = []
    for cand in _candidates(engine, divergences):
        flags = cf.confluence_flags(cand.direction, candles, snapshot, rotation, flag, position, config)
        total, breakdown = cf.score(
            flags,
            divergence_angle=cand.divergence.angle if cand.divergence else None,
            rotation_strength=rotation.strength,
        )
        strength = cf.strength_tier(total)
        if not cf.should_take(strength, flags.quad_rotation, config.min_notification_strength):
            log.debug("candidate_rejected symbol=%s side=%s reason=strength score=%d", symbol, cand.direction.value, total)
            continue

        levels = compute_levels(candles, cand.direction, channel, config)
        if levels.risk_reward < config.min_risk_reward and not flags.quad_rotation:
            log.debug(
                "candidate_rejected symbol=%s side=%s reason=risk_reward rr=%.2f",
                symbol,
                cand.direction.value,
                levels.risk_reward,
            )
            continue

        sig = build_signal(
            symbol=symbol,
            direction=cand.direction,
            strength=strength,
            levels=levels,
            divergence=cand.divergence,
            confluence=flags,
            confluence_score=total,
            snapshot=snapshot,
            notes=cand.reason if not breakdown else f"{cand.reason}\n{breakdown}",
            config=config,
            now=now,
        )
        if sig is not None:
            signals.append(sig)

    ranked = rank_signals(signals, config.max_signals_per_evaluation)
    for sig in ranked:
        log.info(
            "signal_generated symbol=%s side=%s strength=%s score=%d entry=%s stop=%s rr=%.2f",
            sig.symbol,
            sig.direction.value,
            sig.strength.value,
            sig.confluence_score,
            sig.entry_price,
            sig.stop_loss,
            sig.risk_reward,
        )
    return ranked
