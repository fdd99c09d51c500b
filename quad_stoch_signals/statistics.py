from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import Signal, SignalStatus

_CLOSED = (SignalStatus.STOPPED, SignalStatus.TARGET3_HIT)


@dataclass(frozen=True)
class PerformanceStats:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0  # percent
    profit_factor: float = 0.0
    net_profit: float = 0.0  # sum of pnl_percent
    avg_win: float = 0.0
    avg_loss: float = 0.0  # negative or zero
    largest_win: float = 0.0
    largest_loss: float = 0.0
    expectancy: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    max_drawdown: float = 0.0  # peak-to-trough of cumulative pnl_percent


def closed_trades(signals: Iterable[Signal]) -> List[Signal]:
    """Signals that exited at stop or final target, oldest exit first."""
    out = [s for s in signals if s.status in _CLOSED and s.actual_exit is not None]
    out.sort(key=lambda s: s.exit_time or s.created_at)
    return out


def compute_stats(signals: Iterable[Signal]) -> PerformanceStats:
    trades = closed_trades(signals)
    if not trades:
        return PerformanceStats()

    pnls = [s.pnl_percent for s in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]
    gross_win = sum(wins)
    gross_loss = -sum(losses)

    if gross_loss > 0:
        profit_factor = gross_win / gross_loss
    else:
        profit_factor = float("inf") if gross_win > 0 else 0.0

    max_w = max_l = run_w = run_l = 0
    for p in pnls:
        if p > 0:
            run_w += 1
            run_l = 0
        else:
            run_l += 1
            run_w = 0
        max_w = max(max_w, run_w)
        max_l = max(max_l, run_l)

    equity = peak = 0.0
    max_dd = 0.0
    for p in pnls:
        equity += p
        peak = max(peak, equity)
        max_dd = max(max_dd, peak - equity)

    n = len(pnls)
    win_rate = len(wins) / n
    avg_win = gross_win / len(wins) if wins else 0.0
    avg_loss = -gross_loss / len(losses) if losses else 0.0
    return PerformanceStats(
        total_trades=n,
        wins=len(wins),
        losses=len(losses),
        win_rate=win_rate * 100.0,
        profit_factor=profit_factor,
        net_profit=sum(pnls),
        avg_win=avg_win,
        avg_loss=avg_loss,
        largest_win=max(wins) if wins else 0.0,
        largest_loss=min(losses) if losses else 0.0,
        expectancy=win_rate * avg_win + (1.0 - win_rate) * avg_loss,
        max_consecutive_wins=max_w,
        max_consecutive_losses=max_l,
        max_drawdown=max_dd,
    )


def best_trade(signals: Iterable[Signal]) -> Optional[Signal]:
    trades = closed_trades(signals)
    return max(trades, key=lambda s: s.pnl_percent) if trades else None


def worst_trade(signals: Iterable[Signal]) -> Optional[Signal]:
    trades = closed_trades(signals)
    return min(trades, key=lambda s: s.pnl_percent) if trades else None
