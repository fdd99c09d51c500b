from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Optional

from .models import Signal
from .statistics import PerformanceStats


def _fmt_ts(ts_s: Optional[float]) -> str:
    if ts_s is None:
        return "-"
    dt = datetime.fromtimestamp(ts_s, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    return "".join("\\" + ch if ch in specials else ch for ch in str(text))


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:.8g}"


def _pct(target: float, entry: float) -> str:
    if not entry:
        return ""
    return f" ({(target - entry) / entry * 100.0:+.2f}%)"


def format_signal(signal: Signal, parse_mode: str = "HTML") -> str:
    pm = (parse_mode or "HTML").upper()
    snap = signal.snapshot
    reason = signal.notes.splitlines()[0] if signal.notes else ""
    lines = [
        _bold(f"{signal.direction.value} {signal.symbol}", pm) + _escape_text(f"  [{signal.strength.value} {signal.confluence_score}]", pm),
        _escape_text(reason, pm),
        _escape_text(f"Entry: {_fmt_price(signal.entry_price)}", pm),
        _escape_text(f"Stop: {_fmt_price(signal.stop_loss)}{_pct(signal.stop_loss, signal.entry_price)}", pm),
        _escape_text(f"T1: {_fmt_price(signal.target1)}{_pct(signal.target1, signal.entry_price)}", pm),
        _escape_text(f"T2: {_fmt_price(signal.target2)}{_pct(signal.target2, signal.entry_price)}", pm),
        _escape_text(f"T3: {_fmt_price(signal.target3)}{_pct(signal.target3, signal.entry_price)}", pm),
        _escape_text(f"R:R {signal.risk_reward:.2f} | Size {signal.position_size_percent:.1f}%", pm),
        _escape_text(
            f"K/D fast {snap.fast.k:.0f}/{snap.fast.d:.0f} std {snap.standard.k:.0f}/{snap.standard.d:.0f} "
            f"med {snap.medium.k:.0f}/{snap.medium.d:.0f} slow {snap.slow.k:.0f}/{snap.slow.d:.0f}",
            pm,
        ),
    ]
    if signal.divergence is not None:
        div = signal.divergence
        lines.append(_escape_text(
            f"Divergence: {div.type.value} on {div.band.value} angle {div.angle:.1f} span {div.candle_span}",
            pm,
        ))
    confluence = signal.confluence.active()
    if confluence:
        lines.append(_escape_text("Confluence: " + ", ".join(confluence), pm))
    lines.append(_escape_text(_fmt_ts(signal.created_at), pm))
    return "\n".join(lines)


def format_status(signal: Signal, parse_mode: str = "HTML") -> str:
    pm = (parse_mode or "HTML").upper()
    text = f"{signal.symbol} {signal.direction.value} -> {signal.status.value}"
    if signal.actual_exit is not None:
        text += f" @ {_fmt_price(signal.actual_exit)} pnl {signal.pnl_percent:+.2f}%"
    return _escape_text(text, pm)


def format_stats(stats: PerformanceStats) -> str:
    return (
        f"trades={stats.total_trades} win_rate={stats.win_rate:.1f}% pf={stats.profit_factor:.2f} "
        f"net={stats.net_profit:+.2f}% expectancy={stats.expectancy:+.2f}% max_dd={stats.max_drawdown:.2f}%"
    )
