import json

from quad_stoch_signals.formatters import format_signal, format_stats, format_status
from quad_stoch_signals.models import Band, Candle, Divergence, DivergenceType, SignalStatus
from quad_stoch_signals.notifier.telegram import TelegramNotifier
from quad_stoch_signals.providers.binance import (
    CandleEventTracker,
    RetryPolicy,
    candle_from_rest,
    candle_from_ws,
    parse_kline_message,
)
from quad_stoch_signals.statistics import PerformanceStats

from conftest import make_signal


def test_candle_from_rest_and_ws_use_seconds():
    row = [1_700_000_040_000, "100.5", "101", "99.5", "100.8", "12.3", 1_700_000_099_999]
    c = candle_from_rest(row)
    assert c == Candle(time=1_700_000_040, open=100.5, high=101.0, low=99.5, close=100.8, volume=12.3)
    k = {"t": 1_700_000_040_000, "o": "1", "h": "2", "l": "0.5", "c": "1.5", "v": "3", "x": False}
    assert candle_from_ws(k).time == 1_700_000_040
    assert candle_from_ws(k).close == 1.5


def test_event_tracker_flags_new_and_drops_stale():
    tr = CandleEventTracker()
    c0 = Candle(time=60, open=1, high=1, low=1, close=1, volume=1)
    c0b = Candle(time=60, open=1, high=2, low=1, close=2, volume=2)
    c1 = Candle(time=120, open=2, high=2, low=2, close=2, volume=1)

    assert tr.event("BTCUSDT", "1m", c0).is_new_candle
    upd = tr.event("BTCUSDT", "1m", c0b, is_closed=True)
    assert not upd.is_new_candle and upd.is_closed
    assert tr.event("BTCUSDT", "1m", c1).is_new_candle
    assert tr.event("BTCUSDT", "1m", c0) is None
    # other symbols are tracked separately
    assert tr.event("ETHUSDT", "1m", c0).is_new_candle


def test_format_signal_html_escapes_and_lists_levels():
    sig = make_signal(symbol="BTC<USDT>")
    sig.divergence = Divergence(DivergenceType.BULLISH, 51.3, (90.0, 85.0), (30.0, 45.0), 12, Band.FAST)
    sig.notes = "Quad oversold rotation\nQuad rotation EXTREME (+5)"
    text = format_signal(sig)
    assert "<b>LONG BTC&lt;USDT&gt;</b>" in text
    assert "Quad oversold rotation" in text
    assert "EXTREME" not in text
    assert "Stop: 99 (-1.00%)" in text
    assert "T3: 102 (+2.00%)" in text
    assert "Divergence: BULLISH on FAST angle 51.3 span 12" in text


def test_format_signal_markdown_escapes_specials():
    text = format_signal(make_signal(), parse_mode="MarkdownV2")
    assert text.startswith("*LONG BTCUSDT*")
    assert "Entry: 100" in text
    assert "R:R 0\\.50" in text


def test_format_status_and_stats():
    sig = make_signal()
    sig.status = SignalStatus.STOPPED
    sig.actual_exit = 99.0
    sig.pnl_percent = -1.0
    assert format_status(sig) == "BTCUSDT LONG -&gt; STOPPED @ 99 pnl -1.00%"
    line = format_stats(PerformanceStats(total_trades=5, win_rate=40.0, profit_factor=5 / 3, net_profit=2.0))
    assert line.startswith("trades=5 win_rate=40.0% pf=1.67 net=+2.00%")


def test_telegram_disabled_without_credentials():
    assert not TelegramNotifier("", ["1"]).enabled()
    assert not TelegramNotifier("tok", []).enabled()
    n = TelegramNotifier(" tok ", [1, " ", "2"])
    assert n.enabled() and n.token == "tok" and n.chat_ids == ["1", "2"]
    assert n._payload("1", "hi", "markdownv2")["parse_mode"] == "MarkdownV2"
    assert "parse_mode" not in n._payload("1", "hi", None)


def test_parse_kline_message():
    tr = CandleEventTracker()
    k = {"t": 120_000, "s": "btcusdt", "i": "1m", "o": "1", "h": "2", "l": "1", "c": "2", "v": "5", "x": True}
    evt = parse_kline_message(json.dumps({"stream": "btcusdt@kline_1m", "data": {"e": "kline", "k": k}}), tr, "1m")
    assert evt.symbol == "BTCUSDT" and evt.is_new_candle and evt.is_closed
    assert evt.candle.time == 120

    assert parse_kline_message(json.dumps({"result": None, "id": 1}), tr, "1m") is None
    assert parse_kline_message("not json", tr, "1m") is None
    assert parse_kline_message(json.dumps({"e": "aggTrade"}), tr, "1m") is None
    assert parse_kline_message(json.dumps({"e": "kline", "k": {"t": 1}}), tr, "1m") is None


def test_retry_delays_double_and_cap():
    assert list(RetryPolicy(attempts=4, backoff_s=1.0, max_backoff_s=3.0).delays()) == [1.0, 2.0, 3.0]
    assert list(RetryPolicy(attempts=1).delays()) == []
