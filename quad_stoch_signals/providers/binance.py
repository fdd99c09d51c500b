from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import aiohttp
import websockets

from ..models import Candle

log = logging.getLogger("binance")

_ENDPOINTS = {
    # market: (rest base, klines path, websocket url)
    "futures": ("https://fapi.binance.com", "/fapi/v1/klines", "wss://fstream.binance.com/ws"),
    "spot": ("https://api.binance.com", "/api/v3/klines", "wss://stream.binance.com:9443/ws"),
}
_RATE_LIMITED = (418, 429)
_SUBSCRIBE_ID = 1


def _endpoints(market: str) -> Tuple[str, str, str]:
    return _ENDPOINTS["futures" if market == "futures" else "spot"]


def candle_from_rest(row: Sequence[Any]) -> Candle:
    """REST kline row: open time ms, then open/high/low/close/volume as strings."""
    t_ms, o, h, l, c, v = row[:6]
    return Candle(time=int(t_ms) // 1000, open=float(o), high=float(h), low=float(l), close=float(c), volume=float(v))


def candle_from_ws(k: Dict[str, Any]) -> Candle:
    return Candle(
        time=int(k["t"]) // 1000,
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k["v"]),
    )


@dataclass(frozen=True)
class CandleEvent:
    symbol: str
    interval: str
    candle: Candle
    is_new_candle: bool  # False while the same candle keeps updating
    is_closed: bool = False


class CandleEventTracker:
    """Flags the first event of each candle per (symbol, interval) as new."""

    def __init__(self) -> None:
        self._last_open: Dict[Tuple[str, str], int] = {}

    def event(self, symbol: str, interval: str, candle: Candle, is_closed: bool = False) -> Optional[CandleEvent]:
        key = (symbol, interval)
        last = self._last_open.get(key)
        if last is not None and candle.time < last:
            return None  # stale
        self._last_open[key] = candle.time
        return CandleEvent(
            symbol=symbol,
            interval=interval,
            candle=candle,
            is_new_candle=last is None or candle.time > last,
            is_closed=is_closed,
        )


def parse_kline_message(raw: Any, tracker: CandleEventTracker, default_interval: str) -> Optional[CandleEvent]:
    """Decode one websocket frame; acks, non-kline payloads and stale updates give None."""
    try:
        msg = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(msg, dict) or msg.get("id") == _SUBSCRIBE_ID:
        return None
    data = msg.get("data") or msg
    if not isinstance(data, dict) or data.get("e") != "kline":
        return None
    k = data.get("k") or {}
    try:
        candle = candle_from_ws(k)
    except (KeyError, TypeError, ValueError):
        log.debug("ws_kline_malformed payload=%s", str(k)[:200])
        return None
    return tracker.event(str(k.get("s", "")).upper(), k.get("i", default_interval), candle, is_closed=bool(k.get("x")))


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 4
    backoff_s: float = 0.8
    max_backoff_s: float = 20.0

    def delays(self):
        delay = self.backoff_s
        for _ in range(max(1, self.attempts) - 1):
            yield delay
            delay = min(delay * 2.0, self.max_backoff_s)


class BinanceProvider:
    """Klines over REST for history plus a websocket stream for live updates."""

    def __init__(
        self,
        market: str = "futures",
        *,
        rest_timeout_s: int = 20,
        ws_heartbeat_s: int = 20,
        retry: Optional[RetryPolicy] = None,
        conn_limit: int = 40,
        conn_limit_per_host: int = 10,
    ):
        self.market = market
        self.rest_timeout_s = rest_timeout_s
        self.ws_heartbeat_s = ws_heartbeat_s
        self.retry = retry or RetryPolicy()
        self.conn_limit = conn_limit
        self.conn_limit_per_host = conn_limit_per_host
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _session_for_rest(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            t = self.rest_timeout_s
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=t, connect=min(10, t), sock_read=max(10, int(t * 0.75))),
                connector=aiohttp.TCPConnector(
                    limit=self.conn_limit,
                    limit_per_host=self.conn_limit_per_host,
                    ttl_dns_cache=300,
                ),
            )
        return self._session

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        """GET with retries on timeouts, client errors and rate limiting (418/429)."""
        sess = await self._session_for_rest()
        delays = self.retry.delays()
        while True:
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status == 200:
                        # content-type from some proxies is wrong
                        return await resp.json(content_type=None)
                    body = (await resp.text())[:300]
                    if resp.status not in _RATE_LIMITED:
                        raise RuntimeError(f"GET {url} failed status={resp.status} body={body}")
                    err: BaseException = RuntimeError(f"rate limited status={resp.status}")
                    retry_after = resp.headers.get("Retry-After", "")
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                err, retry_after = e, ""

            delay = next(delays, None)
            if delay is None:
                raise err
            if retry_after.isdigit():
                delay = float(retry_after)
            log.warning("rest_retry url=%s params=%s sleep=%.1fs err=%s", url, params, delay, err)
            await asyncio.sleep(delay)

    async def fetch_candles(self, symbol: str, interval: str, limit: int = 200) -> List[Candle]:
        """Latest ``limit`` candles, oldest first. The last one may still be open."""
        base, path, _ = _endpoints(self.market)
        rows = await self._get_json(base + path, {"symbol": symbol.upper(), "interval": interval, "limit": int(limit)})
        return [candle_from_rest(row) for row in rows]

    async def stream_candles(self, symbols: List[str], interval: str) -> AsyncIterator[CandleEvent]:
        """Every kline update (open and closed) for ``symbols``; reconnects with backoff forever."""
        _, _, ws_url = _endpoints(self.market)
        subscribe = json.dumps({
            "method": "SUBSCRIBE",
            "params": [f"{s.lower()}@kline_{interval}" for s in symbols],
            "id": _SUBSCRIBE_ID,
        })
        tracker = CandleEventTracker()
        backoff = 1
        while True:
            try:
                async with websockets.connect(
                    ws_url,
                    ping_interval=self.ws_heartbeat_s,
                    ping_timeout=self.ws_heartbeat_s,
                    close_timeout=5,
                    max_queue=5000,
                ) as ws:
                    await ws.send(subscribe)
                    log.info("ws_subscribed symbols=%d interval=%s market=%s", len(symbols), interval, self.market)
                    backoff = 1
                    async for raw in ws:
                        evt = parse_kline_message(raw, tracker, interval)
                        if evt is not None:
                            yield evt
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                log.warning("ws_error err=%s reconnect_in=%ss", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)
