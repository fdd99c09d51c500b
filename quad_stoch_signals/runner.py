from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Set

from .config import Config
from .formatters import format_signal, format_stats, format_status
from .incremental import IncrementalEngine
from .lifecycle import SignalRepository
from .models import Signal, SignalStrength
from .notifier.telegram import TelegramNotifier
from .providers.binance import BinanceProvider, CandleEvent
from .scanner import Scanner
from .statistics import compute_stats

log = logging.getLogger("runner")

HOUSEKEEPING_S = 30


class ScanRunner:
    """Wires provider, scanner, live incremental engine, repository and Telegram together."""

    def __init__(self, cfg: Config, *, provider: Optional[BinanceProvider] = None):
        self.cfg = cfg
        self.symbols = [s.upper() for s in (cfg.scanner.symbols or [])]
        self.provider = provider or BinanceProvider(
            market=cfg.provider.market,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            ws_heartbeat_s=cfg.provider.ws_heartbeat_s,
        )
        self.repository = SignalRepository(cfg.signal)
        # None lets the scanner own a process pool
        self._executor = None if cfg.scanner.use_processes else ThreadPoolExecutor(max_workers=max(1, int(cfg.scanner.max_workers)))
        self.scanner = Scanner(
            self.symbols,
            self.provider.fetch_candles,
            self.repository,
            cfg.signal,
            scan_interval_s=cfg.scanner.scan_interval_s,
            batch_size=cfg.scanner.batch_size,
            max_workers=cfg.scanner.max_workers,
            task_timeout_s=cfg.scanner.task_timeout_s,
            candle_limit=cfg.scanner.candle_limit,
            executor=self._executor,
        )
        self.engine = IncrementalEngine(cfg.signal, retention=max(cfg.scanner.candle_limit, 500))
        self.tg = TelegramNotifier(
            token=cfg.telegram.token,
            chat_ids=cfg.telegram.chat_ids or [],
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.min_notify = SignalStrength(str(cfg.telegram.min_strength).upper())
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = self.repository.subscribe(self._on_new_signal)

    # -- notification --------------------------------------------------

    def _on_new_signal(self, sig: Signal) -> None:
        if not (self.cfg.telegram.enabled and self.tg.enabled()):
            return
        if sig.strength.rank < self.min_notify.rank and not sig.confluence.quad_rotation:
            return
        self._spawn(self.tg.send(format_signal(sig)))

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            log.warning("notify_skipped reason=no_event_loop")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- live stream ---------------------------------------------------

    async def warmup(self) -> None:
        interval = self.cfg.signal.interval
        limit = int(self.cfg.scanner.candle_limit)
        log.info("warmup_start symbols=%d interval=%s candles=%d", len(self.symbols), interval, limit)
        sem = asyncio.Semaphore(max(1, int(self.cfg.provider.warmup_concurrency)))

        async def _one(sym: str):
            try:
                async with sem:
                    candles = await self.provider.fetch_candles(sym, interval, limit)
                self.engine.seed(sym, candles)
                return None
            except Exception as e:
                return (sym, repr(e))

        results = await asyncio.gather(*[_one(sym) for sym in self.symbols])
        failures = [r for r in results if r is not None]
        for sym, err in failures[:10]:
            log.warning("warmup_failed symbol=%s err=%s", sym, err)
        if len(failures) > 10:
            log.warning("warmup_failed_more count=%d", len(failures))
        log.info("warmup_done ok=%d failed=%d", len(self.symbols) - len(failures), len(failures))

    def handle_event(self, evt: CandleEvent) -> List[Signal]:
        """Fold one live candle event into lifecycle and, optionally, the incremental pipeline."""
        for sig in self.repository.update_prices({evt.symbol: evt.candle.close}):
            if sig.status.is_terminal and self.tg.enabled():
                self._spawn(self.tg.send(format_status(sig)))
        if not self.cfg.provider.live_signals:
            return []
        signals = self.engine.on_tick(evt.symbol, evt.candle, evt.is_new_candle)
        return self.repository.add_many(signals)

    async def stream_forever(self) -> None:
        await self.warmup()
        async for evt in self.provider.stream_candles(self.symbols, self.cfg.signal.interval):
            self.handle_event(evt)

    async def housekeeping_forever(self) -> None:
        while True:
            await asyncio.sleep(HOUSEKEEPING_S)
            self.repository.expire_stale()
            counts = self.repository.stats_counts()
            log.info(
                "repository active=%d history=%d %s",
                counts["active"],
                counts["history"],
                format_stats(compute_stats(self.repository.history())),
            )

    async def run_forever(self) -> None:
        if not self.symbols:
            raise ValueError("No symbols configured.")
        if self.tg.enabled():
            await self.tg.send(f"{self.cfg.app.name}: scanning {len(self.symbols)} symbols on {self.cfg.signal.interval}.")
        jobs = [self.scanner.run_forever(), self.housekeeping_forever()]
        if self.cfg.provider.stream_prices:
            jobs.append(self.stream_forever())
        await asyncio.gather(*jobs)

    async def close(self) -> None:
        self._unsubscribe()
        self.scanner.close()
        if self._executor is not None:
            self._executor.shutdown(wait=False)
        for task in list(self._tasks):
            task.cancel()
        await self.provider.close()
