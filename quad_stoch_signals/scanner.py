from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .config import SignalConfig
from .lifecycle import SignalRepository
from .models import Candle, ScannerResult, Signal
from .strategy import evaluate

log = logging.getLogger("scanner")

FetchCandles = Callable[[str, str, int], Awaitable[List[Candle]]]

# (symbol, owned candle window, frozen config)
ScanTask = Tuple[str, Tuple[Candle, ...], SignalConfig]


def run_task(task: ScanTask) -> List[Signal]:
    """Worker entry point; must stay importable at module level for process pools."""
    symbol, candles, config = task
    return evaluate(symbol, candles, config)


def batches(items: Sequence[str], size: int) -> List[List[str]]:
    size = max(1, int(size))
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class Scanner:
    """Periodic multi-symbol scan: fetch candles, evaluate off the event loop, publish results."""

    def __init__(
        self,
        symbols: Sequence[str],
        fetch: FetchCandles,
        repository: SignalRepository,
        config: Optional[SignalConfig] = None,
        *,
        scan_interval_s: float = 60.0,
        batch_size: int = 4,
        max_workers: int = 4,
        task_timeout_s: float = 20.0,
        candle_limit: int = 200,
        executor: Optional[Executor] = None,
    ):
        self.symbols = [s.upper() for s in symbols]
        self.fetch = fetch
        self.repository = repository
        self.config = config or SignalConfig()
        self.config.validate()
        self.scan_interval_s = scan_interval_s
        self.batch_size = batch_size
        self.task_timeout_s = task_timeout_s
        self.candle_limit = candle_limit

        self._owns_executor = executor is None
        self._executor = executor or ProcessPoolExecutor(max_workers=max(1, int(max_workers)))
        self._scanning = False
        self.results: Dict[str, ScannerResult] = {}
        self.last_scan_at: Optional[float] = None
        self.cycles = 0

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    async def scan_once(self) -> Dict[str, ScannerResult]:
        """Run one cycle. Returns the fresh per-symbol results (failed symbols are absent)."""
        if self._scanning:
            log.warning("scan_skipped reason=previous_cycle_running")
            return dict(self.results)
        self._scanning = True
        t0 = time.monotonic()
        try:
            fresh: Dict[str, ScannerResult] = {}
            failures: List[Tuple[str, str, str]] = []
            for batch in batches(self.symbols, self.batch_size):
                outcomes = await asyncio.gather(*[self._one(sym) for sym in batch])
                for sym, res, err in outcomes:
                    if res is not None:
                        fresh[sym] = res
                    else:
                        failures.append((sym, err[0], err[1]))

            for sym, stage, err in failures:
                log.warning("scan_failed symbol=%s stage=%s err=%s", sym, stage, err)

            added = 0
            for res in fresh.values():
                added += len(self.repository.add_many(res.signals))

            self.results = fresh
            self.last_scan_at = time.time()
            self.cycles += 1
            log.info(
                "scan_done cycle=%d symbols=%d ok=%d failed=%d signals_new=%d took=%.2fs",
                self.cycles,
                len(self.symbols),
                len(fresh),
                len(failures),
                added,
                time.monotonic() - t0,
            )
            return dict(fresh)
        finally:
            self._scanning = False

    async def _one(self, symbol: str) -> Tuple[str, Optional[ScannerResult], Optional[Tuple[str, str]]]:
        try:
            candles = await asyncio.wait_for(
                self.fetch(symbol, self.config.interval, self.candle_limit),
                timeout=self.task_timeout_s,
            )
        except Exception as e:
            return symbol, None, ("fetch", repr(e))

        task: ScanTask = (symbol, tuple(candles), self.config)
        loop = asyncio.get_running_loop()
        try:
            signals = await asyncio.wait_for(
                loop.run_in_executor(self._executor, run_task, task),
                timeout=self.task_timeout_s,
            )
        except asyncio.TimeoutError:
            return symbol, None, ("calculate", f"timeout after {self.task_timeout_s}s")
        except Exception as e:
            return symbol, None, ("calculate", repr(e))

        return symbol, ScannerResult(symbol=symbol, timestamp=time.time(), signals=list(signals)), None

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        log.info("scanner_start symbols=%d interval=%ss batch=%d", len(self.symbols), self.scan_interval_s, self.batch_size)
        while stop is None or not stop.is_set():
            t0 = time.monotonic()
            await self.scan_once()
            wait_s = max(0.0, self.scan_interval_s - (time.monotonic() - t0))
            if stop is None:
                await asyncio.sleep(wait_s)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=wait_s)
            except asyncio.TimeoutError:
                pass

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
