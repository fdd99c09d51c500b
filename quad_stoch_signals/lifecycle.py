from __future__ import annotations

from dataclasses import fields
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
import logging
import threading
import time

from .config import SignalConfig
from .models import Signal, SignalStatus

log = logging.getLogger("lifecycle")

SignalCallback = Callable[[Signal], None]

_SIGNAL_FIELDS = {f.name for f in fields(Signal)}
# Fields a duplicate refreshes on the signal already being tracked.
_REFRESH_FIELDS = (
    "strength",
    "divergence",
    "confluence",
    "confluence_score",
    "snapshot",
    "notes",
)
# Only refreshed while the tracked signal is unfilled; R:R and size belong to the levels.
_LEVEL_FIELDS = (
    "entry_price",
    "stop_loss",
    "target1",
    "target2",
    "target3",
    "risk_reward",
    "position_size_percent",
)


def pnl_percent(signal: Signal, price: float) -> float:
    if signal.entry_price == 0:
        return 0.0
    if signal.is_long:
        return (price - signal.entry_price) / signal.entry_price * 100.0
    return (signal.entry_price - price) / signal.entry_price * 100.0


def _close(signal: Signal, status: SignalStatus, price: float, now: float) -> None:
    signal.status = status
    signal.actual_exit = price
    signal.exit_time = now
    signal.pnl_percent = pnl_percent(signal, price)
    signal.pnl_amount = signal.pnl_percent * signal.position_size_percent / 100.0


def advance(signal: Signal, price: float, now: Optional[float] = None) -> bool:
    """Move ``signal`` through its state machine for one observed price.

    A PENDING signal is filled (ACTIVE) by the first price it sees; the same
    price is then checked against stop and targets. Returns True when the
    status changed.
    """
    if signal.status.is_terminal or price is None or price <= 0:
        return False
    now = time.time() if now is None else now
    before = signal.status

    if signal.status == SignalStatus.PENDING:
        signal.status = SignalStatus.ACTIVE
        signal.actual_entry = price
        signal.entry_time = now

    long_ = signal.is_long
    if (long_ and price <= signal.stop_loss) or (not long_ and price >= signal.stop_loss):
        _close(signal, SignalStatus.STOPPED, price, now)
    elif (long_ and price >= signal.target3) or (not long_ and price <= signal.target3):
        _close(signal, SignalStatus.TARGET3_HIT, price, now)
    elif (long_ and price >= signal.target2) or (not long_ and price <= signal.target2):
        if signal.status not in (SignalStatus.PARTIAL, SignalStatus.TARGET2_HIT):
            signal.status = SignalStatus.TARGET2_HIT
    elif (long_ and price >= signal.target1) or (not long_ and price <= signal.target1):
        if signal.status == SignalStatus.ACTIVE:
            signal.status = SignalStatus.TARGET1_HIT

    changed = signal.status != before
    if changed:
        signal.updated_at = now
    return changed


class SignalRepository:
    """Active signals plus capped closed history, shared by scanner and consumers.

    Every mutation holds one re-entrant lock. Subscribers are told about newly
    added signals after the lock is released.
    """

    def __init__(self, config: Optional[SignalConfig] = None, *, clock: Callable[[], float] = time.time):
        self.config = config or SignalConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._active: List[Signal] = []  # newest first
        self._history: List[Signal] = []  # newest first
        self._subscribers: List[SignalCallback] = []

    # -- subscriptions -------------------------------------------------

    def subscribe(self, callback: SignalCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self, signal: Signal) -> None:
        with self._lock:
            subs = list(self._subscribers)
        for cb in subs:
            try:
                cb(signal)
            except Exception as e:
                log.exception("subscriber_failed signal_id=%s err=%s", signal.id, e)

    # -- mutations -----------------------------------------------------

    def add(self, signal: Signal) -> Signal:
        """Track ``signal``; a same symbol+direction signal inside the duplicate window is refreshed instead."""
        with self._lock:
            dup = self._find_duplicate(signal)
            if dup is not None:
                for name in _REFRESH_FIELDS:
                    setattr(dup, name, getattr(signal, name))
                if dup.status == SignalStatus.PENDING:
                    for name in _LEVEL_FIELDS:
                        setattr(dup, name, getattr(signal, name))
                dup.updated_at = signal.created_at
                log.info("signal_refreshed id=%s symbol=%s side=%s", dup.id, dup.symbol, dup.direction.value)
                return dup

            while len(self._active) >= self.config.max_active_signals:
                oldest = min(self._active, key=lambda s: s.created_at)
                self._active.remove(oldest)
                oldest.status = SignalStatus.EXPIRED
                oldest.updated_at = self._clock()
                self._archive(oldest)
                log.info("signal_evicted id=%s symbol=%s reason=active_cap", oldest.id, oldest.symbol)

            self._active.insert(0, signal)
            log.info("signal_added id=%s symbol=%s side=%s strength=%s", signal.id, signal.symbol, signal.direction.value, signal.strength.value)

        self._notify(signal)
        return signal

    def add_many(self, signals: Iterable[Signal]) -> List[Signal]:
        """Add each signal; returns only those that were newly tracked."""
        added = []
        for sig in signals:
            if self.add(sig) is sig:
                added.append(sig)
        return added

    def update(self, signal_id: str, **changes: Any) -> Optional[Signal]:
        unknown = set(changes) - _SIGNAL_FIELDS
        if unknown or "id" in changes:
            raise ValueError(f"cannot update signal fields: {sorted(unknown | ({'id'} & set(changes)))}")
        with self._lock:
            sig = self._find_active(signal_id)
            if sig is None:
                return None
            for name, value in changes.items():
                setattr(sig, name, value)
            sig.updated_at = self._clock()
            if sig.status.is_terminal:
                self._active.remove(sig)
                self._archive(sig)
            return sig

    def remove(self, signal_id: str) -> Optional[Signal]:
        """Force-close an active signal as EXPIRED; pnl is left as is."""
        with self._lock:
            sig = self._find_active(signal_id)
            if sig is None:
                return None
            self._active.remove(sig)
            sig.status = SignalStatus.EXPIRED
            sig.updated_at = self._clock()
            self._archive(sig)
            return sig

    def update_prices(self, prices: Mapping[str, float], now: Optional[float] = None) -> List[Signal]:
        """Advance every active signal with a price in ``prices``; returns the signals that changed."""
        now = self._clock() if now is None else now
        changed: List[Signal] = []
        with self._lock:
            for sig in list(self._active):
                price = prices.get(sig.symbol)
                if not price:
                    continue
                prev = sig.status
                if not advance(sig, price, now):
                    continue
                changed.append(sig)
                log.info(
                    "signal_status id=%s symbol=%s %s->%s price=%s pnl=%.2f%%",
                    sig.id,
                    sig.symbol,
                    prev.value,
                    sig.status.value,
                    price,
                    sig.pnl_percent,
                )
                if self._should_archive(sig):
                    self._active.remove(sig)
                    self._archive(sig)
        return changed

    def expire_stale(self, max_age_s: Optional[float] = None, now: Optional[float] = None) -> List[Signal]:
        """Expire PENDING signals that were never filled within ``max_age_s``."""
        max_age_s = self.config.signal_expiry_s if max_age_s is None else max_age_s
        now = self._clock() if now is None else now
        expired: List[Signal] = []
        with self._lock:
            for sig in list(self._active):
                if sig.status == SignalStatus.PENDING and now - sig.created_at > max_age_s:
                    self._active.remove(sig)
                    sig.status = SignalStatus.EXPIRED
                    sig.updated_at = now
                    self._archive(sig)
                    expired.append(sig)
        if expired:
            log.info("signals_expired count=%d", len(expired))
        return expired

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    # -- queries -------------------------------------------------------

    def active(self) -> List[Signal]:
        with self._lock:
            return sorted(self._active, key=lambda s: s.created_at, reverse=True)

    def history(self, limit: Optional[int] = None) -> List[Signal]:
        with self._lock:
            return list(self._history if limit is None else self._history[:limit])

    def get(self, signal_id: str) -> Optional[Signal]:
        with self._lock:
            for sig in self._active + self._history:
                if sig.id == signal_id:
                    return sig
            return None

    def by_symbol(self, symbol: str) -> List[Signal]:
        with self._lock:
            return [s for s in self.active() if s.symbol == symbol]

    def recent(self, seconds: float, now: Optional[float] = None) -> List[Signal]:
        now = self._clock() if now is None else now
        with self._lock:
            return [s for s in self.active() if now - s.created_at <= seconds]

    def stats_counts(self) -> Dict[str, int]:
        with self._lock:
            return {"active": len(self._active), "history": len(self._history)}

    # -- internals -----------------------------------------------------

    def _find_active(self, signal_id: str) -> Optional[Signal]:
        for sig in self._active:
            if sig.id == signal_id:
                return sig
        return None

    def _find_duplicate(self, signal: Signal) -> Optional[Signal]:
        window = self.config.duplicate_window_s
        for sig in self._active:
            if (
                sig.symbol == signal.symbol
                and sig.direction == signal.direction
                and abs(sig.created_at - signal.created_at) < window
            ):
                return sig
        return None

    def _should_archive(self, sig: Signal) -> bool:
        if sig.status in (SignalStatus.STOPPED, SignalStatus.TARGET3_HIT):
            return True
        return self.config.archive_on_target2 and sig.status == SignalStatus.TARGET2_HIT

    def _archive(self, sig: Signal) -> None:
        self._history.insert(0, sig)
        del self._history[self.config.history_limit:]
