import pytest

from quad_stoch_signals.config import SignalConfig
from quad_stoch_signals.lifecycle import SignalRepository, advance
from quad_stoch_signals.models import Direction, SignalStatus

from conftest import make_signal


class Clock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t


def test_first_price_fills_then_targets_progress():
    sig = make_signal()
    assert advance(sig, 100.1, now=1.0)
    assert sig.status == SignalStatus.ACTIVE and sig.actual_entry == 100.1
    assert not advance(sig, 100.2, now=2.0)
    assert advance(sig, 100.6, now=3.0)
    assert sig.status == SignalStatus.TARGET1_HIT
    assert advance(sig, 101.1, now=4.0)
    assert sig.status == SignalStatus.TARGET2_HIT
    assert advance(sig, 102.5, now=5.0)
    assert sig.status == SignalStatus.TARGET3_HIT
    assert sig.pnl_percent == pytest.approx(2.5)
    assert sig.pnl_amount == pytest.approx(2.5 * 2.0 / 100.0)
    assert sig.actual_exit == 102.5 and sig.exit_time == 5.0
    # terminal signals never move again
    assert not advance(sig, 50.0, now=6.0)


def test_pending_signal_checked_against_first_price():
    sig = make_signal()
    assert advance(sig, 98.0, now=1.0)
    assert sig.status == SignalStatus.STOPPED
    assert sig.actual_entry == 98.0


def test_short_stop_and_partial_does_not_regress():
    short = make_signal(direction=Direction.SHORT)
    advance(short, 100.0)
    advance(short, 101.5)
    assert short.status == SignalStatus.STOPPED
    assert short.pnl_percent == pytest.approx(-1.5)

    sig = make_signal()
    advance(sig, 100.0)
    sig.status = SignalStatus.PARTIAL
    assert not advance(sig, 101.1)
    assert not advance(sig, 100.6)
    assert sig.status == SignalStatus.PARTIAL


def test_stop_breach_closes_once():
    repo = SignalRepository(clock=Clock())
    sig = repo.add(make_signal())
    repo.update_prices({"BTCUSDT": 100.0})
    changed = repo.update_prices({"BTCUSDT": 98.0})
    assert changed == [sig]
    assert sig.status == SignalStatus.STOPPED
    assert repo.active() == []
    assert repo.history() == [sig]
    assert repo.update_prices({"BTCUSDT": 97.0}) == []
    assert repo.history() == [sig]


def test_target2_stays_active_unless_configured():
    repo = SignalRepository(clock=Clock())
    sig = repo.add(make_signal())
    repo.update_prices({"BTCUSDT": 101.1})
    assert sig.status == SignalStatus.TARGET2_HIT
    assert repo.active() == [sig]

    repo = SignalRepository(SignalConfig(archive_on_target2=True), clock=Clock())
    sig = repo.add(make_signal())
    repo.update_prices({"BTCUSDT": 101.1})
    assert repo.active() == [] and repo.history() == [sig]


def test_duplicate_inside_window_refreshes_existing():
    repo = SignalRepository(clock=Clock())
    first = repo.add(make_signal(created_at=1000.0))
    again = make_signal(created_at=1100.0, entry=101.0)
    again.confluence_score = 6
    kept = repo.add(again)
    assert kept is first
    assert len(repo.active()) == 1
    assert first.confluence_score == 6
    assert first.entry_price == 101.0  # still PENDING, levels follow

    repo.update_prices({"BTCUSDT": 101.0})
    later = make_signal(created_at=1200.0, entry=105.0)
    repo.add(later)
    assert first.entry_price == 101.0  # filled, levels frozen

    other_side = repo.add(make_signal(direction=Direction.SHORT, created_at=1200.0))
    assert other_side is not first
    outside = repo.add(make_signal(created_at=1000.0 + 300.0))
    assert outside is not first
    assert len(repo.active()) == 3


def test_filled_signal_keeps_sizing_and_risk_reward_on_refresh():
    repo = SignalRepository(clock=Clock())
    first = repo.add(make_signal(created_at=1000.0, entry=100.0, size=2.0))
    repo.update_prices({"BTCUSDT": 100.0})
    assert first.status == SignalStatus.ACTIVE

    again = make_signal(created_at=1100.0, entry=110.0, size=5.0)
    again.risk_reward = 2.5
    again.confluence_score = 5
    assert repo.add(again) is first

    assert first.confluence_score == 5
    assert first.entry_price == 100.0
    assert first.position_size_percent == 2.0
    assert first.risk_reward == 0.5
    assert first.risk_reward == pytest.approx(abs(first.target1 - first.entry_price) / abs(first.entry_price - first.stop_loss))


def test_pending_signal_takes_sizing_and_risk_reward_on_refresh():
    repo = SignalRepository(clock=Clock())
    first = repo.add(make_signal(created_at=1000.0, size=2.0))
    again = make_signal(created_at=1100.0, size=5.0)
    again.risk_reward = 2.5
    repo.add(again)
    assert first.position_size_percent == 5.0
    assert first.risk_reward == 2.5


def test_add_many_returns_only_new_signals():
    repo = SignalRepository(clock=Clock())
    a = make_signal(symbol="A")
    b = make_signal(symbol="B")
    dup = make_signal(symbol="A", created_at=1010.0)
    assert repo.add_many([a, b, dup]) == [a, b]


def test_active_cap_evicts_oldest_as_expired():
    repo = SignalRepository(SignalConfig(max_active_signals=3), clock=Clock())
    sigs = [repo.add(make_signal(symbol=f"S{i}", created_at=1000.0 + i)) for i in range(4)]
    active = repo.active()
    assert len(active) == 3
    assert sigs[0] not in active
    assert sigs[0].status == SignalStatus.EXPIRED
    assert repo.history() == [sigs[0]]
    assert [s.symbol for s in active] == ["S3", "S2", "S1"]


def test_history_is_capped_newest_first():
    repo = SignalRepository(SignalConfig(history_limit=2), clock=Clock())
    ids = []
    for i in range(3):
        sig = repo.add(make_signal(symbol=f"S{i}", created_at=1000.0 + i))
        repo.remove(sig.id)
        ids.append(sig.id)
    assert [s.id for s in repo.history()] == [ids[2], ids[1]]
    assert [s.id for s in repo.history(limit=1)] == [ids[2]]
    repo.clear_history()
    assert repo.history() == []


def test_remove_and_update():
    clock = Clock(2000.0)
    repo = SignalRepository(clock=clock)
    sig = repo.add(make_signal())
    assert repo.update(sig.id, notes="moved stop") is sig
    assert sig.updated_at == 2000.0
    with pytest.raises(ValueError):
        repo.update(sig.id, bogus=1)
    with pytest.raises(ValueError):
        repo.update(sig.id, id="other")

    removed = repo.remove(sig.id)
    assert removed.status == SignalStatus.EXPIRED
    assert repo.remove(sig.id) is None
    assert repo.get(sig.id) is sig
    assert repo.update("missing", notes="x") is None


def test_update_to_terminal_status_archives():
    repo = SignalRepository(clock=Clock())
    sig = repo.add(make_signal())
    repo.update(sig.id, status=SignalStatus.STOPPED)
    assert repo.active() == [] and repo.history() == [sig]


def test_subscribers_hear_new_signals_only():
    repo = SignalRepository(clock=Clock())
    heard = []
    unsubscribe = repo.subscribe(heard.append)

    def broken(_sig):
        raise RuntimeError("boom")

    repo.subscribe(broken)
    first = repo.add(make_signal())
    repo.add(make_signal(created_at=1001.0))  # duplicate
    assert heard == [first]

    unsubscribe()
    repo.add(make_signal(symbol="ETHUSDT"))
    assert heard == [first]


def test_expire_stale_pending_only():
    clock = Clock(1000.0)
    repo = SignalRepository(SignalConfig(signal_expiry_s=300), clock=clock)
    pending = repo.add(make_signal(symbol="A", created_at=1000.0))
    filled = repo.add(make_signal(symbol="B", created_at=1000.0))
    repo.update_prices({"B": 100.0})
    clock.t = 1301.0
    assert repo.expire_stale() == [pending]
    assert pending.status == SignalStatus.EXPIRED
    assert repo.active() == [filled]


def test_queries():
    clock = Clock(1500.0)
    repo = SignalRepository(clock=clock)
    a = repo.add(make_signal(symbol="A", created_at=1000.0))
    b = repo.add(make_signal(symbol="B", created_at=1400.0))
    assert repo.by_symbol("A") == [a]
    assert repo.recent(200) == [b]
    assert repo.stats_counts() == {"active": 2, "history": 0}
