from __future__ import annotations

import threading

from candletrader.core.types import AccountSnapshot, MarketSnapshot


def test_timestamps_never_move_backwards(state, clock) -> None:
    state.publish_market(MarketSnapshot(atr=1.0))
    first = state.market_data_timestamp
    clock.now -= 50
    state.publish_market(MarketSnapshot(atr=2.0))
    assert state.market_data_timestamp == first
    assert state.read().market.atr == 2.0


def test_read_returns_copies(state) -> None:
    state.publish_account(AccountSnapshot(equity=10.0))
    view = state.read()
    view.account.equity = 99.0
    assert state.read().account.equity == 10.0
    assert view.has_account and not view.has_market


def test_wait_for_data_requires_both_snapshots(state) -> None:
    assert state.wait_for_data(0) is False
    state.publish_market(MarketSnapshot())
    assert state.wait_for_data(0) is False
    state.publish_account(AccountSnapshot())
    assert state.wait_for_data(0) is True


def test_stop_wakes_waiters() -> None:
    from candletrader.services.runtime.state import SharedState

    state = SharedState()
    results = []
    waiter = threading.Thread(target=lambda: results.append(state.wait_for_data(30.0, slice_seconds=0.05)))
    waiter.start()
    state.request_stop()
    waiter.join(5.0)
    assert not waiter.is_alive()
    assert results == [False]
    assert state.sleep(10.0) is False
    assert not state.running


def test_order_timestamp_tracking(state, clock) -> None:
    assert state.seconds_since_last_order() is None
    state.mark_order()
    clock.advance(30)
    assert state.seconds_since_last_order() == 30
