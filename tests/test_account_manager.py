from __future__ import annotations

import pytest

from candletrader.services.account.manager import AccountInfo, AccountManager, position_from_payload
from tests.fakes.fake_api import FakeApi


def test_snapshot_is_cached_until_expiry(clock) -> None:
    api = FakeApi(equity=50_000, buying_power=80_000)
    manager = AccountManager(api, "SPY", cache_duration_seconds=5.0, clock=clock)

    first = manager.fetch_account_snapshot()
    manager.fetch_account_snapshot()
    assert api.calls.count("get_account_info") == 1
    assert first.equity == 50_000
    assert first.buying_power == 80_000

    clock.advance(5.0)
    manager.fetch_account_snapshot()
    assert api.calls.count("get_account_info") == 2


def test_invalidate_forces_refresh(clock) -> None:
    api = FakeApi()
    manager = AccountManager(api, "SPY", clock=clock)
    manager.fetch_account_equity()
    manager.invalidate()
    manager.fetch_buying_power()
    assert api.calls.count("get_account_info") == 2


def test_short_position_is_negative_with_exposure(clock) -> None:
    api = FakeApi(equity=100_000, price=100.0)
    api.set_position(-5, unrealized_pl=-12.5)
    api.open_orders = [{"id": "o1"}, {"id": "o2"}]
    manager = AccountManager(api, "SPY", clock=clock)

    snapshot = manager.fetch_account_snapshot()

    assert snapshot.pos_details.qty == -5
    assert snapshot.pos_details.unrealized_pl == pytest.approx(-12.5)
    assert snapshot.exposure_pct == pytest.approx(0.5)
    assert snapshot.open_orders == 2


def test_position_details_are_not_cached(clock) -> None:
    api = FakeApi()
    manager = AccountManager(api, "SPY", clock=clock)
    assert manager.fetch_position_details().is_flat
    api.set_position(3)
    assert manager.fetch_position_details().qty == 3


def test_payload_parsing_tolerates_bad_values() -> None:
    info = AccountInfo.from_payload({"equity": "abc", "buying_power": None, "status": "ACTIVE"})
    assert info.equity == 0.0
    assert info.buying_power == 0.0
    assert position_from_payload(None).is_flat
    assert position_from_payload({"qty": "2.7", "side": "long"}).qty == 2


def test_info_and_snapshot_share_one_refresh(clock) -> None:
    api = FakeApi(equity=75_000, buying_power=90_000)
    manager = AccountManager(api, "SPY", cache_duration_seconds=5.0, clock=clock)
    assert manager.fetch_account_info().equity == 75_000
    assert manager.fetch_account_snapshot().buying_power == 90_000
    assert api.calls.count("get_account_info") == 1
