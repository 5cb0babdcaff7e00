from __future__ import annotations

import csv
from datetime import datetime, timezone
from typing import Any, List

from candletrader.core.connectivity import ConnectivityManager
from candletrader.core.errors import ProviderUnauthorized
from candletrader.core.market_hours import MarketSession
from candletrader.core.types import AccountSnapshot, MarketSnapshot, PositionDetails
from candletrader.services.account.manager import AccountManager
from candletrader.services.execution.executor import OrderExecutor
from candletrader.services.market.data import MarketDataManager
from candletrader.services.risk.engine import RiskManager
from candletrader.services.runtime.monitor import HealthMonitor
from candletrader.services.trading import coordinator as outcomes
from candletrader.services.trading.coordinator import TradingCoordinator
from tests.fakes.fake_api import FakeApi, make_bar, make_config

TUESDAY_MORNING = datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc)
PREV = make_bar(99.5, 100.2, 99.3, 100.0, 1000, t="2024-01-02T14:59:00Z")
CURR = make_bar(100.0, 101.5, 99.9, 101.2, 1500, t="2024-01-02T15:00:00Z")
DOJI = make_bar(100.0, 100.4, 99.6, 100.02, 1500, t="2024-01-02T15:00:00Z")

_DEFAULTS = {
    "timing__emergency_trading_halt_duration_minutes": 0,
    "timing__data_availability_wait_timeout_seconds": 0,
    "timing__market_data_staleness_threshold_seconds": 120,
}


def _build(api: FakeApi, state, clock, *, logging_ctx=None, initial_equity: float = 0.0, **overrides: Any):
    config = make_config(**{**_DEFAULTS, **overrides})
    connectivity = ConnectivityManager.from_config(config.timing, clock=clock)
    account_manager = AccountManager(api, config.symbol, clock=clock)
    monitor = HealthMonitor(clock=clock)
    executor = OrderExecutor(
        config, api, account_manager, state, logging_ctx, monitor=monitor, sleep=lambda _s: None, clock=clock
    )
    risk = RiskManager(
        config.risk, config.timing, MarketSession(config.session), crypto=config.is_crypto, clock=lambda: TUESDAY_MORNING
    )
    return TradingCoordinator(
        config,
        state,
        api,
        account_manager,
        MarketDataManager(config, api, account_manager, state),
        risk,
        executor,
        connectivity,
        logging_ctx=logging_ctx,
        monitor=monitor,
        initial_equity=initial_equity,
    )


def _publish(state, *, curr=CURR, atr: float = 1.0, equity: float = 100_000, position: PositionDetails | None = None):
    state.publish_market(
        MarketSnapshot(atr=atr, avg_atr=0.8, avg_vol=900, curr=curr, prev=PREV, oldest_bar_timestamp="2024-01-02T14:30:00Z")
    )
    state.publish_account(
        AccountSnapshot(equity=equity, buying_power=100_000, pos_details=position or PositionDetails())
    )


def _events(path) -> List[str]:
    with open(path, newline="", encoding="utf-8") as handle:
        return [row[2] for row in list(csv.reader(handle))[1:]]


def test_bullish_entry_submits_bracket(fake_api, state, clock, logging_ctx) -> None:
    coordinator = _build(fake_api, state, clock, logging_ctx=logging_ctx)
    _publish(state)

    assert coordinator.run_cycle(1) == outcomes.SUBMITTED

    order = fake_api.orders[0]
    assert order["side"] == "buy"
    assert order["qty"] == "494"
    assert order["take_profit"] == {"limit_price": "103.20"}
    assert order["stop_loss"] == {"stop_price": "100.20"}
    assert coordinator.initial_equity == 100_000
    assert _events(logging_ctx.trades.path) == [
        "ACCOUNT_UPDATE",
        "SIGNAL",
        "FILTERS",
        "POSITION_SIZING",
        "ORDER_EXECUTION",
    ]


def test_doji_candle_places_no_order(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock)
    _publish(state, curr=DOJI)
    assert coordinator.run_cycle() == outcomes.FILTERED
    assert fake_api.orders == []


def test_daily_loss_halts_trading(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock, initial_equity=100_000, risk__max_daily_loss_percentage=3.0)
    _publish(state, equity=95_000)
    assert coordinator.run_cycle() == outcomes.RISK_DENIED
    assert fake_api.orders == []
    assert not coordinator.executor.halted


def test_stale_data_short_circuits_without_provider_calls(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock)
    _publish(state)
    clock.advance(121)

    assert coordinator.run_cycle() == outcomes.STALE
    assert fake_api.calls == []
    assert coordinator.monitor.snapshot()["stale_data"] == 1


def test_no_snapshots_yet(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock)
    assert coordinator.run_cycle() == outcomes.NO_DATA
    assert fake_api.calls == []


def test_outage_halts_before_reading_data(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock)
    _publish(state)
    for _ in range(coordinator.config.timing.connectivity_disconnected_threshold):
        coordinator.connectivity.report_failure("down")
    assert coordinator.run_cycle() == outcomes.HALTED
    assert fake_api.calls == []


def test_market_closed_flattens_open_position(fake_api, state, clock) -> None:
    fake_api.market_open = False
    fake_api.set_position(10)
    coordinator = _build(fake_api, state, clock)
    _publish(state, position=PositionDetails(qty=10))

    assert coordinator.run_cycle() == outcomes.MARKET_CLOSED
    assert fake_api.closes == [("SPY", 10)]
    assert fake_api.orders == []


def test_market_closed_without_position(fake_api, state, clock) -> None:
    fake_api.market_open = False
    coordinator = _build(fake_api, state, clock)
    _publish(state)
    assert coordinator.run_cycle() == outcomes.MARKET_CLOSED
    assert fake_api.closes == []


def test_accumulation_gate(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock, strategy__minimum_data_accumulation_seconds_before_trading=10**9)
    _publish(state)
    assert coordinator.run_cycle() == outcomes.ACCUMULATING


def test_profit_taking_closes_position(fake_api, state, clock) -> None:
    fake_api.set_position(5, unrealized_pl=150.0)
    coordinator = _build(fake_api, state, clock, strategy__profit_taking_threshold_dollars=100)
    _publish(state, position=PositionDetails(qty=5, unrealized_pl=150.0, current_value=500.0))
    assert coordinator.run_cycle() == outcomes.PROFIT_TAKEN
    assert fake_api.closes == [("SPY", 5)]


def test_oversized_atr_skips_entry(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock)
    _publish(state, atr=2_000.0)
    assert coordinator.run_cycle() == outcomes.SKIPPED
    assert fake_api.orders == []


def test_live_quote_used_as_entry_price(fake_api, state, clock) -> None:
    fake_api.price = 100.5
    coordinator = _build(fake_api, state, clock, strategy__use_current_market_price_for_order_execution=True)
    _publish(state)
    assert coordinator.run_cycle() == outcomes.SUBMITTED
    assert fake_api.orders[0]["take_profit"] == {"limit_price": "102.50"}


def test_wash_trade_rejection_reported(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock)
    _publish(state)
    assert coordinator.run_cycle() == outcomes.SUBMITTED
    clock.advance(30)
    _publish(state)
    assert coordinator.run_cycle() == outcomes.REJECTED
    assert len(fake_api.orders) == 1


class _RevokedApi(FakeApi):
    def is_market_open(self, symbol=None) -> bool:
        raise ProviderUnauthorized("key revoked", provider="alpaca_trading", status_code=401)


def test_unauthorized_halts(state, clock) -> None:
    api = _RevokedApi()
    coordinator = _build(api, state, clock)
    _publish(state)
    assert coordinator.run_cycle() == outcomes.HALTED
    assert api.orders == []


def test_handle_market_close_reads_live_position(fake_api, state, clock) -> None:
    coordinator = _build(fake_api, state, clock)
    assert not coordinator.handle_market_close()
    fake_api.set_position(-4)
    assert coordinator.handle_market_close()
    assert fake_api.closes == [("SPY", 4)]
