from __future__ import annotations

from datetime import datetime, timezone

import pytest

from candletrader.core.types import AccountSnapshot, MarketSnapshot, ProcessedData
from candletrader.services.risk.engine import (
    DAILY_LOSS,
    DAILY_PROFIT,
    EXPOSURE,
    INVALID_EQUITY,
    OUTSIDE_SESSION,
    RiskManager,
    daily_pnl_percentage,
)
from tests.fakes.fake_api import make_config

TUESDAY_MORNING = datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc)
SATURDAY = datetime(2024, 1, 6, 15, 0, tzinfo=timezone.utc)


def _data(exposure_pct: float = 0.0) -> ProcessedData:
    return ProcessedData(market=MarketSnapshot(), account=AccountSnapshot(exposure_pct=exposure_pct))


def _risk(**overrides) -> RiskManager:
    config = make_config(**overrides)
    return RiskManager(config.risk, config.timing, crypto=config.is_crypto, clock=lambda: TUESDAY_MORNING)


def test_daily_loss_denies() -> None:
    decision = _risk(risk__max_daily_loss_percentage=3.0).validate_trading_permissions(_data(), 95_000, 100_000)
    assert not decision.allow
    assert decision.reason == DAILY_LOSS
    assert decision.daily_pnl_pct == pytest.approx(-5.0)


def test_profit_target_denies() -> None:
    decision = _risk(risk__daily_profit_target_percentage=2.0).validate_trading_permissions(_data(), 102_000, 100_000)
    assert decision.reason == DAILY_PROFIT


def test_exposure_denies() -> None:
    decision = _risk().validate_trading_permissions(_data(exposure_pct=50.0), 100_000, 100_000)
    assert decision.reason == EXPOSURE


def test_outside_session_denies_stocks_only() -> None:
    stocks = _risk().validate_trading_permissions(_data(), 100_000, 100_000, now=SATURDAY)
    crypto = _risk(trading_mode__mode="crypto", trading_mode__primary_symbol="BTC/USD").validate_trading_permissions(
        _data(), 100_000, 100_000, now=SATURDAY
    )
    assert stocks.reason == OUTSIDE_SESSION
    assert crypto.allow


def test_invalid_equity_denies() -> None:
    assert _risk().validate_trading_permissions(_data(), float("nan"), 100_000).reason == INVALID_EQUITY
    assert _risk().validate_trading_permissions(_data(), 100_000, 0).reason == INVALID_EQUITY


def test_allows_inside_limits() -> None:
    decision = _risk().validate_trading_permissions(_data(exposure_pct=10.0), 101_000, 100_000)
    assert decision.allow
    assert decision.reason == "ok"
    assert decision.daily_pnl_pct == pytest.approx(1.0)


def test_daily_pnl_percentage_without_baseline() -> None:
    assert daily_pnl_percentage(100.0, 0.0) == 0.0
