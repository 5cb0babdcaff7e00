from __future__ import annotations

from candletrader.core.types import AccountSnapshot, MarketSnapshot, PositionDetails, ProcessedData
from candletrader.services.strategy.sizing import UNBOUNDED_QTY, compute_position_sizing
from tests.fakes.fake_api import make_bar, make_config

CURR = make_bar(100.0, 101.5, 99.9, 101.2, 1500)


def _data(*, atr: float = 1.0, position: PositionDetails | None = None) -> ProcessedData:
    return ProcessedData(
        market=MarketSnapshot(atr=atr, avg_atr=0.8, avg_vol=900, curr=CURR, prev=CURR),
        account=AccountSnapshot(equity=100_000, buying_power=100_000, pos_details=position or PositionDetails()),
    )


def test_quantity_is_smallest_cap() -> None:
    config = make_config()
    sizing = compute_position_sizing(_data(), 100_000, 0, 100_000, config.strategy, config.risk)
    assert sizing.risk_amount == 1000
    assert sizing.risk_based_qty == 1000
    # 50% exposure and the $50k notional cap at 101.2
    assert sizing.exposure_based_qty == 494
    assert sizing.max_value_qty == 494
    assert sizing.buying_power_qty == 938
    assert sizing.quantity == 494


def test_risk_cap_binds_with_large_atr() -> None:
    config = make_config()
    sizing = compute_position_sizing(_data(atr=5.0), 100_000, 0, 100_000, config.strategy, config.risk)
    assert sizing.quantity == 200


def test_existing_exposure_reduces_room() -> None:
    config = make_config()
    position = PositionDetails(qty=400, current_value=45_000)
    sizing = compute_position_sizing(_data(position=position), 100_000, 400, 100_000, config.strategy, config.risk)
    assert sizing.exposure_based_qty == 49


def test_fixed_share_quantity() -> None:
    config = make_config(
        strategy__enable_fixed_share_quantity_per_trade=True, strategy__fixed_share_quantity_per_trade=7
    )
    sizing = compute_position_sizing(_data(), 100_000, 0, 100_000, config.strategy, config.risk)
    assert sizing.fixed
    assert sizing.quantity == 7


def test_zero_price_or_equity_yields_nothing() -> None:
    config = make_config()
    assert compute_position_sizing(_data(), 100_000, 0, 100_000, config.strategy, config.risk, price=0).quantity == 0
    assert compute_position_sizing(_data(), 0, 0, 100_000, config.strategy, config.risk).quantity == 0


def test_zero_atr_yields_nothing() -> None:
    config = make_config()
    assert compute_position_sizing(_data(atr=0.0), 100_000, 0, 100_000, config.strategy, config.risk).quantity == 0


def test_unknown_buying_power_is_unbounded() -> None:
    config = make_config()
    sizing = compute_position_sizing(_data(), 100_000, 0, 0, config.strategy, config.risk)
    assert sizing.buying_power_qty == UNBOUNDED_QTY


def test_scaling_only_for_same_direction_layers() -> None:
    config = make_config(
        risk__allow_multiple_positions_per_symbol=True,
        risk__position_scaling_multiplier=0.5,
        risk__maximum_dollar_value_per_trade=1_000_000,
        risk__max_account_exposure_percentage=100,
    )
    position = PositionDetails(qty=10, current_value=1_012)
    same = compute_position_sizing(
        _data(position=position), 100_000, 10, 1_000_000, config.strategy, config.risk, side="buy"
    )
    opposite = compute_position_sizing(
        _data(position=position), 100_000, 10, 1_000_000, config.strategy, config.risk, side="sell"
    )
    assert same.size_multiplier == 0.5
    assert same.risk_based_qty == 500
    assert opposite.size_multiplier == 1.0
    assert opposite.risk_based_qty == 1000
