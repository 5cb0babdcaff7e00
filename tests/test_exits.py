from __future__ import annotations

import pytest

from candletrader.services.strategy.exits import compute_exit_targets, price_buffer
from tests.fakes.fake_api import make_config


def test_buy_bracket_uses_dollar_buffer_and_reward_ratio() -> None:
    strategy = make_config(strategy__stop_loss_buffer_amount_dollars=1.2).strategy
    exits = compute_exit_targets("buy", 101.2, 1.0, strategy)
    assert exits.stop_loss == pytest.approx(100.0)
    assert exits.take_profit == pytest.approx(103.2)


def test_sell_bracket_mirrors_buy() -> None:
    strategy = make_config(strategy__stop_loss_buffer_amount_dollars=1.2).strategy
    exits = compute_exit_targets("sell", 101.2, 1.0, strategy)
    assert exits.stop_loss == pytest.approx(102.4)
    assert exits.take_profit == pytest.approx(99.2)


def test_take_profit_percentage() -> None:
    strategy = make_config(strategy__use_take_profit_percentage=True, strategy__take_profit_percentage=0.02).strategy
    exits = compute_exit_targets("buy", 100.0, 0.5, strategy)
    assert exits.take_profit == pytest.approx(102.0)
    assert exits.stop_loss == pytest.approx(99.5)


def test_price_buffer_is_clamped() -> None:
    strategy = make_config(strategy__min_price_buffer=0.05, strategy__max_price_buffer=0.5).strategy
    assert price_buffer(1.0, strategy) == pytest.approx(0.05)
    assert price_buffer(1_000.0, strategy) == pytest.approx(0.5)


def test_zero_risk_falls_back_to_buffer() -> None:
    strategy = make_config().strategy
    exits = compute_exit_targets("buy", 100.0, 0.0, strategy)
    assert exits.stop_loss < 100.0 < exits.take_profit


def test_unknown_side_rejected() -> None:
    with pytest.raises(ValueError):
        compute_exit_targets("hold", 100.0, 1.0, make_config().strategy)


@pytest.mark.parametrize("side", ["buy", "sell"])
@pytest.mark.parametrize("entry", [100.0, 12.345, 1.0, 0.05, 0.01])
@pytest.mark.parametrize("risk_per_share", [0.0, 0.002, 0.0049])
def test_bracket_legs_stay_off_the_entry_after_rounding(side: str, entry: float, risk_per_share: float) -> None:
    strategy = make_config(strategy__min_price_buffer=0.0).strategy
    exits = compute_exit_targets(side, entry, risk_per_share, strategy)
    if side == "buy":
        assert exits.stop_loss < entry < exits.take_profit
    else:
        assert exits.take_profit < entry < exits.stop_loss


def test_tiny_reward_distance_moves_target_one_cent() -> None:
    exits = compute_exit_targets("buy", 100.0, 0.002, make_config().strategy)
    assert exits.take_profit == pytest.approx(100.01)
    assert exits.stop_loss == pytest.approx(99.5)
