"""Position sizing under risk, exposure, notional and buying-power caps."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from candletrader.core.config import RiskConfig, StrategyConfig
from candletrader.core.types import ProcessedData

# Reported for caps that do not apply.
UNBOUNDED_QTY = 2**31 - 1


@dataclass(slots=True)
class PositionSizing:
    quantity: int = 0
    risk_amount: float = 0.0
    risk_per_share: float = 0.0
    size_multiplier: float = 1.0
    risk_based_qty: int = 0
    exposure_based_qty: int = 0
    max_value_qty: int = 0
    buying_power_qty: int = 0
    fixed: bool = False


def _floor_qty(value: float) -> int:
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(math.floor(value))


def _same_direction(position_qty: int, side: Optional[str]) -> bool:
    if position_qty == 0:
        return False
    if side is None:
        return True
    return (position_qty > 0) == (side == "buy")


def compute_position_sizing(
    data: ProcessedData,
    equity: float,
    position_qty: int,
    buying_power: float,
    strategy: StrategyConfig,
    risk: RiskConfig,
    *,
    price: Optional[float] = None,
    side: Optional[str] = None,
) -> PositionSizing:
    """Return the share quantity for a new entry.

    ``price`` defaults to the current close. The risk budget is
    ``equity * risk_percentage_per_trade`` and each share risks one ATR. The
    final quantity is the minimum of every applicable cap and never negative.
    """

    if price is None:
        price = data.curr.c if data.curr is not None else 0.0
    risk_amount = equity * risk.risk_percentage_per_trade
    if not math.isfinite(risk_amount) or risk_amount < 0:
        risk_amount = 0.0
    sizing = PositionSizing(risk_amount=risk_amount, risk_per_share=data.atr)
    if not math.isfinite(price) or price <= 0 or risk_amount <= 0:
        return sizing

    if strategy.enable_fixed_share_quantity_per_trade:
        qty = strategy.fixed_share_quantity_per_trade
        if strategy.enable_risk_based_position_multiplier:
            qty = int(qty * strategy.risk_based_position_size_multiplier)
        sizing.quantity = max(1, qty)
        sizing.fixed = True
        return sizing

    multiplier = 1.0
    if risk.allow_multiple_positions_per_symbol and _same_direction(position_qty, side):
        multiplier = risk.position_scaling_multiplier
    if strategy.enable_risk_based_position_multiplier:
        multiplier *= strategy.risk_based_position_size_multiplier
    sizing.size_multiplier = multiplier

    risk_per_share = data.atr
    risk_qty = _floor_qty(risk_amount * multiplier / risk_per_share) if risk_per_share > 0 else 0

    max_exposure_value = equity * risk.max_account_exposure_percentage / 100.0
    available_exposure = max(0.0, max_exposure_value - abs(data.pos_details.current_value))
    exposure_qty = _floor_qty(available_exposure / price)

    notional_qty = UNBOUNDED_QTY
    if risk.maximum_dollar_value_per_trade > 0:
        notional_qty = _floor_qty(risk.maximum_dollar_value_per_trade / price)

    bp_qty = UNBOUNDED_QTY
    if buying_power > 0:
        bp_qty = _floor_qty(buying_power * risk.buying_power_utilization_percentage / price)

    sizing.risk_based_qty = risk_qty
    sizing.exposure_based_qty = exposure_qty
    sizing.max_value_qty = notional_qty
    sizing.buying_power_qty = bp_qty
    sizing.quantity = max(0, min(risk_qty, exposure_qty, notional_qty, bp_qty))
    return sizing


__all__ = ["PositionSizing", "UNBOUNDED_QTY", "compute_position_sizing"]
