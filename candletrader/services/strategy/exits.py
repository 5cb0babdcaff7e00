"""Stop-loss and take-profit prices for bracket orders."""

from __future__ import annotations

from dataclasses import dataclass

from candletrader.core.config import StrategyConfig

TICK = 0.01


@dataclass(slots=True)
class ExitTargets:
    stop_loss: float
    take_profit: float


def price_buffer(entry: float, strategy: StrategyConfig) -> float:
    raw = entry * strategy.price_buffer_pct
    return min(max(raw, strategy.min_price_buffer), strategy.max_price_buffer)


def compute_exit_targets(side: str, entry: float, risk_per_share: float, strategy: StrategyConfig) -> ExitTargets:
    """Bracket legs around ``entry``.

    The stop sits at least one ``risk_per_share`` (or the price buffer, or the
    configured dollar buffer, whichever is widest) away from the entry. The
    target is either a fixed percentage or ``rr_ratio`` times the per-share risk.
    Prices are rounded to cents as the broker expects, and each leg is kept at
    least one cent away from the entry so rounding never collapses the bracket.
    """

    if side not in ("buy", "sell"):
        raise ValueError(f"unknown order side {side!r}")
    effective = max(risk_per_share, price_buffer(entry, strategy))
    stop_distance = max(effective, strategy.stop_loss_buffer_amount_dollars)
    if strategy.use_take_profit_percentage:
        tp_distance = entry * strategy.take_profit_percentage
    else:
        tp_distance = strategy.rr_ratio * risk_per_share
    if tp_distance <= 0:
        # zero ATR would put the target on the entry
        tp_distance = price_buffer(entry, strategy)

    below = round(round(entry, 2) - TICK, 2)
    above = round(round(entry, 2) + TICK, 2)

    if side == "buy":
        stop = min(round(entry - stop_distance, 2), below)
        target = max(round(entry + tp_distance, 2), above)
    else:
        stop = max(round(entry + stop_distance, 2), above)
        target = min(round(entry - tp_distance, 2), below)
    return ExitTargets(stop_loss=stop, take_profit=target)


__all__ = ["ExitTargets", "compute_exit_targets", "price_buffer"]
