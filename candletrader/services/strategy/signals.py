"""Rule-based candlestick signal scoring and entry filters."""

from __future__ import annotations

from dataclasses import dataclass

from candletrader.core.config import StrategyConfig
from candletrader.core.indicators import detect_doji
from candletrader.core.types import Bar, ProcessedData


@dataclass(slots=True)
class SignalDecision:
    """Outcome of scoring the current candle; ``buy`` and ``sell`` are never both set."""

    buy: bool = False
    sell: bool = False
    signal_strength: float = 0.0
    reason: str = ""
    price_change_pct: float = 0.0
    volume_change_pct: float = 0.0
    volatility_pct: float = 0.0

    @property
    def side(self) -> str | None:
        if self.buy:
            return "buy"
        if self.sell:
            return "sell"
        return None


@dataclass(slots=True)
class FilterResult:
    atr_pass: bool = False
    vol_pass: bool = False
    doji_pass: bool = False
    all_pass: bool = False
    atr_ratio: float = 0.0
    vol_ratio: float = 0.0


@dataclass(slots=True)
class _SideScore:
    strength: float
    reason: str


def _pct_change(current: float, previous: float) -> float:
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100.0


def _score(
    pattern_ok: bool,
    momentum_ok: bool,
    volume_ok: bool,
    volatility_ok: bool,
    strategy: StrategyConfig,
) -> _SideScore:
    if not pattern_ok:
        return _SideScore(0.0, "Basic pattern failed")
    strength = strategy.basic_price_pattern_weight
    reason = "Basic pattern OK; "
    if momentum_ok:
        strength += strategy.momentum_indicator_weight
        reason += "Momentum OK; "
    else:
        reason += "No momentum; "
    if volume_ok:
        strength += strategy.volume_analysis_weight
        reason += "Volume OK; "
    else:
        reason += "Low volume; "
    if volatility_ok:
        strength += strategy.volatility_analysis_weight
        reason += "Volatility OK; "
    else:
        reason += "Low volatility; "
    return _SideScore(strength, reason)


def _buy_pattern(curr: Bar, prev: Bar, strategy: StrategyConfig) -> bool:
    close_ok = curr.c >= curr.o if strategy.buy_allow_equal_close else curr.c > curr.o
    high_ok = curr.h > prev.h if strategy.buy_require_higher_high else True
    low_ok = curr.l >= prev.l if strategy.buy_require_higher_low else True
    return close_ok and high_ok and low_ok


def _sell_pattern(curr: Bar, prev: Bar, strategy: StrategyConfig) -> bool:
    close_ok = curr.c <= curr.o if strategy.sell_allow_equal_close else curr.c < curr.o
    low_ok = curr.l < prev.l if strategy.sell_require_lower_low else True
    high_ok = curr.h <= prev.h if strategy.sell_require_lower_high else True
    return close_ok and low_ok and high_ok


def evaluate_signals(data: ProcessedData, strategy: StrategyConfig, *, crypto: bool = False) -> SignalDecision:
    """Score buy and sell setups for the latest candle against the previous one."""

    curr, prev = data.curr, data.prev
    if curr is None or prev is None:
        return SignalDecision(reason="Insufficient candles")

    price_change_pct = _pct_change(curr.c, prev.c)
    volume_change_pct = _pct_change(curr.v, prev.v)
    if crypto:
        volume_change_pct *= strategy.crypto_volume_change_amplification_factor
    volatility_pct = data.atr / prev.c * 100.0 if prev.c > 0 else 0.0

    momentum_floor = strategy.minimum_price_change_percentage_for_momentum
    buy = _score(
        _buy_pattern(curr, prev, strategy),
        price_change_pct > momentum_floor,
        volume_change_pct > strategy.minimum_volume_increase_percentage_for_buy_signals,
        volatility_pct > strategy.minimum_volatility_percentage_for_buy_signals,
        strategy,
    )
    sell = _score(
        _sell_pattern(curr, prev, strategy),
        price_change_pct < -momentum_floor,
        volume_change_pct > strategy.minimum_volume_increase_percentage_for_sell_signals,
        volatility_pct > strategy.minimum_volatility_percentage_for_sell_signals,
        strategy,
    )

    threshold = strategy.minimum_signal_strength_threshold
    buy_fires = buy.strength >= threshold
    sell_fires = sell.strength >= threshold
    if buy_fires and sell_fires:
        # ties go to the buy side
        if sell.strength > buy.strength:
            buy_fires = False
        else:
            sell_fires = False

    stronger = sell if sell.strength > buy.strength else buy
    if sell_fires:
        stronger = sell
    elif buy_fires:
        stronger = buy
    return SignalDecision(
        buy=buy_fires,
        sell=sell_fires,
        signal_strength=stronger.strength,
        reason=stronger.reason,
        price_change_pct=price_change_pct,
        volume_change_pct=volume_change_pct,
        volatility_pct=volatility_pct,
    )


def evaluate_filters(data: ProcessedData, strategy: StrategyConfig, *, crypto: bool = False) -> FilterResult:
    """ATR, volume and doji gates applied before any entry."""

    curr = data.curr
    if curr is None:
        return FilterResult()
    if strategy.use_absolute_atr_threshold_instead_of_relative:
        atr_pass = data.atr > strategy.atr_absolute_minimum_threshold
    else:
        atr_pass = data.atr > strategy.entry_signal_atr_multiplier * data.avg_atr
    multiplier = strategy.crypto_volume_multiplier if crypto else strategy.entry_signal_volume_multiplier
    vol_pass = curr.v > multiplier * data.avg_vol
    doji_pass = not detect_doji(curr.o, curr.h, curr.l, curr.c)
    return FilterResult(
        atr_pass=atr_pass,
        vol_pass=vol_pass,
        doji_pass=doji_pass,
        all_pass=atr_pass and vol_pass and doji_pass,
        atr_ratio=data.atr / data.avg_atr if data.avg_atr > 0 else 0.0,
        vol_ratio=curr.v / data.avg_vol if data.avg_vol > 0 else 0.0,
    )


__all__ = ["FilterResult", "SignalDecision", "evaluate_filters", "evaluate_signals"]
