"""Technical indicator utilities."""

from __future__ import annotations

from typing import Sequence


def true_ranges(high: Sequence[float], low: Sequence[float], close: Sequence[float]) -> list[float]:
    trs: list[float] = []
    for i in range(1, len(close)):
        high_low = high[i] - low[i]
        high_close = abs(high[i] - close[i - 1])
        low_close = abs(low[i] - close[i - 1])
        trs.append(max(high_low, high_close, low_close))
    return trs


def compute_atr(
    high: Sequence[float],
    low: Sequence[float],
    close: Sequence[float],
    period: int,
    min_bars: int,
) -> float:
    """Average true range over the last ``period`` bars.

    Returns 0.0 until ``min_bars`` bars are available. With fewer than ``period + 1``
    bars the window shrinks to what is available, so the value ramps up as history
    accumulates instead of staying at zero.
    """

    size = min(len(high), len(low), len(close))
    if size < max(min_bars, 2):
        return 0.0
    window = max(1, min(period, size - 1))
    trs = true_ranges(high[-size:], low[-size:], close[-size:])[-window:]
    return float(sum(trs) / len(trs))


def compute_average_volume(volumes: Sequence[float], period: int, minimum_threshold: float) -> float:
    if not volumes or period <= 0:
        return float(minimum_threshold)
    window = list(volumes[-period:])
    average = sum(window) / len(window)
    if average == 0:
        return float(minimum_threshold)
    return float(average)


def detect_doji(open_: float, high: float, low: float, close: float) -> bool:
    """Return True when the combined wicks outweigh the candle body.

    A bar with no body at all (open == close) is always a doji.
    """

    body = abs(close - open_)
    if body == 0:
        return True
    upper = high - max(open_, close)
    lower = min(open_, close) - low
    return upper + lower > body


__all__ = ["compute_atr", "compute_average_volume", "detect_doji", "true_ranges"]
