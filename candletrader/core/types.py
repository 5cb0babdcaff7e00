"""Market and account data records passed between pipeline stages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional


@dataclass(slots=True)
class Bar:
    """OHLCV candle as returned by a provider."""

    t: str
    o: float
    h: float
    l: float  # noqa: E741
    c: float
    v: float

    def is_valid(self) -> bool:
        prices = (self.o, self.h, self.l, self.c)
        if not all(math.isfinite(p) and p > 0 for p in prices):
            return False
        if not math.isfinite(self.v) or self.v < 0:
            return False
        if self.h < self.l or self.h < self.c or self.l > self.c:
            return False
        return self.l <= self.o <= self.h


@dataclass(slots=True)
class Quote:
    bid: float = 0.0
    ask: float = 0.0
    mid: float = 0.0
    bid_size: float = 0.0
    ask_size: float = 0.0
    timestamp: str = ""

    def is_valid(self) -> bool:
        return math.isfinite(self.mid) and self.mid > 0 and bool(self.timestamp)


@dataclass(slots=True)
class PositionDetails:
    """Signed position for the traded symbol (positive long, negative short)."""

    qty: int = 0
    unrealized_pl: float = 0.0
    current_value: float = 0.0

    @property
    def is_flat(self) -> bool:
        return self.qty == 0


@dataclass(slots=True)
class MarketSnapshot:
    atr: float = 0.0
    avg_atr: float = 0.0
    avg_vol: float = 0.0
    curr: Optional[Bar] = None
    prev: Optional[Bar] = None
    oldest_bar_timestamp: str = ""


@dataclass(slots=True)
class AccountSnapshot:
    equity: float = 0.0
    buying_power: float = 0.0
    pos_details: PositionDetails = field(default_factory=PositionDetails)
    open_orders: int = 0
    exposure_pct: float = 0.0


def exposure_percentage(current_value: float, equity: float) -> float:
    if equity <= 0:
        return 0.0
    return abs(current_value) / equity * 100.0


@dataclass(slots=True)
class ProcessedData:
    """Market and account view handed to the decision engine."""

    market: MarketSnapshot
    account: AccountSnapshot

    @property
    def atr(self) -> float:
        return self.market.atr

    @property
    def avg_atr(self) -> float:
        return self.market.avg_atr

    @property
    def avg_vol(self) -> float:
        return self.market.avg_vol

    @property
    def curr(self) -> Optional[Bar]:
        return self.market.curr

    @property
    def prev(self) -> Optional[Bar]:
        return self.market.prev

    @property
    def pos_details(self) -> PositionDetails:
        return self.account.pos_details

    @property
    def exposure_pct(self) -> float:
        return self.account.exposure_pct


__all__ = [
    "AccountSnapshot",
    "Bar",
    "MarketSnapshot",
    "PositionDetails",
    "ProcessedData",
    "Quote",
    "exposure_percentage",
]
