"""Cached account, position and open-order state for the traded symbol."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from candletrader.core.types import AccountSnapshot, PositionDetails, exposure_percentage

log = logging.getLogger(__name__)


def _to_float(value: Any, *, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _to_int_qty(value: Any) -> int:
    # Alpaca reports qty as a string; fractional crypto quantities truncate toward zero
    return int(_to_float(value))


@dataclass(slots=True)
class AccountInfo:
    """Account fields beyond what the trading snapshot needs, kept for display and logs."""

    account_number: str = ""
    status: str = ""
    currency: str = ""
    equity: float = 0.0
    last_equity: float = 0.0
    cash: float = 0.0
    buying_power: float = 0.0
    pattern_day_trader: bool = False
    trading_blocked: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AccountInfo":
        return cls(
            account_number=str(payload.get("account_number") or ""),
            status=str(payload.get("status") or ""),
            currency=str(payload.get("currency") or ""),
            equity=_to_float(payload.get("equity")),
            last_equity=_to_float(payload.get("last_equity")),
            cash=_to_float(payload.get("cash")),
            buying_power=_to_float(payload.get("buying_power")),
            pattern_day_trader=bool(payload.get("pattern_day_trader", False)),
            trading_blocked=bool(payload.get("trading_blocked", False)),
            raw=dict(payload),
        )


def position_from_payload(payload: Optional[Mapping[str, Any]]) -> PositionDetails:
    if not payload:
        return PositionDetails()
    qty = _to_int_qty(payload.get("qty"))
    if str(payload.get("side", "")).lower() == "short" and qty > 0:
        qty = -qty
    return PositionDetails(
        qty=qty,
        unrealized_pl=_to_float(payload.get("unrealized_pl")),
        current_value=_to_float(payload.get("market_value")),
    )


class AccountManager:
    """Fetches account state through the API manager with a short-lived cache."""

    def __init__(
        self,
        api: Any,
        symbol: str,
        *,
        cache_duration_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.symbol = symbol
        self.cache_duration_seconds = cache_duration_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._cached: Optional[tuple[AccountInfo, AccountSnapshot]] = None
        self._cached_at: Optional[float] = None

    def _cache_valid(self) -> bool:
        if self._cached is None or self._cached_at is None:
            return False
        return self._clock() - self._cached_at < self.cache_duration_seconds

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = None

    def _current(self) -> tuple[AccountInfo, AccountSnapshot]:
        with self._lock:
            if self._cached is not None and self._cache_valid():
                return self._cached
            return self._refresh()

    def fetch_account_info(self) -> AccountInfo:
        return self._current()[0]

    def fetch_account_snapshot(self) -> AccountSnapshot:
        return self._current()[1]

    def fetch_account_equity(self) -> float:
        return self.fetch_account_info().equity

    def fetch_buying_power(self) -> float:
        return self.fetch_account_info().buying_power

    def fetch_position_details(self, symbol: Optional[str] = None) -> PositionDetails:
        """Uncached position read, used when verifying fills and closures."""

        return position_from_payload(self.api.get_position(symbol or self.symbol))

    def fetch_open_orders_count(self, symbol: Optional[str] = None) -> int:
        return len(self.api.get_open_orders(symbol or self.symbol))

    def _refresh(self) -> tuple[AccountInfo, AccountSnapshot]:
        payload = self.api.get_account_info()
        if "message" in payload and "equity" not in payload:
            log.warning("account.api_error", extra={"api_message": payload.get("message")})
        info = AccountInfo.from_payload(payload)
        position = self.fetch_position_details()
        open_orders = self.fetch_open_orders_count()
        snapshot = AccountSnapshot(
            equity=info.equity,
            buying_power=info.buying_power,
            pos_details=position,
            open_orders=open_orders,
            exposure_pct=exposure_percentage(position.current_value, info.equity),
        )
        self._cached = (info, snapshot)
        self._cached_at = self._clock()
        log.debug(
            "account.refreshed",
            extra={
                "equity": info.equity,
                "buying_power": info.buying_power,
                "position_qty": position.qty,
                "open_orders": open_orders,
            },
        )
        return info, snapshot


__all__ = ["AccountInfo", "AccountManager", "position_from_payload"]
