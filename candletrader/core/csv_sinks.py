"""CSV sinks for bars and trade events."""

from __future__ import annotations

import csv
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

from candletrader.core.types import Bar

BARS_HEADER = ("Timestamp", "Symbol", "Open", "High", "Low", "Close", "Volume", "ATR", "AvgATR", "AvgVolume")
TRADES_HEADER = (
    "timestamp",
    "symbol",
    "event_type",
    "value1",
    "value2",
    "value3",
    "value4",
    "value5",
    "notes",
)


def _now_text() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _fmt(value: Any, digits: int = 4) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "PASS" if value else "FAIL"
    if isinstance(value, float):
        return f"{value:.{digits}f}"
    return str(value)


class _CsvSink:
    header: Sequence[str] = ()

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            with self.path.open("w", newline="", encoding="utf-8") as handle:
                csv.writer(handle).writerow(self.header)

    def _write(self, row: Sequence[str]) -> None:
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                csv.writer(handle).writerow(row)


class CsvBarsSink(_CsvSink):
    """Appends one row per logged bar with the indicators computed from it."""

    header = BARS_HEADER

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self._last_logged: Optional[str] = None

    def log_bar(self, symbol: str, bar: Bar, *, atr: float, avg_atr: float, avg_vol: float) -> bool:
        """Write ``bar`` unless it was the last bar written. Returns True when written."""

        with self._lock:
            if bar.t == self._last_logged:
                return False
            self._last_logged = bar.t
        self._write(
            (
                bar.t,
                symbol,
                _fmt(bar.o, 2),
                _fmt(bar.h, 2),
                _fmt(bar.l, 2),
                _fmt(bar.c, 2),
                _fmt(float(bar.v), 0),
                _fmt(atr),
                _fmt(avg_atr),
                _fmt(avg_vol, 0),
            )
        )
        return True


class CsvTradeSink(_CsvSink):
    """Structured decision and order events for reconciliation against broker state."""

    header = TRADES_HEADER

    def log_event(self, symbol: str, event_type: str, *values: Any, notes: str = "") -> None:
        padded = [_fmt(v) for v in values[:5]]
        padded.extend([""] * (5 - len(padded)))
        self._write((_now_text(), symbol, event_type, *padded, notes))

    def log_signal(self, symbol: str, *, buy: bool, sell: bool, strength: float, reason: str) -> None:
        side = "BUY" if buy else "SELL" if sell else "NONE"
        self.log_event(symbol, "SIGNAL", side, strength, notes=reason)

    def log_filters(
        self,
        symbol: str,
        *,
        atr_pass: bool,
        atr_ratio: float,
        vol_pass: bool,
        vol_ratio: float,
        doji_pass: bool,
    ) -> None:
        self.log_event(symbol, "FILTERS", atr_pass, atr_ratio, vol_pass, vol_ratio, doji_pass)

    def log_position_sizing(
        self, symbol: str, *, quantity: int, risk_amount: float, position_value: float, buying_power: float
    ) -> None:
        self.log_event(symbol, "POSITION_SIZING", quantity, risk_amount, position_value, buying_power)

    def log_order(
        self,
        symbol: str,
        *,
        side: str,
        quantity: int,
        price: float,
        order_type: str,
        status: str,
        notes: str = "",
    ) -> None:
        self.log_event(symbol, "ORDER_EXECUTION", side, quantity, price, order_type, status, notes=notes)

    def log_rejection(self, symbol: str, *, reason: str, side: str = "", quantity: int = 0, notes: str = "") -> None:
        self.log_event(symbol, "ORDER_REJECTED", side, quantity, reason, notes=notes)

    def log_position_change(self, symbol: str, *, previous_qty: int, current_qty: int, unrealized_pl: float) -> None:
        self.log_event(symbol, "POSITION_CHANGE", previous_qty, current_qty, unrealized_pl)

    def log_account_update(self, *, equity: float, buying_power: float, exposure_pct: float) -> None:
        self.log_event("ACCOUNT", "ACCOUNT_UPDATE", round(equity, 2), round(buying_power, 2), exposure_pct)

    def log_halt(self, symbol: str, *, reason: str, minutes: float) -> None:
        self.log_event(symbol, "TRADING_HALT", minutes, notes=reason)


__all__ = ["BARS_HEADER", "TRADES_HEADER", "CsvBarsSink", "CsvTradeSink"]
