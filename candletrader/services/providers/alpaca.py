"""Alpaca trading and stock market-data clients."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from candletrader.core.errors import ProviderRequestError
from candletrader.core.types import Bar, Quote
from candletrader.services.providers.base import HttpProvider, ProviderKind, _safe_float, parse_bar

log = logging.getLogger(__name__)


def _path_symbol(symbol: str) -> str:
    # position and order paths take crypto pairs without the slash
    return symbol.replace("/", "")


class _AlpacaBase(HttpProvider):
    minutes_per_bar: int = 1

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "APCA-API-KEY-ID": self.config.api_key,
            "APCA-API-SECRET-KEY": self.config.api_secret,
        }

    def get_recent_bars(self, symbol: str, limit: int) -> List[Bar]:
        if not symbol:
            raise ProviderRequestError("symbol is required for bar request", provider=self.name)
        if limit <= 0:
            raise ProviderRequestError("limit must be greater than 0", provider=self.name)
        params = {"limit": int(limit), "timeframe": f"{self.minutes_per_bar}Min", "sort": "desc"}
        data = self._get(self.endpoint("bars", symbol=symbol), params=params)
        raw_bars = data.get("bars") if isinstance(data, Mapping) else None
        if isinstance(raw_bars, Mapping):
            raw_bars = raw_bars.get(symbol)
        if not isinstance(raw_bars, list):
            raise ProviderRequestError("invalid bars response format", provider=self.name, payload=data)
        bars = [bar for bar in (parse_bar(item) for item in raw_bars) if bar is not None]
        bars.sort(key=lambda bar: bar.t)
        return bars

    def get_quote(self, symbol: str) -> Quote:
        data = self._get(self.endpoint("quotes_latest", symbol=symbol))
        quote = data.get("quote") if isinstance(data, Mapping) else None
        if not isinstance(quote, Mapping):
            raise ProviderRequestError("invalid quote response format", provider=self.name, payload=data)
        ask = _safe_float(quote.get("ap"))
        bid = _safe_float(quote.get("bp"))
        return Quote(
            bid=bid,
            ask=ask,
            mid=(ask + bid) / 2.0,
            bid_size=_safe_float(quote.get("bs")),
            ask_size=_safe_float(quote.get("as")),
            timestamp=str(quote.get("t") or ""),
        )


class AlpacaStocksClient(_AlpacaBase):
    """Stock bars and quotes from the Alpaca market-data API."""

    kind = ProviderKind.ALPACA_STOCKS
    default_endpoints = {
        "bars": "/v2/stocks/{symbol}/bars",
        "quotes_latest": "/v2/stocks/{symbol}/quotes/latest",
    }

    def is_market_open(self, symbol: str | None = None) -> bool:
        # the data API has no clock; session gating comes from the trading client
        return True


class AlpacaTradingClient(_AlpacaBase):
    """Account, position and order access through the Alpaca trading API."""

    kind = ProviderKind.ALPACA_TRADING
    default_endpoints = {
        "account": "/v2/account",
        "positions": "/v2/positions",
        "position_by_symbol": "/v2/positions/{symbol}",
        "orders": "/v2/orders",
        "order_by_id": "/v2/orders/{order_id}",
        "clock": "/v2/clock",
    }

    def is_market_open(self, symbol: str | None = None) -> bool:
        data = self._get(self.endpoint("clock"))
        return bool(data.get("is_open")) if isinstance(data, Mapping) else False

    def get_account_info(self) -> Dict[str, Any]:
        data = self._get(self.endpoint("account"))
        if not isinstance(data, Mapping):
            raise ProviderRequestError("invalid account response format", provider=self.name, payload=data)
        return dict(data)

    def get_positions(self) -> List[Dict[str, Any]]:
        data = self._get(self.endpoint("positions"))
        return list(data) if isinstance(data, Iterable) and not isinstance(data, Mapping) else []

    def get_position(self, symbol: str) -> Optional[Dict[str, Any]]:
        data = self._get(self.endpoint("position_by_symbol", symbol=_path_symbol(symbol)), allow_404=True)
        return dict(data) if isinstance(data, Mapping) and data else None

    def get_open_orders(self, symbol: str | None = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"status": "open"}
        if symbol:
            params["symbols"] = symbol
        data = self._get(self.endpoint("orders"), params=params)
        return list(data) if isinstance(data, list) else []

    def place_order(self, order: Mapping[str, Any]) -> Dict[str, Any]:
        payload = dict(order)
        payload.setdefault("client_order_id", uuid4().hex)
        log.info(
            "alpaca.submit_order",
            extra={
                "client_order_id": payload["client_order_id"],
                "symbol": payload.get("symbol"),
                "qty": payload.get("qty"),
                "side": payload.get("side"),
                "order_class": payload.get("order_class", "simple"),
            },
        )
        try:
            response = self._post(
                self.endpoint("orders"),
                json=payload,
                idempotency_key=str(payload["client_order_id"]),
            )
        except Exception:
            log.exception(
                "alpaca.submit_order.failed",
                extra={"client_order_id": payload["client_order_id"], "symbol": payload.get("symbol")},
            )
            raise
        log.info(
            "alpaca.submit_order.ok",
            extra={
                "client_order_id": payload["client_order_id"],
                "alpaca_id": response.get("id") if isinstance(response, Mapping) else None,
                "status": response.get("status") if isinstance(response, Mapping) else None,
            },
        )
        return dict(response) if isinstance(response, Mapping) else {}

    def cancel_order(self, order_id: str) -> None:
        if not order_id:
            raise ProviderRequestError("order id is required", provider=self.name)
        self._delete(self.endpoint("order_by_id", order_id=order_id))

    def close_position(self, symbol: str, qty: int) -> Dict[str, Any]:
        if not symbol:
            raise ProviderRequestError("symbol is required for position closure", provider=self.name)
        if qty == 0:
            raise ProviderRequestError("quantity must be non-zero for position closure", provider=self.name)
        path = self.endpoint("position_by_symbol", symbol=_path_symbol(symbol))
        data = self._delete(path, params={"qty": str(abs(int(qty)))})
        log.info("alpaca.close_position", extra={"symbol": symbol, "qty": abs(int(qty))})
        return dict(data) if isinstance(data, Mapping) else {}


__all__ = ["AlpacaStocksClient", "AlpacaTradingClient"]
