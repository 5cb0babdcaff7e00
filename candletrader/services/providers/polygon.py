"""Polygon.io REST client for crypto aggregates."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping

from candletrader.core.errors import ProviderRequestError
from candletrader.core.types import Bar, Quote
from candletrader.services.providers.base import HttpProvider, ProviderKind, _safe_float, parse_bar


def polygon_ticker(symbol: str) -> str:
    """``BTC/USD`` -> ``X:BTCUSD``."""

    if symbol.upper().startswith("X:"):
        return symbol.upper()
    return "X:" + symbol.upper().replace("/", "").replace("-", "")


def split_pair(symbol: str) -> tuple[str, str]:
    cleaned = symbol.upper().removeprefix("X:")
    for sep in ("/", "-"):
        if sep in cleaned:
            base, quote = cleaned.split(sep, 1)
            return base, quote
    if cleaned.endswith("USD") and len(cleaned) > 3:
        return cleaned[:-3], "USD"
    raise ProviderRequestError(f"cannot split crypto pair {symbol!r}", provider=ProviderKind.POLYGON_CRYPTO.value)


class PolygonCryptoClient(HttpProvider):
    """Crypto bars and last trade prices; account and order calls stay with Alpaca."""

    kind = ProviderKind.POLYGON_CRYPTO
    default_endpoints = {
        "bars": "/v2/aggs/ticker/{ticker}/range/{multiplier}/{timespan}/{start}/{end}",
        "quotes_latest": "/v1/last/crypto/{base}/{quote}",
    }

    def __init__(self, *args: Any, clock=time.time, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._clock = clock

    def _auth_params(self) -> Dict[str, str]:
        return {"apiKey": self.config.api_key}

    def get_recent_bars(self, symbol: str, limit: int) -> List[Bar]:
        if not symbol:
            raise ProviderRequestError("symbol is required for bar request", provider=self.name)
        if limit <= 0:
            raise ProviderRequestError("limit must be greater than 0", provider=self.name)
        end_ms = int(self._clock() * 1000)
        start_ms = end_ms - self.config.bars_range_minutes * 60 * 1000
        path = self.endpoint(
            "bars",
            ticker=polygon_ticker(symbol),
            symbol=polygon_ticker(symbol),
            multiplier=self.config.bar_multiplier,
            timespan=self.config.bar_timespan,
            start=start_ms,
            end=end_ms,
        )
        params = {**self._auth_params(), "limit": int(limit), "sort": "desc", "adjusted": "true"}
        data = self._get(path, params=params)
        results = data.get("results") if isinstance(data, Mapping) else None
        if results is None and isinstance(data, Mapping) and data.get("resultsCount") == 0:
            return []
        if not isinstance(results, list):
            raise ProviderRequestError("invalid aggregates response format", provider=self.name, payload=data)
        bars = [bar for bar in (parse_bar(item) for item in results) if bar is not None]
        # epoch-millisecond timestamps sort numerically
        bars.sort(key=lambda bar: int(bar.t) if bar.t.isdigit() else 0)
        return bars

    def get_quote(self, symbol: str) -> Quote:
        base, quote_ccy = split_pair(symbol)
        data = self._get(self.endpoint("quotes_latest", base=base, quote=quote_ccy), params=self._auth_params())
        body = data.get("results", data) if isinstance(data, Mapping) else None
        last = body.get("last") if isinstance(body, Mapping) else None
        if not isinstance(last, Mapping) or "price" not in last:
            raise ProviderRequestError("price data not found in response", provider=self.name, payload=data)
        price = _safe_float(last.get("price"))
        return Quote(bid=price, ask=price, mid=price, timestamp=str(last.get("timestamp") or ""))

    def is_market_open(self, symbol: str | None = None) -> bool:
        return True


__all__ = ["PolygonCryptoClient", "polygon_ticker", "split_pair"]
