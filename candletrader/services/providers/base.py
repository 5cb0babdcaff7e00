"""Shared HTTP plumbing for broker and market-data providers."""

from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import requests

from candletrader.core.config import ProviderConfig
from candletrader.core.connectivity import ConnectivityManager
from candletrader.core.errors import (
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimited,
    ProviderRequestError,
    ProviderUnauthorized,
    ProviderUnavailable,
)
from candletrader.core.types import Bar, Quote

log = logging.getLogger(__name__)

_RETRY_STATUSES = {429, 500, 502, 503, 504}


class ProviderKind(str, Enum):
    ALPACA_TRADING = "alpaca_trading"
    ALPACA_STOCKS = "alpaca_stocks"
    POLYGON_CRYPTO = "polygon_crypto"


class ProviderClient:
    """Interface every provider implements; unsupported calls raise ``NotImplementedError``."""

    kind: ProviderKind

    def get_recent_bars(self, symbol: str, limit: int) -> List[Bar]:  # pragma: no cover - interface definition
        raise NotImplementedError

    def get_quote(self, symbol: str) -> Quote:  # pragma: no cover - interface definition
        raise NotImplementedError

    def get_current_price(self, symbol: str) -> float:
        quote = self.get_quote(symbol)
        if not quote.is_valid():
            raise ProviderRequestError(f"no valid quote for {symbol}", provider=self.kind.value)
        return quote.mid

    def is_market_open(self, symbol: str | None = None) -> bool:  # pragma: no cover - interface definition
        raise NotImplementedError

    def get_account_info(self) -> Dict[str, Any]:  # pragma: no cover - interface definition
        raise NotImplementedError

    def get_positions(self) -> List[Dict[str, Any]]:  # pragma: no cover - interface definition
        raise NotImplementedError

    def get_position(self, symbol: str) -> Optional[Dict[str, Any]]:  # pragma: no cover - interface definition
        raise NotImplementedError

    def get_open_orders(self, symbol: str | None = None) -> List[Dict[str, Any]]:  # pragma: no cover
        raise NotImplementedError

    def place_order(self, order: Mapping[str, Any]) -> Dict[str, Any]:  # pragma: no cover - interface definition
        raise NotImplementedError

    def cancel_order(self, order_id: str) -> None:  # pragma: no cover - interface definition
        raise NotImplementedError

    def close_position(self, symbol: str, qty: int) -> Dict[str, Any]:  # pragma: no cover - interface definition
        raise NotImplementedError


def substitute(template: str, **values: Any) -> str:
    """Replace ``{name}`` placeholders present in ``template``."""

    for name, value in values.items():
        template = template.replace("{" + name + "}", str(value))
    return template


class HttpProvider(ProviderClient):
    """REST client with retry/backoff that reports every outcome to the connectivity tracker."""

    default_endpoints: Dict[str, str] = {}

    def __init__(
        self,
        config: ProviderConfig,
        connectivity: ConnectivityManager,
        *,
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ) -> None:
        self.config = config
        self.base = config.base_url
        self.endpoints = {**self.default_endpoints, **config.endpoints}
        self.timeout = config.timeout_seconds
        self.connectivity = connectivity
        self.sess = session or requests.Session()
        self.sess.headers.update(self._auth_headers())
        self.sess.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        self._max_attempts = max(1, int(config.retry_count))
        self._backoff_base = max(0.0, config.rate_limit_delay_ms / 1000.0)
        self._backoff_cap = max(self._backoff_base, 8.0)
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.kind.value

    def _auth_headers(self) -> Dict[str, str]:
        return {}

    def endpoint(self, name: str, **values: Any) -> str:
        try:
            template = self.endpoints[name]
        except KeyError:
            raise ProviderRequestError(f"endpoint '{name}' is not configured", provider=self.name) from None
        if not template:
            raise ProviderRequestError(f"endpoint '{name}' is empty", provider=self.name)
        return substitute(template, **values)

    # ------------------------------------------------------------------
    # Internal HTTP helpers
    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, *, allow_404: bool = False, **kwargs: Any) -> Any:
        if not self.connectivity.should_attempt_connection():
            wait = self.connectivity.seconds_until_retry()
            raise ProviderUnavailable(
                f"{self.name}: connectivity backoff active, retry in {wait:.0f}s", provider=self.name
            )
        url = f"{self.base}{path}"
        attempt = 0
        backoff = self._backoff_base
        while True:
            try:
                response = self.sess.request(
                    method,
                    url,
                    timeout=self.timeout,
                    verify=self.config.enable_ssl_verification,
                    **kwargs,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt < self._max_attempts - 1:
                    attempt += 1
                    backoff = self._pause(backoff)
                    continue
                self.connectivity.report_failure(f"{self.name} {method} {path}: {exc}")
                raise ProviderNetworkError(str(exc), provider=self.name) from exc
            except requests.RequestException as exc:
                self.connectivity.report_failure(f"{self.name} {method} {path}: {exc}")
                raise ProviderNetworkError(str(exc), provider=self.name) from exc

            if response.status_code in _RETRY_STATUSES and attempt < self._max_attempts - 1:
                attempt += 1
                backoff = self._pause(backoff)
                continue
            return self._handle_response(method, path, response, allow_404=allow_404)

    def _pause(self, backoff: float) -> float:
        sleep_for = backoff + random.uniform(0, backoff)
        self._sleep(min(sleep_for, self._backoff_cap))
        return min(max(backoff * 2, 0.05), self._backoff_cap)

    def _handle_response(self, method: str, path: str, response: requests.Response, *, allow_404: bool) -> Any:
        if allow_404 and response.status_code == 404:
            self.connectivity.report_success()
            return None
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            error = _map_http_error(response, exc, provider=self.name)
            if isinstance(error, (ProviderRateLimited, ProviderUnavailable)):
                self.connectivity.report_failure(f"{self.name} {method} {path}: HTTP {response.status_code}")
            else:
                self.connectivity.report_success()
            log.warning(
                "provider.http_error",
                extra={"provider": self.name, "method": method, "path": path, "status": response.status_code},
            )
            raise error from exc
        self.connectivity.report_success()
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestError(
                f"{self.name}: response is not JSON", provider=self.name, status_code=response.status_code
            ) from exc

    def _get(self, path: str, **kwargs: Any) -> Any:
        return self._request("GET", path, **kwargs)

    def _post(self, path: str, *, idempotency_key: str | None = None, **kwargs: Any) -> Any:
        headers = dict(kwargs.pop("headers", None) or {})
        if idempotency_key:
            headers.setdefault("Idempotency-Key", idempotency_key)
        return self._request("POST", path, headers=headers or None, **kwargs)

    def _delete(self, path: str, **kwargs: Any) -> Any:
        return self._request("DELETE", path, **kwargs)


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None:
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_bar(raw: Mapping[str, Any]) -> Optional[Bar]:
    """Build a :class:`Bar` from a vendor ``{t,o,h,l,c,v}`` mapping; None when fields are missing."""

    if not all(key in raw for key in ("t", "o", "h", "l", "c", "v")):
        return None
    try:
        return Bar(
            t=str(raw["t"]),
            o=float(raw["o"]),
            h=float(raw["h"]),
            l=float(raw["l"]),
            c=float(raw["c"]),
            v=float(raw["v"]),
        )
    except (TypeError, ValueError):
        return None


def _map_http_error(response: requests.Response, exc: requests.HTTPError, *, provider: str) -> ProviderError:
    payload: Any | None
    try:
        payload = response.json()
    except ValueError:
        payload = {"error": response.text}
    if not isinstance(payload, Mapping):
        payload = {"error": payload}
    message = str(payload.get("message") or payload.get("error") or str(exc))
    status_code = response.status_code
    if status_code in {401, 403}:
        cls: type[ProviderError] = ProviderUnauthorized
    elif status_code == 429:
        cls = ProviderRateLimited
    elif status_code >= 500:
        cls = ProviderUnavailable
    else:
        cls = ProviderRequestError
    return cls(message, provider=provider, status_code=status_code, payload=payload)


__all__ = ["HttpProvider", "ProviderClient", "ProviderKind", "parse_bar", "substitute"]
