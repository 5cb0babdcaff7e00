"""Facade routing provider calls by symbol and trading mode."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests

from candletrader.core.config import SystemConfig
from candletrader.core.connectivity import ConnectivityManager
from candletrader.core.errors import ConfigError
from candletrader.core.types import Bar, Quote
from candletrader.services.providers.alpaca import AlpacaStocksClient, AlpacaTradingClient
from candletrader.services.providers.base import ProviderClient, ProviderKind
from candletrader.services.providers.polygon import PolygonCryptoClient

log = logging.getLogger(__name__)

_FACTORIES = {
    ProviderKind.ALPACA_TRADING: AlpacaTradingClient,
    ProviderKind.ALPACA_STOCKS: AlpacaStocksClient,
    ProviderKind.POLYGON_CRYPTO: PolygonCryptoClient,
}


def is_crypto_symbol(symbol: str) -> bool:
    upper = (symbol or "").upper()
    return "/" in upper or "-" in upper or upper.startswith("X:") or any(
        token in upper for token in ("BTC", "ETH")
    )


class ApiManager:
    """Single entry point for market data, account and trading calls."""

    def __init__(
        self,
        providers: Mapping[ProviderKind, ProviderClient],
        *,
        crypto_mode: bool = False,
    ) -> None:
        if ProviderKind.ALPACA_TRADING not in providers:
            raise ConfigError("alpaca_trading provider is required", key="alpaca_trading")
        self.providers: Dict[ProviderKind, ProviderClient] = dict(providers)
        self.crypto_mode = crypto_mode

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        connectivity: ConnectivityManager,
        *,
        session_factory=requests.Session,
    ) -> "ApiManager":
        providers: Dict[ProviderKind, ProviderClient] = {}
        for name, provider_cfg in config.providers.items():
            kind = ProviderKind(name)
            client = _FACTORIES[kind](provider_cfg, connectivity, session=session_factory())
            if hasattr(client, "minutes_per_bar"):
                client.minutes_per_bar = config.strategy.minutes_per_bar
            providers[kind] = client
            log.info("provider.initialized", extra={"provider": name, "base_url": provider_cfg.base_url})
        return cls(providers, crypto_mode=config.is_crypto)

    def has_provider(self, kind: ProviderKind) -> bool:
        return kind in self.providers

    @property
    def trading(self) -> ProviderClient:
        return self.providers[ProviderKind.ALPACA_TRADING]

    def provider_for_symbol(self, symbol: str) -> ProviderKind:
        if (self.crypto_mode or is_crypto_symbol(symbol)) and self.has_provider(ProviderKind.POLYGON_CRYPTO):
            return ProviderKind.POLYGON_CRYPTO
        if self.has_provider(ProviderKind.ALPACA_STOCKS):
            return ProviderKind.ALPACA_STOCKS
        return ProviderKind.ALPACA_TRADING

    def _market(self, symbol: str) -> ProviderClient:
        return self.providers[self.provider_for_symbol(symbol)]

    # market data -------------------------------------------------------
    def get_recent_bars(self, symbol: str, limit: int) -> List[Bar]:
        return self._market(symbol).get_recent_bars(symbol, limit)

    def get_quote(self, symbol: str) -> Quote:
        return self._market(symbol).get_quote(symbol)

    def get_current_price(self, symbol: str) -> float:
        return self._market(symbol).get_current_price(symbol)

    def is_market_open(self, symbol: str | None = None) -> bool:
        if symbol and (self.crypto_mode or is_crypto_symbol(symbol)):
            return True
        return self.trading.is_market_open(symbol)

    # account and trading ----------------------------------------------
    def get_account_info(self) -> Dict[str, Any]:
        return self.trading.get_account_info()

    def get_positions(self) -> List[Dict[str, Any]]:
        return self.trading.get_positions()

    def get_position(self, symbol: str) -> Optional[Dict[str, Any]]:
        return self.trading.get_position(symbol)

    def get_open_orders(self, symbol: str | None = None) -> List[Dict[str, Any]]:
        return self.trading.get_open_orders(symbol)

    def place_order(self, order: Mapping[str, Any]) -> Dict[str, Any]:
        return self.trading.place_order(order)

    def cancel_order(self, order_id: str) -> None:
        self.trading.cancel_order(order_id)

    def close_position(self, symbol: str, qty: int) -> Dict[str, Any]:
        return self.trading.close_position(symbol, qty)


__all__ = ["ApiManager", "is_crypto_symbol"]
