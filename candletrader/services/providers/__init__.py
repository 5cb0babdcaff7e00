"""Broker and market-data provider clients."""

from .alpaca import AlpacaStocksClient, AlpacaTradingClient
from .base import HttpProvider, ProviderClient, ProviderKind
from .manager import ApiManager, is_crypto_symbol
from .polygon import PolygonCryptoClient

__all__ = [
    "AlpacaStocksClient",
    "AlpacaTradingClient",
    "ApiManager",
    "HttpProvider",
    "PolygonCryptoClient",
    "ProviderClient",
    "ProviderKind",
    "is_crypto_symbol",
]
