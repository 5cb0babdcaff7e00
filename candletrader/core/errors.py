"""Exception types shared across the trading pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    BAD_REQUEST = "bad_request"
    UNAVAILABLE = "unavailable"


class ConfigError(Exception):
    """Raised when configuration is missing, malformed or inconsistent."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class ProviderError(Exception):
    """Raised when a broker or market-data provider call fails."""

    kind: ErrorKind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        payload: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.payload = payload

    @property
    def retryable(self) -> bool:
        return self.kind in {ErrorKind.NETWORK, ErrorKind.RATE_LIMIT}


class ProviderNetworkError(ProviderError):
    kind = ErrorKind.NETWORK


class ProviderUnauthorized(ProviderError):
    """Raised when provider credentials are rejected."""

    kind = ErrorKind.AUTH


class ProviderRateLimited(ProviderError):
    kind = ErrorKind.RATE_LIMIT


class ProviderRequestError(ProviderError):
    """Raised when a provider rejects the request payload."""

    kind = ErrorKind.BAD_REQUEST


class ProviderUnavailable(ProviderError):
    """Raised when the provider is down or the client is inside a backoff window."""

    kind = ErrorKind.UNAVAILABLE


class MarketDataError(Exception):
    """Raised when fetched bars fail validation or are insufficient."""


__all__ = [
    "ConfigError",
    "ErrorKind",
    "MarketDataError",
    "ProviderError",
    "ProviderNetworkError",
    "ProviderRateLimited",
    "ProviderRequestError",
    "ProviderUnauthorized",
    "ProviderUnavailable",
]
