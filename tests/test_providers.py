from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, List, Union

import orjson
import pytest
import requests

from candletrader.core.config import ProviderConfig
from candletrader.core.connectivity import ConnectionStatus, ConnectivityManager
from candletrader.core.errors import (
    ProviderNetworkError,
    ProviderRequestError,
    ProviderUnauthorized,
    ProviderUnavailable,
)
from candletrader.services.providers.alpaca import AlpacaStocksClient, AlpacaTradingClient
from candletrader.services.providers.base import ProviderKind
from candletrader.services.providers.manager import ApiManager, is_crypto_symbol
from candletrader.services.providers.polygon import PolygonCryptoClient, polygon_ticker, split_pair


def _response(status: int, payload: Any = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.url = "https://api.example.test"
    response._content = orjson.dumps(payload) if payload is not None else b""
    return response


class FakeSession:
    def __init__(self, *responses: Union[requests.Response, Exception]) -> None:
        self.headers: Dict[str, str] = {}
        self.responses: Deque[Union[requests.Response, Exception]] = deque(responses)
        self.requests: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.requests.append({"method": method, "url": url, **kwargs})
        item = self.responses.popleft()
        if isinstance(item, Exception):
            raise item
        return item


def _provider_config(**overrides: Any) -> ProviderConfig:
    values: Dict[str, Any] = {"api_key": "key", "api_secret": "secret", "base_url": "https://api.example.test"}
    values.update(overrides)
    return ProviderConfig(**values)


def _connectivity(clock) -> ConnectivityManager:
    return ConnectivityManager(degraded_threshold=2, disconnected_threshold=3, clock=clock)


def _trading(session: FakeSession, connectivity: ConnectivityManager, sleeps: List[float]) -> AlpacaTradingClient:
    return AlpacaTradingClient(_provider_config(), connectivity, session=session, sleep=sleeps.append)


def test_auth_headers_installed(clock) -> None:
    session = FakeSession()
    _trading(session, _connectivity(clock), [])
    assert session.headers["APCA-API-KEY-ID"] == "key"
    assert session.headers["APCA-API-SECRET-KEY"] == "secret"


def test_unauthorized_is_not_a_connectivity_failure(clock) -> None:
    connectivity = _connectivity(clock)
    session = FakeSession(_response(401, {"message": "forbidden"}))
    client = _trading(session, connectivity, [])
    with pytest.raises(ProviderUnauthorized) as info:
        client.get_account_info()
    assert info.value.status_code == 401
    assert str(info.value) == "forbidden"
    assert connectivity.snapshot().total_failures == 0


def test_retries_server_errors_then_succeeds(clock) -> None:
    connectivity = _connectivity(clock)
    sleeps: List[float] = []
    session = FakeSession(_response(503), _response(200, {"equity": "1000"}))
    client = _trading(session, connectivity, sleeps)
    assert client.get_account_info() == {"equity": "1000"}
    assert len(session.requests) == 2
    assert len(sleeps) == 1
    assert connectivity.status is ConnectionStatus.HEALTHY


def test_exhausted_retries_report_one_failure(clock) -> None:
    connectivity = _connectivity(clock)
    session = FakeSession(_response(503), _response(503), _response(503))
    client = _trading(session, connectivity, [])
    with pytest.raises(ProviderUnavailable):
        client.get_account_info()
    assert len(session.requests) == 3
    assert connectivity.snapshot().consecutive_failures == 1


def test_connection_errors_raise_network_error(clock) -> None:
    connectivity = _connectivity(clock)
    session = FakeSession(*(requests.ConnectionError("refused") for _ in range(3)))
    client = _trading(session, connectivity, [])
    with pytest.raises(ProviderNetworkError) as info:
        client.get_account_info()
    assert info.value.retryable
    assert connectivity.snapshot().consecutive_failures == 1


def test_backoff_window_blocks_requests(clock) -> None:
    connectivity = _connectivity(clock)
    connectivity.report_failure("down")
    connectivity.report_failure("down")
    session = FakeSession()
    client = _trading(session, connectivity, [])
    with pytest.raises(ProviderUnavailable):
        client.get_account_info()
    assert session.requests == []


def test_alpaca_bars_sorted_oldest_first(clock) -> None:
    payload = {
        "bars": [
            {"t": "2024-01-02T14:31:00Z", "o": 2, "h": 3, "l": 1, "c": 2.5, "v": 10},
            {"t": "2024-01-02T14:30:00Z", "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 5},
            {"t": "2024-01-02T14:29:00Z", "o": 1},
        ]
    }
    session = FakeSession(_response(200, payload))
    client = AlpacaStocksClient(_provider_config(), _connectivity(clock), session=session, sleep=lambda _s: None)
    bars = client.get_recent_bars("SPY", 3)
    assert [bar.t for bar in bars] == ["2024-01-02T14:30:00Z", "2024-01-02T14:31:00Z"]
    request = session.requests[0]
    assert request["url"] == "https://api.example.test/v2/stocks/SPY/bars"
    assert request["params"] == {"limit": 3, "timeframe": "1Min", "sort": "desc"}


def test_alpaca_bars_keyed_by_symbol(clock) -> None:
    payload = {"bars": {"SPY": [{"t": "2024-01-02T14:30:00Z", "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 5}]}}
    client = AlpacaStocksClient(
        _provider_config(), _connectivity(clock), session=FakeSession(_response(200, payload)), sleep=lambda _s: None
    )
    assert len(client.get_recent_bars("SPY", 1)) == 1


def test_alpaca_bars_rejects_malformed_payload(clock) -> None:
    client = AlpacaStocksClient(
        _provider_config(), _connectivity(clock), session=FakeSession(_response(200, {"foo": 1})), sleep=lambda _s: None
    )
    with pytest.raises(ProviderRequestError):
        client.get_recent_bars("SPY", 5)


def test_quote_mid_price(clock) -> None:
    payload = {"quote": {"ap": 101.0, "bp": 99.0, "as": 3, "bs": 4, "t": "2024-01-02T14:30:00Z"}}
    client = AlpacaStocksClient(
        _provider_config(), _connectivity(clock), session=FakeSession(_response(200, payload)), sleep=lambda _s: None
    )
    assert client.get_current_price("SPY") == pytest.approx(100.0)


def test_missing_position_returns_none(clock) -> None:
    session = FakeSession(_response(404, {"message": "position does not exist"}))
    client = _trading(session, _connectivity(clock), [])
    assert client.get_position("SPY") is None


def test_close_position_sends_quantity(clock) -> None:
    session = FakeSession(_response(200, {"id": "close-1"}))
    client = _trading(session, _connectivity(clock), [])
    assert client.close_position("BTC/USD", -3) == {"id": "close-1"}
    request = session.requests[0]
    assert request["method"] == "DELETE"
    assert request["url"].endswith("/v2/positions/BTCUSD")
    assert request["params"] == {"qty": "3"}


def test_place_order_sets_idempotency_key(clock) -> None:
    session = FakeSession(_response(200, {"id": "abc", "status": "accepted"}))
    client = _trading(session, _connectivity(clock), [])
    result = client.place_order({"symbol": "SPY", "qty": "1", "side": "buy", "client_order_id": "cid-1"})
    assert result["id"] == "abc"
    request = session.requests[0]
    assert request["headers"]["Idempotency-Key"] == "cid-1"
    assert request["json"]["client_order_id"] == "cid-1"


def test_bad_request_is_not_retried(clock) -> None:
    session = FakeSession(_response(422, {"message": "qty must be > 0"}))
    client = _trading(session, _connectivity(clock), [])
    with pytest.raises(ProviderRequestError) as info:
        client.place_order({"symbol": "SPY", "qty": "0", "side": "buy"})
    assert not info.value.retryable
    assert len(session.requests) == 1


def test_polygon_symbol_helpers() -> None:
    assert polygon_ticker("btc/usd") == "X:BTCUSD"
    assert polygon_ticker("X:ETHUSD") == "X:ETHUSD"
    assert split_pair("ETH-USD") == ("ETH", "USD")
    assert split_pair("X:BTCUSD") == ("BTC", "USD")


def test_polygon_bars_sorted_by_epoch(clock) -> None:
    payload = {
        "results": [
            {"t": 1_700_000_060_000, "o": 2, "h": 3, "l": 1, "c": 2, "v": 1},
            {"t": 1_700_000_000_000, "o": 1, "h": 2, "l": 1, "c": 2, "v": 1},
        ]
    }
    session = FakeSession(_response(200, payload))
    client = PolygonCryptoClient(
        _provider_config(), _connectivity(clock), session=session, sleep=lambda _s: None, clock=lambda: 1_700_000_100.0
    )
    bars = client.get_recent_bars("BTC/USD", 2)
    assert [bar.t for bar in bars] == ["1700000000000", "1700000060000"]
    request = session.requests[0]
    assert "/v2/aggs/ticker/X:BTCUSD/range/1/minute/" in request["url"]
    assert request["params"]["apiKey"] == "key"


def test_api_manager_routes_by_symbol(clock) -> None:
    connectivity = _connectivity(clock)
    trading = _trading(FakeSession(), connectivity, [])
    stocks = AlpacaStocksClient(_provider_config(), connectivity, session=FakeSession())
    polygon = PolygonCryptoClient(_provider_config(), connectivity, session=FakeSession())
    manager = ApiManager(
        {ProviderKind.ALPACA_TRADING: trading, ProviderKind.ALPACA_STOCKS: stocks, ProviderKind.POLYGON_CRYPTO: polygon}
    )
    assert manager.provider_for_symbol("SPY") is ProviderKind.ALPACA_STOCKS
    assert manager.provider_for_symbol("BTC/USD") is ProviderKind.POLYGON_CRYPTO
    assert manager.is_market_open("ETH/USD") is True
    assert is_crypto_symbol("X:SOLUSD")
    assert not is_crypto_symbol("AAPL")
