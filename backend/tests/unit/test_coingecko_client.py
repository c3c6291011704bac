"""Unit tests for CoinGeckoClient (mocked httpx)."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest

from integrations.coingecko_client import KNOWN_COIN_IDS, CoinGeckoClient
from integrations.exceptions import ProviderConnectionError, RateLimitedError
from integrations.market_data_protocol import AssetClass

NOW = datetime(2026, 3, 2, 15, 30, tzinfo=timezone.utc)


def _response(payload=None, status: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    if status >= 400:
        request = httpx.Request("GET", "https://coingecko.test")
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"HTTP {status}", request=request, response=httpx.Response(status, request=request)
        )
    else:
        response.raise_for_status = MagicMock()
    return response


def _market_row(coin_id: str, symbol: str, price: float, change: float, change_pct: float) -> dict:
    return {
        "id": coin_id,
        "symbol": symbol,
        "current_price": price,
        "price_change_24h": change,
        "price_change_percentage_24h": change_pct,
    }


@pytest.fixture
def client():
    c = CoinGeckoClient(clock=lambda: NOW, sleep=lambda _: None)
    yield c
    c.close()


@pytest.fixture
def client_with_key():
    c = CoinGeckoClient(api_key="test-api-key", clock=lambda: NOW)
    yield c
    c.close()


class TestProviderName:
    def test_provider_name(self, client):
        assert client.provider_name == "coingecko"


class TestKnownCoinIds:
    def test_common_coins_in_mapping(self):
        """Verify the most common coins are in the hardcoded mapping."""
        assert KNOWN_COIN_IDS["BTC"] == "bitcoin"
        assert KNOWN_COIN_IDS["ETH"] == "ethereum"
        assert KNOWN_COIN_IDS["SOL"] == "solana"
        assert KNOWN_COIN_IDS["SUI"] == "sui"
        assert KNOWN_COIN_IDS["DOGE"] == "dogecoin"
        assert KNOWN_COIN_IDS["MATIC"] == KNOWN_COIN_IDS["POL"]


class TestApiKey:
    def test_demo_key_header_sent(self, client_with_key):
        assert client_with_key._client.headers["x-cg-demo-api-key"] == "test-api-key"

    def test_no_header_without_key(self, client):
        assert "x-cg-demo-api-key" not in client._client.headers


class TestGetQuotesBatch:
    def test_single_markets_call_for_many_ids(self, client):
        payload = [
            _market_row("bitcoin", "btc", 60000.0, 1200.5, 2.04),
            _market_row("ethereum", "eth", 3200.25, -15.0, -0.47),
        ]
        with patch.object(client._client, "request", return_value=_response(payload)) as mock_request:
            quotes = client.get_quotes_batch(["bitcoin", "ethereum", "bitcoin"])

        mock_request.assert_called_once()
        params = mock_request.call_args.kwargs["params"]
        assert params["ids"] == "bitcoin,ethereum"
        assert params["vs_currency"] == "usd"

        btc = quotes["bitcoin"]
        assert btc.asset_class == AssetClass.CRYPTO
        assert btc.price == Decimal("60000.0")
        assert btc.change_24h == Decimal("1200.5")
        assert btc.change_percent_24h == Decimal("2.04")
        assert btc.currency == "USD"
        assert btc.source == "coingecko"
        assert btc.fetched_at == NOW

    def test_rows_without_price_skipped(self, client):
        payload = [
            _market_row("bitcoin", "btc", 60000.0, 0, 0),
            {"id": "dead-coin", "symbol": "dead", "current_price": None},
        ]
        with patch.object(client._client, "request", return_value=_response(payload)):
            quotes = client.get_quotes_batch(["bitcoin", "dead-coin"])

        assert set(quotes) == {"bitcoin"}

    def test_rate_limited_returns_empty(self, client):
        with patch.object(client._client, "request", return_value=_response(status=429)) as mock_request:
            assert client.get_quotes_batch(["bitcoin"]) == {}

        assert mock_request.call_count == 3

    def test_get_quote_delegates_to_batch(self, client):
        payload = [_market_row("solana", "sol", 145.2, 3.1, 2.2)]
        with patch.object(client._client, "request", return_value=_response(payload)):
            quote = client.get_quote("solana")

        assert quote.price == Decimal("145.2")


class TestSearchCoins:
    def test_returns_at_most_ten_rows(self, client):
        coins = [{"id": f"coin-{i}", "symbol": "X", "name": f"Coin {i}"} for i in range(15)]
        with patch.object(client._client, "request", return_value=_response({"coins": coins})):
            rows = client.search_coins("X")

        assert len(rows) == 10
        assert rows[0]["id"] == "coin-0"

    def test_connection_error_raises(self, client):
        with patch.object(client._client, "request", side_effect=httpx.ConnectError("down")):
            with pytest.raises(ProviderConnectionError):
                client.search_coins("BTC")

    def test_rate_limit_raises_after_retries(self, client):
        with patch.object(client._client, "request", return_value=_response(status=429)):
            with pytest.raises(RateLimitedError):
                client.search_coins("BTC")

    def test_no_matches_returns_empty(self, client):
        with patch.object(client._client, "request", return_value=_response({"coins": []})):
            assert client.search_coins("ZZZZ") == []


class TestGetHistory:
    def test_market_chart_sorted(self, client):
        payload = {"prices": [[1709251200000, 61000.5], [1709164800000, 60000.25]]}
        with patch.object(client._client, "request", return_value=_response(payload)) as mock_request:
            points = client.get_history("bitcoin", 7)

        args, kwargs = mock_request.call_args
        assert args == ("GET", "/coins/bitcoin/market_chart")
        assert kwargs["params"]["days"] == "7"
        assert [p.timestamp for p in points] == [1709164800000, 1709251200000]
        assert points[1].price == Decimal("61000.5")

    def test_max_range_passed_through(self, client):
        payload = {"prices": [[1, 1.0], [2, 2.0]]}
        with patch.object(client._client, "request", return_value=_response(payload)) as mock_request:
            client.get_history("bitcoin", "max")

        assert mock_request.call_args.kwargs["params"]["days"] == "max"

    def test_empty_prices_returns_empty(self, client):
        with patch.object(client._client, "request", return_value=_response({"prices": []})):
            assert client.get_history("bitcoin", 30) == []
