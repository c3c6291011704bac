"""Integration tests for /api/prices endpoints."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from integrations.exceptions import (
    ProviderConnectionError,
    ProviderForbiddenError,
    RateLimitedError,
)
from integrations.market_data_protocol import AssetClass, PricePoint
from tests.fixtures import make_quote


class TestRefreshPrices:
    def test_refresh_returns_priced_holdings(self, client: TestClient, providers):
        providers["equity"].set_price("AAPL", "190.5", change="1.5")
        providers["crypto"].set_price("bitcoin", "60000")

        response = client.post(
            "/api/prices/refresh",
            json=[
                {"symbol": "aapl", "asset_class": "stock", "quantity": "10"},
                {"symbol": "BTC", "asset_class": "crypto", "quantity": "0.5"},
                {"symbol": "ZZZZ", "asset_class": "crypto", "quantity": "1"},
                {"asset_class": "cash", "quantity": "1", "manual_price": "2500"},
            ],
        )

        assert response.status_code == 200
        data = {row["symbol"]: row for row in response.json()}
        assert set(data) == {"AAPL", "BTC"}
        assert Decimal(data["AAPL"]["price"]) == Decimal("190.5")
        assert Decimal(data["AAPL"]["change_24h"]) == Decimal("1.5")
        assert data["AAPL"]["source"] == "finnhub"
        assert data["BTC"]["asset_class"] == "crypto"

    def test_refresh_empty_body(self, client: TestClient):
        response = client.post("/api/prices/refresh", json=[])

        assert response.status_code == 200
        assert response.json() == []

    def test_refresh_rejects_negative_quantity(self, client: TestClient):
        response = client.post(
            "/api/prices/refresh",
            json=[{"symbol": "AAPL", "asset_class": "stock", "quantity": "-1"}],
        )

        assert response.status_code == 422

    def test_refresh_rejects_unknown_asset_class(self, client: TestClient):
        response = client.post(
            "/api/prices/refresh",
            json=[{"symbol": "AAPL", "asset_class": "warrant", "quantity": "1"}],
        )

        assert response.status_code == 422


class TestPriceHistory:
    def test_history_sorted_ascending(self, client: TestClient, providers):
        providers["equity"].set_history(
            "AAPL",
            [PricePoint(2000, Decimal("101")), PricePoint(1000, Decimal("100"))],
        )

        response = client.get(
            "/api/prices/history", params={"symbol": "aapl", "asset_class": "stock", "days": "7"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["symbol"] == "AAPL"
        assert data["days"] == "7"
        assert [p["timestamp"] for p in data["points"]] == [1000, 2000]
        assert providers["equity"].history_calls == [("AAPL", 7)]

    def test_history_max_range(self, client: TestClient, providers):
        response = client.get(
            "/api/prices/history", params={"symbol": "AAPL", "asset_class": "stock", "days": "max"}
        )

        assert response.status_code == 200
        assert response.json()["days"] == "max"
        assert response.json()["points"] == []
        assert providers["equity"].history_calls == [("AAPL", "max")]

    def test_history_defaults_to_thirty_days(self, client: TestClient):
        response = client.get(
            "/api/prices/history", params={"symbol": "AAPL", "asset_class": "stock"}
        )

        assert response.json()["days"] == "30"

    def test_history_invalid_range(self, client: TestClient):
        response = client.get(
            "/api/prices/history", params={"symbol": "AAPL", "asset_class": "stock", "days": "abc"}
        )

        assert response.status_code == 400

    def test_history_requires_symbol(self, client: TestClient):
        response = client.get("/api/prices/history", params={"asset_class": "stock"})

        assert response.status_code == 422


class TestValidateSymbol:
    def test_valid_symbol(self, client: TestClient):
        response = client.post(
            "/api/prices/validate", json={"symbol": "brk.b", "asset_class": "stock"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["symbol"] == "BRK-B"
        assert data["provider_id"] == "BRK-B"
        assert data["description"] == "BERKSHIRE HATHAWAY INC-CL B"

    def test_crypto_symbol(self, client: TestClient):
        response = client.post(
            "/api/prices/validate", json={"symbol": "eth", "asset_class": "crypto"}
        )

        assert response.status_code == 200
        assert response.json()["provider_id"] == "ethereum"

    def test_metal_without_symbol(self, client: TestClient):
        response = client.post(
            "/api/prices/validate", json={"asset_class": "commodity_gold"}
        )

        assert response.status_code == 200
        assert response.json()["symbol"] == "XAU"

    def test_unknown_symbol_returns_404(self, client: TestClient):
        response = client.post(
            "/api/prices/validate", json={"symbol": "AAPL", "asset_class": "mutual_fund"}
        )

        assert response.status_code == 404
        assert "AAPL" in response.json()["detail"]


    @pytest.mark.parametrize(
        "error",
        [
            RateLimitedError("finnhub: rate limited on search", "finnhub"),
            ProviderForbiddenError("finnhub: search endpoint forbidden", "finnhub", "search"),
            ProviderConnectionError("finnhub: search request failed", "finnhub"),
        ],
    )
    def test_search_outage_returns_503(self, client: TestClient, search, error):
        search.error = error

        response = client.post(
            "/api/prices/validate", json={"symbol": "AAPL", "asset_class": "stock"}
        )

        assert response.status_code == 503
        assert "temporarily unavailable" in response.json()["detail"]

    def test_crypto_search_outage_returns_503(self, client: TestClient, search):
        search.error = ProviderConnectionError("coingecko: search request failed", "coingecko")

        response = client.post(
            "/api/prices/validate", json={"symbol": "NEWCOIN", "asset_class": "crypto"}
        )

        assert response.status_code == 503

    def test_valid_after_outage_clears(self, client: TestClient, search):
        search.error = RateLimitedError("finnhub: rate limited on search", "finnhub")
        assert client.post(
            "/api/prices/validate", json={"symbol": "AAPL", "asset_class": "stock"}
        ).status_code == 503

        search.error = None
        response = client.post(
            "/api/prices/validate", json={"symbol": "AAPL", "asset_class": "stock"}
        )

        assert response.status_code == 200
        assert response.json()["provider_id"] == "AAPL"


class TestClearCache:
    def test_clear_cache(self, client: TestClient, price_service):
        price_service.cache.put(make_quote("AAPL", "190"))

        response = client.delete("/api/prices/cache")

        assert response.status_code == 204
        assert price_service.cache.peek("AAPL", AssetClass.STOCK) is None
