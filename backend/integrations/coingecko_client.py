"""CoinGecko market data provider for cryptocurrency prices."""

import logging
from datetime import datetime
from typing import Callable, Optional

from integrations.exceptions import NoDataError, ProviderDataError
from integrations.http_provider import HTTPProviderClient
from integrations.market_data_protocol import AssetClass, HistoryRange, PricePoint, PriceQuote
from integrations.parsing_utils import to_decimal, utc_now

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

# Hardcoded mapping for the most common crypto symbols.
# Covers the vast majority of real portfolios without an API call.
KNOWN_COIN_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "USDC": "usd-coin",
    "SOL": "solana",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "TRX": "tron",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "POL": "matic-network",
    "SHIB": "shiba-inu",
    "LTC": "litecoin",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "XLM": "stellar",
    "FIL": "filecoin",
    "SUI": "sui",
    "NEAR": "near",
    "APT": "aptos",
    "ARB": "arbitrum",
    "OP": "optimism",
    "AAVE": "aave",
    "ALGO": "algorand",
    "PEPE": "pepe",
    "INJ": "injective-protocol",
}

# /coins/markets page size limit
_MARKETS_PAGE_SIZE = 250
_SEARCH_LIMIT = 10


class CoinGeckoClient(HTTPProviderClient):
    """Market data provider using the CoinGecko API for crypto prices.

    Symbols passed to the quote and history methods are CoinGecko coin
    ids (e.g. ``"bitcoin"``); ticker-to-id resolution is the job of the
    SymbolResolver.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        clock: Callable[[], datetime] = utc_now,
        vs_currency: str = "usd",
        **policy,
    ):
        """Initialize with optional API key.

        Args:
            api_key: CoinGecko demo API key. If provided, uses the
                     x-cg-demo-api-key header for higher rate limits.
                     If None, uses the keyless public API.
        """
        headers: dict[str, str] = {}
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        super().__init__(base_url=base_url, headers=headers, timeout=timeout, **policy)
        self._clock = clock
        self._vs_currency = vs_currency.lower()

    @property
    def provider_name(self) -> str:
        return "coingecko"

    def _to_quote(self, row: dict) -> Optional[PriceQuote]:
        coin_id = row.get("id")
        price = to_decimal(row.get("current_price"), places=10)
        if not coin_id or price is None or price <= 0:
            return None
        return PriceQuote(
            symbol=coin_id,
            asset_class=AssetClass.CRYPTO,
            price=price,
            change_24h=to_decimal(row.get("price_change_24h"), places=10),
            change_percent_24h=to_decimal(row.get("price_change_percentage_24h")),
            currency=self._vs_currency.upper(),
            source="coingecko",
            fetched_at=self._clock(),
        )

    def _fetch_markets(self, coin_ids: list[str]) -> dict[str, PriceQuote]:
        data = self._get_json(
            "markets",
            "/coins/markets",
            params={
                "vs_currency": self._vs_currency,
                "ids": ",".join(coin_ids),
                "order": "market_cap_desc",
                "per_page": str(len(coin_ids)),
                "page": "1",
                "sparkline": "false",
                "price_change_percentage": "24h",
            },
        )
        if not isinstance(data, list):
            raise ProviderDataError("coingecko: unexpected markets payload", "coingecko")

        quotes: dict[str, PriceQuote] = {}
        for row in data:
            if not isinstance(row, dict):
                continue
            quote = self._to_quote(row)
            if quote is not None:
                quotes[quote.symbol] = quote
        return quotes

    def get_quote(self, symbol: str) -> Optional[PriceQuote]:
        """Fetch the current market quote for one coin id."""
        return self.get_quotes_batch([symbol]).get(symbol)

    def get_quotes_batch(self, symbols: list[str]) -> dict[str, PriceQuote]:
        """Fetch quotes for many coin ids with a single markets call per page."""
        coin_ids = list(dict.fromkeys(s for s in symbols if s))
        if not coin_ids:
            return {}

        results: dict[str, PriceQuote] = {}
        for i in range(0, len(coin_ids), _MARKETS_PAGE_SIZE):
            page = coin_ids[i:i + _MARKETS_PAGE_SIZE]
            results.update(self._guard(f"markets {page}", {}, self._fetch_markets, page))

        logger.info("CoinGecko: %d/%d quotes fetched", len(results), len(coin_ids))
        return results

    def _search(self, query: str) -> list[dict]:
        data = self._get_json("search", "/search", params={"query": query})
        if not isinstance(data, dict):
            raise ProviderDataError("coingecko: unexpected search payload", "coingecko")
        coins = [c for c in data.get("coins") or [] if isinstance(c, dict)]
        return coins[:_SEARCH_LIMIT]

    def search_coins(self, query: str) -> list[dict]:
        """Search coins by name or ticker.

        Returns:
            Up to ten rows with ``id``, ``symbol``, ``name`` and
            ``market_cap_rank`` keys; empty when nothing matches.

        Raises:
            ProviderError: the search endpoint failed.
        """
        query = query.strip()
        if not query:
            return []
        return self._checked(f"search {query!r}", [], self._search, query)

    def _fetch_market_chart(self, coin_id: str, days: HistoryRange) -> list[PricePoint]:
        data = self._get_json(
            "market_chart",
            f"/coins/{coin_id}/market_chart",
            params={"vs_currency": self._vs_currency, "days": str(days)},
        )
        prices = data.get("prices") if isinstance(data, dict) else None
        if not prices:
            raise NoDataError(f"coingecko: no price data for {coin_id}", "coingecko")

        # CoinGecko returns [[timestamp_ms, price], ...]
        points = []
        for entry in prices:
            if not isinstance(entry, (list, tuple)) or len(entry) < 2:
                continue
            price = to_decimal(entry[1], places=10)
            if price is None:
                continue
            points.append(PricePoint(timestamp=int(entry[0]), price=price))
        return sorted(points, key=lambda p: p.timestamp)

    def get_history(self, symbol: str, days: HistoryRange) -> list[PricePoint]:
        """Fetch the market chart for a coin id over ``days`` (or "max")."""
        return self._guard(f"market chart {symbol}", [], self._fetch_market_chart, symbol, days)
