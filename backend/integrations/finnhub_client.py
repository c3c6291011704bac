"""Finnhub market data provider: primary source for equity quotes.

Free tier allows 60 calls/minute; batching and pacing is left to the
caller (see ``PriceService``), this client only fans a single batch out.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional

from integrations.exceptions import NoDataError, ProviderDataError
from integrations.http_provider import HTTPProviderClient
from integrations.market_data_protocol import AssetClass, HistoryRange, PricePoint, PriceQuote
from integrations.parsing_utils import to_decimal, utc_now

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://finnhub.io/api/v1"

# Candle lookback used for "max" history requests.
MAX_HISTORY_DAYS = 365 * 5
# Ranges up to this many days use hourly candles; longer ones use daily.
INTRADAY_MAX_DAYS = 7


def history_days(days: HistoryRange) -> int:
    """Translate a history range into a day count ("max" = 5 years)."""
    if days == "max":
        return MAX_HISTORY_DAYS
    return max(1, int(days))


def candle_resolution(days: HistoryRange) -> str:
    """Pick the candle resolution for a history range."""
    return "60" if history_days(days) <= INTRADAY_MAX_DAYS else "D"


class FinnhubClient(HTTPProviderClient):
    """Market data provider using the Finnhub REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        clock: Callable[[], datetime] = utc_now,
        max_workers: int = 10,
        **policy,
    ):
        """Initialize with optional API key.

        Args:
            api_key: Finnhub API token, sent as the ``token`` query param.
            base_url: API root, overridable for testing.
            timeout: Per-request timeout in seconds.
            clock: Returns the current UTC time; stamps quotes and anchors
                   candle ranges.
            max_workers: Upper bound on concurrent requests per batch.
        """
        super().__init__(base_url=base_url, timeout=timeout, **policy)
        self._api_key = api_key or ""
        self._clock = clock
        self._max_workers = max_workers

    @property
    def provider_name(self) -> str:
        return "finnhub"

    def _params(self, **params) -> dict:
        if self._api_key:
            params["token"] = self._api_key
        return params

    # -- quotes ---------------------------------------------------------------

    def _fetch_quote(self, symbol: str) -> PriceQuote:
        normalized = symbol.strip().upper()
        data = self._get_json("quote", "/quote", params=self._params(symbol=normalized))
        if not isinstance(data, dict):
            raise ProviderDataError(f"finnhub: unexpected quote payload for {normalized}", "finnhub")

        price = to_decimal(data.get("c"))
        previous_close = to_decimal(data.get("pc"))
        # c = 0 and pc = 0 is how Finnhub reports an unknown symbol
        if not price and not previous_close:
            raise NoDataError(f"finnhub: empty quote for {normalized}", "finnhub")
        if price is None or price <= 0:
            raise NoDataError(f"finnhub: non-positive price for {normalized}", "finnhub")

        return PriceQuote(
            symbol=normalized,
            asset_class=AssetClass.STOCK,
            price=price,
            change_24h=to_decimal(data.get("d")),
            change_percent_24h=to_decimal(data.get("dp")),
            currency="USD",
            source="finnhub",
            fetched_at=self._clock(),
        )

    def get_quote(self, symbol: str) -> Optional[PriceQuote]:
        """Fetch the current quote for a ticker, or None when unavailable."""
        return self._guard(f"quote {symbol}", None, self._fetch_quote, symbol)

    def get_quotes_batch(self, symbols: list[str]) -> dict[str, PriceQuote]:
        """Fetch quotes for a batch of tickers concurrently.

        Returns:
            Dict keyed by the requested symbol; failures are omitted.
        """
        if not symbols:
            return {}

        results: dict[str, PriceQuote] = {}
        workers = min(len(symbols), self._max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="finnhub") as executor:
            for symbol, quote in zip(symbols, executor.map(self.get_quote, symbols)):
                if quote is not None:
                    results[symbol] = quote

        logger.info("Finnhub: %d/%d quotes fetched", len(results), len(symbols))
        return results

    # -- search ---------------------------------------------------------------

    def _search(self, query: str) -> list[dict]:
        data = self._get_json("search", "/search", params=self._params(q=query))
        if not isinstance(data, dict):
            raise ProviderDataError("finnhub: unexpected search payload", "finnhub")
        return [row for row in data.get("result") or [] if isinstance(row, dict)]

    def search_symbols(self, query: str) -> list[dict]:
        """Search listed symbols.

        Returns:
            Raw result rows with ``symbol``, ``displaySymbol``,
            ``description`` and free-text ``type`` keys; empty when
            nothing matches.

        Raises:
            ProviderError: the search endpoint failed (rate limited,
                forbidden, unreachable or malformed).
        """
        query = query.strip()
        if not query:
            return []
        return self._checked(f"search {query!r}", [], self._search, query)

    # -- history --------------------------------------------------------------

    def _fetch_candles(self, symbol: str, days: HistoryRange) -> list[PricePoint]:
        normalized = symbol.strip().upper()
        now = int(self._clock().timestamp())
        start = now - history_days(days) * 24 * 60 * 60
        data = self._get_json(
            "candle",
            "/stock/candle",
            params=self._params(
                symbol=normalized,
                resolution=candle_resolution(days),
                **{"from": start, "to": now},
            ),
        )
        if not isinstance(data, dict) or data.get("s") != "ok":
            raise NoDataError(f"finnhub: no candles for {normalized}", "finnhub")

        points = []
        for ts, close in zip(data.get("t") or [], data.get("c") or []):
            price = to_decimal(close)
            if price is None:
                continue
            points.append(PricePoint(timestamp=int(ts) * 1000, price=price))
        return sorted(points, key=lambda p: p.timestamp)

    def get_history(self, symbol: str, days: HistoryRange) -> list[PricePoint]:
        """Fetch candle closes: hourly for ranges up to a week, daily beyond."""
        return self._guard(f"candles {symbol}", [], self._fetch_candles, symbol, days)
