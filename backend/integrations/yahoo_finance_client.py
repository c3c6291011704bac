"""Yahoo Finance market data provider implementation.

Chart-based fallback for equities when the primary provider has no data,
and the history source for precious-metal futures. Quotes are rebuilt
from the latest closes of a short daily chart.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from integrations.exceptions import NoDataError
from integrations.http_provider import ProviderClientBase
from integrations.market_data_protocol import AssetClass, HistoryRange, PricePoint, PriceQuote
from integrations.parsing_utils import to_decimal, utc_now

logger = logging.getLogger(__name__)

_PERCENT_PLACES = Decimal("0.000001")


def days_to_yahoo_params(days: HistoryRange) -> tuple[str, str]:
    """Map a history range in days to Yahoo ``(period, interval)``."""
    if days == "max":
        return "5y", "1mo"
    days = int(days)
    if days <= 1:
        return "1d", "5m"
    if days <= 7:
        return "5d", "15m"
    if days <= 30:
        return "1mo", "1d"
    if days <= 90:
        return "3mo", "1d"
    if days <= 365:
        return "1y", "1wk"
    return "5y", "1mo"


class YahooFinanceClient(ProviderClientBase):
    """Market data provider using Yahoo Finance (yfinance library).

    Handles equities, ETFs and funds as a fallback source, plus futures
    charts for metals history. Crypto is routed to CoinGecko by the
    PriceService.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now, **policy):
        super().__init__(**policy)
        self._clock = clock

    @property
    def provider_name(self) -> str:
        return "yahoo"

    def _status_of(self, exc: Exception) -> Optional[int]:
        if isinstance(exc, YFRateLimitError):
            return 429
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
        if isinstance(status, int):
            return status
        return super()._status_of(exc)

    def _quote_from_closes(self, symbol: str, closes) -> PriceQuote:
        """Reshape the tail of a daily close series into a quote."""
        closes = closes.dropna()
        if closes.empty:
            raise NoDataError(f"yahoo: no closes for {symbol}", "yahoo")

        latest = to_decimal(closes.iloc[-1])
        if latest is None or latest <= 0:
            raise NoDataError(f"yahoo: non-positive price for {symbol}", "yahoo")

        previous = to_decimal(closes.iloc[-2]) if len(closes) > 1 else None
        if previous is None or previous <= 0:
            previous = latest

        change = latest - previous
        change_percent = (change / previous * 100).quantize(_PERCENT_PLACES)
        return PriceQuote(
            symbol=symbol,
            asset_class=AssetClass.STOCK,
            price=latest,
            change_24h=change,
            change_percent_24h=change_percent,
            currency="USD",
            source="yahoo",
            fetched_at=self._clock(),
        )

    def _fetch_quote(self, symbol: str) -> PriceQuote:
        normalized = symbol.strip().upper()
        if not normalized:
            raise NoDataError("yahoo: empty symbol", "yahoo")
        df = self._call(
            "chart",
            lambda: yf.Ticker(normalized).history(period="5d", interval="1d", auto_adjust=False),
        )
        if df is None or df.empty or "Close" not in df.columns:
            raise NoDataError(f"yahoo: no chart for {normalized}", "yahoo")
        return self._quote_from_closes(normalized, df["Close"])

    def get_quote(self, symbol: str) -> Optional[PriceQuote]:
        """Fetch a near-real-time quote from the daily chart."""
        return self._guard(f"quote {symbol}", None, self._fetch_quote, symbol)

    def _download(self, symbols: list[str]):
        return self._call(
            "download",
            lambda: yf.download(
                tickers=symbols,
                period="5d",
                interval="1d",
                auto_adjust=False,
                progress=False,
            ),
        )

    def get_quotes_batch(self, symbols: list[str]) -> dict[str, PriceQuote]:
        """Fetch quotes for several tickers with one ``yf.download`` call."""
        normalized = [s.strip().upper() for s in symbols if s and s.strip()]
        if not normalized:
            return {}

        df = self._guard(f"download {normalized}", None, self._download, normalized)
        if df is None or df.empty:
            return {}

        results: dict[str, PriceQuote] = {}
        for symbol in normalized:
            if ("Close", symbol) in df.columns:
                # MultiIndex columns: (metric, symbol)
                closes = df[("Close", symbol)]
            elif len(normalized) == 1 and "Close" in df.columns:
                closes = df["Close"]
            else:
                continue
            quote = self._guard(f"quote {symbol}", None, self._quote_from_closes, symbol, closes)
            if quote is not None:
                results[symbol] = quote

        logger.info("Yahoo Finance: %d/%d quotes fetched", len(results), len(normalized))
        return results

    def _fetch_chart(self, symbol: str, days: HistoryRange) -> list[PricePoint]:
        normalized = symbol.strip().upper()
        period, interval = days_to_yahoo_params(days)
        df = self._call(
            "chart",
            lambda: yf.Ticker(normalized).history(period=period, interval=interval),
        )
        if df is None or df.empty or "Close" not in df.columns:
            raise NoDataError(f"yahoo: no chart for {normalized}", "yahoo")

        points = []
        for ts, close in df["Close"].items():
            price = to_decimal(close)
            if price is None:
                continue
            points.append(PricePoint(timestamp=int(ts.timestamp() * 1000), price=price))
        return sorted(points, key=lambda p: p.timestamp)

    def get_history(self, symbol: str, days: HistoryRange) -> list[PricePoint]:
        """Fetch chart closes for the Yahoo range matching ``days``."""
        return self._guard(f"chart {symbol}", [], self._fetch_chart, symbol, days)
