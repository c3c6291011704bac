"""Precious metals price provider (GoldPriceZ spot rates).

Free, keyless, roughly 30-60 requests/hour; the one-hour metals TTL keeps
usage well inside that budget. The feed has no 24h change, so quotes
carry nulls there. History is served from the matching futures chart.
"""

import json
import logging
from datetime import datetime
from typing import Callable, Optional

from integrations.exceptions import NoDataError, ProviderDataError
from integrations.http_provider import HTTPProviderClient
from integrations.market_data_protocol import (
    AssetClass,
    HistoryRange,
    MarketDataProvider,
    PricePoint,
    PriceQuote,
)
from integrations.parsing_utils import to_decimal, utc_now

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://goldpricez.com/api/rates/currency/usd/measure/ounce"

# Spot symbol -> field name in the GoldPriceZ payload
METAL_FIELDS: dict[str, str] = {
    "XAU": "gold",
    "XAG": "silver",
    "XPT": "platinum",
    "XPD": "palladium",
}

# Spot symbol -> futures symbol used for history charts
METAL_FUTURES_SYMBOLS: dict[str, str] = {
    "XAU": "GC=F",
    "XAG": "SI=F",
    "XPT": "PL=F",
    "XPD": "PA=F",
}

_ASSET_CLASS_BY_SYMBOL: dict[str, AssetClass] = {
    "XAU": AssetClass.COMMODITY_GOLD,
    "XAG": AssetClass.COMMODITY_SILVER,
    "XPT": AssetClass.COMMODITY_PLATINUM,
}


class MetalsClient(HTTPProviderClient):
    """Spot prices per troy ounce in USD."""

    def __init__(
        self,
        url: str = DEFAULT_URL,
        chart_provider: Optional[MarketDataProvider] = None,
        timeout: float = 15.0,
        clock: Callable[[], datetime] = utc_now,
        **policy,
    ):
        """Initialize the client.

        Args:
            url: Full GoldPriceZ rates URL.
            chart_provider: Provider serving futures charts for history
                            (normally the YahooFinanceClient).
        """
        super().__init__(base_url="", timeout=timeout, **policy)
        self._url = url
        self._chart_provider = chart_provider
        self._clock = clock

    @property
    def provider_name(self) -> str:
        return "metals_api"

    def _fetch_rates(self) -> dict:
        data = self._get_json("rates", self._url)
        # The feed sometimes double-encodes its JSON body
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as exc:
                raise ProviderDataError("metals_api: undecodable rates payload", "metals_api") from exc
        if not isinstance(data, dict):
            raise ProviderDataError("metals_api: unexpected rates payload", "metals_api")
        return data

    def _fetch_quotes(self, symbols: list[str]) -> dict[str, PriceQuote]:
        rates = self._fetch_rates()
        fetched_at = self._clock()
        quotes: dict[str, PriceQuote] = {}
        for symbol in symbols:
            field = METAL_FIELDS.get(symbol)
            price = to_decimal(rates.get(field)) if field else None
            if price is None or price <= 0:
                continue
            quotes[symbol] = PriceQuote(
                symbol=symbol,
                asset_class=_ASSET_CLASS_BY_SYMBOL.get(symbol, AssetClass.OTHER),
                price=price,
                change_24h=None,
                change_percent_24h=None,
                currency="USD",
                source="metals_api",
                fetched_at=fetched_at,
            )
        if not quotes:
            raise NoDataError(f"metals_api: no rates for {symbols}", "metals_api")
        return quotes

    def get_quote(self, symbol: str) -> Optional[PriceQuote]:
        """Fetch the spot price for ``XAU``, ``XAG``, ``XPT`` or ``XPD``."""
        return self.get_quotes_batch([symbol]).get(symbol.upper())

    def get_quotes_batch(self, symbols: list[str]) -> dict[str, PriceQuote]:
        """All metals come from one rates payload, so a batch is one call."""
        wanted = [s.upper() for s in symbols if s and s.upper() in METAL_FIELDS]
        if not wanted:
            return {}
        return self._guard(f"rates {wanted}", {}, self._fetch_quotes, wanted)

    def get_history(self, symbol: str, days: HistoryRange) -> list[PricePoint]:
        """Fetch the futures chart matching a spot metal symbol."""
        futures_symbol = METAL_FUTURES_SYMBOLS.get(symbol.upper())
        if futures_symbol is None or self._chart_provider is None:
            return []
        return self._chart_provider.get_history(futures_symbol, days)
