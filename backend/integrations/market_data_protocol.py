"""Market data provider protocol definitions.

Defines the asset-class vocabulary, the immutable value objects produced
by price providers, and the interface every provider client implements.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol, Union


class AssetClass(str, Enum):
    """Category of a holding; decides which provider and TTL apply."""

    STOCK = "stock"
    ETF = "etf"
    MUTUAL_FUND = "mutual_fund"
    CRYPTO = "crypto"
    COMMODITY_GOLD = "commodity_gold"
    COMMODITY_SILVER = "commodity_silver"
    COMMODITY_PLATINUM = "commodity_platinum"
    FIXED_INCOME_BOND = "fixed_income_bond"
    FIXED_INCOME_CD = "fixed_income_cd"
    REAL_ESTATE = "real_estate"
    CASH = "cash"
    OTHER = "other"

    @property
    def is_equity_like(self) -> bool:
        return self in EQUITY_CLASSES

    @property
    def is_metal(self) -> bool:
        return self in METAL_CLASSES

    @property
    def is_market_priced(self) -> bool:
        """True for classes that have an external price feed."""
        return self.is_equity_like or self.is_metal or self is AssetClass.CRYPTO


EQUITY_CLASSES = frozenset({AssetClass.STOCK, AssetClass.ETF, AssetClass.MUTUAL_FUND})
METAL_CLASSES = frozenset({
    AssetClass.COMMODITY_GOLD,
    AssetClass.COMMODITY_SILVER,
    AssetClass.COMMODITY_PLATINUM,
})

# Days of history to request: a positive count or "max".
HistoryRange = Union[int, str]


@dataclass(frozen=True)
class PriceQuote:
    """A current price for one symbol, as returned by a provider.

    Immutable: a fresh quote is produced on every successful fetch and
    cache writes replace entries rather than mutating them.
    """

    symbol: str
    asset_class: AssetClass
    price: Decimal
    change_24h: Optional[Decimal]
    change_percent_24h: Optional[Decimal]
    currency: str
    source: str  # e.g., "finnhub", "yahoo", "coingecko", "metals_api"
    fetched_at: datetime


@dataclass(frozen=True)
class PricePoint:
    """A single point of a price history series."""

    timestamp: int  # Unix epoch milliseconds
    price: Decimal


class MarketDataProvider(Protocol):
    """Protocol for price providers.

    Implementations fetch quotes and history from an external source and
    never raise for provider-side failures: anything unusable is reported
    as ``None``, an empty dict or an empty list.
    """

    @property
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'finnhub')."""
        ...

    def get_quote(self, symbol: str) -> Optional[PriceQuote]:
        """Fetch the current quote for a provider-specific symbol."""
        ...

    def get_quotes_batch(self, symbols: list[str]) -> dict[str, PriceQuote]:
        """Fetch quotes for several symbols.

        Returns:
            Dict keyed by the requested symbol. Symbols with no data are
            omitted.
        """
        ...

    def get_history(self, symbol: str, days: HistoryRange) -> list[PricePoint]:
        """Fetch a price series covering the last ``days`` days (or "max")."""
        ...
