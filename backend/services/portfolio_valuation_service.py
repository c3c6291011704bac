"""Portfolio valuation service: values holdings from the price cache.

Pure and synchronous: a summary is a function of (holdings, cache) only,
recomputed on every request and never stored.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Protocol

from integrations.market_data_protocol import AssetClass, PriceQuote
from schemas.holding import Holding
from services.symbol_resolver import canonical_symbol

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
UNCLASSIFIED_SECTOR = "Unclassified"
DEFAULT_COUNTRY = "Global"


class PriceSource(str, Enum):
    """Where a holding's effective price came from."""

    CACHE = "cache"
    STALE_CACHE = "stale_cache"
    MANUAL = "manual"
    COST_BASIS = "cost_basis"
    NONE = "none"


class PriceLookup(Protocol):
    def get(self, symbol: str, asset_class: AssetClass) -> Optional[PriceQuote]: ...

    def peek(self, symbol: str, asset_class: AssetClass) -> Optional[PriceQuote]: ...


@dataclass
class HoldingValuation:
    """A holding with its effective price and derived values."""

    holding: Holding
    current_price: Decimal
    current_value: Decimal
    cost_basis_total: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    change_24h: Optional[Decimal]
    change_percent_24h: Optional[Decimal]
    price_source: PriceSource


@dataclass
class PortfolioSummary:
    """Aggregate valuation of a set of holdings."""

    total_value: Decimal = ZERO
    total_cost_basis: Decimal = ZERO
    total_gain_loss: Decimal = ZERO
    total_gain_loss_percent: Decimal = ZERO
    day_change: Decimal = ZERO
    day_change_percent: Decimal = ZERO
    holdings_count: int = 0
    allocation_by_type: dict[str, Decimal] = field(default_factory=dict)
    allocation_by_sector: dict[str, Decimal] = field(default_factory=dict)
    allocation_by_country: dict[str, Decimal] = field(default_factory=dict)
    holdings: list[HoldingValuation] = field(default_factory=list)


def _percent_of(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO
    return part / whole * HUNDRED


def _to_percentages(buckets: dict[str, Decimal], total: Decimal) -> dict[str, Decimal]:
    return {key: _percent_of(value, total) for key, value in buckets.items()}


class PortfolioValuationService:
    """Values holdings and builds portfolio summaries."""

    def value_holding(
        self, holding: Holding, cache: PriceLookup, include_stale: bool = False
    ) -> HoldingValuation:
        """Value one holding.

        The effective price is the first available of: a fresh cached
        quote, (with ``include_stale``) a stale cached quote, the manual
        price, the cost basis, zero.
        """
        quote: Optional[PriceQuote] = None
        source = PriceSource.NONE
        symbol = canonical_symbol(holding.symbol, holding.asset_class)
        if symbol is not None and holding.asset_class.is_market_priced:
            quote = cache.get(symbol, holding.asset_class)
            if quote is not None:
                source = PriceSource.CACHE
            elif include_stale:
                quote = cache.peek(symbol, holding.asset_class)
                if quote is not None:
                    source = PriceSource.STALE_CACHE

        if quote is not None:
            price = quote.price
        elif holding.manual_price is not None:
            price, source = holding.manual_price, PriceSource.MANUAL
        elif holding.cost_basis is not None:
            price, source = holding.cost_basis, PriceSource.COST_BASIS
        else:
            price = ZERO

        quantity = holding.quantity
        current_value = price * quantity
        cost_basis_total = (holding.cost_basis or ZERO) * quantity
        gain_loss = current_value - cost_basis_total

        # Day change is only meaningful against a live quote
        live = source is PriceSource.CACHE
        return HoldingValuation(
            holding=holding,
            current_price=price,
            current_value=current_value,
            cost_basis_total=cost_basis_total,
            gain_loss=gain_loss,
            gain_loss_percent=_percent_of(gain_loss, cost_basis_total),
            change_24h=quote.change_24h if live else None,
            change_percent_24h=quote.change_percent_24h if live else None,
            price_source=source,
        )

    def summarize(
        self, holdings: Iterable[Holding], cache: PriceLookup, include_stale: bool = False
    ) -> PortfolioSummary:
        """Build the portfolio summary for ``holdings``.

        Allocations are percentages of total value; each dimension sums to
        100 when the total is positive and every bucket is 0 otherwise.
        """
        summary = PortfolioSummary()
        by_type: dict[str, Decimal] = {}
        by_sector: dict[str, Decimal] = {}
        by_country: dict[str, Decimal] = {}
        # Value of the day-change contributors as of the previous close
        previous_value = ZERO

        for holding in holdings:
            valuation = self.value_holding(holding, cache, include_stale=include_stale)
            summary.holdings.append(valuation)
            value = valuation.current_value

            summary.total_value += value
            summary.total_cost_basis += valuation.cost_basis_total
            if valuation.change_24h is not None:
                change = valuation.change_24h * holding.quantity
                summary.day_change += change
                previous_value += value - change

            type_key = holding.asset_class.value
            sector_key = holding.sector or UNCLASSIFIED_SECTOR
            country_key = holding.country or DEFAULT_COUNTRY
            by_type[type_key] = by_type.get(type_key, ZERO) + value
            by_sector[sector_key] = by_sector.get(sector_key, ZERO) + value
            by_country[country_key] = by_country.get(country_key, ZERO) + value

        summary.holdings_count = len(summary.holdings)
        summary.total_gain_loss = summary.total_value - summary.total_cost_basis
        summary.total_gain_loss_percent = _percent_of(
            summary.total_gain_loss, summary.total_cost_basis
        )
        summary.day_change_percent = _percent_of(summary.day_change, previous_value)
        summary.allocation_by_type = _to_percentages(by_type, summary.total_value)
        summary.allocation_by_sector = _to_percentages(by_sector, summary.total_value)
        summary.allocation_by_country = _to_percentages(by_country, summary.total_value)

        logger.debug(
            "Valued %d holdings: total=%s day_change=%s",
            summary.holdings_count, summary.total_value, summary.day_change,
        )
        return summary
