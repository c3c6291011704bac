"""Test fixtures and sample data."""
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

from integrations.market_data_protocol import AssetClass, PriceQuote
from schemas.holding import Holding
from services.price_cache import PriceCache
from tests.fixtures.mocks import DEFAULT_NOW, FakeClock


def make_quote(
    symbol: str,
    price: str,
    asset_class: AssetClass = AssetClass.STOCK,
    change: Optional[str] = None,
    fetched_at: datetime = DEFAULT_NOW,
    currency: str = "USD",
    source: str = "mock",
) -> PriceQuote:
    """Build a PriceQuote from string amounts."""
    return PriceQuote(
        symbol=symbol,
        asset_class=asset_class,
        price=Decimal(price),
        change_24h=Decimal(change) if change is not None else None,
        change_percent_24h=None,
        currency=currency,
        source=source,
        fetched_at=fetched_at,
    )


def make_holding(
    symbol: Optional[str],
    asset_class: AssetClass = AssetClass.STOCK,
    quantity: str = "1",
    cost_basis: Optional[str] = None,
    manual_price: Optional[str] = None,
    **extra,
) -> Holding:
    """Build a Holding from string amounts."""
    return Holding(
        symbol=symbol,
        asset_class=asset_class,
        name=extra.pop("name", symbol or asset_class.value),
        quantity=Decimal(quantity),
        cost_basis=Decimal(cost_basis) if cost_basis is not None else None,
        manual_price=Decimal(manual_price) if manual_price is not None else None,
        **extra,
    )


@pytest.fixture
def clock():
    """A FakeClock pinned at DEFAULT_NOW."""
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    """A memory-only PriceCache driven by the fake clock."""
    return PriceCache(store=None, clock=clock)
