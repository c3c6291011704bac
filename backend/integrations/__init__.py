"""External price provider integrations.

This package contains:
- Market data protocol: asset classes, quotes and the provider interface
- HTTP provider base: shared retry, rate-limit and cooldown policy
- Finnhub client: primary equities quotes, search and candles
- Yahoo Finance client: equities fallback and futures charts
- CoinGecko client: crypto quotes, coin search and history
- Metals client: precious metal spot prices
"""

from integrations.market_data_protocol import (
    AssetClass,
    MarketDataProvider,
    PricePoint,
    PriceQuote,
)

__all__ = [
    "AssetClass",
    "MarketDataProvider",
    "PricePoint",
    "PriceQuote",
]
