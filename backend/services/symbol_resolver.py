"""Symbol resolution: user-entered tickers to provider identifiers.

Three paths, chosen by asset class:

- Equities (stock / ETF / mutual fund): search the primary provider,
  keep results whose free-text type matches the expected class, then
  prefer an exact ticker match; a single surviving candidate is also
  accepted. Anything else is ``SymbolNotFoundError``.
- Crypto: static ticker -> coin-id table for the top assets, then a
  provider search taking the first exact ticker match.
- Metals: the asset class alone decides the symbol; cannot fail.

Dynamic resolutions are kept in bounded LRU maps for the lifetime of
the resolver and never persisted. A failed search propagates the
provider error rather than reporting the symbol as unknown.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from integrations.coingecko_client import KNOWN_COIN_IDS
from integrations.exceptions import SymbolNotFoundError
from integrations.market_data_protocol import AssetClass
from utils.bounded_cache import BoundedLRUCache

logger = logging.getLogger(__name__)

METAL_SYMBOLS: dict[AssetClass, str] = {
    AssetClass.COMMODITY_GOLD: "XAU",
    AssetClass.COMMODITY_SILVER: "XAG",
    AssetClass.COMMODITY_PLATINUM: "XPT",
}

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


class EquitySearch(Protocol):
    def search_symbols(self, query: str) -> list[dict]: ...


class CryptoSearch(Protocol):
    def search_coins(self, query: str) -> list[dict]: ...


@dataclass(frozen=True)
class SymbolResolution:
    """A user-facing symbol mapped to the identifier a provider expects."""

    symbol: str
    asset_class: AssetClass
    provider_id: str
    description: Optional[str] = None


def infer_asset_class(type_str: Optional[str]) -> AssetClass:
    """Infer an equity-like class from a provider's free-text security type.

    Unclassified types default to ``STOCK``.
    """
    lowered = (type_str or "").lower()
    if "etf" in lowered:
        return AssetClass.ETF
    if "mutual fund" in lowered:
        return AssetClass.MUTUAL_FUND
    return AssetClass.STOCK


def normalize_ticker(symbol: Optional[str]) -> str:
    """Upper-case and strip punctuation so ``brk.b`` matches ``BRK-B``."""
    return _NON_ALNUM.sub("", (symbol or "").upper())


def canonical_symbol(symbol: Optional[str], asset_class: AssetClass) -> Optional[str]:
    """Return the cache-key symbol for a holding, or None if it has none."""
    metal_symbol = METAL_SYMBOLS.get(asset_class)
    if metal_symbol:
        return metal_symbol
    if not symbol or not symbol.strip():
        return None
    return symbol.strip().upper()


class SymbolResolver:
    """Resolves and validates symbols against the price providers."""

    def __init__(
        self,
        equity_search: Optional[EquitySearch] = None,
        crypto_search: Optional[CryptoSearch] = None,
        cache_size: int = 512,
    ):
        self._equity_search = equity_search
        self._crypto_search = crypto_search
        self._equity_cache: BoundedLRUCache[tuple[AssetClass, str], SymbolResolution] = (
            BoundedLRUCache(cache_size)
        )
        self._coin_id_cache: BoundedLRUCache[str, str] = BoundedLRUCache(cache_size)

    def resolve(self, symbol: Optional[str], asset_class: AssetClass) -> SymbolResolution:
        """Resolve a symbol along the path its asset class dictates.

        Raises:
            SymbolNotFoundError: the symbol cannot be resolved, or the asset
                class has no external price source.
            ProviderError: the symbol search could not be completed; the
                symbol may still be valid.
        """
        if asset_class.is_metal:
            return self.resolve_metal(asset_class)
        if asset_class is AssetClass.CRYPTO:
            return self.resolve_crypto(symbol or "")
        if asset_class.is_equity_like:
            return self.resolve_equity(symbol or "", asset_class)
        raise SymbolNotFoundError(symbol or "", asset_class.value)

    def resolve_metal(self, asset_class: AssetClass) -> SymbolResolution:
        metal_symbol = METAL_SYMBOLS[asset_class]
        return SymbolResolution(
            symbol=metal_symbol, asset_class=asset_class, provider_id=metal_symbol
        )

    def coin_id_for(self, symbol: str) -> Optional[str]:
        """Return the known coin id for a ticker without any network call."""
        normalized = symbol.strip().upper()
        return KNOWN_COIN_IDS.get(normalized) or self._coin_id_cache.get(normalized)

    def resolve_crypto(self, symbol: str) -> SymbolResolution:
        """Resolve a crypto ticker to its CoinGecko coin id."""
        normalized = symbol.strip().upper()
        if not normalized:
            raise SymbolNotFoundError(symbol, AssetClass.CRYPTO.value, "coingecko")

        coin_id = self.coin_id_for(normalized)
        if coin_id is None:
            results = self._crypto_search.search_coins(normalized) if self._crypto_search else []
            exact = next(
                (
                    coin for coin in results
                    if str(coin.get("symbol", "")).upper() == normalized and coin.get("id")
                ),
                None,
            )
            if exact is None:
                logger.warning("CoinGecko: no matching coin for symbol %s", normalized)
                raise SymbolNotFoundError(normalized, AssetClass.CRYPTO.value, "coingecko")
            coin_id = str(exact["id"])
            self._coin_id_cache.put(normalized, coin_id)
            logger.info("CoinGecko: resolved %s -> %s", normalized, coin_id)

        return SymbolResolution(
            symbol=normalized, asset_class=AssetClass.CRYPTO, provider_id=coin_id
        )

    def resolve_equity(self, symbol: str, expected_class: AssetClass) -> SymbolResolution:
        """Validate an equity-like ticker against the provider's symbol search."""
        normalized = symbol.strip().upper()
        if not normalized or not expected_class.is_equity_like:
            raise SymbolNotFoundError(symbol, expected_class.value, "finnhub")

        key = (expected_class, normalized)
        cached = self._equity_cache.get(key)
        if cached is not None:
            return cached

        rows = self._equity_search.search_symbols(normalized) if self._equity_search else []
        candidates = [
            row for row in rows
            if infer_asset_class(row.get("type")) is expected_class
        ]

        target = normalize_ticker(normalized)
        exact = [
            row for row in candidates
            if target in (
                normalize_ticker(row.get("symbol")),
                normalize_ticker(row.get("displaySymbol")),
            )
        ]
        if exact:
            chosen = exact[0]
        elif len(candidates) == 1:
            chosen = candidates[0]
        else:
            logger.info(
                "Symbol %s not resolved as %s (%d candidates)",
                normalized, expected_class.value, len(candidates),
            )
            raise SymbolNotFoundError(normalized, expected_class.value, "finnhub")

        provider_id = str(chosen.get("symbol") or chosen.get("displaySymbol") or normalized)
        resolution = SymbolResolution(
            symbol=str(chosen.get("displaySymbol") or provider_id).upper(),
            asset_class=expected_class,
            provider_id=provider_id,
            description=chosen.get("description") or None,
        )
        self._equity_cache.put(key, resolution)
        return resolution

    def clear(self) -> None:
        """Drop all dynamically obtained resolutions."""
        self._equity_cache.clear()
        self._coin_id_cache.clear()
