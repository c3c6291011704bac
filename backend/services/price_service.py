"""Price service: the aggregation engine between holdings and providers.

Groups holdings by asset class, resolves symbols, walks an ordered
provider chain per class and writes every quote through the PriceCache.
Provider failures never escape: anything unfetched is simply absent from
the result and valuation falls back to the next price source.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from functools import partial
from typing import Any, Callable, Hashable, Iterable, Optional

from config import settings
from integrations.exceptions import ProviderError, SymbolNotFoundError
from integrations.http_provider import EndpointCircuitBreaker
from integrations.market_data_protocol import (
    AssetClass,
    HistoryRange,
    MarketDataProvider,
    PricePoint,
    PriceQuote,
)
from schemas.holding import Holding
from services.history_cache import HistoryCache
from services.portfolio_valuation_service import PortfolioSummary, PortfolioValuationService
from services.price_cache import CacheKey, PriceCache, build_ttl_table
from services.symbol_resolver import (
    METAL_SYMBOLS,
    SymbolResolution,
    SymbolResolver,
    canonical_symbol,
)

logger = logging.getLogger(__name__)

PriceKey = tuple[str, AssetClass]

# Upper bound on how long a refresh blocks before re-checking cancellation.
_POLL_INTERVAL_SECONDS = 0.25
_MIN_HISTORY_POINTS = 2


def _client_policy() -> dict[str, Any]:
    """Retry and cooldown settings for one provider client."""
    return {
        "max_retries": settings.RATE_LIMIT_MAX_RETRIES,
        "base_delay_seconds": settings.RATE_LIMIT_BASE_DELAY_SECONDS,
        "breaker": EndpointCircuitBreaker(settings.FORBIDDEN_COOLDOWN_SECONDS),
    }


class PriceService:
    """Long-lived facade over the price providers and caches.

    Every collaborator can be injected; anything not provided is built
    from ``settings`` on first use.
    """

    def __init__(
        self,
        cache: Optional[PriceCache] = None,
        history_cache: Optional[HistoryCache] = None,
        resolver: Optional[SymbolResolver] = None,
        equity_provider: Optional[MarketDataProvider] = None,
        fallback_equity_provider: Optional[MarketDataProvider] = None,
        crypto_provider: Optional[MarketDataProvider] = None,
        metals_provider: Optional[MarketDataProvider] = None,
        valuation_service: Optional[PortfolioValuationService] = None,
        batch_size: Optional[int] = None,
        batch_pause_seconds: Optional[float] = None,
        max_workers: Optional[int] = None,
        refresh_timeout_seconds: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._cache = cache
        self._history_cache = history_cache
        self._resolver = resolver
        self._equity_provider = equity_provider
        self._fallback_equity_provider = fallback_equity_provider
        self._crypto_provider = crypto_provider
        self._metals_provider = metals_provider
        self._valuation_service = valuation_service
        self._batch_size = batch_size if batch_size is not None else settings.EQUITY_BATCH_SIZE
        self._batch_pause_seconds = (
            batch_pause_seconds
            if batch_pause_seconds is not None
            else settings.EQUITY_BATCH_PAUSE_SECONDS
        )
        self._max_workers = max_workers if max_workers is not None else settings.PRICE_FETCH_MAX_WORKERS
        self._refresh_timeout_seconds = (
            refresh_timeout_seconds
            if refresh_timeout_seconds is not None
            else settings.PRICE_REFRESH_TIMEOUT_SECONDS
        )
        self._monotonic = monotonic
        self._holdings: list[Holding] = []
        self._init_lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._active_refresh: Optional[threading.Event] = None

    # -- collaborators -------------------------------------------------
    # Built lazily and at most once; refresh workers may race to first use.

    @property
    def cache(self) -> PriceCache:
        """Get the price cache, creating a durable one if not provided."""
        if self._cache is None:
            with self._init_lock:
                if self._cache is None:
                    from services.price_cache_store import PriceCacheStore

                    self._cache = PriceCache(
                        store=PriceCacheStore(),
                        ttls=build_ttl_table(
                            settings.PRICE_TTL_DEFAULT_SECONDS,
                            settings.PRICE_TTL_CRYPTO_SECONDS,
                            settings.PRICE_TTL_METALS_SECONDS,
                        ),
                        default_ttl=settings.PRICE_TTL_DEFAULT_SECONDS,
                    )
        return self._cache

    @property
    def history_cache(self) -> HistoryCache:
        if self._history_cache is None:
            with self._init_lock:
                if self._history_cache is None:
                    self._history_cache = HistoryCache(ttl_seconds=settings.HISTORY_TTL_SECONDS)
        return self._history_cache

    @property
    def equity_provider(self) -> MarketDataProvider:
        """Get the primary equities provider, creating if not provided."""
        if self._equity_provider is None:
            with self._init_lock:
                if self._equity_provider is None:
                    from integrations.finnhub_client import FinnhubClient

                    self._equity_provider = FinnhubClient(
                        api_key=settings.FINNHUB_API_KEY,
                        base_url=settings.FINNHUB_BASE_URL,
                        timeout=settings.HTTP_TIMEOUT_SECONDS,
                        max_workers=settings.PRICE_FETCH_MAX_WORKERS,
                        **_client_policy(),
                    )
        return self._equity_provider

    @property
    def fallback_equity_provider(self) -> MarketDataProvider:
        """Get the chart-based equities fallback, creating if not provided."""
        if self._fallback_equity_provider is None:
            with self._init_lock:
                if self._fallback_equity_provider is None:
                    from integrations.yahoo_finance_client import YahooFinanceClient

                    self._fallback_equity_provider = YahooFinanceClient(**_client_policy())
        return self._fallback_equity_provider

    @property
    def crypto_provider(self) -> MarketDataProvider:
        """Get the crypto provider, creating if not provided."""
        if self._crypto_provider is None:
            with self._init_lock:
                if self._crypto_provider is None:
                    from integrations.coingecko_client import CoinGeckoClient

                    self._crypto_provider = CoinGeckoClient(
                        api_key=settings.COINGECKO_API_KEY or None,
                        base_url=settings.COINGECKO_BASE_URL,
                        timeout=settings.HTTP_TIMEOUT_SECONDS,
                        **_client_policy(),
                    )
        return self._crypto_provider

    @property
    def metals_provider(self) -> MarketDataProvider:
        """Get the metals provider, creating if not provided.

        History for metals is served from futures charts, so the default
        client is wired to the equities fallback provider.
        """
        if self._metals_provider is None:
            with self._init_lock:
                if self._metals_provider is None:
                    from integrations.metals_client import MetalsClient

                    self._metals_provider = MetalsClient(
                        url=settings.METALS_API_URL,
                        chart_provider=self.fallback_equity_provider,
                        timeout=settings.HTTP_TIMEOUT_SECONDS,
                        **_client_policy(),
                    )
        return self._metals_provider

    @property
    def resolver(self) -> SymbolResolver:
        if self._resolver is None:
            with self._init_lock:
                if self._resolver is None:
                    equity = self.equity_provider
                    crypto = self.crypto_provider
                    self._resolver = SymbolResolver(
                        equity_search=equity if hasattr(equity, "search_symbols") else None,
                        crypto_search=crypto if hasattr(crypto, "search_coins") else None,
                        cache_size=settings.RESOLUTION_CACHE_SIZE,
                    )
        return self._resolver

    @property
    def valuation_service(self) -> PortfolioValuationService:
        if self._valuation_service is None:
            with self._init_lock:
                if self._valuation_service is None:
                    self._valuation_service = PortfolioValuationService()
        return self._valuation_service

    def quote_chain(self, asset_class: AssetClass) -> list[MarketDataProvider]:
        """Ordered quote providers for an asset class; empty if unpriced."""
        if asset_class.is_equity_like:
            return [self.equity_provider, self.fallback_equity_provider]
        if asset_class is AssetClass.CRYPTO:
            return [self.crypto_provider]
        if asset_class.is_metal:
            return [self.metals_provider]
        return []

    def history_chain(self, asset_class: AssetClass) -> list[MarketDataProvider]:
        """Ordered history providers for an asset class; empty if unpriced."""
        return self.quote_chain(asset_class)

    # -- helpers -------------------------------------------------------

    def _provider_symbol(self, symbol: str, asset_class: AssetClass) -> str:
        """Translate a canonical symbol into the identifier providers expect.

        Raises:
            SymbolNotFoundError: a crypto ticker has no known coin id.
            ProviderError: the coin search could not be completed.
        """
        if asset_class is AssetClass.CRYPTO:
            return self.resolver.resolve_crypto(symbol).provider_id
        return symbol

    def _resolve_coin_id(self, symbol: str) -> Optional[str]:
        try:
            return self.resolver.resolve_crypto(symbol).provider_id
        except SymbolNotFoundError as e:
            logger.info("Skipping crypto price for %s: %s", symbol, e)
            return None
        except ProviderError as e:
            logger.warning("Skipping crypto price for %s, coin search failed: %s", symbol, e)
            return None

    def _record(
        self,
        results: dict[PriceKey, PriceQuote],
        symbol: str,
        asset_class: AssetClass,
        quote: PriceQuote,
    ) -> PriceQuote:
        """Tag a provider quote with the holding's key and write it through."""
        tagged = replace(quote, symbol=symbol, asset_class=asset_class)
        self.cache.put(tagged)
        results[(symbol, asset_class)] = tagged
        return tagged

    @staticmethod
    def _call_provider(description: str, default: Any, func: Callable, *args: Any) -> Any:
        try:
            return func(*args)
        except Exception:
            logger.warning("Price provider call failed: %s", description, exc_info=True)
            return default

    def _await_all(
        self,
        executor: ThreadPoolExecutor,
        calls: dict[Hashable, Callable[[], Any]],
        deadline: float,
        cancel: threading.Event,
    ) -> dict[Hashable, Any]:
        """Run calls concurrently until done, the deadline, or cancellation.

        Calls still pending when the wait ends count as "no data".
        """
        futures = {executor.submit(func): key for key, func in calls.items()}
        pending = set(futures)
        while pending:
            remaining = deadline - self._monotonic()
            if remaining <= 0 or cancel.is_set():
                break
            _, pending = wait(pending, timeout=min(remaining, _POLL_INTERVAL_SECONDS))

        if pending:
            reason = "cancelled" if cancel.is_set() else "timed out"
            logger.warning("Abandoning %d pending price fetches (%s)", len(pending), reason)
            for future in pending:
                future.cancel()

        results: dict[Hashable, Any] = {}
        for future, key in futures.items():
            if not future.done() or future.cancelled():
                continue
            error = future.exception()
            if error is not None:
                logger.warning("Price fetch for %s failed: %s", key, error, exc_info=error)
                continue
            results[key] = future.result()
        return results

    def _stopped(self, cancel: threading.Event, deadline: float) -> bool:
        return cancel.is_set() or self._monotonic() >= deadline

    def _begin_refresh(self) -> threading.Event:
        event = threading.Event()
        with self._refresh_lock:
            if self._active_refresh is not None:
                logger.info("Superseding in-flight price refresh")
                self._active_refresh.set()
            self._active_refresh = event
        return event

    def _end_refresh(self, event: threading.Event) -> None:
        with self._refresh_lock:
            if self._active_refresh is event:
                self._active_refresh = None

    @staticmethod
    def _group(
        holdings: Iterable[Holding],
    ) -> tuple[list[PriceKey], list[str], list[AssetClass]]:
        """Split holdings into unique equity keys, crypto symbols and metal classes."""
        equity_keys: dict[PriceKey, None] = {}
        crypto_symbols: dict[str, None] = {}
        metal_classes: dict[AssetClass, None] = {}
        for holding in holdings:
            asset_class = holding.asset_class
            symbol = canonical_symbol(holding.symbol, asset_class)
            if symbol is None:
                continue
            if asset_class.is_equity_like:
                equity_keys[(symbol, asset_class)] = None
            elif asset_class is AssetClass.CRYPTO:
                crypto_symbols[symbol] = None
            elif asset_class.is_metal:
                metal_classes[asset_class] = None
        return list(equity_keys), list(crypto_symbols), list(metal_classes)

    # -- refresh -------------------------------------------------------

    def refresh_prices(self, holdings: Iterable[Holding]) -> dict[PriceKey, PriceQuote]:
        """Fetch current quotes for every market-priced holding.

        The holdings also become the current portfolio used by
        :meth:`get_summary`. A refresh started while another is running
        cancels the older one, which returns whatever it had so far.

        Returns:
            Dict keyed by ``(canonical symbol, asset class)``. Symbols that
            could not be resolved or fetched are omitted.
        """
        holdings = list(holdings)
        self._holdings = holdings
        equity_keys, crypto_symbols, metal_classes = self._group(holdings)
        requested = len(equity_keys) + len(crypto_symbols) + len(metal_classes)

        results: dict[PriceKey, PriceQuote] = {}
        if requested == 0:
            return results

        cancel = self._begin_refresh()
        deadline = self._monotonic() + self._refresh_timeout_seconds
        executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="price-refresh"
        )
        try:
            if equity_keys:
                self._refresh_equities(executor, equity_keys, results, deadline, cancel)
            if crypto_symbols and not self._stopped(cancel, deadline):
                self._refresh_crypto(executor, crypto_symbols, results, deadline, cancel)
            if metal_classes and not self._stopped(cancel, deadline):
                self._refresh_metals(executor, metal_classes, results, deadline, cancel)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            self._end_refresh(cancel)

        logger.info(
            "Price refresh: %d/%d quotes%s",
            len(results), requested, " (cancelled)" if cancel.is_set() else "",
        )
        return results

    def _refresh_equities(
        self,
        executor: ThreadPoolExecutor,
        keys: list[PriceKey],
        results: dict[PriceKey, PriceQuote],
        deadline: float,
        cancel: threading.Event,
    ) -> None:
        symbols = list(dict.fromkeys(symbol for symbol, _ in keys))
        primary, *fallbacks = self.quote_chain(AssetClass.STOCK)
        found: dict[str, PriceQuote] = {}
        attempted: list[str] = []

        for start in range(0, len(symbols), self._batch_size):
            if start and cancel.wait(self._batch_pause_seconds):
                break
            if self._stopped(cancel, deadline):
                break
            batch = symbols[start:start + self._batch_size]
            attempted.extend(batch)
            fetched = self._await_all(
                executor,
                {symbol: partial(primary.get_quote, symbol) for symbol in batch},
                deadline,
                cancel,
            )
            found.update({s: q for s, q in fetched.items() if q is not None})

        missing = [s for s in attempted if s not in found]
        for provider in fallbacks:
            if not missing or self._stopped(cancel, deadline):
                break
            logger.info(
                "Retrying %d equities via %s: %s", len(missing), provider.provider_name, missing
            )
            fetched = self._await_all(
                executor,
                {"batch": partial(provider.get_quotes_batch, missing)},
                deadline,
                cancel,
            ).get("batch") or {}
            found.update({s: q for s, q in fetched.items() if s in missing and q is not None})
            missing = [s for s in missing if s not in found]

        for symbol, asset_class in keys:
            if symbol in found:
                self._record(results, symbol, asset_class, found[symbol])

    def _refresh_crypto(
        self,
        executor: ThreadPoolExecutor,
        symbols: list[str],
        results: dict[PriceKey, PriceQuote],
        deadline: float,
        cancel: threading.Event,
    ) -> None:
        resolved = self._await_all(
            executor,
            {symbol: partial(self._resolve_coin_id, symbol) for symbol in symbols},
            deadline,
            cancel,
        )
        coin_ids = {symbol: coin_id for symbol, coin_id in resolved.items() if coin_id}
        unique_ids = list(dict.fromkeys(coin_ids.values()))

        quotes: dict[str, PriceQuote] = {}
        for provider in self.quote_chain(AssetClass.CRYPTO):
            missing = [coin_id for coin_id in unique_ids if coin_id not in quotes]
            if not missing or self._stopped(cancel, deadline):
                break
            fetched = self._await_all(
                executor,
                {"batch": partial(provider.get_quotes_batch, missing)},
                deadline,
                cancel,
            ).get("batch") or {}
            quotes.update({k: q for k, q in fetched.items() if q is not None})

        # Several tickers may share one coin id (e.g. MATIC and POL)
        for symbol, coin_id in coin_ids.items():
            if coin_id in quotes:
                self._record(results, symbol, AssetClass.CRYPTO, quotes[coin_id])

    def _refresh_metals(
        self,
        executor: ThreadPoolExecutor,
        metal_classes: list[AssetClass],
        results: dict[PriceKey, PriceQuote],
        deadline: float,
        cancel: threading.Event,
    ) -> None:
        fetched = self._await_all(
            executor,
            {
                asset_class: partial(self._quote_from_chain, METAL_SYMBOLS[asset_class], asset_class)
                for asset_class in metal_classes
            },
            deadline,
            cancel,
        )
        for asset_class, quote in fetched.items():
            if quote is not None:
                self._record(results, METAL_SYMBOLS[asset_class], asset_class, quote)

    def _quote_from_chain(self, provider_symbol: str, asset_class: AssetClass) -> Optional[PriceQuote]:
        for provider in self.quote_chain(asset_class):
            quote = self._call_provider(
                f"{provider.provider_name} quote {provider_symbol}",
                None,
                provider.get_quote,
                provider_symbol,
            )
            if quote is not None:
                return quote
        return None

    def cancel_refresh(self) -> bool:
        """Cancel the in-flight refresh, if any. Returns True if one was running."""
        with self._refresh_lock:
            event, self._active_refresh = self._active_refresh, None
        if event is None:
            return False
        event.set()
        logger.info("Price refresh cancelled")
        return True

    # -- single-asset operations ---------------------------------------

    def fetch_price(self, symbol: Optional[str], asset_class: AssetClass) -> Optional[PriceQuote]:
        """Return a fresh cached quote, or fetch one through the provider chain."""
        canonical = canonical_symbol(symbol, asset_class)
        if canonical is None or not asset_class.is_market_priced:
            return None

        cached = self.cache.get(canonical, asset_class)
        if cached is not None:
            return cached

        try:
            provider_symbol = self._provider_symbol(canonical, asset_class)
        except SymbolNotFoundError as e:
            logger.info("No price for %s: %s", canonical, e)
            return None
        except ProviderError as e:
            logger.warning("No price for %s, symbol lookup failed: %s", canonical, e)
            return None

        quote = self._quote_from_chain(provider_symbol, asset_class)
        if quote is None:
            return None
        return self._record({}, canonical, asset_class, quote)

    def fetch_history(
        self, symbol: Optional[str], asset_class: AssetClass, days: HistoryRange = 30
    ) -> list[PricePoint]:
        """Fetch a price series sorted by ascending timestamp.

        Returns an empty list when no provider in the chain yields at least
        two points; empty results are not cached.
        """
        canonical = canonical_symbol(symbol, asset_class)
        if canonical is None or not asset_class.is_market_priced:
            return []

        cached = self.history_cache.get(canonical, asset_class, days)
        if cached is not None:
            return cached

        try:
            provider_symbol = self._provider_symbol(canonical, asset_class)
        except SymbolNotFoundError as e:
            logger.info("No history for %s: %s", canonical, e)
            return []
        except ProviderError as e:
            logger.warning("No history for %s, symbol lookup failed: %s", canonical, e)
            return []

        for provider in self.history_chain(asset_class):
            points = self._call_provider(
                f"{provider.provider_name} history {provider_symbol}",
                [],
                provider.get_history,
                provider_symbol,
                days,
            )
            if len(points) >= _MIN_HISTORY_POINTS:
                points = sorted(points, key=lambda p: p.timestamp)
                self.history_cache.put(canonical, asset_class, days, points)
                return points
            logger.debug(
                "%s returned %d history points for %s", provider.provider_name, len(points), canonical
            )
        return []

    def validate_symbol(self, symbol: Optional[str], asset_class: AssetClass) -> SymbolResolution:
        """Validate a symbol for a new holding.

        Raises:
            SymbolNotFoundError: the symbol does not resolve for the class.
            ProviderError: the symbol search failed; the symbol may still
                be valid.
        """
        return self.resolver.resolve(symbol, asset_class)

    # -- cache and summary ---------------------------------------------

    def get_summary(
        self, holdings: Optional[Iterable[Holding]] = None, include_stale: bool = False
    ) -> PortfolioSummary:
        """Value holdings (default: the last refreshed set) from the cache."""
        current = list(holdings) if holdings is not None else list(self._holdings)
        return self.valuation_service.summarize(current, self.cache, include_stale=include_stale)

    def load_cached_prices(self) -> dict[CacheKey, PriceQuote]:
        """Cold-start load of the durable cache into memory."""
        return self.cache.load_cached_prices()

    def clear_price_cache(self) -> None:
        self.cache.clear()

    def close(self) -> None:
        """Cancel any refresh, drain cache writes and close provider clients."""
        self.cancel_refresh()
        if self._cache is not None:
            self._cache.close()
        for provider in (
            self._equity_provider,
            self._fallback_equity_provider,
            self._crypto_provider,
            self._metals_provider,
        ):
            close = getattr(provider, "close", None)
            if close is not None:
                close()
