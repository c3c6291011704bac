"""Two-level price cache: in-memory map with durable write-through.

Entries are immutable PriceQuotes keyed by (asset class, canonical symbol).
Freshness is decided on read from ``fetched_at`` and a per-class TTL, so
nothing is ever evicted by age; stale entries stay readable through
:meth:`PriceCache.peek`.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Callable, Mapping, Optional

from integrations.exceptions import PersistenceError
from integrations.market_data_protocol import AssetClass, PriceQuote
from integrations.parsing_utils import ensure_utc, utc_now
from services.price_cache_store import PriceCacheStore

logger = logging.getLogger(__name__)

CacheKey = tuple[AssetClass, str]

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_TTLS: dict[AssetClass, float] = {
    AssetClass.CRYPTO: 300.0,
    AssetClass.COMMODITY_GOLD: 3600.0,
    AssetClass.COMMODITY_SILVER: 3600.0,
    AssetClass.COMMODITY_PLATINUM: 3600.0,
}


def build_ttl_table(default: float, crypto: float, metals: float) -> dict[AssetClass, float]:
    """Expand the three configured TTLs into a per-class table."""
    table = {asset_class: default for asset_class in AssetClass}
    table[AssetClass.CRYPTO] = crypto
    for asset_class in AssetClass:
        if asset_class.is_metal:
            table[asset_class] = metals
    return table


class PriceCache:
    """In-memory price cache with TTL-on-read and durable write-through."""

    def __init__(
        self,
        store: Optional[PriceCacheStore] = None,
        ttls: Optional[Mapping[AssetClass, float]] = None,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the cache.

        Args:
            store: Durable store; None keeps the cache memory-only.
            ttls: Per-class TTL in seconds. Classes not listed use
                  ``default_ttl``.
            clock: Returns the current UTC-aware time.
        """
        self._store = store
        self._ttls = dict(DEFAULT_TTLS if ttls is None else ttls)
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[CacheKey, PriceQuote] = {}
        self._lock = threading.Lock()
        self._writer: Optional[ThreadPoolExecutor] = None

    @staticmethod
    def _key(symbol: str, asset_class: AssetClass) -> CacheKey:
        return asset_class, symbol.strip().upper()

    def ttl_for(self, asset_class: AssetClass) -> float:
        return self._ttls.get(asset_class, self._default_ttl)

    def is_fresh(self, quote: PriceQuote) -> bool:
        age = (self._clock() - ensure_utc(quote.fetched_at)).total_seconds()
        return age < self.ttl_for(quote.asset_class)

    def get(self, symbol: str, asset_class: AssetClass) -> Optional[PriceQuote]:
        """Return the cached quote only while it is younger than its TTL."""
        quote = self.peek(symbol, asset_class)
        if quote is None:
            logger.debug("Price cache miss: %s (%s)", symbol, asset_class.value)
            return None
        if not self.is_fresh(quote):
            logger.debug("Price cache stale: %s (%s)", symbol, asset_class.value)
            return None
        logger.debug("Price cache hit: %s (%s)", symbol, asset_class.value)
        return quote

    def peek(self, symbol: str, asset_class: AssetClass) -> Optional[PriceQuote]:
        """Return the cached quote whatever its age."""
        with self._lock:
            return self._entries.get(self._key(symbol, asset_class))

    def put(self, quote: PriceQuote) -> None:
        """Store a freshly fetched quote and persist it in the background."""
        with self._lock:
            self._entries[self._key(quote.symbol, quote.asset_class)] = quote
        if self._store is not None:
            self._writer_executor().submit(self._persist, quote)

    def _writer_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._writer is None:
                self._writer = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="price-cache-writer"
                )
            return self._writer

    def _persist(self, quote: PriceQuote) -> None:
        try:
            self._store.upsert(quote)
        except PersistenceError as exc:
            logger.warning("Price cache write-through failed: %s", exc)
        except Exception:
            logger.warning(
                "Unexpected error persisting price for %s", quote.symbol, exc_info=True
            )

    def load_cached_prices(self) -> dict[CacheKey, PriceQuote]:
        """Load the durable table into memory, regardless of staleness.

        Rows arrive newest first, so when one key has rows in several
        currencies the most recently fetched wins. An in-memory entry
        fetched later than the durable row is kept.

        Returns:
            The entries taken from the durable store.
        """
        if self._store is None:
            return {}
        try:
            quotes = self._store.load_all()
        except PersistenceError as exc:
            logger.warning("Could not load cached prices: %s", exc)
            return {}

        loaded: dict[CacheKey, PriceQuote] = {}
        for quote in quotes:
            key = self._key(quote.symbol, quote.asset_class)
            if key not in loaded:
                loaded[key] = quote

        with self._lock:
            for key, quote in loaded.items():
                current = self._entries.get(key)
                if current is None or ensure_utc(current.fetched_at) < quote.fetched_at:
                    self._entries[key] = quote

        logger.info("Loaded %d cached prices from durable store", len(loaded))
        return loaded

    def clear(self) -> None:
        """Drop every in-memory entry. The durable table is untouched."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cleared %d in-memory cached prices", count)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued durable writes. Returns False on timeout."""
        with self._lock:
            writer = self._writer
        if writer is None:
            return True
        try:
            writer.submit(lambda: None).result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning("Timed out waiting for price cache writes")
            return False
        return True

    def close(self) -> None:
        self.flush()
        with self._lock:
            writer, self._writer = self._writer, None
        if writer is not None:
            writer.shutdown(wait=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
