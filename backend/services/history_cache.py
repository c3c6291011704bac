"""In-memory cache for price history series."""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from integrations.market_data_protocol import AssetClass, HistoryRange, PricePoint
from integrations.parsing_utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TTL_SECONDS = 300.0


class HistoryCache:
    """Caches history series by ("SYMBOL:class", period) with a single TTL."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_HISTORY_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[datetime, tuple[PricePoint, ...]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(symbol: str, asset_class: AssetClass, days: HistoryRange) -> tuple[str, str]:
        return f"{symbol.strip().upper()}:{asset_class.value}", str(days)

    def get(
        self, symbol: str, asset_class: AssetClass, days: HistoryRange
    ) -> Optional[list[PricePoint]]:
        with self._lock:
            cached = self._entries.get(self._key(symbol, asset_class, days))
        if cached is None:
            return None
        stored_at, points = cached
        if (self._clock() - stored_at).total_seconds() >= self._ttl_seconds:
            logger.debug("History cache stale: %s (%s, %s)", symbol, asset_class.value, days)
            return None
        return list(points)

    def put(
        self,
        symbol: str,
        asset_class: AssetClass,
        days: HistoryRange,
        points: list[PricePoint],
    ) -> None:
        with self._lock:
            self._entries[self._key(symbol, asset_class, days)] = (self._clock(), tuple(points))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
