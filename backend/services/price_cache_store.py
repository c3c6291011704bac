"""Durable price cache store backed by the ``price_cache`` table."""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.exceptions import PersistenceError
from integrations.market_data_protocol import AssetClass, PriceQuote
from integrations.parsing_utils import ensure_utc
from models.price_cache import PriceCacheEntry

logger = logging.getLogger(__name__)


class PriceCacheStore:
    """Reads and writes PriceCacheEntry rows.

    Each call opens its own session from the factory and commits before
    returning, so the store is safe to call from the background writer
    thread of the PriceCache.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from database import get_session_local

            self._session_factory = get_session_local()
        return self._session_factory

    @staticmethod
    def _find(db: Session, quote: PriceQuote) -> Optional[PriceCacheEntry]:
        return (
            db.query(PriceCacheEntry)
            .filter(
                PriceCacheEntry.symbol == quote.symbol,
                PriceCacheEntry.asset_class == quote.asset_class.value,
                PriceCacheEntry.currency == quote.currency,
            )
            .first()
        )

    @staticmethod
    def _apply(entry: PriceCacheEntry, quote: PriceQuote) -> None:
        entry.price = quote.price
        entry.change_24h = quote.change_24h
        entry.change_percent_24h = quote.change_percent_24h
        entry.source = quote.source
        entry.fetched_at = quote.fetched_at

    def upsert(self, quote: PriceQuote) -> None:
        """Insert or replace the row for the quote's (symbol, class, currency).

        Raises:
            PersistenceError: the database rejected the write.
        """
        db = self.session_factory()
        try:
            entry = self._find(db, quote)
            if entry is None:
                entry = PriceCacheEntry(
                    symbol=quote.symbol,
                    asset_class=quote.asset_class.value,
                    currency=quote.currency,
                )
                self._apply(entry, quote)
                db.add(entry)
                try:
                    db.commit()
                except IntegrityError:
                    # Concurrent insert of the same key: last write wins
                    db.rollback()
                    entry = self._find(db, quote)
                    self._apply(entry, quote)
                    db.commit()
            else:
                self._apply(entry, quote)
                db.commit()
            logger.debug("Persisted price for %s (%s)", quote.symbol, quote.asset_class.value)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(
                f"Failed to persist price for {quote.symbol}: {exc}"
            ) from exc
        finally:
            db.close()

    def load_all(self) -> list[PriceQuote]:
        """Return every stored quote, most recently fetched first.

        Rows with an asset class this build no longer knows are skipped.

        Raises:
            PersistenceError: the table could not be read.
        """
        db = self.session_factory()
        try:
            rows = (
                db.query(PriceCacheEntry)
                .order_by(PriceCacheEntry.fetched_at.desc())
                .all()
            )
            quotes = []
            for row in rows:
                try:
                    asset_class = AssetClass(row.asset_class)
                except ValueError:
                    logger.warning(
                        "Skipping cached price for %s: unknown asset class %r",
                        row.symbol, row.asset_class,
                    )
                    continue
                quotes.append(
                    PriceQuote(
                        symbol=row.symbol,
                        asset_class=asset_class,
                        price=row.price,
                        change_24h=row.change_24h,
                        change_percent_24h=row.change_percent_24h,
                        currency=row.currency,
                        source=row.source,
                        fetched_at=ensure_utc(row.fetched_at),
                    )
                )
            return quotes
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load cached prices: {exc}") from exc
        finally:
            db.close()
