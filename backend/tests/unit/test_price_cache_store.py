"""Tests for the durable PriceCacheStore."""

from datetime import timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from integrations.exceptions import PersistenceError
from integrations.market_data_protocol import AssetClass
from models.price_cache import PriceCacheEntry
from services.price_cache_store import PriceCacheStore
from tests.fixtures import make_quote
from tests.fixtures.mocks import DEFAULT_NOW


@pytest.fixture
def store(session_factory):
    return PriceCacheStore(session_factory=session_factory)


class TestUpsert:
    def test_inserts_new_row(self, store, db):
        store.upsert(make_quote("AAPL", "190.25", change="1.5", source="finnhub"))

        row = db.query(PriceCacheEntry).one()
        assert row.symbol == "AAPL"
        assert row.asset_class == "stock"
        assert row.price == Decimal("190.25")
        assert row.change_24h == Decimal("1.5")
        assert row.currency == "USD"
        assert row.source == "finnhub"

    def test_last_write_wins(self, store, db):
        store.upsert(make_quote("AAPL", "190"))
        store.upsert(
            make_quote("AAPL", "195", source="yahoo", fetched_at=DEFAULT_NOW + timedelta(minutes=5))
        )

        rows = db.query(PriceCacheEntry).all()
        assert len(rows) == 1
        assert rows[0].price == Decimal("195")
        assert rows[0].source == "yahoo"

    def test_currency_is_part_of_the_key(self, store, db):
        store.upsert(make_quote("BTC", "60000", asset_class=AssetClass.CRYPTO, currency="USD"))
        store.upsert(make_quote("BTC", "55000", asset_class=AssetClass.CRYPTO, currency="EUR"))

        assert db.query(PriceCacheEntry).count() == 2

    def test_asset_class_is_part_of_the_key(self, store, db):
        store.upsert(make_quote("VOO", "500", asset_class=AssetClass.ETF))
        store.upsert(make_quote("VOO", "1", asset_class=AssetClass.STOCK))

        assert db.query(PriceCacheEntry).count() == 2

    def test_database_error_raises_persistence_error(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("locked"))
        store = PriceCacheStore(session_factory=lambda: session)

        with pytest.raises(PersistenceError, match="AAPL"):
            store.upsert(make_quote("AAPL", "190"))

        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestLoadAll:
    def test_newest_first_with_utc_timestamps(self, store):
        store.upsert(make_quote("AAPL", "190", fetched_at=DEFAULT_NOW - timedelta(days=2)))
        store.upsert(make_quote("MSFT", "410", fetched_at=DEFAULT_NOW))

        quotes = store.load_all()

        assert [q.symbol for q in quotes] == ["MSFT", "AAPL"]
        assert quotes[0].fetched_at == DEFAULT_NOW
        assert quotes[0].fetched_at.tzinfo == timezone.utc
        assert quotes[0].asset_class is AssetClass.STOCK
        assert quotes[1].price == Decimal("190")

    def test_skips_unknown_asset_class(self, store, db):
        store.upsert(make_quote("AAPL", "190"))
        db.add(
            PriceCacheEntry(
                symbol="OLD", asset_class="warrant", price=Decimal("1"),
                currency="USD", source="legacy", fetched_at=DEFAULT_NOW,
            )
        )
        db.commit()

        assert [q.symbol for q in store.load_all()] == ["AAPL"]

    def test_empty_table(self, store):
        assert store.load_all() == []

    def test_read_error_raises_persistence_error(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("no such table"))
        store = PriceCacheStore(session_factory=lambda: session)

        with pytest.raises(PersistenceError):
            store.load_all()
        session.close.assert_called_once()


class TestWriteThroughIntegration:
    def test_cache_writes_reach_the_table(self, session_factory, clock, db):
        from services.price_cache import PriceCache

        cache = PriceCache(store=PriceCacheStore(session_factory), clock=clock)
        cache.put(make_quote("ETH", "3000", asset_class=AssetClass.CRYPTO))
        assert cache.flush(timeout=5)
        cache.close()

        row = db.query(PriceCacheEntry).one()
        assert row.symbol == "ETH"
        assert row.asset_class == "crypto"

    def test_cold_start_reload(self, session_factory, clock):
        from services.price_cache import PriceCache

        store = PriceCacheStore(session_factory)
        store.upsert(make_quote("ETH", "3000", asset_class=AssetClass.CRYPTO))

        fresh_process_cache = PriceCache(store=store, clock=clock)
        fresh_process_cache.load_cached_prices()

        assert fresh_process_cache.get("ETH", AssetClass.CRYPTO).price == Decimal("3000")
