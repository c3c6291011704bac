"""Unit tests for SQLAlchemy models and the price_cache migration."""

import importlib.util
from decimal import Decimal
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError

from models import PriceCacheEntry
from tests.fixtures.mocks import DEFAULT_NOW

MIGRATION = (
    Path(__file__).resolve().parents[2]
    / "alembic" / "versions" / "3c1a9e7d52b4_add_price_cache_table.py"
)


def _entry(**overrides) -> PriceCacheEntry:
    values = {
        "symbol": "AAPL",
        "asset_class": "stock",
        "price": Decimal("190.25"),
        "source": "finnhub",
        "fetched_at": DEFAULT_NOW,
    }
    values.update(overrides)
    return PriceCacheEntry(**values)


def test_price_cache_entry_defaults(db):
    entry = _entry()
    db.add(entry)
    db.commit()

    assert len(entry.id) == 36
    assert entry.currency == "USD"
    assert entry.change_24h is None
    assert entry.updated_at is not None


def test_price_cache_entry_unique_per_currency(db):
    db.add(_entry())
    db.commit()

    db.add(_entry(price=Decimal("191")))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

    db.add(_entry(currency="EUR"))
    db.commit()
    assert db.query(PriceCacheEntry).count() == 2


def test_migration_matches_model():
    spec = importlib.util.spec_from_file_location("price_cache_migration", MIGRATION)
    migration = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(migration)

    engine = create_engine("sqlite:///:memory:")
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            migration.upgrade()
        inspector = inspect(conn)
        columns = {col["name"] for col in inspector.get_columns("price_cache")}
        indexes = {idx["name"] for idx in inspector.get_indexes("price_cache")}

        with Operations.context(MigrationContext.configure(conn)):
            migration.downgrade()
        remaining = inspect(conn).get_table_names()

    assert columns == {c.name for c in PriceCacheEntry.__table__.columns}
    assert {"ix_price_cache_symbol", "ix_price_cache_fetched_at"} <= indexes
    assert "price_cache" not in remaining
    engine.dispose()
