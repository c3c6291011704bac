"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers models on Base.metadata)
from api.prices import get_price_service
from database import Base
from integrations.market_data_protocol import AssetClass
from main import app
from services.history_cache import HistoryCache
from services.price_cache import PriceCache
from services.price_service import PriceService
from services.symbol_resolver import SymbolResolver
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import clock, memory_cache  # noqa: F401
from tests.fixtures.mocks import (
    SAMPLE_COIN_SEARCH,
    SAMPLE_EQUITY_SEARCH,
    MockQuoteProvider,
    MockSymbolSearch,
)


@pytest.fixture(name="session_factory")
def session_factory_fixture():
    """Create an in-memory SQLite database and return its session factory."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """A session on the in-memory test database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="providers")
def providers_fixture(clock):
    """Mock providers for every asset-class chain."""
    return {
        "equity": MockQuoteProvider(name="finnhub", clock=clock),
        "fallback": MockQuoteProvider(name="yahoo", clock=clock),
        "crypto": MockQuoteProvider(name="coingecko", asset_class=AssetClass.CRYPTO, clock=clock),
        "metals": MockQuoteProvider(name="metals_api", asset_class=AssetClass.COMMODITY_GOLD, clock=clock),
    }


@pytest.fixture(name="search")
def search_fixture():
    return MockSymbolSearch(equities=SAMPLE_EQUITY_SEARCH, coins=SAMPLE_COIN_SEARCH)


@pytest.fixture(name="price_service")
def price_service_fixture(providers, search, memory_cache, clock):
    """A PriceService wired entirely to mocks, with no pacing delay."""
    service = PriceService(
        cache=memory_cache,
        history_cache=HistoryCache(clock=clock),
        resolver=SymbolResolver(equity_search=search, crypto_search=search),
        equity_provider=providers["equity"],
        fallback_equity_provider=providers["fallback"],
        crypto_provider=providers["crypto"],
        metals_provider=providers["metals"],
        batch_size=10,
        batch_pause_seconds=0,
        max_workers=4,
        refresh_timeout_seconds=5,
    )
    yield service
    service.close()


@pytest.fixture(name="client")
def client_fixture(price_service):
    """Create a test client backed by the mocked PriceService."""

    def override_get_price_service():
        return price_service

    app.dependency_overrides[get_price_service] = override_get_price_service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
