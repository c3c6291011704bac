"""PriceCacheEntry model - durable copy of the last quote per symbol."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Numeric, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid


class PriceCacheEntry(Base):
    """Last successfully fetched quote for a (symbol, asset class, currency).

    Written only after a successful provider fetch and read back on cold
    start, whatever its age. ``fetched_at`` is the provider fetch time, not
    the write time.
    """

    __tablename__ = "price_cache"
    __table_args__ = (
        UniqueConstraint(
            "symbol", "asset_class", "currency",
            name="uix_price_cache_symbol_class_currency",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    symbol = Column(String, nullable=False, index=True)
    asset_class = Column(String, nullable=False)
    price = Column(Numeric(24, 10), nullable=False)
    change_24h = Column(Numeric(24, 10), nullable=True)
    change_percent_24h = Column(Numeric(18, 6), nullable=True)
    currency = Column(String(8), nullable=False, default="USD")
    source = Column(String, nullable=False)
    fetched_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
