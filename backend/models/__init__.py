"""SQLAlchemy ORM models."""

from .price_cache import PriceCacheEntry
from .utils import generate_uuid

__all__ = ["PriceCacheEntry", "generate_uuid"]
