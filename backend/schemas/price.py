"""Pydantic schemas for price endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from integrations.market_data_protocol import AssetClass


class PriceQuoteResponse(BaseModel):
    """A cached or freshly fetched quote."""

    symbol: str
    asset_class: AssetClass
    price: Decimal
    change_24h: Optional[Decimal] = None
    change_percent_24h: Optional[Decimal] = None
    currency: str
    source: str
    fetched_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PricePointResponse(BaseModel):
    """One point of a price history series."""

    timestamp: int  # Unix epoch milliseconds
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class PriceHistoryResponse(BaseModel):
    """Price history for a single symbol."""

    symbol: str
    asset_class: AssetClass
    days: str
    points: list[PricePointResponse]


class SymbolValidationRequest(BaseModel):
    """Symbol to validate before creating a holding."""

    symbol: Optional[str] = None
    asset_class: AssetClass


class SymbolResolutionResponse(BaseModel):
    """A validated symbol and the identifier providers use for it."""

    symbol: str
    asset_class: AssetClass
    provider_id: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
