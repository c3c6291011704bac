"""Pydantic schemas for holdings passed in with each request."""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from integrations.market_data_protocol import AssetClass


class Holding(BaseModel):
    """A position in the user's portfolio.

    Non-unit assets (real estate, cash, CDs) use ``quantity = 1`` and carry
    their total value in ``manual_price``.
    """

    id: Optional[str] = None
    asset_class: AssetClass
    symbol: Optional[str] = None
    name: str = ""
    quantity: Decimal = Field(ge=0)
    cost_basis: Optional[Decimal] = Field(default=None, ge=0)  # Per unit
    manual_price: Optional[Decimal] = Field(default=None, ge=0)
    currency: str = "USD"
    sector: Optional[str] = None
    country: Optional[str] = None
    maturity_date: Optional[date] = None
    interest_rate: Optional[Decimal] = None

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper() or "USD"
