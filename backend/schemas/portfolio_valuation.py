"""Pydantic schemas for portfolio valuation endpoints."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.holding import Holding
from services.portfolio_valuation_service import PriceSource


class HoldingValuationResponse(BaseModel):
    """A holding with its effective price and derived values."""

    holding: Holding
    current_price: Decimal
    current_value: Decimal
    cost_basis_total: Decimal
    gain_loss: Decimal
    gain_loss_percent: Decimal
    change_24h: Optional[Decimal] = None
    change_percent_24h: Optional[Decimal] = None
    price_source: PriceSource

    model_config = ConfigDict(from_attributes=True)


class PortfolioSummaryResponse(BaseModel):
    """Response for the portfolio summary endpoints."""

    total_value: Decimal
    total_cost_basis: Decimal
    total_gain_loss: Decimal
    total_gain_loss_percent: Decimal
    day_change: Decimal
    day_change_percent: Decimal
    holdings_count: int
    allocation_by_type: dict[str, Decimal]
    allocation_by_sector: dict[str, Decimal]
    allocation_by_country: dict[str, Decimal]
    holdings: list[HoldingValuationResponse]

    model_config = ConfigDict(from_attributes=True)
