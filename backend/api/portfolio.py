"""Portfolio API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query

from api.prices import get_price_service
from schemas.holding import Holding
from schemas.portfolio_valuation import PortfolioSummaryResponse
from services.price_service import PriceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


@router.post("/summary", response_model=PortfolioSummaryResponse)
def summarize_holdings(
    holdings: list[Holding],
    include_stale: bool = Query(False, description="Use expired cached prices before manual values"),
    service: PriceService = Depends(get_price_service),
):
    """Value the given holdings from the price cache."""
    summary = service.get_summary(holdings, include_stale=include_stale)
    return PortfolioSummaryResponse.model_validate(summary)


@router.get("/summary", response_model=PortfolioSummaryResponse)
def get_summary(
    include_stale: bool = Query(False, description="Use expired cached prices before manual values"),
    service: PriceService = Depends(get_price_service),
):
    """Value the holdings from the most recent price refresh."""
    summary = service.get_summary(include_stale=include_stale)
    return PortfolioSummaryResponse.model_validate(summary)
