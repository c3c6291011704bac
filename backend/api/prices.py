"""Price API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from integrations.exceptions import ProviderError, SymbolNotFoundError
from integrations.market_data_protocol import AssetClass
from schemas.holding import Holding
from schemas.price import (
    PriceHistoryResponse,
    PricePointResponse,
    PriceQuoteResponse,
    SymbolResolutionResponse,
    SymbolValidationRequest,
)
from services.price_service import PriceService
from utils.query_params import parse_history_days

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/prices", tags=["prices"])

# Shared, long-lived service; owned by the app lifespan
_price_service: Optional[PriceService] = None


def get_price_service() -> PriceService:
    """Get the shared PriceService, creating it on first use."""
    global _price_service
    if _price_service is None:
        _price_service = PriceService()
    return _price_service


def set_price_service(service: Optional[PriceService]) -> None:
    """Install (or with None, drop) the shared PriceService."""
    global _price_service
    _price_service = service


@router.post("/refresh", response_model=list[PriceQuoteResponse])
def refresh_prices(
    holdings: list[Holding],
    service: PriceService = Depends(get_price_service),
):
    """Fetch current prices for the given holdings.

    Holdings are passed in the request body as a JSON array and become the
    current portfolio for ``GET /api/portfolio/summary``. Symbols that
    could not be priced are omitted from the response.
    """
    quotes = service.refresh_prices(holdings)
    return [PriceQuoteResponse.model_validate(q) for q in quotes.values()]


@router.get("/history", response_model=PriceHistoryResponse)
def get_price_history(
    symbol: str = Query(..., description="Ticker symbol"),
    asset_class: AssetClass = Query(..., description="Asset class of the symbol"),
    days: Optional[str] = Query(None, description='Days of history, or "max" (default 30)'),
    service: PriceService = Depends(get_price_service),
):
    """Fetch a price series, oldest first. Empty when unavailable."""
    history_range = parse_history_days(days)
    points = service.fetch_history(symbol, asset_class, history_range)
    return PriceHistoryResponse(
        symbol=symbol.strip().upper(),
        asset_class=asset_class,
        days=str(history_range),
        points=[PricePointResponse.model_validate(p) for p in points],
    )


@router.post("/validate", response_model=SymbolResolutionResponse)
def validate_symbol(
    request: SymbolValidationRequest,
    service: PriceService = Depends(get_price_service),
):
    """Check that a symbol resolves for its asset class.

    Raises:
        HTTPException: 404 if the symbol is not recognized, 503 if the
            provider could not be asked.
    """
    try:
        resolution = service.validate_symbol(request.symbol, request.asset_class)
    except SymbolNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderError as e:
        logger.warning("Symbol validation unavailable for %s: %s", request.symbol, e)
        raise HTTPException(
            status_code=503, detail=f"Symbol lookup is temporarily unavailable: {e}"
        )
    return SymbolResolutionResponse.model_validate(resolution)


@router.delete("/cache", status_code=204)
def clear_price_cache(service: PriceService = Depends(get_price_service)):
    """Clear the in-memory price cache. The durable cache is kept."""
    service.clear_price_cache()
    return Response(status_code=204)
