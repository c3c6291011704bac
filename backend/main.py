"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import portfolio, prices
from database import create_tables
from logging_config import setup_logging
from services.price_service import PriceService

setup_logging()
logger = logging.getLogger(__name__)

# Seconds to wait for queued price cache writes at shutdown
SHUTDOWN_FLUSH_TIMEOUT_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared PriceService and warm it from the durable cache."""
    try:
        create_tables()
    except Exception:
        logger.warning("Creating database tables failed on startup", exc_info=True)

    service = PriceService()
    prices.set_price_service(service)
    try:
        loaded = service.load_cached_prices()
        logger.info("Price cache warmed with %d entries", len(loaded))
    except Exception:
        logger.warning("Loading cached prices failed on startup", exc_info=True)

    yield

    try:
        service.cache.flush(timeout=SHUTDOWN_FLUSH_TIMEOUT_SECONDS)
        service.close()
    except Exception:
        logger.warning("Price service shutdown failed", exc_info=True)
    finally:
        prices.set_price_service(None)


app = FastAPI(
    title="Pricefolio",
    description="Multi-asset price aggregation and portfolio valuation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(prices.router)
app.include_router(portfolio.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
