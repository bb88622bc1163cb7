"""
Pricing API router.

Exposes the pricing configuration and price quotes.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.billing.pricing.models import (
    PriceQuote,
    PriceQuoteRequest,
    PricingConfigResponse,
    PricingConfigUpdate,
)
from auth247.platform.billing.pricing.service import PricingService
from auth247.platform.db import get_async_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/pricing", tags=["Pricing"])


def get_pricing_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> PricingService:
    """Dependency to get PricingService instance."""
    return PricingService(db)


@router.get("/config", response_model=PricingConfigResponse)
async def get_pricing_config(
    service: Annotated[PricingService, Depends(get_pricing_service)],
) -> PricingConfigResponse:
    """Current pricing configuration (defaults when none is stored)."""
    return await service.get_config()


@router.put("/config", response_model=PricingConfigResponse)
async def update_pricing_config(
    update: PricingConfigUpdate,
    service: Annotated[PricingService, Depends(get_pricing_service)],
) -> PricingConfigResponse:
    """Update the pricing configuration."""
    config = await service.update_config(update)
    await service.db.commit()
    logger.info("pricing.config_updated", price_per_user=str(config.price_per_user))
    return config


@router.post("/calculate", response_model=PriceQuote)
async def calculate_price(
    request: PriceQuoteRequest,
    service: Annotated[PricingService, Depends(get_pricing_service)],
) -> PriceQuote:
    """Quote a price for a number of monthly active users."""
    return await service.calculate_quote(request.mau_count, request.billing_interval)
