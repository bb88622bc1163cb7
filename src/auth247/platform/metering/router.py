"""
MAU API router.

Live and historical monthly-active-user figures per tenant, and the activity
tracking endpoint used by the request-serving layer.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.billing.exceptions import SnapshotNotFoundError
from auth247.platform.db import get_async_session
from auth247.platform.metering.periods import billing_period_key
from auth247.platform.metering.recorder import ActivityRecorder
from auth247.platform.metering.schemas import (
    ActivityTrackRequest,
    ActivityTrackResponse,
    CurrentMAU,
    MAUAnalytics,
    MAUBillingData,
)
from auth247.platform.metering.service import MeteringService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/mau", tags=["Metering"])


def get_metering_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> MeteringService:
    """Dependency to get MeteringService instance."""
    return MeteringService(db)


def get_activity_recorder(request: Request) -> ActivityRecorder:
    """The application's activity recorder, started in the lifespan."""
    recorder: ActivityRecorder | None = getattr(request.app.state, "activity_recorder", None)
    if recorder is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Activity recording is not available",
        )
    return recorder


@router.get("/current/{tenant_id}", response_model=CurrentMAU)
async def get_current_mau(
    tenant_id: str,
    service: Annotated[MeteringService, Depends(get_metering_service)],
) -> CurrentMAU:
    """Current-month MAU and projected billing for a tenant."""
    return await service.get_current_mau_for_tenant(tenant_id)


@router.get("/billing/{tenant_id}", response_model=MAUBillingData)
async def get_billing_data(
    tenant_id: str,
    service: Annotated[MeteringService, Depends(get_metering_service)],
    billing_period: str | None = Query(
        None, pattern=r"^\d{4}-\d{2}$", description="Billing period (YYYY-MM)"
    ),
) -> MAUBillingData:
    """
    Billing data for a tenant and period.

    Returns 404 when no snapshot has been computed for the period.
    """
    data = await service.get_mau_billing_data(tenant_id, billing_period)
    if data is None:
        period = billing_period or billing_period_key(service.clock())
        raise SnapshotNotFoundError(
            "No MAU data found for this billing period",
            tenant_id=tenant_id,
            billing_period=period,
        )
    return data


@router.get("/analytics/{tenant_id}", response_model=MAUAnalytics)
async def get_analytics(
    tenant_id: str,
    service: Annotated[MeteringService, Depends(get_metering_service)],
    months: int | None = Query(None, ge=1, le=36, description="Number of months"),
) -> MAUAnalytics:
    """MAU trend with month-over-month growth."""
    return await service.get_mau_analytics(tenant_id, months)


@router.post(
    "/track",
    response_model=ActivityTrackResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def track_activity(
    payload: ActivityTrackRequest,
    request: Request,
    recorder: Annotated[ActivityRecorder, Depends(get_activity_recorder)],
) -> ActivityTrackResponse:
    """Queue an activity event for recording."""
    recorder.record(
        payload.user_id,
        payload.tenant_id,
        payload.activity_type,
        payload.metadata,
        source_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return ActivityTrackResponse()
