"""
Subscription API router.

Plan catalog, the current subscription of an account, lifecycle transitions
and limit checks. Billing errors raised by the service are rendered by the
application's exception handler.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.billing.subscriptions.models import (
    ActionCheck,
    ActionCheckRequest,
    PlanResponse,
    PlanSelectionRequest,
    SubscriptionLimits,
    SubscriptionResponse,
    SubscriptionWithPlan,
    TrialStartRequest,
)
from auth247.platform.billing.subscriptions.service import SubscriptionService
from auth247.platform.db import get_async_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


def get_subscription_service(
    db: Annotated[AsyncSession, Depends(get_async_session)],
) -> SubscriptionService:
    """Dependency to get SubscriptionService instance."""
    return SubscriptionService(db)


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> list[PlanResponse]:
    """All active plans in display order."""
    plans = await service.get_all_plans()
    return [PlanResponse.model_validate(plan) for plan in plans]


@router.get("/{account_id}", response_model=SubscriptionWithPlan)
async def get_subscription(
    account_id: str,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> SubscriptionWithPlan:
    """Current subscription of an account."""
    subscription = await service.get_user_subscription(account_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No subscription found for account {account_id}",
        )
    return subscription


@router.post(
    "/{account_id}/trial",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_trial(
    account_id: str,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
    request: Annotated[TrialStartRequest | None, Body()] = None,
) -> SubscriptionResponse:
    """
    Start the account's trial.

    Returns 409 when the account already used its trial.
    """
    tenant_id = request.tenant_id if request else None
    subscription = await service.start_trial(account_id, tenant_id=tenant_id)
    return SubscriptionResponse.model_validate(subscription)


@router.post(
    "/{account_id}/plan",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def select_plan(
    account_id: str,
    request: PlanSelectionRequest,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> SubscriptionResponse:
    """Move the account onto a plan."""
    subscription = await service.select_plan(
        account_id, request.plan_name, tenant_id=request.tenant_id
    )
    return SubscriptionResponse.model_validate(subscription)


@router.post("/{account_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    account_id: str,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> SubscriptionResponse:
    """Cancel the current subscription at period end."""
    subscription = await service.cancel_current_subscription(account_id)
    return SubscriptionResponse.model_validate(subscription)


@router.get("/{account_id}/limits", response_model=SubscriptionLimits)
async def get_limits(
    account_id: str,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> SubscriptionLimits:
    """Effective caps and features for the account."""
    return await service.get_subscription_limits(account_id)


@router.post("/{account_id}/actions/check", response_model=ActionCheck)
async def check_action(
    account_id: str,
    request: ActionCheckRequest,
    service: Annotated[SubscriptionService, Depends(get_subscription_service)],
) -> ActionCheck:
    """Whether the account may perform an action at its current usage."""
    return await service.can_perform_action(account_id, request.action, request.current_count)
