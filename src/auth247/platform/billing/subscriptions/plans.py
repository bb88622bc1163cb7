"""
Default plan catalog.

Seeded into ``subscription_plans`` when the table is empty. Limits use -1 for
unlimited.
"""

from decimal import Decimal
from typing import Any

from auth247.platform.billing.subscriptions.models import (
    UNLIMITED,
    PlanFeatures,
    PlanLimits,
    PlanType,
)

DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "name": "free",
        "display_name": "Free",
        "description": "Perfect for getting started with basic authentication",
        "price": Decimal("0.00"),
        "plan_type": PlanType.FREE,
        "trial_days": 0,
        "features": PlanFeatures(sso=True, support=True, analytics=True, api_access=True),
        "limits": PlanLimits(
            max_users=10, max_applications=2, storage_gb=0.1, api_request_limit=10000
        ),
        "sort_order": 0,
    },
    {
        "name": "professional",
        "display_name": "Professional",
        "description": "For growing teams that need advanced features",
        "price": Decimal("35.00"),
        "plan_type": PlanType.PAID,
        "trial_days": 14,
        "features": PlanFeatures(
            sso=True,
            support=True,
            analytics=True,
            custom_branding=True,
            audit_logs=True,
            api_access=True,
        ),
        "limits": PlanLimits(
            max_users=100, max_applications=10, storage_gb=0.5, api_request_limit=100000
        ),
        "sort_order": 1,
    },
    {
        "name": "business",
        "display_name": "Business",
        "description": "Ideal for growing organizations",
        "price": Decimal("70.00"),
        "plan_type": PlanType.PAID,
        "trial_days": 14,
        "features": PlanFeatures(
            sso=True,
            support=True,
            analytics=True,
            custom_branding=True,
            audit_logs=True,
            api_access=True,
        ),
        "limits": PlanLimits(
            max_users=2500, max_applications=100, storage_gb=2, api_request_limit=1000000
        ),
        "sort_order": 2,
    },
    {
        "name": "enterprise",
        "display_name": "Enterprise",
        "description": "For large organizations with custom requirements",
        "price": Decimal("105.00"),
        "plan_type": PlanType.PAID,
        "trial_days": 0,
        "features": PlanFeatures(
            sso=True,
            support=True,
            analytics=True,
            custom_branding=True,
            audit_logs=True,
            api_access=True,
            custom_integrations=True,
        ),
        "limits": PlanLimits(
            max_users=UNLIMITED,
            max_applications=UNLIMITED,
            storage_gb=10,
            api_request_limit=UNLIMITED,
        ),
        "sort_order": 3,
    },
]


def plan_row_values(definition: dict[str, Any], currency: str = "USD") -> dict[str, Any]:
    """Column values for inserting a catalog entry."""
    return {
        **definition,
        "plan_type": definition["plan_type"].value,
        "features": definition["features"].model_dump(),
        "limits": definition["limits"].model_dump(),
        "currency": currency,
        "billing_interval": "monthly",
        "is_active": True,
    }


__all__ = ["DEFAULT_PLANS", "plan_row_values"]
