"""
Billing: pricing, subscriptions and the error hierarchy shared with metering.
"""

from auth247.platform.billing.exceptions import (
    BillingError,
    MeteringError,
    PlanNotFoundError,
    PricingError,
    SubscriptionError,
    SubscriptionNotFoundError,
    TrialAlreadyUsedError,
)

__all__ = [
    "BillingError",
    "MeteringError",
    "PlanNotFoundError",
    "PricingError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "TrialAlreadyUsedError",
]
