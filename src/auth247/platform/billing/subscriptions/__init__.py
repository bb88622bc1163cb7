"""Subscription plans and the subscription lifecycle."""

from auth247.platform.billing.subscriptions.models import (
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from auth247.platform.billing.subscriptions.service import SubscriptionService

__all__ = ["Subscription", "SubscriptionPlan", "SubscriptionStatus", "SubscriptionService"]
