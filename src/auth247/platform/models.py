"""
Model registry.

Importing this module registers every table on ``Base.metadata`` so that
``create_all`` and Alembic autogenerate see the whole schema.
"""

from auth247.platform.billing.pricing.models import PricingConfig
from auth247.platform.billing.subscriptions.models import Subscription, SubscriptionPlan
from auth247.platform.db import Base
from auth247.platform.directory.models import DirectoryUser, Tenant
from auth247.platform.metering.models import MauSnapshot, UserActivity

__all__ = [
    "Base",
    "Tenant",
    "DirectoryUser",
    "UserActivity",
    "MauSnapshot",
    "SubscriptionPlan",
    "Subscription",
    "PricingConfig",
]
