"""Per-user pricing configuration and quotes."""

from auth247.platform.billing.pricing.service import PricingService, default_pricing

__all__ = ["PricingService", "default_pricing"]
