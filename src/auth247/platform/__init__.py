"""
auth247 Platform - usage metering and subscription billing.

This package turns per-user activity into monthly active user counts and
bills them:
- Metering (activity recording, MAU calculation, snapshots, reconciliation)
- Billing (per-user pricing, subscription plans and lifecycle)
- Scheduling (monthly reconciliation and trial expiration via Celery)
"""

__version__ = "1.0.0"


__all__ = ["__version__"]
