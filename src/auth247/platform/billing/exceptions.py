"""
Errors raised by metering, pricing and subscription code.

Each error knows its HTTP status, a stable ``error_code`` and an optional
hint for the operator, so ``main.billing_error_handler`` can render any of
them through ``to_dict`` without inspecting the concrete type.
"""

from typing import Any


class BillingError(Exception):
    """
    Root of the billing error hierarchy.

    Subclasses set ``error_code``, ``status_code`` and ``recovery_hint`` as
    class attributes; ``context`` carries the identifiers involved.
    """

    error_code = "BILLING_ERROR"
    status_code = 400
    recovery_hint: str | None = None

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = {key: value for key, value in (context or {}).items() if value is not None}
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        if recovery_hint is not None:
            self.recovery_hint = recovery_hint

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


# Subscriptions


class SubscriptionError(BillingError):
    error_code = "SUBSCRIPTION_ERROR"


class SubscriptionNotFoundError(SubscriptionError):
    """The account has no current subscription."""

    error_code = "SUBSCRIPTION_NOT_FOUND"
    status_code = 404
    recovery_hint = "Create the free subscription or start a trial first"

    def __init__(self, message: str, account_id: str | None = None) -> None:
        super().__init__(message, {"account_id": account_id})


class TrialAlreadyUsedError(SubscriptionError):
    """An account gets exactly one trial."""

    error_code = "TRIAL_ALREADY_USED"
    status_code = 409
    recovery_hint = "Upgrade to a paid plan"

    def __init__(self, message: str, account_id: str) -> None:
        super().__init__(message, {"account_id": account_id})


class PlanNotFoundError(SubscriptionError):
    error_code = "PLAN_NOT_FOUND"
    status_code = 404
    recovery_hint = "Seed the default plans or pick an active plan"

    def __init__(
        self, message: str, plan_id: int | None = None, plan_name: str | None = None
    ) -> None:
        super().__init__(message, {"plan_id": plan_id, "plan_name": plan_name})


# Pricing


class PricingError(BillingError):
    error_code = "PRICING_ERROR"


class PriceCalculationError(PricingError):
    error_code = "PRICE_CALCULATION_ERROR"
    recovery_hint = "Quotes need a non-negative MAU count and a known currency"

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message, {"reason": reason})


# Metering


class MeteringError(BillingError):
    error_code = "METERING_ERROR"


class SnapshotNotFoundError(MeteringError):
    """Nothing has been reconciled for the tenant and month yet."""

    error_code = "SNAPSHOT_NOT_FOUND"
    status_code = 404
    recovery_hint = "Trigger the monthly MAU reconciliation for this period"

    def __init__(self, message: str, tenant_id: str, billing_period: str) -> None:
        super().__init__(message, {"tenant_id": tenant_id, "billing_period": billing_period})


class InvalidBillingPeriodError(MeteringError):
    error_code = "INVALID_BILLING_PERIOD"
    status_code = 422
    recovery_hint = "Billing periods are YYYY-MM with a month from 01 to 12"

    def __init__(self, message: str, year: int, month: int) -> None:
        super().__init__(message, {"year": year, "month": month})


class BillingConfigurationError(BillingError):
    """Settings point at something that does not exist."""

    error_code = "BILLING_CONFIG_ERROR"
    status_code = 500
    recovery_hint = "Fix the named BILLING__ setting or seed the missing data"

    def __init__(self, message: str, config_key: str | None = None) -> None:
        super().__init__(message, {"config_key": config_key})


__all__ = [
    "BillingError",
    "SubscriptionError",
    "SubscriptionNotFoundError",
    "TrialAlreadyUsedError",
    "PlanNotFoundError",
    "PricingError",
    "PriceCalculationError",
    "MeteringError",
    "SnapshotNotFoundError",
    "InvalidBillingPeriodError",
    "BillingConfigurationError",
]
