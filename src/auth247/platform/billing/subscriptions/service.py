"""
Subscription lifecycle service.

Drives an account through free, trial, active, canceled and expired states.
History is append-only: every transition that changes plan inserts a new row
and the account's current subscription is always its newest row.
"""

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth247.platform.billing.exceptions import (
    BillingConfigurationError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    TrialAlreadyUsedError,
)
from auth247.platform.billing.subscriptions.models import (
    NON_TERMINAL_STATUSES,
    UNLIMITED,
    ActionCheck,
    PlanLimits,
    PlanResponse,
    PlanType,
    Subscription,
    SubscriptionLimits,
    SubscriptionPlan,
    SubscriptionResponse,
    SubscriptionStatus,
    SubscriptionWithPlan,
    TrialSweepResult,
)
from auth247.platform.billing.subscriptions.plans import DEFAULT_PLANS, plan_row_values
from auth247.platform.clock import Clock, utc_now
from auth247.platform.logging import log_audit_event
from auth247.platform.metering.metrics import MeteringMetrics, get_metering_metrics
from auth247.platform.metering.periods import add_months
from auth247.platform.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

# Action name -> PlanLimits field it is checked against
ACTION_LIMITS: dict[str, str] = {
    "create_user": "max_users",
    "create_application": "max_applications",
    "api_request": "api_request_limit",
}


class SubscriptionService:
    """
    Subscription lifecycle management.

    Handles:
    - Free subscriptions for new accounts
    - The single 14-day trial per account and its expiration
    - Plan selection and cancellation
    - Plan limits and capability checks
    - The MAU counter cached on a tenant's subscription
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        settings: Settings | None = None,
        metrics: MeteringMetrics | None = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings or get_settings()
        self.metrics = metrics or get_metering_metrics()

    # ==================== Plans ====================

    async def get_all_plans(self) -> list[SubscriptionPlan]:
        """Active plans in display order."""
        stmt = (
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.sort_order, SubscriptionPlan.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _find_plan(self, name: str) -> SubscriptionPlan | None:
        stmt = select(SubscriptionPlan).where(SubscriptionPlan.name == name)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_plan(self, name: str) -> SubscriptionPlan:
        """Plan by name, seeding the default catalog first when no plans exist."""
        plan = await self._find_plan(name)
        if plan is None and await self.initialize_default_plans():
            plan = await self._find_plan(name)
        if plan is None:
            raise PlanNotFoundError(f"Subscription plan '{name}' not found", plan_name=name)
        return plan

    async def _configured_plan(self, name: str, config_key: str) -> SubscriptionPlan:
        try:
            return await self.get_plan(name)
        except PlanNotFoundError:
            raise BillingConfigurationError(
                f"Configured plan '{name}' does not exist", config_key=config_key
            )

    async def get_free_plan(self) -> SubscriptionPlan:
        return await self._configured_plan(
            self.settings.billing.free_plan_name, "billing.free_plan_name"
        )

    async def get_trial_plan(self) -> SubscriptionPlan:
        return await self._configured_plan(
            self.settings.billing.trial_plan_name, "billing.trial_plan_name"
        )

    async def initialize_default_plans(self) -> int:
        """
        Seed the default plan catalog.

        Does nothing when any plan already exists. Returns the number of plans
        created. The caller owns the transaction.
        """
        existing = await self.db.execute(select(SubscriptionPlan.id).limit(1))
        if existing.first() is not None:
            return 0

        currency = self.settings.billing.default_currency
        for definition in DEFAULT_PLANS:
            self.db.add(SubscriptionPlan(**plan_row_values(definition, currency)))
        await self.db.flush()

        logger.info("subscriptions.plans_seeded", count=len(DEFAULT_PLANS))
        return len(DEFAULT_PLANS)

    # ==================== Queries ====================

    async def _current_row(self, account_id: str) -> Subscription | None:
        """Newest subscription row of an account."""
        stmt = (
            select(Subscription)
            .where(Subscription.account_id == account_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _trial_used(self, account_id: str) -> bool:
        stmt = select(
            exists().where(
                Subscription.account_id == account_id,
                Subscription.trial_used.is_(True),
            )
        )
        return bool(await self.db.scalar(stmt))

    async def get_user_subscription(self, account_id: str) -> SubscriptionWithPlan | None:
        """Current subscription of an account with its plan, or None."""
        stmt = (
            select(Subscription, SubscriptionPlan)
            .join(SubscriptionPlan, SubscriptionPlan.id == Subscription.plan_id)
            .where(Subscription.account_id == account_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None

        subscription, plan = row
        return SubscriptionWithPlan(
            **SubscriptionResponse.model_validate(subscription).model_dump(),
            plan=PlanResponse.model_validate(plan),
        )

    async def get_subscription_limits(self, account_id: str) -> SubscriptionLimits:
        """Caps and features of the current plan, or of the free plan when there is none."""
        current = await self.get_user_subscription(account_id)
        if current is not None:
            plan = current.plan
        else:
            plan = PlanResponse.model_validate(await self.get_free_plan())

        limits: PlanLimits = plan.limits
        return SubscriptionLimits(
            plan_name=plan.name,
            max_users=limits.max_users,
            max_applications=limits.max_applications,
            storage_gb=limits.storage_gb,
            api_request_limit=limits.api_request_limit,
            features=plan.features,
        )

    async def can_perform_action(
        self, account_id: str, action: str, current_count: int
    ) -> ActionCheck:
        """
        Check ``current_count`` against the limit mapped to ``action``.

        Unknown actions are allowed with an unlimited limit so an incomplete
        mapping never blocks a caller.
        """
        limit_field = ACTION_LIMITS.get(action)
        if limit_field is None:
            return ActionCheck(allowed=True, limit=UNLIMITED)

        limits = await self.get_subscription_limits(account_id)
        limit: int = getattr(limits, limit_field)
        if limit == UNLIMITED:
            return ActionCheck(allowed=True, limit=UNLIMITED)
        return ActionCheck(allowed=current_count < limit, limit=limit)

    # ==================== Transitions ====================

    async def _supersede(self, account_id: str) -> None:
        """Cancel every non-terminal row so a new row can become current."""
        now = self.clock()
        await self.db.execute(
            update(Subscription)
            .where(
                Subscription.account_id == account_id,
                Subscription.status.in_(NON_TERMINAL_STATUSES),
            )
            .values(
                status=SubscriptionStatus.CANCELED.value,
                cancel_at_period_end=True,
                canceled_at=now,
                updated_at=now,
            )
        )

    async def _resolve_tenant(self, account_id: str, tenant_id: str | None) -> str | None:
        if tenant_id is not None:
            return tenant_id
        current = await self._current_row(account_id)
        return current.tenant_id if current else None

    def _new_row(self, **values: Any) -> Subscription:
        now = self.clock()
        subscription = Subscription(created_at=now, updated_at=now, **values)
        self.db.add(subscription)
        return subscription

    async def _insert_free(
        self, account_id: str, tenant_id: str | None, trial_used: bool
    ) -> Subscription:
        free_plan = await self.get_free_plan()
        now = self.clock()
        return self._new_row(
            account_id=account_id,
            tenant_id=tenant_id,
            plan_id=free_plan.id,
            status=SubscriptionStatus.FREE.value,
            current_period_start=now,
            current_period_end=add_months(now, 1),
            trial_used=trial_used,
            cancel_at_period_end=False,
        )

    async def create_free_subscription(
        self, account_id: str, tenant_id: str | None = None
    ) -> Subscription:
        """Put an account on the free plan for one month."""
        tenant_id = await self._resolve_tenant(account_id, tenant_id)
        trial_used = await self._trial_used(account_id)

        await self._supersede(account_id)
        subscription = await self._insert_free(account_id, tenant_id, trial_used)
        await self.db.commit()

        log_audit_event(
            action="subscription.free_created",
            category="billing",
            user_id=account_id,
            tenant_id=tenant_id,
            resource_type="subscription",
            resource_id=str(subscription.id),
        )
        return subscription

    async def start_trial(self, account_id: str, tenant_id: str | None = None) -> Subscription:
        """
        Start the account's one trial on the trial plan.

        Raises:
            TrialAlreadyUsedError: any earlier row of the account used a trial.
                Nothing is modified in that case.
        """
        if await self._trial_used(account_id):
            raise TrialAlreadyUsedError(
                "Trial has already been used for this account", account_id=account_id
            )

        trial_plan = await self.get_trial_plan()
        tenant_id = await self._resolve_tenant(account_id, tenant_id)
        now = self.clock()
        trial_end = now + timedelta(days=self.settings.billing.default_trial_days)

        await self._supersede(account_id)
        subscription = self._new_row(
            account_id=account_id,
            tenant_id=tenant_id,
            plan_id=trial_plan.id,
            status=SubscriptionStatus.TRIAL.value,
            current_period_start=now,
            current_period_end=trial_end,
            trial_end=trial_end,
            trial_used=True,
            cancel_at_period_end=False,
        )
        await self.db.commit()

        log_audit_event(
            action="subscription.trial_started",
            category="billing",
            user_id=account_id,
            tenant_id=tenant_id,
            resource_type="subscription",
            resource_id=str(subscription.id),
            plan=trial_plan.name,
            trial_end=trial_end.isoformat(),
        )
        return subscription

    async def select_plan(
        self, account_id: str, plan_name: str, tenant_id: str | None = None
    ) -> Subscription:
        """Move the account onto a plan; the free plan gives a free subscription."""
        plan = await self.get_plan(plan_name)
        if not plan.is_active:
            raise PlanNotFoundError(
                f"Subscription plan '{plan_name}' is not available", plan_name=plan_name
            )
        if plan.plan_type == PlanType.FREE.value:
            return await self.create_free_subscription(account_id, tenant_id)

        tenant_id = await self._resolve_tenant(account_id, tenant_id)
        trial_used = await self._trial_used(account_id)
        now = self.clock()

        await self._supersede(account_id)
        subscription = self._new_row(
            account_id=account_id,
            tenant_id=tenant_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE.value,
            current_period_start=now,
            current_period_end=add_months(now, 1),
            trial_used=trial_used,
            cancel_at_period_end=False,
        )
        await self.db.commit()

        log_audit_event(
            action="subscription.plan_selected",
            category="billing",
            user_id=account_id,
            tenant_id=tenant_id,
            resource_type="subscription",
            resource_id=str(subscription.id),
            plan=plan.name,
        )
        return subscription

    async def cancel_current_subscription(self, account_id: str) -> Subscription:
        """
        Cancel the current row in place. No replacement row is created.

        Raises:
            SubscriptionNotFoundError: the account has no subscription.
        """
        subscription = await self._current_row(account_id)
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"No subscription found for account {account_id}", account_id=account_id
            )

        now = self.clock()
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.cancel_at_period_end = True
        subscription.canceled_at = now
        subscription.updated_at = now
        await self.db.commit()

        log_audit_event(
            action="subscription.canceled",
            category="billing",
            user_id=account_id,
            tenant_id=subscription.tenant_id,
            resource_type="subscription",
            resource_id=str(subscription.id),
        )
        return subscription

    async def process_trial_expirations(self) -> TrialSweepResult:
        """
        Expire trials whose end has passed and move those accounts to the free plan.

        Each account is handled in its own transaction; a failure is logged,
        rolled back and reported without stopping the sweep.
        """
        now = self.clock()
        stmt = (
            select(Subscription.id, Subscription.account_id, Subscription.tenant_id)
            .where(
                Subscription.status == SubscriptionStatus.TRIAL.value,
                Subscription.trial_end < now,
            )
            .order_by(Subscription.id)
        )
        expired = (await self.db.execute(stmt)).all()

        result = TrialSweepResult()
        if not expired:
            return result

        # Seed outside the per-account transactions so a rollback cannot drop it
        await self.get_free_plan()
        await self.db.commit()

        for subscription_id, account_id, tenant_id in expired:
            try:
                changed = await self._expire_trial(subscription_id, account_id, tenant_id)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(
                    "subscriptions.trial_expiration_failed",
                    account_id=account_id,
                    subscription_id=subscription_id,
                    error=str(e),
                )
                result.failures[account_id] = str(e)
                continue

            if not changed:
                logger.info(
                    "subscriptions.trial_expiration_skipped",
                    account_id=account_id,
                    subscription_id=subscription_id,
                )
                result.skipped_accounts.append(account_id)
                continue

            result.expired_accounts.append(account_id)
            log_audit_event(
                action="subscription.trial_expired",
                category="billing",
                user_id=account_id,
                tenant_id=tenant_id,
                resource_type="subscription",
                resource_id=str(subscription_id),
            )

        result.processed = len(expired)
        self.metrics.record_trial_expired(len(result.expired_accounts))
        logger.info(
            "subscriptions.trial_sweep_completed",
            processed=result.processed,
            expired=len(result.expired_accounts),
            failed=len(result.failures),
        )
        return result

    async def _expire_trial(
        self, subscription_id: int, account_id: str, tenant_id: str | None
    ) -> bool:
        """
        Expire one trial row and start the free subscription.

        Returns False without writing anything when the row is no longer a
        trial, e.g. the account picked a plan after the sweep selected it.
        """
        now = self.clock()
        expired = await self.db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.status == SubscriptionStatus.TRIAL.value,
            )
            .values(status=SubscriptionStatus.EXPIRED.value, updated_at=now)
        )
        if expired.rowcount != 1:
            return False
        await self._insert_free(account_id, tenant_id, trial_used=True)
        await self.db.flush()
        return True

    # ==================== Metering hook ====================

    async def update_mau_count(self, tenant_id: str, mau_count: int) -> bool:
        """
        Cache the latest MAU on the tenant's current subscription.

        Returns False when the tenant has no subscription. The caller owns the
        transaction.
        """
        stmt = (
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        subscription = (await self.db.execute(stmt)).scalar_one_or_none()
        if subscription is None:
            logger.debug("subscriptions.mau_update_skipped", tenant_id=tenant_id)
            return False

        subscription.last_mau_count = mau_count
        subscription.updated_at = self.clock()
        await self.db.flush()
        return True


__all__ = ["SubscriptionService", "ACTION_LIMITS"]
