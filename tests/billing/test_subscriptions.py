"""
Tests for the subscription lifecycle service.

Tests cover:
- Default plan seeding
- Free subscriptions, the single trial, plan selection and cancellation
- Trial expiration sweep
- Plan limits and capability checks
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from auth247.platform.billing.exceptions import (
    BillingConfigurationError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    TrialAlreadyUsedError,
)
from auth247.platform.billing.subscriptions.models import (
    UNLIMITED,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from auth247.platform.billing.subscriptions.service import SubscriptionService
from auth247.platform.settings import settings

pytestmark = pytest.mark.integration


@pytest.fixture
def service(async_session, clock, metrics) -> SubscriptionService:
    return SubscriptionService(async_session, clock=clock, metrics=metrics)


async def account_rows(session, account_id: str) -> list[Subscription]:
    result = await session.execute(
        select(Subscription)
        .where(Subscription.account_id == account_id)
        .order_by(Subscription.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


class TestPlans:
    """Test the plan catalog."""

    async def test_seeding_is_idempotent(self, service, async_session):
        """Test the default catalog is created once."""
        assert await service.initialize_default_plans() == 4
        await async_session.commit()
        assert await service.initialize_default_plans() == 0

        count = await async_session.scalar(select(func.count()).select_from(SubscriptionPlan))
        assert count == 4

    async def test_plans_in_display_order(self, service):
        await service.initialize_default_plans()

        plans = await service.get_all_plans()

        assert [plan.name for plan in plans] == ["free", "professional", "business", "enterprise"]

    async def test_get_plan_seeds_empty_catalog(self, service):
        """Test looking up a plan on an empty database seeds the defaults."""
        plan = await service.get_plan("professional")
        assert plan.trial_days == 14

    async def test_unknown_plan(self, service):
        with pytest.raises(PlanNotFoundError) as exc_info:
            await service.get_plan("platinum")
        assert exc_info.value.status_code == 404

    async def test_misconfigured_trial_plan(self, async_session, clock, metrics):
        """Test a trial plan name missing from the catalog is a configuration error."""
        overridden = settings.model_copy(
            update={"billing": settings.billing.model_copy(update={"trial_plan_name": "gold"})}
        )
        service = SubscriptionService(
            async_session, clock=clock, settings=overridden, metrics=metrics
        )

        with pytest.raises(BillingConfigurationError) as exc_info:
            await service.start_trial("acct-1")

        assert exc_info.value.status_code == 500
        assert exc_info.value.context == {"config_key": "billing.trial_plan_name"}


class TestFreeSubscription:
    """Test free subscriptions."""

    async def test_new_account_gets_free_plan(self, service, clock):
        """Test a free subscription covers one month from now."""
        subscription = await service.create_free_subscription("acct-1", tenant_id="acme")

        assert subscription.status == SubscriptionStatus.FREE.value
        assert subscription.tenant_id == "acme"
        assert subscription.trial_used is False

        current = await service.get_user_subscription("acct-1")
        assert current.plan.name == "free"
        assert current.current_period_start == clock()
        assert current.current_period_end == clock().replace(month=4)

    async def test_no_subscription(self, service):
        assert await service.get_user_subscription("nobody") is None


class TestTrial:
    """Test the one trial per account."""

    async def test_start_trial(self, service, clock):
        """Test a trial runs 14 days on the trial plan."""
        await service.create_free_subscription("acct-1", tenant_id="acme")

        trial = await service.start_trial("acct-1")

        assert trial.status == SubscriptionStatus.TRIAL.value
        assert trial.trial_used is True
        assert trial.tenant_id == "acme"

        current = await service.get_user_subscription("acct-1")
        assert current.id == trial.id
        assert current.plan.name == "professional"
        assert current.trial_end == clock() + timedelta(days=14)

    async def test_trial_supersedes_free_row(self, service, async_session):
        """Test starting a trial leaves exactly one non-terminal row."""
        await service.create_free_subscription("acct-1")
        await service.start_trial("acct-1")

        rows = await account_rows(async_session, "acct-1")

        assert [row.status for row in rows] == [
            SubscriptionStatus.CANCELED.value,
            SubscriptionStatus.TRIAL.value,
        ]

    async def test_second_trial_rejected_without_changes(self, service, async_session):
        """Test a second trial raises and leaves every row untouched."""
        await service.start_trial("acct-1")
        await service.create_free_subscription("acct-1")
        before = [(row.id, row.status) for row in await account_rows(async_session, "acct-1")]

        with pytest.raises(TrialAlreadyUsedError) as exc_info:
            await service.start_trial("acct-1")

        assert exc_info.value.status_code == 409
        assert exc_info.value.error_code == "TRIAL_ALREADY_USED"
        after = [(row.id, row.status) for row in await account_rows(async_session, "acct-1")]
        assert after == before

    async def test_trial_flag_carried_to_later_rows(self, service):
        """Test rows created after a trial keep trial_used set."""
        await service.start_trial("acct-1")
        free = await service.create_free_subscription("acct-1")
        assert free.trial_used is True


class TestTrialExpiration:
    """Test the trial expiration sweep."""

    async def test_expired_trial_moves_to_free(self, service, async_session, clock):
        """Test a finished trial is expired and replaced by a free subscription."""
        await service.start_trial("acct-1", tenant_id="acme")
        clock.set(clock() + timedelta(days=15))

        result = await service.process_trial_expirations()

        assert result.processed == 1
        assert result.expired_accounts == ["acct-1"]
        assert result.failures == {}

        rows = await account_rows(async_session, "acct-1")
        assert [row.status for row in rows] == [
            SubscriptionStatus.EXPIRED.value,
            SubscriptionStatus.FREE.value,
        ]
        assert rows[1].trial_used is True
        assert rows[1].tenant_id == "acme"

        with pytest.raises(TrialAlreadyUsedError):
            await service.start_trial("acct-1")

    async def test_running_trial_untouched(self, service, clock):
        await service.start_trial("acct-1")
        clock.set(clock() + timedelta(days=13))

        result = await service.process_trial_expirations()

        assert result.processed == 0
        current = await service.get_user_subscription("acct-1")
        assert current.status == SubscriptionStatus.TRIAL

    async def test_failure_isolated_per_account(self, service, async_session, clock, monkeypatch):
        """Test one failing account is reported and the others still expire."""
        await service.start_trial("acct-1")
        await service.start_trial("acct-2")
        clock.set(clock() + timedelta(days=15))
        original = SubscriptionService._expire_trial

        async def flaky(self, subscription_id, account_id, tenant_id):
            if account_id == "acct-1":
                raise RuntimeError("lock timeout")
            return await original(self, subscription_id, account_id, tenant_id)

        monkeypatch.setattr(SubscriptionService, "_expire_trial", flaky)

        result = await service.process_trial_expirations()

        assert result.processed == 2
        assert result.expired_accounts == ["acct-2"]
        assert result.failures == {"acct-1": "lock timeout"}
        rows = await account_rows(async_session, "acct-1")
        assert [row.status for row in rows] == [SubscriptionStatus.TRIAL.value]

    async def test_plan_change_during_sweep_keeps_paid_plan(
        self, service, async_session, session_factory, clock, metrics, monkeypatch
    ):
        """Test an account that upgrades after being selected is left on its new plan."""
        await service.start_trial("acct-1", tenant_id="acme")
        clock.set(clock() + timedelta(days=20))
        original = SubscriptionService._expire_trial

        async def upgrade_first(self, subscription_id, account_id, tenant_id):
            async with session_factory() as other:
                await SubscriptionService(other, clock=clock, metrics=metrics).select_plan(
                    account_id, "business"
                )
            return await original(self, subscription_id, account_id, tenant_id)

        monkeypatch.setattr(SubscriptionService, "_expire_trial", upgrade_first)

        result = await service.process_trial_expirations()

        assert result.processed == 1
        assert result.expired_accounts == []
        assert result.skipped_accounts == ["acct-1"]
        assert result.failures == {}

        rows = await account_rows(async_session, "acct-1")
        assert [row.status for row in rows] == [
            SubscriptionStatus.CANCELED.value,
            SubscriptionStatus.ACTIVE.value,
        ]
        current = await service.get_user_subscription("acct-1")
        assert current.plan.name == "business"


class TestPlanSelectionAndCancel:
    """Test paid plans and cancellation."""

    async def test_select_paid_plan(self, service):
        subscription = await service.select_plan("acct-1", "business", tenant_id="acme")

        assert subscription.status == SubscriptionStatus.ACTIVE.value
        current = await service.get_user_subscription("acct-1")
        assert current.plan.name == "business"

    async def test_select_free_plan(self, service):
        await service.select_plan("acct-1", "business")
        subscription = await service.select_plan("acct-1", "free")
        assert subscription.status == SubscriptionStatus.FREE.value

    async def test_cancel_current(self, service, clock):
        """Test cancellation marks the current row in place."""
        created = await service.select_plan("acct-1", "business")

        canceled = await service.cancel_current_subscription("acct-1")

        assert canceled.id == created.id
        assert canceled.status == SubscriptionStatus.CANCELED.value
        assert canceled.cancel_at_period_end is True
        current = await service.get_user_subscription("acct-1")
        assert current.canceled_at == clock()

    async def test_cancel_without_subscription(self, service):
        with pytest.raises(SubscriptionNotFoundError) as exc_info:
            await service.cancel_current_subscription("nobody")
        assert exc_info.value.context == {"account_id": "nobody"}


class TestLimits:
    """Test plan limits and capability checks."""

    async def test_limits_default_to_free_plan(self, service):
        """Test an account without a subscription gets free-plan limits."""
        limits = await service.get_subscription_limits("nobody")

        assert limits.plan_name == "free"
        assert limits.max_users == 10
        assert limits.max_applications == 2

    async def test_limits_follow_current_plan(self, service):
        await service.select_plan("acct-1", "professional")

        limits = await service.get_subscription_limits("acct-1")

        assert limits.max_users == 100
        assert limits.features.sso is True

    async def test_action_under_limit_allowed(self, service):
        check = await service.can_perform_action("nobody", "create_user", 9)
        assert check.allowed is True
        assert check.limit == 10

    async def test_action_at_limit_denied(self, service):
        check = await service.can_perform_action("nobody", "create_application", 2)
        assert check.allowed is False
        assert check.limit == 2

    async def test_unlimited_plan_allows_everything(self, service):
        await service.select_plan("acct-1", "enterprise")

        check = await service.can_perform_action("acct-1", "create_user", 1_000_000)

        assert check.allowed is True
        assert check.limit == UNLIMITED

    async def test_unknown_action_allowed(self, service):
        check = await service.can_perform_action("nobody", "export_data", 10_000)
        assert check.allowed is True
        assert check.limit == UNLIMITED


class TestMAUCounter:
    """Test the MAU counter cached on subscriptions."""

    async def test_updates_current_row(self, service, async_session):
        await service.create_free_subscription("acct-1", tenant_id="acme")

        assert await service.update_mau_count("acme", 42) is True
        await async_session.commit()

        current = await service.get_user_subscription("acct-1")
        assert current.last_mau_count == 42

    async def test_tenant_without_subscription(self, service):
        assert await service.update_mau_count("acme", 42) is False
