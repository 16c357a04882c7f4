"""
Tests for EntitlementService.

Tests cover:
- Access decisions for metered and boolean features
- Hard-blocking usage tracking at the plan limit
- Plan changes (upgrade, trial, lapse) taking effect on the next call
- Usage periods and period resets
"""

import uuid
from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone

import pytest
from django.utils import timezone
from freezegun import freeze_time

from payments.entitlements import EntitlementService, Feature, PlanTier, UsagePeriod
from payments.entitlements.exceptions import LimitExceededError, SubscriptionNotFound, UnknownFeatureError
from payments.entitlements.models import UsageRecord
from payments.exceptions import PaymentValidationError
from payments.models import Subscription
from payments.state_machines import SubscriptionStatus
from payments.tests.factories import SubscriptionFactory

pytestmark = pytest.mark.django_db


def _pro_subscription(**kwargs):
    now = timezone.now()
    return SubscriptionFactory(
        plan_tier=PlanTier.PRO,
        current_period_start=now,
        current_period_end=now + timedelta(days=30),
        **kwargs,
    )


# =============================================================================
# check_access
# =============================================================================


class TestCheckAccess:
    def test_fresh_free_subscription(self, subscription):
        decision = EntitlementService.check_access(subscription.id, Feature.JOB_APPLICATIONS)

        assert decision.allowed is True
        assert decision.remaining == 10
        assert decision.limit == 10
        assert decision.tier == PlanTier.FREE

    def test_reflects_consumption(self, subscription):
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=3)

        decision = EntitlementService.check_access(subscription.id, Feature.SERVICES)

        assert decision.remaining == 2

    def test_exhausted_feature_is_denied(self, subscription):
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=5)

        decision = EntitlementService.check_access(subscription.id, Feature.SERVICES)

        assert decision.allowed is False
        assert decision.remaining == 0

    @pytest.mark.parametrize("feature", [Feature.PRO_BADGE, Feature.ANALYTICS_ACCESS])
    def test_boolean_feature_by_plan(self, subscription, feature):
        pro = _pro_subscription()

        assert EntitlementService.check_access(subscription.id, feature).allowed is False
        assert EntitlementService.check_access(pro.id, feature).allowed is True

    def test_boolean_feature_has_no_counter(self, subscription):
        decision = EntitlementService.check_access(subscription.id, Feature.FEATURED_PLACEMENT)

        assert decision.remaining is None
        assert decision.limit is None
        assert not UsageRecord.objects.exists()

    def test_trial_gets_plan_limits(self, trial_subscription):
        decision = EntitlementService.check_access(trial_subscription.id, Feature.JOB_APPLICATIONS)

        assert decision.tier == PlanTier.PRO
        assert decision.limit == 50

    @pytest.mark.parametrize("status", [SubscriptionStatus.LAPSED, SubscriptionStatus.CANCELLED])
    def test_inactive_subscription_falls_back_to_free(self, status):
        subscription = _pro_subscription(status=status)

        decision = EntitlementService.check_access(subscription.id, Feature.JOB_APPLICATIONS)

        assert decision.tier == PlanTier.FREE
        assert decision.limit == 10
        assert EntitlementService.check_access(subscription.id, Feature.PRO_BADGE).allowed is False

    def test_unknown_feature(self, subscription):
        with pytest.raises(UnknownFeatureError) as exc_info:
            EntitlementService.check_access(subscription.id, "teleportation")

        assert exc_info.value.feature_key == "teleportation"
        assert exc_info.value.http_status == 400

    def test_unknown_subscription(self):
        with pytest.raises(SubscriptionNotFound):
            EntitlementService.check_access(uuid.uuid4(), Feature.SERVICES)


# =============================================================================
# track_usage
# =============================================================================


class TestTrackUsage:
    def test_increments_consumption(self, subscription):
        record = EntitlementService.track_usage(subscription.id, Feature.JOB_APPLICATIONS)
        record = EntitlementService.track_usage(subscription.id, Feature.JOB_APPLICATIONS, amount=2)

        assert record.consumed == 3
        assert record.limit == 10
        assert record.remaining == 7

    def test_reaching_the_limit_exactly(self, subscription):
        record = EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=5)

        assert record.consumed == 5

    def test_hard_block_consumes_nothing(self, subscription):
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=4)

        with pytest.raises(LimitExceededError) as exc_info:
            EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=2)

        error = exc_info.value
        assert error.limit == 5
        assert error.consumed == 4
        assert error.requested == 2
        assert error.http_status == 429
        assert UsageRecord.objects.get(feature_key=Feature.SERVICES).consumed == 4

    def test_one_more_after_the_block_still_fits(self, subscription):
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=4)
        with pytest.raises(LimitExceededError):
            EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=2)

        record = EntitlementService.track_usage(subscription.id, Feature.SERVICES)

        assert record.consumed == 5

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    def test_invalid_amount(self, subscription, amount):
        with pytest.raises(PaymentValidationError):
            EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=amount)

    def test_boolean_feature_cannot_be_tracked(self, subscription):
        with pytest.raises(PaymentValidationError):
            EntitlementService.track_usage(subscription.id, Feature.PRO_BADGE)

    def test_unknown_feature(self, subscription):
        with pytest.raises(UnknownFeatureError):
            EntitlementService.track_usage(subscription.id, "teleportation")

    def test_unknown_subscription(self):
        with pytest.raises(SubscriptionNotFound):
            EntitlementService.track_usage(uuid.uuid4(), Feature.SERVICES)

    def test_upgrade_raises_limit_on_current_record(self, subscription):
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=5)
        Subscription.objects.filter(pk=subscription.pk).update(plan_tier=PlanTier.PRO, status=SubscriptionStatus.TRIAL)

        record = EntitlementService.track_usage(subscription.id, Feature.SERVICES)

        assert record.limit == 20
        assert record.consumed == 6
        assert UsageRecord.objects.filter(feature_key=Feature.SERVICES).count() == 1

    def test_lapse_lowers_limit_without_erasing_usage(self):
        subscription = _pro_subscription(status=SubscriptionStatus.TRIAL)
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=8)
        Subscription.objects.filter(pk=subscription.pk).update(status=SubscriptionStatus.LAPSED)

        decision = EntitlementService.check_access(subscription.id, Feature.SERVICES)

        assert decision.allowed is False
        assert decision.remaining == 0
        assert UsageRecord.objects.get(feature_key=Feature.SERVICES).consumed == 8
        with pytest.raises(LimitExceededError):
            EntitlementService.track_usage(subscription.id, Feature.SERVICES)


# =============================================================================
# Periods
# =============================================================================


class TestUsagePeriods:
    @freeze_time("2026-03-17 09:30:00")
    def test_free_plan_uses_calendar_month(self, subscription):
        assert EntitlementService.period_start_for(subscription) == date(2026, 3, 1)

    def test_explicit_today(self, subscription):
        assert EntitlementService.period_start_for(subscription, today=date(2026, 7, 31)) == date(2026, 7, 1)

    def test_active_paid_plan_uses_billing_period(self):
        subscription = SubscriptionFactory(
            plan_tier=PlanTier.PRO,
            current_period_start=datetime(2026, 3, 12, 8, 0, tzinfo=dt_timezone.utc),
            current_period_end=datetime(2026, 4, 11, 8, 0, tzinfo=dt_timezone.utc),
        )

        assert EntitlementService.period_start_for(subscription, today=date(2026, 4, 2)) == date(2026, 3, 12)

    def test_trial_uses_calendar_month(self, trial_subscription):
        assert EntitlementService.period_start_for(trial_subscription, today=date(2026, 5, 20)) == date(2026, 5, 1)

    def test_calendar_period_key(self, trial_subscription):
        period = EntitlementService.period_for(trial_subscription, today=date(2026, 5, 20))

        assert period == UsagePeriod(key="2026-05", start=date(2026, 5, 1))

    def test_paid_period_is_keyed_on_settling_intent(self):
        intent_id = uuid.uuid4()
        subscription = _pro_subscription(last_settled_intent_id=intent_id)

        period = EntitlementService.period_for(subscription)

        assert period.key == f"intent:{intent_id}"
        assert period.start == timezone.localdate(subscription.current_period_start)

    @freeze_time("2026-06-01")
    def test_paid_period_never_reuses_calendar_record(self):
        subscription = _pro_subscription(status=SubscriptionStatus.TRIAL)
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=4)
        Subscription.objects.filter(pk=subscription.pk).update(
            status=SubscriptionStatus.ACTIVE,
            last_settled_intent_id=uuid.uuid4(),
        )

        decision = EntitlementService.check_access(subscription.id, Feature.SERVICES)

        assert decision.remaining == 20
        assert UsageRecord.objects.filter(subscription=subscription).count() == 2

    def test_new_month_starts_a_new_record(self, subscription):
        with freeze_time("2026-03-31 23:00:00"):
            EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=5)

        with freeze_time("2026-04-01 00:30:00"):
            decision = EntitlementService.check_access(subscription.id, Feature.SERVICES)

        assert decision.remaining == 5
        periods = set(UsageRecord.objects.values_list("period_start", flat=True))
        assert periods == {date(2026, 3, 1), date(2026, 4, 1)}

    def test_reset_period_opens_zeroed_records(self):
        subscription = _pro_subscription()
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=3)

        records = EntitlementService.reset_period(subscription, UsagePeriod.calendar_month(date(2030, 1, 1)))

        assert sorted(r.feature_key for r in records) == sorted(
            [Feature.BOOKINGS_PER_MONTH, Feature.JOB_APPLICATIONS, Feature.SERVICES]
        )
        assert all(r.consumed == 0 for r in records)
        assert {r.feature_key: r.limit for r in records}[Feature.SERVICES] == 20
        assert UsageRecord.objects.filter(feature_key=Feature.SERVICES, consumed=3).exists()

    def test_reset_period_keeps_existing_consumption(self):
        subscription = _pro_subscription()
        EntitlementService.track_usage(subscription.id, Feature.SERVICES, amount=3)

        records = EntitlementService.reset_period(subscription)

        assert {r.feature_key: r.consumed for r in records}[Feature.SERVICES] == 3
