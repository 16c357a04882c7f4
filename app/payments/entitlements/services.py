"""
Entitlement service: feature access checks and metered usage tracking.

Usage is counted per (subscription, feature, period) in UsageRecord.
Increments are conditional UPDATEs, so concurrent callers can never push
``consumed`` past the limit and ``consumed`` never decreases.

Period rules:
    - active subscriptions: the paid period opened by the last settlement,
      keyed on the settling intent
    - trial/lapsed/cancelled: calendar month, keyed ``YYYY-MM``

Usage:
    from payments.entitlements import EntitlementService, Feature

    decision = EntitlementService.check_access(subscription.id, Feature.SERVICES)
    if decision.allowed:
        EntitlementService.track_usage(subscription.id, Feature.SERVICES)
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from django.db.models import F
from django.utils import timezone

from core.services import BaseService
from payments.entitlements.exceptions import (
    LimitExceededError,
    SubscriptionNotFound,
    UnknownFeatureError,
)
from payments.entitlements.models import UsageRecord
from payments.entitlements.plans import (
    BOOLEAN_FEATURES,
    METERED_FEATURES,
    get_plan,
)
from payments.entitlements.types import AccessDecision, UsagePeriod
from payments.exceptions import PaymentValidationError
from payments.state_machines import SubscriptionStatus

if TYPE_CHECKING:
    import uuid

    from payments.models import Subscription


logger = logging.getLogger(__name__)


class EntitlementService(BaseService):
    """
    Stateless entitlement operations.

    The effective plan is read from the subscription on every call, so a
    lapse applied by reconciliation takes effect on the next check.
    """

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def check_access(cls, subscription_id: uuid.UUID, feature_key: str) -> AccessDecision:
        """
        Decide whether a feature can be used right now.

        Metered features report the remaining allowance for the current
        period; boolean features report plan membership only.

        Raises:
            UnknownFeatureError: Feature key is not in the catalog
            SubscriptionNotFound: No such subscription
        """
        cls._validate_feature(feature_key)
        subscription = cls._get_subscription(subscription_id)
        tier = subscription.effective_tier
        plan = get_plan(tier)

        if feature_key in BOOLEAN_FEATURES:
            return AccessDecision(allowed=feature_key in plan.features, tier=tier)

        limit = plan.limit_for(feature_key)
        record = cls._current_record(subscription, feature_key, limit)
        if limit is None:
            return AccessDecision(allowed=True, tier=tier)
        return AccessDecision(
            allowed=record.consumed < limit,
            remaining=max(limit - record.consumed, 0),
            limit=limit,
            tier=tier,
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    @classmethod
    def track_usage(
        cls,
        subscription_id: uuid.UUID,
        feature_key: str,
        amount: int = 1,
    ) -> UsageRecord:
        """
        Consume ``amount`` units of a metered feature.

        Hard-blocks: nothing is consumed when the increment would pass the
        limit.

        Raises:
            PaymentValidationError: Non-positive amount or boolean feature
            UnknownFeatureError: Feature key is not in the catalog
            SubscriptionNotFound: No such subscription
            LimitExceededError: consumed + amount > limit
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise PaymentValidationError(
                "Usage amount must be a positive integer",
                details={"amount": str(amount)},
            )
        cls._validate_feature(feature_key)
        if feature_key not in METERED_FEATURES:
            raise PaymentValidationError(
                f"Feature '{feature_key}' is not metered",
                details={"feature_key": feature_key},
            )

        subscription = cls._get_subscription(subscription_id)
        limit = get_plan(subscription.effective_tier).limit_for(feature_key)
        record = cls._current_record(subscription, feature_key, limit)

        queryset = UsageRecord.objects.filter(pk=record.pk)
        if limit is not None:
            queryset = queryset.filter(consumed__lte=limit - amount)
        updated = queryset.update(consumed=F("consumed") + amount, updated_at=timezone.now())

        record.refresh_from_db()
        if not updated:
            logger.info(
                "Usage blocked at plan limit",
                extra={
                    "subscription_id": str(subscription.id),
                    "feature_key": feature_key,
                    "limit": limit,
                    "consumed": record.consumed,
                    "requested": amount,
                },
            )
            raise LimitExceededError(
                subscription_id=subscription.id,
                feature_key=feature_key,
                limit=limit,
                consumed=record.consumed,
                requested=amount,
            )
        return record

    @classmethod
    def reset_period(
        cls,
        subscription: Subscription,
        period: UsagePeriod | None = None,
    ) -> list[UsageRecord]:
        """
        Open zeroed usage records for a new period.

        ``period`` defaults to the subscription's current period, which after
        a settlement is keyed on the settling intent and therefore new.
        Records of earlier periods are left untouched. Existing records for
        the same period keep their consumption; only the limit is refreshed.
        """
        period = period or cls.period_for(subscription)
        plan = get_plan(subscription.effective_tier)
        return [
            cls._record_for_period(subscription, feature_key, period, plan.limit_for(feature_key))
            for feature_key in sorted(METERED_FEATURES)
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def period_for(subscription: Subscription, today: date | None = None) -> UsagePeriod:
        if subscription.status == SubscriptionStatus.ACTIVE and subscription.current_period_start:
            start = timezone.localdate(subscription.current_period_start)
            if subscription.last_settled_intent_id:
                return UsagePeriod(key=f"intent:{subscription.last_settled_intent_id}", start=start)
            return UsagePeriod(key=f"paid:{subscription.current_period_start.isoformat()}", start=start)
        return UsagePeriod.calendar_month(today or timezone.localdate())

    @classmethod
    def period_start_for(cls, subscription: Subscription, today: date | None = None) -> date:
        return cls.period_for(subscription, today).start

    @staticmethod
    def _validate_feature(feature_key: str) -> None:
        if feature_key not in METERED_FEATURES and feature_key not in BOOLEAN_FEATURES:
            raise UnknownFeatureError(feature_key)

    @staticmethod
    def _get_subscription(subscription_id: uuid.UUID) -> Subscription:
        from payments.models import Subscription

        try:
            return Subscription.objects.get(pk=subscription_id)
        except Subscription.DoesNotExist as e:
            raise SubscriptionNotFound(
                "Subscription not found",
                details={"subscription_id": str(subscription_id)},
            ) from e

    @classmethod
    def _current_record(
        cls,
        subscription: Subscription,
        feature_key: str,
        limit: int | None,
    ) -> UsageRecord:
        return cls._record_for_period(
            subscription, feature_key, cls.period_for(subscription), limit
        )

    @staticmethod
    def _record_for_period(
        subscription: Subscription,
        feature_key: str,
        period: UsagePeriod,
        limit: int | None,
    ) -> UsageRecord:
        record, _ = UsageRecord.objects.get_or_create(
            subscription=subscription,
            feature_key=feature_key,
            period_key=period.key,
            defaults={"period_start": period.start, "limit": limit},
        )
        if record.limit != limit:
            UsageRecord.objects.filter(pk=record.pk).update(limit=limit, updated_at=timezone.now())
            record.limit = limit
        return record
