"""
Subscription model for plan-based entitlements.

A Subscription is the second entity a payment intent can belong to. A
settled subscription payment activates or extends the paid period, and a
trial converts to paid exactly once.

Usage:
    from payments.models import Subscription
    from payments.entitlements.plans import PlanTier

    subscription = Subscription.objects.create(
        subscriber=user,
        plan_tier=PlanTier.PRO,
        status=SubscriptionStatus.TRIAL,
        trial_ends_at=timezone.now() + timedelta(days=14),
    )
    subscription.effective_tier  # "pro" while trial/active, else "free"
"""

from __future__ import annotations

from datetime import datetime, timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from payments.entitlements.plans import PlanDefinition, PlanTier
from payments.state_machines import PaymentIntentStatus, SubscriptionStatus


class Subscription(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A user's plan subscription.

    State Flow:
        TRIAL -> ACTIVE (first settled payment; trial_converted_at stamped)
        ACTIVE -> ACTIVE (renewal extends the period)
        TRIAL/ACTIVE -> LAPSED (reconciliation: trial or period ended)
        LAPSED/CANCELLED -> ACTIVE (settled payment)
        TRIAL/ACTIVE/LAPSED -> CANCELLED

    Fields:
        subscriber: User holding the subscription
        plan_tier: Plan the subscription grants while trial/active
        status: Current FSM state
        trial_ends_at: End of the free trial, if any
        trial_converted_at: When the trial converted to paid (never cleared)
        current_period_start/end: Paid period bounds
        payment_status: Terminal status of the latest finished intent
        payment_intent_in_progress: Non-terminal intent holding the checkout
        last_settled_intent_id: Last intent whose settlement was applied
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    subscriber = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="subscription",
    )

    # ==========================================================================
    # Plan & State
    # ==========================================================================

    plan_tier = models.CharField(
        max_length=20,
        choices=PlanTier.choices,
        default=PlanTier.FREE,
    )

    status = FSMField(
        default=SubscriptionStatus.ACTIVE,
        choices=SubscriptionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the subscription (managed by FSM)",
    )

    trial_ends_at = models.DateTimeField(null=True, blank=True)

    trial_converted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the trial converted to a paid plan (one-way)",
    )

    # ==========================================================================
    # Billing Period
    # ==========================================================================

    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)

    lapsed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Payment State (written only by settlement)
    # ==========================================================================

    payment_status = models.CharField(
        max_length=30,
        choices=PaymentIntentStatus.choices,
        null=True,
        blank=True,
        help_text="Terminal status of the latest finished payment intent",
    )

    payment_intent_in_progress = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Non-terminal payment intent currently holding the checkout",
    )

    last_settled_intent_id = models.UUIDField(
        null=True,
        blank=True,
        help_text="Intent whose settlement was last applied to this subscription",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["status", "current_period_end"]),
            models.Index(fields=["status", "trial_ends_at"]),
        ]

    def __str__(self) -> str:
        return f"Subscription({self.id}, {self.plan_tier}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SubscriptionStatus.TRIAL,
        target=SubscriptionStatus.ACTIVE,
    )
    def convert_trial(self):
        """
        Convert a trial to a paid subscription.

        Transition: TRIAL -> ACTIVE
        """
        if self.trial_converted_at is None:
            self.trial_converted_at = timezone.now()

    @transition(
        field=status,
        source=[
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.LAPSED,
            SubscriptionStatus.CANCELLED,
        ],
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self):
        """
        Activate (or keep active) after a settled payment.

        Transition: ACTIVE/LAPSED/CANCELLED -> ACTIVE
        """
        self.lapsed_at = None
        self.cancelled_at = None

    @transition(
        field=status,
        source=[SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE],
        target=SubscriptionStatus.LAPSED,
    )
    def lapse(self):
        """
        Mark the subscription lapsed; entitlements revert to the free tier.

        Transition: TRIAL/ACTIVE -> LAPSED
        """
        self.lapsed_at = timezone.now()

    @transition(
        field=status,
        source=[
            SubscriptionStatus.TRIAL,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.LAPSED,
        ],
        target=SubscriptionStatus.CANCELLED,
    )
    def cancel(self):
        self.cancelled_at = timezone.now()

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def start_paid_period(self, plan: PlanDefinition, now: datetime | None = None) -> None:
        """
        Begin a new paid period for ``plan``.

        Unused time on a still-running period carries over: the new period
        starts now and ends ``plan.period_days`` after the later of now and
        the old period end.

        Note: Does not save - caller must save after calling.
        """
        now = now or timezone.now()
        carry_from = now
        if self.current_period_end and self.current_period_end > now:
            carry_from = self.current_period_end
        self.plan_tier = plan.tier
        self.current_period_start = now
        self.current_period_end = carry_from + timedelta(days=plan.period_days)

    @property
    def is_trial(self) -> bool:
        return self.status == SubscriptionStatus.TRIAL

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def was_converted(self) -> bool:
        return self.trial_converted_at is not None

    @property
    def effective_tier(self) -> str:
        """Plan tier whose limits apply right now."""
        if self.status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE):
            return self.plan_tier
        return PlanTier.FREE
