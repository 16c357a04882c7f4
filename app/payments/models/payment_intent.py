"""
PaymentIntent model: one attempt to collect money through one provider.

PaymentIntent is the central entity of the payment core. It is created by
checkout in CREATED, moves to AWAITING_PROVIDER_RESULT once the provider
confirms a session, and ends in exactly one terminal state. Terminal
intents are retained forever for audit.

Every transition is validated by django-fsm and then committed with a
compare-and-swap on (status, version), so a webhook, a synchronous
confirm call and the reconciliation sweep can race on the same intent
and exactly one of them wins.

Usage:
    from payments.models import PaymentIntent

    intent = PaymentIntent.objects.get(pk=intent_id)
    from_status = intent.status
    intent.settle(metadata={"capture_id": "CAP-1"})
    intent.persist_transition(from_status)  # raises StaleRecordError if lost
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.exceptions import InvalidStateTransitionError
from payments.locks import compare_and_swap_or_raise
from payments.state_machines import (
    PaymentIntentStatus,
    PaymentProvider,
    PaymentPurpose,
)

NON_TERMINAL_STATUSES = [
    PaymentIntentStatus.CREATED,
    PaymentIntentStatus.AWAITING_PROVIDER_RESULT,
]


class PaymentIntentQuerySet(models.QuerySet):
    def non_terminal(self):
        return self.filter(status__in=NON_TERMINAL_STATUSES)

    def terminal(self):
        return self.exclude(status__in=NON_TERMINAL_STATUSES)

    def for_owner(self, owner_key: str):
        return self.filter(owner_key=owner_key)


class PaymentIntent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Durable record of one payment attempt.

    State Flow:
        CREATED -> AWAITING_PROVIDER_RESULT -> SETTLED
        CREATED -> AWAITING_PROVIDER_RESULT -> FAILED / REJECTED / EXPIRED
        CREATED -> FAILED (provider session could not be opened)

    Fields:
        provider: Provider the attempt runs through
        purpose: Booking or subscription payment
        booking / subscription: Owning entity (exactly one, matching purpose)
        plan_tier: Plan being purchased (subscription payments only)
        owner_key: "booking:<id>" / "subscription:<id>", indexed for the
            one-open-intent-per-owner lookup
        amount_minor / currency: Amount re-validated against the owner
        provider_reference: Provider session/order id (set once)
        status: Current FSM state (protected; use transition methods)
        last_transition_at: When the status last changed
        attempt_count: Provider interactions (session, verify, poll)
        last_polled_at: Last reconciliation status poll
        return_context: Return/cancel URLs handed to the provider
        provider_metadata: Outcome details reported by the provider
        failure_reason: Why the intent failed, was rejected or expired
        initiated_by: User who started the checkout
        version: Optimistic lock counter bumped on every transition
    """

    # ==========================================================================
    # Provider & Purpose
    # ==========================================================================

    provider = models.CharField(
        max_length=20,
        choices=PaymentProvider.choices,
        db_index=True,
    )

    purpose = models.CharField(
        max_length=30,
        choices=PaymentPurpose.choices,
    )

    # ==========================================================================
    # Owner Reference
    # ==========================================================================

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment_intents",
    )

    subscription = models.ForeignKey(
        "payments.Subscription",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment_intents",
    )

    plan_tier = models.CharField(
        max_length=20,
        blank=True,
        help_text="Plan being purchased (subscription payments only)",
    )

    owner_key = models.CharField(
        max_length=80,
        db_index=True,
        help_text="Owner reference, e.g. booking:<uuid>",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_minor = models.PositiveBigIntegerField(
        help_text="Amount in smallest currency unit",
    )

    currency = models.CharField(max_length=3, default="PHP")

    # ==========================================================================
    # Provider Session & State
    # ==========================================================================

    provider_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Provider session/order id; immutable once set",
    )

    status = FSMField(
        default=PaymentIntentStatus.CREATED,
        choices=PaymentIntentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the intent (managed by FSM)",
    )

    last_transition_at = models.DateTimeField(default=timezone.now)

    attempt_count = models.PositiveIntegerField(
        default=0,
        help_text="Provider interactions: session create, verify, status poll",
    )

    last_polled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Context & Results
    # ==========================================================================

    return_context = models.JSONField(default=dict, blank=True)

    provider_metadata = models.JSONField(default=dict, blank=True)

    failure_reason = models.TextField(blank=True)

    initiated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_intents",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for compare-and-swap transitions",
    )

    objects = PaymentIntentQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Intent"
        verbose_name_plural = "Payment Intents"
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["status", "last_transition_at"]),
            models.Index(fields=["owner_key", "status"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_minor__gt=0),
                name="payment_intent_amount_positive",
            ),
            models.CheckConstraint(
                condition=(
                    models.Q(
                        purpose=PaymentPurpose.BOOKING_PAYMENT,
                        booking__isnull=False,
                        subscription__isnull=True,
                    )
                    | models.Q(
                        purpose=PaymentPurpose.SUBSCRIPTION_PAYMENT,
                        subscription__isnull=False,
                        booking__isnull=True,
                    )
                ),
                name="payment_intent_owner_matches_purpose",
            ),
            models.UniqueConstraint(
                fields=["provider", "provider_reference"],
                name="payment_intent_unique_provider_reference",
            ),
            models.UniqueConstraint(
                fields=["owner_key"],
                condition=models.Q(status__in=NON_TERMINAL_STATUSES),
                name="payment_intent_one_open_per_owner",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"PaymentIntent({self.id}, {self.provider}, {self.status}, "
            f"{self.amount_minor} {self.currency})"
        )

    def delete(self, *args, **kwargs):
        raise InvalidStateTransitionError(
            "Payment intents are retained for audit and cannot be deleted",
            details={"payment_intent_id": str(self.pk)},
        )

    # ==========================================================================
    # Owner Helpers
    # ==========================================================================

    @staticmethod
    def build_owner_key(purpose: str, owner_id) -> str:
        prefix = "booking" if purpose == PaymentPurpose.BOOKING_PAYMENT else "subscription"
        return f"{prefix}:{owner_id}"

    @property
    def owner(self):
        """The Booking or Subscription this intent pays for."""
        if self.purpose == PaymentPurpose.BOOKING_PAYMENT:
            return self.booking
        return self.subscription

    @property
    def is_terminal(self) -> bool:
        return self.status in PaymentIntentStatus.terminal()

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentIntentStatus.CREATED,
        target=PaymentIntentStatus.AWAITING_PROVIDER_RESULT,
    )
    def await_provider_result(self, provider_reference: str):
        """
        Record the provider session and start waiting for its outcome.

        Transition: CREATED -> AWAITING_PROVIDER_RESULT
        """
        if self.provider_reference and self.provider_reference != provider_reference:
            raise InvalidStateTransitionError(
                "Provider reference is immutable once set",
                details={
                    "payment_intent_id": str(self.pk),
                    "current": self.provider_reference,
                    "attempted": provider_reference,
                },
            )
        self.provider_reference = provider_reference
        self.last_transition_at = timezone.now()

    @transition(
        field=status,
        source=PaymentIntentStatus.CREATED,
        target=PaymentIntentStatus.FAILED,
    )
    def fail_creation(self, reason: str = ""):
        """
        Provider session could not be opened.

        Transition: CREATED -> FAILED
        """
        self.failure_reason = reason
        self.last_transition_at = timezone.now()

    @transition(
        field=status,
        source=PaymentIntentStatus.AWAITING_PROVIDER_RESULT,
        target=PaymentIntentStatus.SETTLED,
    )
    def settle(self, metadata: dict | None = None):
        """
        Provider confirmed the funds were captured/authorized.

        Transition: AWAITING_PROVIDER_RESULT -> SETTLED
        """
        self.provider_metadata = {**self.provider_metadata, **(metadata or {})}
        self.last_transition_at = timezone.now()

    @transition(
        field=status,
        source=PaymentIntentStatus.AWAITING_PROVIDER_RESULT,
        target=PaymentIntentStatus.FAILED,
    )
    def fail(self, reason: str = "", metadata: dict | None = None):
        """
        Provider declined or errored.

        Transition: AWAITING_PROVIDER_RESULT -> FAILED
        """
        self.failure_reason = reason
        self.provider_metadata = {**self.provider_metadata, **(metadata or {})}
        self.last_transition_at = timezone.now()

    @transition(
        field=status,
        source=PaymentIntentStatus.AWAITING_PROVIDER_RESULT,
        target=PaymentIntentStatus.REJECTED,
    )
    def reject(self, reason: str = ""):
        """
        Administrative rejection after review.

        Transition: AWAITING_PROVIDER_RESULT -> REJECTED
        """
        self.failure_reason = reason
        self.last_transition_at = timezone.now()

    @transition(
        field=status,
        source=PaymentIntentStatus.AWAITING_PROVIDER_RESULT,
        target=PaymentIntentStatus.EXPIRED,
    )
    def expire(self, reason: str = ""):
        """
        No corroborating provider record before the timeout.

        Transition: AWAITING_PROVIDER_RESULT -> EXPIRED
        """
        self.failure_reason = reason
        self.last_transition_at = timezone.now()

    # ==========================================================================
    # Persistence
    # ==========================================================================

    def persist_transition(self, from_status: str, **extra_changes) -> None:
        """
        Commit an in-memory transition with compare-and-swap.

        The UPDATE only matches if the row still has ``from_status`` and
        the version this instance was loaded with. ``extra_changes`` are
        written in the same UPDATE (e.g. an F() counter increment).

        Raises:
            StaleRecordError: Another writer committed first
        """
        now = timezone.now()
        compare_and_swap_or_raise(
            PaymentIntent,
            self.pk,
            expected={"status": from_status, "version": self.version},
            changes={
                "status": self.status,
                "provider_reference": self.provider_reference,
                "provider_metadata": self.provider_metadata,
                "failure_reason": self.failure_reason,
                "last_transition_at": self.last_transition_at,
                "updated_at": now,
                **extra_changes,
            },
        )
        self.version += 1
        self.updated_at = now
