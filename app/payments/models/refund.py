"""
Refund model for reversals of settled payment intents.

A Refund never changes the PaymentIntent it reverses: a settled intent
stays settled. One intent can carry several partial refunds as long as
their total does not exceed the intent amount.

Usage:
    from payments.models import Refund

    refund = Refund.objects.create(
        payment_intent=intent,
        amount_minor=10000,
        currency=intent.currency,
        reason="Booking cancelled by provider",
        idempotency_key=f"refund:{intent.id}:1",
    )
    refund.start_processing()
    refund.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import RefundState

OPEN_OR_COMPLETED_STATES = [
    RefundState.REQUESTED,
    RefundState.PROCESSING,
    RefundState.COMPLETED,
]


class Refund(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money returned for a settled payment intent.

    State Flow:
        REQUESTED -> PROCESSING -> COMPLETED
        REQUESTED -> PROCESSING -> FAILED

    Fields:
        payment_intent: Settled intent being reversed
        amount_minor / currency: Refund amount
        reason: Operator-supplied reason
        status: Current FSM state
        provider_refund_id: Provider's refund id once accepted
        idempotency_key: Sent to the provider; unique per refund
        failure_reason: Provider error when the refund failed
        requested_by: Staff user who requested the refund
        version: Optimistic locking version
    """

    payment_intent = models.ForeignKey(
        "payments.PaymentIntent",
        on_delete=models.PROTECT,
        related_name="refunds",
    )

    amount_minor = models.PositiveBigIntegerField(
        help_text="Refund amount in smallest currency unit",
    )

    currency = models.CharField(max_length=3, default="PHP")

    reason = models.CharField(max_length=255, blank=True)

    status = FSMField(
        default=RefundState.REQUESTED,
        choices=RefundState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    provider_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Provider refund id",
    )

    idempotency_key = models.CharField(max_length=120, unique=True)

    failure_reason = models.TextField(blank=True)

    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="requested_refunds",
    )

    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["payment_intent", "status"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_minor__gt=0),
                name="refund_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.id}, {self.status}, {self.amount_minor} {self.currency})"

    def save(self, *args, **kwargs):
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @transition(
        field=status,
        source=RefundState.REQUESTED,
        target=RefundState.PROCESSING,
    )
    def start_processing(self):
        """Transition: REQUESTED -> PROCESSING (provider call about to start)."""

    @transition(
        field=status,
        source=RefundState.PROCESSING,
        target=RefundState.COMPLETED,
    )
    def complete(self, provider_refund_id: str):
        self.provider_refund_id = provider_refund_id
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[RefundState.REQUESTED, RefundState.PROCESSING],
        target=RefundState.FAILED,
    )
    def fail(self, reason: str = ""):
        """
        Mark refund as failed.

        Failed refunds are not retried automatically; they are audited at
        critical severity for operator follow-up.
        """
        self.failure_reason = reason
        self.failed_at = timezone.now()

    @classmethod
    def refunded_total(cls, payment_intent_id) -> int:
        """Sum of refunds that count against the intent amount."""
        total = cls.objects.filter(
            payment_intent_id=payment_intent_id,
            status__in=OPEN_OR_COMPLETED_STATES,
        ).aggregate(total=models.Sum("amount_minor"))["total"]
        return total or 0
