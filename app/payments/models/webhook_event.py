"""
WebhookEvent model: the idempotency ledger for provider deliveries.

A row is written only after a delivery has been verified and processed,
inside the same transaction as the settlement it caused. The unique
(provider, external_event_id) constraint is what turns provider
redeliveries into no-ops.

Usage:
    from payments.models import WebhookEvent

    if WebhookEvent.objects.seen(provider, event_id):
        return IngestResult.ok("duplicate")
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.exceptions import InvalidStateTransitionError
from payments.state_machines import PaymentProvider


class WebhookEventQuerySet(models.QuerySet):
    def seen(self, provider: str, external_event_id: str) -> bool:
        return self.filter(provider=provider, external_event_id=external_event_id).exists()


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One processed provider delivery.

    Fields:
        provider: Provider that sent the delivery
        external_event_id: Provider's event id (dedup key with provider)
        event_type: Provider event type, e.g. PAYMENT.CAPTURE.COMPLETED
        received_at: When the delivery arrived
        payload_digest: SHA-256 hex of the raw body
        outcome: Normalized outcome, or ignored/unmatched
        payment_intent: Intent the delivery resolved to, if any

    Note:
        Rows are append-only. save() on an existing row raises.
    """

    provider = models.CharField(
        max_length=20,
        choices=PaymentProvider.choices,
    )

    external_event_id = models.CharField(
        max_length=255,
        help_text="Provider event id; unique per provider",
    )

    event_type = models.CharField(max_length=100, db_index=True)

    received_at = models.DateTimeField(default=timezone.now, db_index=True)

    payload_digest = models.CharField(
        max_length=64,
        help_text="SHA-256 hex digest of the raw request body",
    )

    outcome = models.CharField(
        max_length=20,
        help_text="succeeded/declined/errored, or ignored/unmatched",
    )

    payment_intent = models.ForeignKey(
        "payments.PaymentIntent",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="webhook_events",
    )

    objects = WebhookEventQuerySet.as_manager()

    class Meta:
        ordering = ["-received_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "external_event_id"],
                name="webhook_event_unique_per_provider",
            ),
        ]
        indexes = [
            models.Index(fields=["provider", "received_at"]),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider}, {self.external_event_id}, {self.outcome})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise InvalidStateTransitionError(
                "Webhook events are append-only",
                details={"webhook_event_id": str(self.pk)},
            )
        super().save(*args, **kwargs)
