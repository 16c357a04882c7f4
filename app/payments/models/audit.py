"""
AuditEntry model: the immutable audit sink for payment events.

Entries are written by payments.services.audit_service.AuditService and
mirrored to the ``payments.audit`` logger. Critical entries (signature
rejections, owner drift, failed refunds) are the operator alert feed.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from payments.exceptions import InvalidStateTransitionError


class AuditAction(models.TextChoices):
    INTENT_CREATED = "intent_created", "Intent Created"
    INTENT_TRANSITION = "intent_transition", "Intent Transition"
    TRANSITION_DROPPED = "transition_dropped", "Transition Dropped"
    SIGNATURE_REJECTED = "signature_rejected", "Signature Rejected"
    WEBHOOK_APPLIED = "webhook_applied", "Webhook Applied"
    WEBHOOK_DUPLICATE = "webhook_duplicate", "Webhook Duplicate"
    WEBHOOK_UNMATCHED = "webhook_unmatched", "Webhook Unmatched"
    OWNER_MARKER_RECLAIMED = "owner_marker_reclaimed", "Owner Marker Reclaimed"
    OWNER_DRIFT_REPAIRED = "owner_drift_repaired", "Owner Drift Repaired"
    REFUND_REQUESTED = "refund_requested", "Refund Requested"
    REFUND_COMPLETED = "refund_completed", "Refund Completed"
    REFUND_FAILED = "refund_failed", "Refund Failed"
    SUBSCRIPTION_LAPSED = "subscription_lapsed", "Subscription Lapsed"


class AuditSeverity(models.TextChoices):
    INFO = "info", "Info"
    WARNING = "warning", "Warning"
    CRITICAL = "critical", "Critical"


class AuditEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    One audit record.

    Fields:
        action: What happened
        actor: Who caused it, e.g. "webhook:wallet_a", "user:<id>", "reconciliation"
        severity: info / warning / critical
        payment_intent: Intent concerned, if any
        provider: Provider concerned, if any
        from_state / to_state: Before/after state for transitions
        details: Free-form JSON context
        created_at: When the entry was written
    """

    action = models.CharField(max_length=40, choices=AuditAction.choices, db_index=True)

    actor = models.CharField(max_length=120)

    severity = models.CharField(
        max_length=10,
        choices=AuditSeverity.choices,
        default=AuditSeverity.INFO,
        db_index=True,
    )

    payment_intent = models.ForeignKey(
        "payments.PaymentIntent",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="audit_entries",
    )

    provider = models.CharField(max_length=20, blank=True)
    from_state = models.CharField(max_length=30, blank=True)
    to_state = models.CharField(max_length=30, blank=True)

    details = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Audit Entry"
        verbose_name_plural = "Audit Entries"
        indexes = [
            models.Index(fields=["severity", "created_at"]),
            models.Index(fields=["payment_intent", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"AuditEntry({self.action}, {self.severity}, {self.actor})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise InvalidStateTransitionError("Audit entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise InvalidStateTransitionError("Audit entries cannot be deleted")
