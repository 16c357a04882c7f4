"""
Reconciliation models for tracking scanner runs and their findings.

- ReconciliationRun: one execution of the reconciliation scanner
- ReconciliationDiscrepancy: one finding and how it was resolved

Discrepancies flagged for review form the operator review queue.

Usage:
    from payments.models import ReconciliationRun, ReconciliationDiscrepancy

    run = ReconciliationRun.objects.create(
        started_at=timezone.now(),
        expiry_hours=24,
        max_records=500,
    )
    ReconciliationDiscrepancy.objects.create(
        run=run,
        entity_type="payment_intent",
        entity_id=intent.id,
        provider_reference=intent.provider_reference or "",
        discrepancy_type=DiscrepancyType.LATE_SUCCESS,
        local_state="awaiting_provider_result",
        provider_state="succeeded",
        resolution=DiscrepancyResolution.AUTO_HEALED,
        action_taken="Settled intent from provider status",
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class ReconciliationRunStatus(models.TextChoices):
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class DiscrepancyType(models.TextChoices):
    EXPIRED_WITHOUT_RECORD = "expired_without_record", "Expired Without Provider Record"
    CAPTURE_TIMED_OUT = "capture_timed_out", "Capture Not Completed Before Timeout"
    LATE_SUCCESS = "late_success", "Late Success"
    LATE_DECLINE = "late_decline", "Late Decline"
    OWNER_STATUS_DRIFT = "owner_status_drift", "Owner Status Drift"
    STALE_OWNER_MARKER = "stale_owner_marker", "Stale Owner Marker"
    STUCK_CREATED = "stuck_created", "Stuck In Created"
    PROVIDER_UNREACHABLE = "provider_unreachable", "Provider Unreachable"
    SUBSCRIPTION_LAPSED = "subscription_lapsed", "Subscription Lapsed"


class DiscrepancyResolution(models.TextChoices):
    AUTO_HEALED = "auto_healed", "Auto Healed"
    FLAGGED_FOR_REVIEW = "flagged_for_review", "Flagged for Review"
    MANUALLY_RESOLVED = "manually_resolved", "Manually Resolved"
    FAILED_TO_HEAL = "failed_to_heal", "Failed to Heal"


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    One execution of the reconciliation scanner.

    The scanner creates the run at the start, fills in the counters as it
    goes and marks it completed or failed at the end.
    """

    started_at = models.DateTimeField()
    completed_at = models.DateTimeField(null=True, blank=True)

    expiry_hours = models.PositiveIntegerField(
        help_text="Age after which awaiting intents were polled/expired",
    )
    max_records = models.PositiveIntegerField(
        help_text="Per-check record cap used for this run",
    )

    intents_checked = models.PositiveIntegerField(default=0)
    owners_checked = models.PositiveIntegerField(default=0)
    subscriptions_checked = models.PositiveIntegerField(default=0)
    discrepancies_found = models.PositiveIntegerField(default=0)
    auto_healed = models.PositiveIntegerField(default=0)
    flagged_for_review = models.PositiveIntegerField(default=0)
    failed_to_heal = models.PositiveIntegerField(default=0)

    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
    )
    error_message = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["status", "started_at"]),
        ]
        ordering = ["-started_at"]

    def __str__(self) -> str:
        return f"ReconciliationRun({self.id}, {self.status}, {self.started_at})"

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class ReconciliationDiscrepancy(UUIDPrimaryKeyMixin, BaseModel):
    """
    One finding of a reconciliation run.

    entity_type is "payment_intent", "booking" or "subscription";
    entity_id is the id of that record.
    """

    run = models.ForeignKey(
        ReconciliationRun,
        on_delete=models.CASCADE,
        related_name="discrepancies",
    )

    entity_type = models.CharField(max_length=50, db_index=True)
    entity_id = models.UUIDField()
    provider_reference = models.CharField(max_length=255, blank=True)

    discrepancy_type = models.CharField(
        max_length=40,
        choices=DiscrepancyType.choices,
        db_index=True,
    )
    local_state = models.CharField(max_length=50)
    provider_state = models.CharField(max_length=50, blank=True)
    details = models.JSONField(default=dict, blank=True)

    resolution = models.CharField(
        max_length=20,
        choices=DiscrepancyResolution.choices,
        db_index=True,
    )
    action_taken = models.TextField(blank=True)
    error_message = models.TextField(blank=True)

    reviewed = models.BooleanField(default=False, db_index=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_discrepancies",
    )
    review_notes = models.TextField(blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["resolution", "reviewed"]),
            models.Index(fields=["entity_type", "entity_id"]),
            models.Index(fields=["run", "resolution"]),
        ]
        ordering = ["-created_at"]
        verbose_name_plural = "Reconciliation discrepancies"

    def __str__(self) -> str:
        return f"Discrepancy({self.entity_type}:{self.entity_id}, {self.discrepancy_type})"

    @property
    def needs_review(self) -> bool:
        return (
            self.resolution == DiscrepancyResolution.FLAGGED_FOR_REVIEW
            and not self.reviewed
        )


__all__ = [
    "DiscrepancyResolution",
    "DiscrepancyType",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
    "ReconciliationRunStatus",
]
