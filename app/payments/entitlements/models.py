"""
UsageRecord model for metered feature consumption.

One row per (subscription, feature, period key). ``consumed`` only ever grows
within a period: increments are conditional UPDATEs performed by
EntitlementService, and a new period gets a new row instead of a reset.
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class UsageRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    Consumption counter for one metered feature in one period.

    Fields:
        subscription: Subscription the usage is billed against
        feature_key: Metered feature key from the plan catalog
        period_key: Period identity, ``YYYY-MM`` for calendar months or
            ``intent:<id>`` for the paid period opened by a settlement
        period_start: First day of the usage period
        consumed: Units consumed in the period (monotonic)
        limit: Limit derived from the effective plan (null = unlimited)

    Note:
        Do not call save() to change ``consumed``; use
        EntitlementService.track_usage() so concurrent increments stay
        within the limit.
    """

    subscription = models.ForeignKey(
        "payments.Subscription",
        on_delete=models.CASCADE,
        related_name="usage_records",
    )

    feature_key = models.CharField(max_length=50)

    period_key = models.CharField(
        max_length=64,
        help_text="YYYY-MM, or intent:<id> for a paid period",
    )

    period_start = models.DateField(
        help_text="First day of the usage period",
    )

    consumed = models.PositiveIntegerField(
        default=0,
        help_text="Units consumed in this period (never decreases)",
    )

    limit = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Limit from the effective plan; null means unlimited",
    )

    class Meta:
        ordering = ["-period_start", "feature_key"]
        verbose_name = "Usage Record"
        verbose_name_plural = "Usage Records"
        constraints = [
            models.UniqueConstraint(
                fields=["subscription", "feature_key", "period_key"],
                name="usage_record_unique_period",
            ),
        ]

    def __str__(self) -> str:
        limit = "unlimited" if self.limit is None else self.limit
        return f"UsageRecord({self.feature_key}, {self.period_key}, {self.consumed}/{limit})"

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(self.limit - self.consumed, 0)
