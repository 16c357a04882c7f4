"""
Payment admin configuration.

Registers payment domain models with the Django admin. Intents, webhook
events, audit entries and refunds are read-only here: state changes go
through the service layer. The only write paths are the "reject" action
on awaiting intents and the discrepancy review action.
"""

from django.contrib import admin, messages
from django.utils import timezone

from core.exceptions import BaseApplicationError
from payments.models import (
    AuditEntry,
    DiscrepancyResolution,
    PaymentIntent,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    Refund,
    Subscription,
    UsageRecord,
    WebhookEvent,
)
from payments.services import SettlementService
from payments.state_machines import PaymentIntentStatus

__all__ = [
    "AuditEntryAdmin",
    "PaymentIntentAdmin",
    "ReconciliationDiscrepancyAdmin",
    "ReconciliationRunAdmin",
    "RefundAdmin",
    "SubscriptionAdmin",
    "UsageRecordAdmin",
    "WebhookEventAdmin",
]


class ReadOnlyAdminMixin:
    """Records written only by services; admin can look, not touch."""

    def has_add_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


def _amount(amount_minor: int, currency: str) -> str:
    return f"{amount_minor / 100:.2f} {currency}"


# =============================================================================
# Payment Intent Admin
# =============================================================================


class RefundInline(admin.TabularInline):
    model = Refund
    extra = 0
    fields = ["id", "amount_minor", "currency", "status", "provider_refund_id", "created_at"]
    readonly_fields = fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PaymentIntent)
class PaymentIntentAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for PaymentIntent.

    Provides visibility into payment attempts and their states. Intents
    awaiting a provider result can be rejected after review.
    """

    list_display = [
        "id",
        "provider",
        "purpose",
        "owner_key",
        "amount_display",
        "status",
        "attempt_count",
        "created_at",
    ]
    list_filter = ["status", "provider", "purpose", "currency", "created_at"]
    search_fields = ["id", "provider_reference", "owner_key"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [RefundInline]
    actions = ["reject_selected"]

    fieldsets = (
        (None, {"fields": ("id", "provider", "purpose", "status")}),
        ("Owner", {"fields": ("owner_key", "booking", "subscription", "plan_tier")}),
        ("Amount", {"fields": ("amount_minor", "currency")}),
        (
            "Provider",
            {"fields": ("provider_reference", "attempt_count", "last_polled_at", "provider_metadata")},
        ),
        (
            "Details",
            {
                "fields": ("failure_reason", "return_context", "initiated_by", "version"),
                "classes": ("collapse",),
            },
        ),
        ("Timestamps", {"fields": ("created_at", "last_transition_at", "updated_at")}),
    )

    def amount_display(self, obj: PaymentIntent) -> str:
        return _amount(obj.amount_minor, obj.currency)

    amount_display.short_description = "Amount"

    @admin.action(description="Reject selected intents awaiting a provider result")
    def reject_selected(self, request, queryset):
        service = SettlementService()
        rejected = 0
        for intent in queryset.filter(status=PaymentIntentStatus.AWAITING_PROVIDER_RESULT):
            try:
                service.reject(intent.id, reason="Rejected via admin", actor=f"admin:{request.user.pk}")
            except BaseApplicationError as e:
                self.message_user(request, f"{intent.id}: {e.message}", level=messages.WARNING)
                continue
            rejected += 1
        self.message_user(request, f"Rejected {rejected} payment intents.")


# =============================================================================
# Refund Admin
# =============================================================================


@admin.register(Refund)
class RefundAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Refund history. Failed refunds need operator follow-up."""

    list_display = [
        "id",
        "payment_intent",
        "amount_display",
        "status",
        "provider_refund_id",
        "requested_by",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = ["id", "payment_intent__id", "provider_refund_id", "idempotency_key"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def amount_display(self, obj: Refund) -> str:
        return _amount(obj.amount_minor, obj.currency)

    amount_display.short_description = "Amount"


# =============================================================================
# Webhook & Audit Admin
# =============================================================================


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = [
        "external_event_id",
        "provider",
        "event_type",
        "outcome",
        "payment_intent",
        "received_at",
    ]
    list_filter = ["provider", "outcome", "event_type", "received_at"]
    search_fields = ["external_event_id", "payment_intent__id", "payload_digest"]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]


@admin.register(AuditEntry)
class AuditEntryAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Audit trail. Filter on severity=critical for the operator alert feed.
    """

    list_display = [
        "created_at",
        "action",
        "severity",
        "actor",
        "payment_intent",
        "from_state",
        "to_state",
    ]
    list_filter = ["severity", "action", "provider", "created_at"]
    search_fields = ["actor", "payment_intent__id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


# =============================================================================
# Subscription Admin
# =============================================================================


class UsageRecordInline(admin.TabularInline):
    model = UsageRecord
    extra = 0
    fields = ["feature_key", "period_key", "period_start", "consumed", "limit"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "subscriber",
        "plan_tier",
        "status",
        "payment_status",
        "current_period_end",
        "trial_ends_at",
    ]
    list_filter = ["status", "plan_tier", "payment_status"]
    search_fields = ["id", "subscriber__email"]
    # Lifecycle is driven by settlement and reconciliation
    readonly_fields = [
        "status",
        "payment_status",
        "payment_intent_in_progress",
        "last_settled_intent_id",
        "current_period_start",
        "current_period_end",
        "trial_converted_at",
        "lapsed_at",
        "cancelled_at",
        "version",
    ]
    inlines = [UsageRecordInline]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(UsageRecord)
class UsageRecordAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["subscription", "feature_key", "period_key", "period_start", "consumed", "limit"]
    list_filter = ["feature_key", "period_start"]
    search_fields = ["subscription__id"]


# =============================================================================
# Reconciliation Admin
# =============================================================================


class ReconciliationDiscrepancyInline(admin.TabularInline):
    """Inline display of discrepancies for a reconciliation run."""

    model = ReconciliationDiscrepancy
    extra = 0
    readonly_fields = [
        "id",
        "entity_type",
        "entity_id",
        "provider_reference",
        "discrepancy_type",
        "local_state",
        "provider_state",
        "resolution",
        "reviewed",
    ]
    fields = readonly_fields
    can_delete = False
    show_change_link = True

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for ReconciliationRun.

    Runs are created by the reconciliation service and should not be
    manually modified.
    """

    list_display = [
        "id",
        "started_at",
        "status",
        "duration_display",
        "intents_checked",
        "owners_checked",
        "subscriptions_checked",
        "discrepancies_found",
        "auto_healed",
        "flagged_for_review",
        "failed_to_heal",
    ]
    list_filter = ["status", "started_at"]
    search_fields = ["id"]
    date_hierarchy = "started_at"
    ordering = ["-started_at"]
    inlines = [ReconciliationDiscrepancyInline]

    def duration_display(self, obj: ReconciliationRun) -> str:
        """Display the run duration in human-readable format."""
        if obj.duration_seconds is not None:
            return f"{obj.duration_seconds:.1f}s"
        return "Running..."

    duration_display.short_description = "Duration"


@admin.register(ReconciliationDiscrepancy)
class ReconciliationDiscrepancyAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationDiscrepancy.

    Provides a review queue for operators to investigate and resolve
    flagged discrepancies. Supports bulk marking as reviewed.
    """

    list_display = [
        "id",
        "run",
        "entity_type",
        "entity_id",
        "discrepancy_type",
        "local_state",
        "provider_state",
        "resolution",
        "reviewed",
        "created_at",
    ]
    list_filter = ["resolution", "reviewed", "entity_type", "discrepancy_type", "created_at"]
    search_fields = ["id", "entity_id", "provider_reference"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "run",
        "entity_type",
        "entity_id",
        "provider_reference",
        "discrepancy_type",
        "local_state",
        "provider_state",
        "details",
        "resolution",
        "action_taken",
        "error_message",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["mark_reviewed"]

    @admin.action(description="Mark selected discrepancies as reviewed")
    def mark_reviewed(self, request, queryset):
        """Bulk action to mark discrepancies as reviewed."""
        count = queryset.filter(
            resolution=DiscrepancyResolution.FLAGGED_FOR_REVIEW,
            reviewed=False,
        ).update(
            reviewed=True,
            reviewed_at=timezone.now(),
            reviewed_by=request.user,
        )
        self.message_user(request, f"Marked {count} discrepancies as reviewed.")

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
