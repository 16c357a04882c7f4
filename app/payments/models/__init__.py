"""
Payment domain models.

- PaymentIntent: one attempt to collect money through one provider
- WebhookEvent: idempotency ledger of processed provider deliveries
- Refund: reversal of a settled intent
- AuditEntry: immutable audit sink
- ReconciliationRun / ReconciliationDiscrepancy: scanner history and findings
- Subscription: plan subscription (second owning entity)
- UsageRecord: metered feature consumption per period
"""

from payments.entitlements.models import UsageRecord
from payments.models.audit import AuditAction, AuditEntry, AuditSeverity
from payments.models.payment_intent import NON_TERMINAL_STATUSES, PaymentIntent
from payments.models.reconciliation import (
    DiscrepancyResolution,
    DiscrepancyType,
    ReconciliationDiscrepancy,
    ReconciliationRun,
    ReconciliationRunStatus,
)
from payments.models.refund import Refund
from payments.models.subscription import Subscription
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditSeverity",
    "DiscrepancyResolution",
    "DiscrepancyType",
    "NON_TERMINAL_STATUSES",
    "PaymentIntent",
    "ReconciliationDiscrepancy",
    "ReconciliationRun",
    "ReconciliationRunStatus",
    "Refund",
    "Subscription",
    "UsageRecord",
    "WebhookEvent",
]
