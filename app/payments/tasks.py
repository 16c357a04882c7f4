"""
Celery tasks for payment processing.

This module provides async tasks for:
- Delivering payment status notifications to signal receivers
- Periodic cleanup of old webhook dedup records

Usage:
    from payments.tasks import send_payment_notification

    send_payment_notification.delay(str(intent_id), "settled", "payment_settled", {})
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from payments.models import WebhookEvent
from payments.notifications import emit_payment_status_changed

logger = logging.getLogger(__name__)


# =============================================================================
# Notification Tasks
# =============================================================================


@shared_task(ignore_result=True)
def send_payment_notification(intent_id: str, status: str, event: str, extra: dict | None = None) -> int:
    """
    Emit payment_status_changed for out-of-scope collaborators.

    Receiver errors are logged by emit_payment_status_changed and never
    retried: notification is fire-and-forget.

    Returns:
        Number of receivers that failed
    """
    failures = emit_payment_status_changed(intent_id, status, event, extra)
    logger.info(
        "Payment notification sent",
        extra={"intent_id": intent_id, "status": status, "event": event, "failures": failures},
    )
    return failures


# =============================================================================
# Cleanup Tasks
# =============================================================================


@shared_task
def purge_expired_webhook_events(days: int | None = None) -> dict:
    """
    Periodic task to delete webhook dedup records past retention.

    Args:
        days: Retention in days (default: WEBHOOK_EVENT_RETENTION_DAYS;
            0 keeps records forever)

    Returns:
        Dict with count of events deleted
    """
    days = settings.WEBHOOK_EVENT_RETENTION_DAYS if days is None else days
    if days <= 0:
        return {"deleted_count": 0}

    cutoff = timezone.now() - timedelta(days=days)
    deleted_count, _ = WebhookEvent.objects.filter(received_at__lt=cutoff).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={
                "deleted_count": deleted_count,
                "cutoff_date": cutoff.isoformat(),
            },
        )

    return {"deleted_count": deleted_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================
# Re-exported so Celery autodiscover finds them.

from payments.workers import run_scheduled_reconciliation  # noqa: E402, F401
