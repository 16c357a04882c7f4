"""
Notification dispatch for payment status changes.

Settlement schedules dispatch_payment_notification() with
transaction.on_commit, so receivers only hear about committed states.
Dispatch is fire-and-forget: a broker outage or a failing receiver is
logged and never propagates into payment processing.

Receivers (email, in-app notifications) connect to the signal:

    from payments.notifications import payment_status_changed

    @receiver(payment_status_changed)
    def notify_client(sender, intent_id, status, event, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.dispatch import Signal

logger = logging.getLogger(__name__)

# Sent with: intent_id (str), status (str), event (str), extra (dict)
payment_status_changed = Signal()


class NotificationEvent:
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_EXPIRED = "payment_expired"
    REFUND_FAILED = "refund_failed"


def dispatch_payment_notification(intent_id, status: str, event: str, extra: dict | None = None) -> None:
    """Queue a notification; errors are logged and swallowed."""
    from payments.tasks import send_payment_notification

    try:
        send_payment_notification.delay(str(intent_id), str(status), event, extra or {})
    except Exception:
        logger.exception(
            "Failed to enqueue payment notification",
            extra={"intent_id": str(intent_id), "status": str(status), "event": event},
        )


def emit_payment_status_changed(intent_id: str, status: str, event: str, extra: dict | None = None) -> int:
    """
    Send the signal to all receivers.

    Returns the number of receivers that raised; their errors are logged.
    """
    failures = 0
    responses = payment_status_changed.send_robust(
        sender="payments",
        intent_id=intent_id,
        status=status,
        event=event,
        extra=extra or {},
    )
    for receiver, response in responses:
        if isinstance(response, Exception):
            failures += 1
            logger.error(
                f"Payment notification receiver failed: {response}",
                extra={"intent_id": intent_id, "event": event, "receiver": repr(receiver)},
                exc_info=response,
            )
    return failures
