"""
Tests for payment Celery tasks and notification dispatch.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from payments.models import WebhookEvent
from payments.notifications import (
    NotificationEvent,
    dispatch_payment_notification,
    emit_payment_status_changed,
    payment_status_changed,
)
from payments.tasks import purge_expired_webhook_events, send_payment_notification
from payments.tests.factories import WebhookEventFactory


@pytest.fixture
def receiver():
    """Connect a mock receiver to payment_status_changed for one test."""
    handler = MagicMock(name="receiver")
    payment_status_changed.connect(handler, weak=False)
    yield handler
    payment_status_changed.disconnect(handler)


# =============================================================================
# Notifications
# =============================================================================


class TestNotificationDispatch:
    def test_dispatch_runs_task(self, receiver):
        """Eager Celery delivers the signal inline."""
        dispatch_payment_notification("intent-1", "settled", NotificationEvent.PAYMENT_SETTLED)

        receiver.assert_called_once()
        kwargs = receiver.call_args.kwargs
        assert kwargs["intent_id"] == "intent-1"
        assert kwargs["status"] == "settled"
        assert kwargs["event"] == NotificationEvent.PAYMENT_SETTLED
        assert kwargs["extra"] == {}

    def test_broker_errors_are_swallowed(self):
        with patch(
            "payments.tasks.send_payment_notification.delay",
            side_effect=ConnectionError("broker down"),
        ):
            dispatch_payment_notification("intent-1", "failed", NotificationEvent.PAYMENT_FAILED)

    def test_failing_receiver_is_counted(self, receiver):
        broken = MagicMock(side_effect=ValueError("smtp refused"))
        payment_status_changed.connect(broken, weak=False)
        try:
            failures = emit_payment_status_changed("intent-1", "expired", NotificationEvent.PAYMENT_EXPIRED)
        finally:
            payment_status_changed.disconnect(broken)

        assert failures == 1
        receiver.assert_called_once()

    def test_send_task_returns_failure_count(self, receiver):
        assert send_payment_notification("intent-1", "settled", NotificationEvent.PAYMENT_SETTLED) == 0


# =============================================================================
# Webhook Event Retention
# =============================================================================


@pytest.mark.django_db
class TestPurgeExpiredWebhookEvents:
    """Tests for purge_expired_webhook_events task."""

    def _make_event(self, days_old):
        event = WebhookEventFactory()
        WebhookEvent.objects.filter(pk=event.pk).update(received_at=timezone.now() - timedelta(days=days_old))
        return event

    def test_deletes_old_events(self):
        old = self._make_event(days_old=40)
        recent = self._make_event(days_old=5)

        result = purge_expired_webhook_events(days=30)

        assert result == {"deleted_count": 1}
        assert not WebhookEvent.objects.filter(pk=old.pk).exists()
        assert WebhookEvent.objects.filter(pk=recent.pk).exists()

    def test_uses_retention_setting(self, settings):
        settings.WEBHOOK_EVENT_RETENTION_DAYS = 3
        self._make_event(days_old=5)

        assert purge_expired_webhook_events() == {"deleted_count": 1}

    def test_zero_retention_keeps_everything(self):
        self._make_event(days_old=400)

        assert purge_expired_webhook_events(days=0) == {"deleted_count": 0}
        assert WebhookEvent.objects.count() == 1
