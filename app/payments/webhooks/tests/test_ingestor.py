"""
Tests for WebhookIngestor.

Verifiers are built from test secrets and injected; settlement uses the
shared notify mock so no Celery task is queued.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests
from django.core.cache import cache

from bookings.models import Booking, BookingStatus
from payments.adapters import GlobalWalletAdapter
from payments.adapters.global_wallet import TOKEN_CACHE_KEY
from payments.adapters.registry import AdapterRegistry
from payments.entitlements.plans import PlanTier
from payments.models import AuditAction, AuditEntry, AuditSeverity, PaymentIntent, Subscription, WebhookEvent
from payments.services.refund_service import RefundService
from payments.state_machines import PaymentIntentStatus, PaymentProvider, RefundState, WebhookEventOutcome
from payments.tests.factories import BookingFactory, PaymentIntentFactory, SubscriptionPaymentIntentFactory
from payments.webhooks.ingestor import DEFERRED, WebhookIngestor
from payments.webhooks.signatures import (
    GlobalWalletSignatureVerifier,
    WalletASignatureVerifier,
    WalletBSignatureVerifier,
)
from payments.webhooks.tests.signing import (
    GLOBAL_WALLET_WEBHOOK_ID,
    WALLET_A_SECRET,
    WALLET_B_SECRET,
    encode,
    wallet_a_signature,
    wallet_b_signature,
)


@pytest.fixture
def ingestor(settlement, gw_public_key_pem):
    return WebhookIngestor(
        settlement=settlement,
        verifiers={
            PaymentProvider.WALLET_A: WalletASignatureVerifier(WALLET_A_SECRET),
            PaymentProvider.WALLET_B: WalletBSignatureVerifier(WALLET_B_SECRET),
            PaymentProvider.GLOBAL_WALLET: GlobalWalletSignatureVerifier(
                GLOBAL_WALLET_WEBHOOK_ID, gw_public_key_pem
            ),
        },
    )


def _send_wallet_a(ingestor, payload):
    body = encode(payload)
    return ingestor.handle(
        PaymentProvider.WALLET_A,
        body,
        {"X-WalletA-Signature": wallet_a_signature(body)},
    )


def _wallet_a_payload(intent, status="PAYMENT_SUCCESS"):
    return {"id": intent.provider_reference, "paymentStatus": status, "paymentId": "pay_1"}


# =============================================================================
# Request-level Rejections
# =============================================================================


@pytest.mark.django_db
class TestRejections:
    def test_unknown_provider(self, ingestor):
        result = ingestor.handle("cash", b"{}", {})

        assert result.status_code == 404
        assert result.detail == "unknown_provider"

    def test_bad_signature_is_audited_and_not_applied(self, ingestor, awaiting_intent):
        body = encode(_wallet_a_payload(awaiting_intent))

        result = ingestor.handle(
            PaymentProvider.WALLET_A,
            body,
            {"X-WalletA-Signature": wallet_a_signature(body, secret="forged")},
        )

        assert result.status_code == 401
        assert result.body == {"error": "invalid signature"}
        assert result.detail == "signature_rejected"

        entry = AuditEntry.objects.get(action=AuditAction.SIGNATURE_REJECTED)
        assert entry.severity == AuditSeverity.CRITICAL
        assert entry.provider == PaymentProvider.WALLET_A
        assert entry.details["reason"] == "signature mismatch"
        assert len(entry.details["payload_digest"]) == 64

        assert not WebhookEvent.objects.exists()
        stored = PaymentIntent.objects.get(pk=awaiting_intent.pk)
        assert stored.status == PaymentIntentStatus.AWAITING_PROVIDER_RESULT

    def test_missing_signature(self, ingestor):
        result = ingestor.handle(PaymentProvider.WALLET_A, b"{}", {})

        assert result.status_code == 401

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\xff\xfe"])
    def test_unusable_json(self, ingestor, body):
        result = ingestor.handle(
            PaymentProvider.WALLET_A,
            body,
            {"X-WalletA-Signature": wallet_a_signature(body)},
        )

        assert result.status_code == 400
        assert result.detail == "invalid_json"

    def test_payload_missing_fields(self, ingestor):
        result = _send_wallet_a(ingestor, {"paymentStatus": "PAYMENT_SUCCESS"})

        assert result.status_code == 400
        assert result.body == {"error": "invalid payload"}
        assert result.detail == "invalid_payload"


# =============================================================================
# Event Processing
# =============================================================================


@pytest.mark.django_db
class TestWalletAEvents:
    def test_success_settles_booking(self, ingestor, awaiting_intent, notify):
        result = _send_wallet_a(ingestor, _wallet_a_payload(awaiting_intent))

        assert result.status_code == 200
        assert result.body == {"received": True}
        assert result.is_json is True
        assert result.detail == WebhookEventOutcome.APPLIED

        stored = PaymentIntent.objects.get(pk=awaiting_intent.pk)
        assert stored.status == PaymentIntentStatus.SETTLED
        assert stored.provider_metadata["payment_id"] == "pay_1"
        assert Booking.objects.get(pk=awaiting_intent.booking_id).status == BookingStatus.CONFIRMED

        event = WebhookEvent.objects.get()
        assert event.external_event_id == f"{awaiting_intent.provider_reference}:PAYMENT_SUCCESS"
        assert event.outcome == "succeeded"
        assert event.payment_intent_id == awaiting_intent.id

        applied = AuditEntry.objects.get(action=AuditAction.WEBHOOK_APPLIED)
        assert applied.actor == "webhook:wallet_a"
        assert applied.to_state == PaymentIntentStatus.SETTLED

    def test_decline_fails_intent(self, ingestor, awaiting_intent):
        _send_wallet_a(ingestor, _wallet_a_payload(awaiting_intent, status="PAYMENT_FAILED"))

        stored = PaymentIntent.objects.get(pk=awaiting_intent.pk)
        assert stored.status == PaymentIntentStatus.FAILED
        assert Booking.objects.get(pk=awaiting_intent.booking_id).payment_intent_in_progress is None

    def test_non_final_event_is_recorded_only(self, ingestor, awaiting_intent):
        result = _send_wallet_a(ingestor, _wallet_a_payload(awaiting_intent, status="PENDING"))

        assert result.status_code == 200
        assert result.detail == WebhookEventOutcome.IGNORED
        assert WebhookEvent.objects.get().outcome == WebhookEventOutcome.IGNORED
        stored = PaymentIntent.objects.get(pk=awaiting_intent.pk)
        assert stored.status == PaymentIntentStatus.AWAITING_PROVIDER_RESULT

    def test_duplicate_delivery(self, ingestor, awaiting_intent, notify):
        payload = _wallet_a_payload(awaiting_intent)
        _send_wallet_a(ingestor, payload)

        result = _send_wallet_a(ingestor, payload)

        assert result.status_code == 200
        assert result.detail == "duplicate"
        assert WebhookEvent.objects.count() == 1
        assert AuditEntry.objects.filter(action=AuditAction.WEBHOOK_DUPLICATE).count() == 1
        assert AuditEntry.objects.filter(action=AuditAction.INTENT_TRANSITION).count() == 1

    def test_concurrent_duplicate_hits_unique_constraint(self, ingestor, awaiting_intent):
        payload = _wallet_a_payload(awaiting_intent)
        _send_wallet_a(ingestor, payload)

        with patch.object(WebhookEvent.objects, "seen", return_value=False):
            result = _send_wallet_a(ingestor, payload)

        assert result.detail == "duplicate"
        assert WebhookEvent.objects.count() == 1

    def test_unmatched_reference(self, ingestor):
        result = _send_wallet_a(ingestor, {"id": "chk_unknown", "paymentStatus": "PAYMENT_SUCCESS"})

        assert result.status_code == 200
        assert result.detail == WebhookEventOutcome.UNMATCHED

        event = WebhookEvent.objects.get()
        assert event.outcome == WebhookEventOutcome.UNMATCHED
        assert event.payment_intent is None

        entry = AuditEntry.objects.get(action=AuditAction.WEBHOOK_UNMATCHED)
        assert entry.severity == AuditSeverity.WARNING
        assert entry.details["provider_reference"] == "chk_unknown"

    def test_late_decline_after_settlement_is_dropped(self, ingestor, settled_intent):
        result = _send_wallet_a(ingestor, _wallet_a_payload(settled_intent, status="PAYMENT_FAILED"))

        assert result.status_code == 200
        stored = PaymentIntent.objects.get(pk=settled_intent.pk)
        assert stored.status == PaymentIntentStatus.SETTLED
        assert Booking.objects.get(pk=settled_intent.booking_id).status == BookingStatus.CONFIRMED
        assert AuditEntry.objects.filter(action=AuditAction.TRANSITION_DROPPED).exists()

    def test_outcome_before_session_confirmed_can_be_redelivered(self, ingestor, booking):
        """A webhook that beats checkout's confirmation does not block its redelivery."""
        intent = PaymentIntentFactory(booking=booking, provider_reference="chk_early_1")
        payload = _wallet_a_payload(intent)

        first = _send_wallet_a(ingestor, payload)

        assert first.status_code == 200
        assert first.detail == DEFERRED
        assert PaymentIntent.objects.get(pk=intent.pk).status == PaymentIntentStatus.CREATED
        assert not WebhookEvent.objects.exists()
        assert not AuditEntry.objects.filter(action=AuditAction.WEBHOOK_APPLIED).exists()
        assert AuditEntry.objects.filter(action=AuditAction.TRANSITION_DROPPED).exists()

        PaymentIntent.objects.filter(pk=intent.pk).update(status=PaymentIntentStatus.AWAITING_PROVIDER_RESULT)
        redelivery = _send_wallet_a(ingestor, payload)

        assert redelivery.detail == WebhookEventOutcome.APPLIED
        assert PaymentIntent.objects.get(pk=intent.pk).status == PaymentIntentStatus.SETTLED
        assert WebhookEvent.objects.get().outcome == "succeeded"

    def test_reference_of_another_provider_is_unmatched(self, ingestor, awaiting_intent):
        PaymentIntent.objects.filter(pk=awaiting_intent.pk).update(provider=PaymentProvider.WALLET_B)

        result = _send_wallet_a(ingestor, _wallet_a_payload(awaiting_intent))

        assert result.detail == WebhookEventOutcome.UNMATCHED


@pytest.mark.django_db
class TestWalletBEvents:
    def _send(self, ingestor, items):
        body = encode({"live": "false", "notificationItems": items})
        return ingestor.handle(
            PaymentProvider.WALLET_B,
            body,
            {"X-WalletB-Signature": wallet_b_signature(body)},
        )

    def test_batch_is_processed_item_by_item(self, ingestor):
        paid = PaymentIntentFactory(
            booking=BookingFactory(), provider=PaymentProvider.WALLET_B, provider_reference="PSP1", awaiting=True
        )
        refused = PaymentIntentFactory(
            booking=BookingFactory(), provider=PaymentProvider.WALLET_B, provider_reference="PSP2", awaiting=True
        )
        items = [
            {"NotificationRequestItem": {"pspReference": "PSP1", "eventCode": "AUTHORISATION", "success": "true"}},
            {
                "NotificationRequestItem": {
                    "pspReference": "PSP2",
                    "eventCode": "AUTHORISATION",
                    "success": "false",
                    "reason": "Refused",
                }
            },
            {"NotificationRequestItem": {"pspReference": "PSP9", "eventCode": "REPORT_AVAILABLE", "success": "true"}},
        ]

        result = self._send(ingestor, items)

        assert result.status_code == 200
        assert result.body == "[accepted]"
        assert result.is_json is False
        assert result.detail == "applied,applied,unmatched"
        assert PaymentIntent.objects.get(pk=paid.pk).status == PaymentIntentStatus.SETTLED
        refused = PaymentIntent.objects.get(pk=refused.pk)
        assert refused.status == PaymentIntentStatus.FAILED
        assert refused.provider_metadata["reason"] == "Refused"

    def test_bad_signature_gets_json_error(self, ingestor):
        result = ingestor.handle(PaymentProvider.WALLET_B, b"{}", {"X-WalletB-Signature": "AAAA"})

        assert result.status_code == 401
        assert result.is_json is True


@pytest.mark.django_db
class TestGlobalWalletEvents:
    def test_capture_completed_upgrades_subscription(self, ingestor, subscription, gw_headers):
        intent = SubscriptionPaymentIntentFactory(
            subscription=subscription,
            provider=PaymentProvider.GLOBAL_WALLET,
            provider_reference="ORDER-1",
            awaiting=True,
        )
        Subscription.objects.filter(pk=subscription.pk).update(payment_intent_in_progress=intent.id)
        body = encode(
            {
                "id": "WH-1",
                "event_type": "PAYMENT.CAPTURE.COMPLETED",
                "resource": {
                    "id": "CAP-1",
                    "status": "COMPLETED",
                    "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}},
                },
            }
        )

        result = ingestor.handle(PaymentProvider.GLOBAL_WALLET, body, gw_headers(body))

        assert result.status_code == 200
        stored = PaymentIntent.objects.get(pk=intent.pk)
        assert stored.status == PaymentIntentStatus.SETTLED
        assert stored.provider_metadata["capture_id"] == "CAP-1"
        assert Subscription.objects.get(pk=subscription.pk).plan_tier == PlanTier.PRO

    def test_order_completed_settlement_can_be_refunded(self, ingestor, booking, gw_headers, notify):
        intent = PaymentIntentFactory(
            booking=booking,
            provider=PaymentProvider.GLOBAL_WALLET,
            provider_reference="ORDER-9",
            awaiting=True,
        )
        body = encode(
            {
                "id": "WH-9",
                "event_type": "CHECKOUT.ORDER.COMPLETED",
                "resource": {
                    "id": "ORDER-9",
                    "status": "COMPLETED",
                    "purchase_units": [{"payments": {"captures": [{"id": "CAP-9", "status": "COMPLETED"}]}}],
                },
            }
        )
        ingestor.handle(PaymentProvider.GLOBAL_WALLET, body, gw_headers(body))

        stored = PaymentIntent.objects.get(pk=intent.pk)
        assert stored.status == PaymentIntentStatus.SETTLED
        assert stored.provider_metadata["capture_id"] == "CAP-9"

        http_session = MagicMock(spec=requests.Session)
        response = MagicMock(spec=requests.Response)
        response.status_code = 201
        response.content = b'{"id": "RF-9", "status": "COMPLETED"}'
        response.json.return_value = {"id": "RF-9", "status": "COMPLETED"}
        http_session.request.return_value = response
        cache.set(TOKEN_CACHE_KEY, "cached-token")
        adapter = GlobalWalletAdapter(
            client_id="client-id",
            client_secret="client-secret",
            base_url="https://global-wallet.test",
            session=http_session,
        )
        refunds = RefundService(adapters=AdapterRegistry({PaymentProvider.GLOBAL_WALLET: adapter}), notify=notify)

        refund = refunds.refund(intent.id, 1000, reason="Customer request")

        assert refund.status == RefundState.COMPLETED
        assert refund.provider_refund_id == "RF-9"
        assert http_session.request.call_args.args == (
            "POST",
            "https://global-wallet.test/v2/payments/captures/CAP-9/refund",
        )

    @pytest.mark.parametrize(
        "resource",
        [
            {"id": "CAP-1", "supplementary_data": "x"},
            {"id": "CAP-1", "supplementary_data": {"related_ids": "ORDER-1"}},
        ],
    )
    def test_malformed_capture_resource_is_rejected(self, ingestor, gw_headers, resource):
        body = encode({"id": "WH-5", "event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": resource})

        result = ingestor.handle(PaymentProvider.GLOBAL_WALLET, body, gw_headers(body))

        assert result.status_code == 400
        assert result.detail == "invalid_payload"
        assert not WebhookEvent.objects.exists()

    def test_signature_from_other_webhook_id_rejected(self, ingestor, gw_headers):
        body = encode({"id": "WH-1", "event_type": "CHECKOUT.ORDER.APPROVED", "resource": {"id": "ORDER-1"}})

        result = ingestor.handle(
            PaymentProvider.GLOBAL_WALLET, body, gw_headers(body, webhook_id="WH-OTHER")
        )

        assert result.status_code == 401
