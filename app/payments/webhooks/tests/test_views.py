"""
Tests for the provider webhook endpoint.
"""

import pytest
from django.test import Client
from django.urls import reverse

from payments.models import PaymentIntent
from payments.state_machines import PaymentIntentStatus, PaymentProvider
from payments.tests.factories import BookingFactory, PaymentIntentFactory
from payments.webhooks.tests.signing import encode, wallet_a_signature, wallet_b_signature


def _url(provider):
    return reverse("payments:provider_webhook", kwargs={"provider": provider})


@pytest.fixture
def client():
    return Client(enforce_csrf_checks=True)


@pytest.mark.django_db
class TestProviderWebhookView:
    def test_url(self):
        assert _url("wallet_a") == "/api/v1/payments/webhooks/wallet_a/"

    def test_wallet_a_delivery_settles(self, client, webhook_settings, awaiting_intent):
        body = encode({"id": awaiting_intent.provider_reference, "paymentStatus": "PAYMENT_SUCCESS"})

        response = client.post(
            _url(PaymentProvider.WALLET_A),
            data=body,
            content_type="application/json",
            headers={"X-WalletA-Signature": wallet_a_signature(body)},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert PaymentIntent.objects.get(pk=awaiting_intent.pk).status == PaymentIntentStatus.SETTLED

    def test_wallet_b_acknowledged_as_text(self, client, webhook_settings):
        PaymentIntentFactory(
            booking=BookingFactory(), provider=PaymentProvider.WALLET_B, provider_reference="PSP1", awaiting=True
        )
        body = encode(
            {
                "notificationItems": [
                    {
                        "NotificationRequestItem": {
                            "pspReference": "PSP1",
                            "eventCode": "AUTHORISATION",
                            "success": "true",
                        }
                    }
                ]
            }
        )

        response = client.post(
            _url(PaymentProvider.WALLET_B),
            data=body,
            content_type="application/json",
            headers={"X-WalletB-Signature": wallet_b_signature(body)},
        )

        assert response.status_code == 200
        assert response.content == b"[accepted]"
        assert response["Content-Type"].startswith("text/plain")

    def test_invalid_signature(self, client, webhook_settings, awaiting_intent):
        body = encode({"id": awaiting_intent.provider_reference, "paymentStatus": "PAYMENT_SUCCESS"})

        response = client.post(
            _url(PaymentProvider.WALLET_A),
            data=body,
            content_type="application/json",
            headers={"X-WalletA-Signature": "0" * 64},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "invalid signature"}
        assert PaymentIntent.objects.get(pk=awaiting_intent.pk).status == PaymentIntentStatus.AWAITING_PROVIDER_RESULT

    def test_unconfigured_secret_rejects(self, client, settings):
        settings.WALLET_A_WEBHOOK_SECRET = ""
        body = encode({"id": "chk_1", "paymentStatus": "PAYMENT_SUCCESS"})

        response = client.post(
            _url(PaymentProvider.WALLET_A),
            data=body,
            content_type="application/json",
            headers={"X-WalletA-Signature": wallet_a_signature(body, secret="")},
        )

        assert response.status_code == 401

    def test_unknown_provider(self, client):
        response = client.post(_url("cash"), data=b"{}", content_type="application/json")

        assert response.status_code == 404

    def test_get_not_allowed(self, client):
        response = client.get(_url(PaymentProvider.WALLET_A))

        assert response.status_code == 405
