"""
Tests for the payments REST API.

Provider adapters are swapped for the shared mock by patching the adapter
class table, so views build their services exactly as in production.
"""

from unittest.mock import patch

import pytest
from django.urls import reverse
from rest_framework.test import APIClient

from payments.adapters.base import ProviderStatus, RefundResult
from payments.adapters.registry import ADAPTER_CLASSES
from payments.entitlements.plans import Feature, PlanTier
from payments.exceptions import ProviderUnavailableError
from payments.models import PaymentIntent, Refund
from payments.services.checkout_service import GENERIC_PROVIDER_MESSAGE
from payments.state_machines import PaymentIntentStatus, PaymentOutcome, PaymentProvider, PaymentPurpose, RefundState
from payments.tests.factories import BookingFactory


@pytest.fixture
def provider_mock(mock_adapter):
    with patch.dict(ADAPTER_CLASSES, {provider: lambda: mock_adapter for provider in PaymentProvider.values}):
        yield mock_adapter


@pytest.fixture
def api_client(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def staff_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


CHECKOUT_URL = "/api/v1/payments/checkout/"


def _booking_checkout(booking, **overrides):
    return {
        "purpose": PaymentPurpose.BOOKING_PAYMENT,
        "booking_id": str(booking.id),
        "amount_minor": booking.price_minor,
        "currency": "php",
        "provider": PaymentProvider.WALLET_A,
        "return_context": {"success_url": "https://app.example.com/ok"},
        **overrides,
    }


# =============================================================================
# Checkout
# =============================================================================


@pytest.mark.django_db
class TestCheckoutView:
    def test_requires_authentication(self, booking):
        response = APIClient().post(CHECKOUT_URL, _booking_checkout(booking), format="json")

        assert response.status_code == 401

    def test_booking_checkout(self, api_client, user, booking, provider_mock):
        response = api_client.post(CHECKOUT_URL, _booking_checkout(booking), format="json")

        assert response.status_code == 201
        assert response.data["redirect_url"] == "https://checkout.example.com/session"

        intent = PaymentIntent.objects.get(pk=response.data["intent_id"])
        assert intent.status == PaymentIntentStatus.AWAITING_PROVIDER_RESULT
        assert intent.currency == "PHP"
        assert intent.initiated_by_id == user.pk

    def test_subscription_checkout(self, api_client, subscription, provider_mock):
        response = api_client.post(
            CHECKOUT_URL,
            {
                "purpose": PaymentPurpose.SUBSCRIPTION_PAYMENT,
                "subscription_id": str(subscription.id),
                "plan_tier": PlanTier.PRO,
                "amount_minor": 39900,
                "currency": "PHP",
                "provider": PaymentProvider.GLOBAL_WALLET,
            },
            format="json",
        )

        assert response.status_code == 201
        intent = PaymentIntent.objects.get(pk=response.data["intent_id"])
        assert intent.plan_tier == PlanTier.PRO

    @pytest.mark.parametrize(
        "overrides",
        [
            {"booking_id": None},
            {"amount_minor": 0},
            {"provider": "cash"},
            {"purpose": "tip"},
        ],
    )
    def test_invalid_request(self, api_client, booking, overrides):
        payload = {k: v for k, v in _booking_checkout(booking, **overrides).items() if v is not None}

        response = api_client.post(CHECKOUT_URL, payload, format="json")

        assert response.status_code == 400

    def test_subscription_requires_plan_tier(self, api_client, subscription):
        response = api_client.post(
            CHECKOUT_URL,
            {
                "purpose": PaymentPurpose.SUBSCRIPTION_PAYMENT,
                "subscription_id": str(subscription.id),
                "amount_minor": 39900,
                "provider": PaymentProvider.WALLET_A,
            },
            format="json",
        )

        assert response.status_code == 400
        assert "plan_tier" in response.data

    def test_amount_mismatch(self, api_client, booking, provider_mock):
        response = api_client.post(CHECKOUT_URL, _booking_checkout(booking, amount_minor=100), format="json")

        assert response.status_code == 400
        assert response.data["error_code"] == "PAYMENT_VALIDATION_ERROR"
        provider_mock.create_session.assert_not_called()

    def test_someone_elses_booking(self, api_client, other_user):
        booking = BookingFactory(client=other_user)

        response = api_client.post(CHECKOUT_URL, _booking_checkout(booking), format="json")

        assert response.status_code == 403

    def test_unknown_booking(self, api_client, booking):
        payload = _booking_checkout(booking, booking_id="00000000-0000-0000-0000-000000000000")

        response = api_client.post(CHECKOUT_URL, payload, format="json")

        assert response.status_code == 404

    def test_payment_already_in_progress(self, api_client, awaiting_intent, provider_mock):
        response = api_client.post(CHECKOUT_URL, _booking_checkout(awaiting_intent.booking), format="json")

        assert response.status_code == 409
        provider_mock.create_session.assert_not_called()

    def test_provider_failure_is_generic(self, api_client, booking, provider_mock):
        provider_mock.create_session.side_effect = ProviderUnavailableError(
            "wallet-a gateway timeout at 10.0.0.12",
            provider=PaymentProvider.WALLET_A,
        )

        response = api_client.post(CHECKOUT_URL, _booking_checkout(booking), format="json")

        assert response.status_code == 503
        assert response.data == {"error": GENERIC_PROVIDER_MESSAGE, "error_code": "PROVIDER_UNAVAILABLE"}
        assert PaymentIntent.objects.get(booking=booking).status == PaymentIntentStatus.FAILED


# =============================================================================
# Intent Status and Confirm
# =============================================================================


@pytest.mark.django_db
class TestPaymentIntentDetailView:
    def _url(self, intent):
        return reverse("payments:intent_detail", kwargs={"intent_id": intent.id})

    def test_owner_sees_intent(self, api_client, awaiting_intent):
        response = api_client.get(self._url(awaiting_intent))

        assert response.status_code == 200
        assert response.data["status"] == PaymentIntentStatus.AWAITING_PROVIDER_RESULT
        assert response.data["amount_minor"] == awaiting_intent.amount_minor
        assert "provider_metadata" not in response.data

    def test_other_user_gets_not_found(self, other_user, awaiting_intent):
        client = APIClient()
        client.force_authenticate(user=other_user)

        response = client.get(self._url(awaiting_intent))

        assert response.status_code == 404

    def test_staff_sees_any_intent(self, staff_client, awaiting_intent):
        assert staff_client.get(self._url(awaiting_intent)).status_code == 200

    def test_subscription_intent_owner(self, api_client, awaiting_subscription_intent):
        response = api_client.get(self._url(awaiting_subscription_intent))

        assert response.status_code == 200
        assert response.data["purpose"] == PaymentPurpose.SUBSCRIPTION_PAYMENT


@pytest.mark.django_db
class TestConfirmPaymentView:
    def _url(self, intent):
        return reverse("payments:intent_confirm", kwargs={"intent_id": intent.id})

    def test_confirm_settles(self, api_client, awaiting_intent, provider_mock):
        provider_mock.verify.return_value = ProviderStatus(
            outcome=PaymentOutcome.SUCCEEDED, metadata={"payment_id": "pay_9"}
        )

        response = api_client.post(self._url(awaiting_intent), {"payload": {"token": "abc"}}, format="json")

        assert response.status_code == 200
        assert response.data == {"intent_id": str(awaiting_intent.id), "status": PaymentIntentStatus.SETTLED}
        provider_mock.verify.assert_called_once_with(awaiting_intent.provider_reference, {"token": "abc"})

    def test_confirm_pending(self, api_client, awaiting_intent, provider_mock):
        provider_mock.verify.return_value = ProviderStatus(outcome=None)

        response = api_client.post(self._url(awaiting_intent), {}, format="json")

        assert response.data["status"] == PaymentIntentStatus.AWAITING_PROVIDER_RESULT

    def test_confirm_settled_intent_skips_provider(self, api_client, settled_intent, provider_mock):
        response = api_client.post(self._url(settled_intent), {}, format="json")

        assert response.data["status"] == PaymentIntentStatus.SETTLED
        provider_mock.verify.assert_not_called()

    def test_provider_down(self, api_client, awaiting_intent, provider_mock):
        provider_mock.verify.side_effect = ProviderUnavailableError("upstream 502", provider=PaymentProvider.WALLET_A)

        response = api_client.post(self._url(awaiting_intent), {}, format="json")

        assert response.status_code == 503
        assert response.data["error"] == GENERIC_PROVIDER_MESSAGE


# =============================================================================
# Staff Operations
# =============================================================================


@pytest.mark.django_db
class TestRefundPaymentView:
    def _url(self, intent):
        return reverse("payments:intent_refund", kwargs={"intent_id": intent.id})

    def test_staff_refund(self, staff_client, settled_intent, provider_mock):
        provider_mock.refund.return_value = RefundResult("rf_1", "SUCCEEDED")

        response = staff_client.post(
            self._url(settled_intent), {"amount_minor": 10000, "reason": "Cancelled"}, format="json"
        )

        assert response.status_code == 201
        assert response.data["status"] == RefundState.COMPLETED
        assert response.data["provider_refund_id"] == "rf_1"
        assert Refund.objects.get().amount_minor == 10000

    def test_non_staff_forbidden(self, api_client, settled_intent):
        response = api_client.post(self._url(settled_intent), {"amount_minor": 100}, format="json")

        assert response.status_code == 403
        assert not Refund.objects.exists()

    def test_refund_of_unsettled_intent(self, staff_client, awaiting_intent, provider_mock):
        response = staff_client.post(self._url(awaiting_intent), {"amount_minor": 100}, format="json")

        assert response.status_code == 409
        provider_mock.refund.assert_not_called()


@pytest.mark.django_db
class TestRejectPaymentView:
    def _url(self, intent):
        return reverse("payments:intent_reject", kwargs={"intent_id": intent.id})

    def test_staff_reject(self, staff_client, awaiting_intent):
        response = staff_client.post(self._url(awaiting_intent), {"reason": "Fraud review"}, format="json")

        assert response.status_code == 200
        assert response.data["status"] == PaymentIntentStatus.REJECTED
        stored = PaymentIntent.objects.get(pk=awaiting_intent.pk)
        assert stored.failure_reason == "Fraud review"

    def test_reason_required(self, staff_client, awaiting_intent):
        response = staff_client.post(self._url(awaiting_intent), {}, format="json")

        assert response.status_code == 400

    def test_cannot_reject_settled(self, staff_client, settled_intent):
        response = staff_client.post(self._url(settled_intent), {"reason": "late"}, format="json")

        assert response.status_code == 409
        assert response.data["error_code"] == "INVALID_STATE_TRANSITION"

    def test_non_staff_forbidden(self, api_client, awaiting_intent):
        response = api_client.post(self._url(awaiting_intent), {"reason": "x"}, format="json")

        assert response.status_code == 403


# =============================================================================
# Entitlements
# =============================================================================


@pytest.mark.django_db
class TestEntitlementCheckView:
    def _url(self, subscription, feature):
        return reverse(
            "payments:entitlement_check",
            kwargs={"subscription_id": subscription.id, "feature_key": feature},
        )

    def test_metered_feature(self, api_client, subscription):
        response = api_client.get(self._url(subscription, Feature.SERVICES))

        assert response.status_code == 200
        assert response.data == {"allowed": True, "remaining": 5, "limit": 5, "tier": PlanTier.FREE}

    def test_boolean_feature_on_free_plan(self, api_client, subscription):
        response = api_client.get(self._url(subscription, Feature.PRO_BADGE))

        assert response.data["allowed"] is False
        assert response.data["limit"] is None

    def test_unknown_feature(self, api_client, subscription):
        response = api_client.get(self._url(subscription, "teleportation"))

        assert response.status_code == 400

    def test_other_users_subscription(self, other_user, subscription):
        client = APIClient()
        client.force_authenticate(user=other_user)

        response = client.get(self._url(subscription, Feature.SERVICES))

        assert response.status_code == 403
