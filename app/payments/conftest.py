"""
Pytest fixtures for payment tests.

This module provides fixtures for creating payment-related test data.
Fixtures are designed to provide objects in various states for testing
state transitions and business logic.

Provider adapters are never called for real: services are built with an
AdapterRegistry holding ``mock_adapter``, and settlement notifications go
to the ``notify`` mock.

Usage:
    def test_settles(settlement, awaiting_intent):
        settlement.apply(awaiting_intent.id, PaymentOutcome.SUCCEEDED)
        assert PaymentIntent.objects.get(pk=awaiting_intent.pk).status == "settled"
"""

from unittest.mock import MagicMock

import pytest

from bookings.models import Booking
from payments.adapters import AdapterRegistry, PaymentProviderAdapter, SessionResult
from payments.models import PaymentIntent, Subscription
from payments.services import CheckoutService, SettlementService
from payments.state_machines import PaymentOutcome, PaymentProvider
from payments.tests.factories import (
    BookingFactory,
    PaymentIntentFactory,
    StaffUserFactory,
    SubscriptionFactory,
    SubscriptionPaymentIntentFactory,
    UserFactory,
)


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def other_user(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    return StaffUserFactory()


# =============================================================================
# Owner Fixtures
# =============================================================================


@pytest.fixture
def booking(db, user):
    """Booking awaiting payment, owned by ``user``."""
    return BookingFactory(client=user)


@pytest.fixture
def subscription(db, user):
    """Active free-tier subscription owned by ``user``."""
    return SubscriptionFactory(subscriber=user)


@pytest.fixture
def trial_subscription(db, user):
    """Pro trial that has not converted yet."""
    return SubscriptionFactory(subscriber=user, trial=True)


# =============================================================================
# PaymentIntent State Fixtures
# =============================================================================


def _hold_marker(intent: PaymentIntent) -> PaymentIntent:
    """Point the owner's in-progress marker at ``intent`` like checkout does."""
    if intent.booking_id:
        Booking.objects.filter(pk=intent.booking_id).update(payment_intent_in_progress=intent.id)
    else:
        Subscription.objects.filter(pk=intent.subscription_id).update(
            payment_intent_in_progress=intent.id
        )
    return intent


@pytest.fixture
def created_intent(db, booking):
    """Intent written by checkout before the provider answered."""
    return _hold_marker(PaymentIntentFactory(booking=booking))


@pytest.fixture
def awaiting_intent(db, booking):
    """Booking intent awaiting its provider result."""
    return _hold_marker(PaymentIntentFactory(booking=booking, awaiting=True))


@pytest.fixture
def awaiting_subscription_intent(db, subscription):
    """Pro upgrade intent awaiting its provider result."""
    return _hold_marker(SubscriptionPaymentIntentFactory(subscription=subscription, awaiting=True))


@pytest.fixture
def settled_intent(db, settlement, awaiting_intent):
    """Booking intent settled through the settlement engine."""
    settlement.apply(
        awaiting_intent.id,
        PaymentOutcome.SUCCEEDED,
        {"payment_id": "pay_settled_1", "capture_id": "CAP-1"},
        actor="test",
    )
    return PaymentIntent.objects.get(pk=awaiting_intent.pk)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def notify():
    """Stands in for dispatch_payment_notification."""
    return MagicMock(name="notify")


@pytest.fixture
def settlement(notify):
    return SettlementService(notify=notify)


@pytest.fixture
def mock_adapter():
    """
    Adapter mock shared by every provider in ``adapters``.

    create_session returns a fresh provider reference per call.
    """
    adapter = MagicMock(spec=PaymentProviderAdapter)
    counter = iter(range(1, 10_000))
    adapter.create_session.side_effect = lambda params: SessionResult(
        provider_reference=f"chk_{next(counter)}",
        redirect_url="https://checkout.example.com/session",
    )
    return adapter


@pytest.fixture
def adapters(mock_adapter):
    return AdapterRegistry({provider: mock_adapter for provider in PaymentProvider.values})


@pytest.fixture
def checkout(adapters, settlement):
    return CheckoutService(adapters=adapters, settlement=settlement)
