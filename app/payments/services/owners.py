"""
Owner helpers: the Booking or Subscription a payment intent pays for.

Both owner models carry the same payment fields (payment_status,
payment_intent_in_progress, version), so checkout, settlement and
reconciliation treat them uniformly through these helpers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db.models import F
from django.utils import timezone

from bookings.models import Booking
from payments.models import Subscription
from payments.state_machines import PaymentPurpose

if TYPE_CHECKING:
    import uuid

    from django.db import models

    from payments.models import PaymentIntent


def owner_model_for(purpose: str) -> type[models.Model]:
    if purpose == PaymentPurpose.BOOKING_PAYMENT:
        return Booking
    return Subscription


def owner_id_of(intent: PaymentIntent) -> uuid.UUID:
    if intent.purpose == PaymentPurpose.BOOKING_PAYMENT:
        return intent.booking_id
    return intent.subscription_id


def lock_owner(intent: PaymentIntent):
    """Load the owner row FOR UPDATE (call inside transaction.atomic)."""
    model = owner_model_for(intent.purpose)
    return model.objects.select_for_update().get(pk=owner_id_of(intent))


def claim_marker(purpose: str, owner_id, intent_id, expected=None) -> bool:
    """
    Point the owner's in-progress marker at ``intent_id``.

    Conditional on the marker still holding ``expected`` (None = free).
    """
    model = owner_model_for(purpose)
    if expected is None:
        queryset = model.objects.filter(pk=owner_id, payment_intent_in_progress__isnull=True)
    else:
        queryset = model.objects.filter(pk=owner_id, payment_intent_in_progress=expected)
    return bool(
        queryset.update(
            payment_intent_in_progress=intent_id,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
    )


def release_marker(purpose: str, owner_id, intent_id) -> bool:
    """Clear the marker only if it still points at ``intent_id``."""
    model = owner_model_for(purpose)
    return bool(
        model.objects.filter(pk=owner_id, payment_intent_in_progress=intent_id).update(
            payment_intent_in_progress=None,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
    )
