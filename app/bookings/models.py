"""
Booking model.

A Booking is one of the two entities a payment intent can belong to.
The payments app reads its authoritative price, claims its
payment-in-progress marker during checkout and writes its payment status
when an intent reaches a terminal state.

Usage:
    from bookings.models import Booking

    booking = Booking.objects.create(
        client=user,
        service_provider=provider,
        title="Deep cleaning, 3 hours",
        price_minor=50000,
    )
    booking.is_payable  # True until a payment settles
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel
from payments.state_machines import PaymentIntentStatus


class BookingStatus(models.TextChoices):
    PENDING_PAYMENT = "pending_payment", "Pending Payment"
    CONFIRMED = "confirmed", "Confirmed"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class Booking(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A client's reservation of a service.

    Fields:
        client: User who pays for the booking
        service_provider: User delivering the service
        title: Short description shown on receipts
        price_minor: Authoritative price in minor units (centavos)
        currency: ISO 4217 currency code
        status: Booking lifecycle status
        payment_status: Terminal status of the latest finished payment
            intent (null until one finishes)
        payment_intent_in_progress: ID of the non-terminal intent currently
            collecting money, claimed by conditional update at checkout
        paid_at: When a payment settled
    """

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
        help_text="User paying for the booking",
    )

    service_provider = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="provided_bookings",
        help_text="User delivering the booked service",
    )

    title = models.CharField(max_length=200)

    price_minor = models.PositiveBigIntegerField(
        help_text="Authoritative price in smallest currency unit",
    )

    currency = models.CharField(max_length=3, default="PHP")

    status = models.CharField(
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING_PAYMENT,
        db_index=True,
    )

    scheduled_for = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Payment State (written only by the payments app)
    # ==========================================================================

    payment_status = models.CharField(
        max_length=30,
        choices=PaymentIntentStatus.choices,
        null=True,
        blank=True,
        help_text="Terminal status of the latest finished payment intent",
    )

    payment_intent_in_progress = models.UUIDField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Non-terminal payment intent currently holding the checkout",
    )

    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["client", "status"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price_minor__gt=0),
                name="booking_price_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.status}, {self.price_minor} {self.currency})"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentIntentStatus.SETTLED

    @property
    def is_payable(self) -> bool:
        """A booking can be paid until it settles or is closed."""
        if self.is_paid:
            return False
        return self.status not in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)
