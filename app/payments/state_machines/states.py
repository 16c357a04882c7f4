"""
State enums for payment models.

This module defines the enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

PaymentIntent States:
    created → awaiting_provider_result → settled | failed | rejected | expired
    created → failed (provider session could not be opened)

Refund States:
    requested → processing → completed
    requested → processing → failed

Subscription States:
    trial → active (first settled payment, one-way conversion)
    active → active (renewal extends the period)
    trial/active → lapsed (reconciliation, period or trial ended)
    lapsed → active (settled payment)
    trial/active/lapsed → cancelled
"""

from django.db import models


class PaymentProvider(models.TextChoices):
    """External payment providers behind the adapter interface."""

    WALLET_A = "wallet_a", "WalletA"
    WALLET_B = "wallet_b", "WalletB"
    GLOBAL_WALLET = "global_wallet", "GlobalWallet"


class PaymentPurpose(models.TextChoices):
    """What a payment intent pays for; determines the owning entity."""

    BOOKING_PAYMENT = "booking_payment", "Booking Payment"
    SUBSCRIPTION_PAYMENT = "subscription_payment", "Subscription Payment"


class PaymentIntentStatus(models.TextChoices):
    """
    States for the PaymentIntent lifecycle.

    Terminal states: SETTLED, FAILED, REJECTED, EXPIRED
    Terminal intents are never mutated again and never deleted.

    State Flow:
        CREATED → AWAITING_PROVIDER_RESULT → SETTLED (provider confirmed capture)
        CREATED → AWAITING_PROVIDER_RESULT → FAILED (declined / errored)
        CREATED → AWAITING_PROVIDER_RESULT → REJECTED (administrative)
        CREATED → AWAITING_PROVIDER_RESULT → EXPIRED (reconciliation timeout)
        CREATED → FAILED (provider session creation failed)
    """

    CREATED = "created", "Created"
    AWAITING_PROVIDER_RESULT = "awaiting_provider_result", "Awaiting Provider Result"
    SETTLED = "settled", "Settled"
    FAILED = "failed", "Failed"
    REJECTED = "rejected", "Rejected"
    EXPIRED = "expired", "Expired"

    @classmethod
    def terminal(cls) -> frozenset[str]:
        return frozenset({cls.SETTLED, cls.FAILED, cls.REJECTED, cls.EXPIRED})

    @classmethod
    def non_terminal(cls) -> frozenset[str]:
        return frozenset({cls.CREATED, cls.AWAITING_PROVIDER_RESULT})


class PaymentOutcome(models.TextChoices):
    """
    Normalized, provider-independent result of a payment attempt.

    SUCCEEDED maps to SETTLED; DECLINED and ERRORED both map to FAILED.
    """

    SUCCEEDED = "succeeded", "Succeeded"
    DECLINED = "declined", "Declined"
    ERRORED = "errored", "Errored"


class WebhookEventOutcome(models.TextChoices):
    """
    What the ingestor did with a verified webhook delivery.

    APPLIED: a final outcome was handed to settlement
    IGNORED: non-final event (e.g. order approved, awaiting capture)
    UNMATCHED: no local intent carries the provider reference
    """

    APPLIED = "applied", "Applied"
    IGNORED = "ignored", "Ignored"
    UNMATCHED = "unmatched", "Unmatched"


class RefundState(models.TextChoices):
    """
    States for the Refund (reversal) lifecycle.

    Terminal states: COMPLETED, FAILED
    Failed refunds are not retried automatically; they surface in the
    operator review queue.
    """

    REQUESTED = "requested", "Requested"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class SubscriptionStatus(models.TextChoices):
    """
    States for the Subscription lifecycle.

    TRIAL → ACTIVE is a one-way conversion timestamped on the
    subscription; there is no transition back to TRIAL.
    """

    TRIAL = "trial", "Trial"
    ACTIVE = "active", "Active"
    LAPSED = "lapsed", "Lapsed"
    CANCELLED = "cancelled", "Cancelled"


__all__ = [
    "PaymentIntentStatus",
    "PaymentOutcome",
    "PaymentProvider",
    "PaymentPurpose",
    "RefundState",
    "SubscriptionStatus",
    "WebhookEventOutcome",
]
