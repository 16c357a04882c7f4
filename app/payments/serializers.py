"""
DRF serializers for payments app.

This module provides serializers for:
- Checkout requests and responses
- Payment intent status
- Refund and rejection requests
- Entitlement access decisions

Related files:
    - views.py: Payment API views
    - services/: CheckoutService, SettlementService, RefundService

Usage:
    serializer = CheckoutRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from django.conf import settings
from rest_framework import serializers

from payments.entitlements.plans import PlanTier
from payments.models import PaymentIntent, Refund
from payments.state_machines import PaymentProvider, PaymentPurpose


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Checkout request body.

    Exactly one owner is required: ``booking_id`` for booking payments,
    ``subscription_id`` plus ``plan_tier`` for subscription payments.
    Amount is re-validated against the authoritative price by the service.
    """

    purpose = serializers.ChoiceField(choices=PaymentPurpose.choices)
    booking_id = serializers.UUIDField(required=False)
    subscription_id = serializers.UUIDField(required=False)
    plan_tier = serializers.ChoiceField(choices=PlanTier.choices, required=False)
    amount_minor = serializers.IntegerField(min_value=1)
    currency = serializers.CharField(max_length=3, default=settings.PAYMENT_DEFAULT_CURRENCY)
    provider = serializers.ChoiceField(choices=PaymentProvider.choices)
    return_context = serializers.DictField(required=False, default=dict)

    def validate(self, attrs):
        if attrs["purpose"] == PaymentPurpose.BOOKING_PAYMENT:
            if not attrs.get("booking_id"):
                raise serializers.ValidationError({"booking_id": "Required for booking payments."})
        else:
            if not attrs.get("subscription_id"):
                raise serializers.ValidationError({"subscription_id": "Required for subscription payments."})
            if not attrs.get("plan_tier"):
                raise serializers.ValidationError({"plan_tier": "Required for subscription payments."})
        attrs["currency"] = attrs["currency"].upper()
        return attrs


class CheckoutResponseSerializer(serializers.Serializer):
    intent_id = serializers.UUIDField()
    redirect_url = serializers.URLField(allow_null=True)
    client_payload = serializers.DictField()


class PaymentIntentSerializer(serializers.ModelSerializer):
    """Read-only payment intent status for the paying client."""

    class Meta:
        model = PaymentIntent
        fields = [
            "id",
            "provider",
            "purpose",
            "owner_key",
            "amount_minor",
            "currency",
            "status",
            "provider_reference",
            "failure_reason",
            "created_at",
            "last_transition_at",
        ]
        read_only_fields = fields


class ConfirmRequestSerializer(serializers.Serializer):
    payload = serializers.DictField(required=False, default=dict)


class IntentStatusSerializer(serializers.Serializer):
    intent_id = serializers.UUIDField()
    status = serializers.CharField()


class RefundRequestSerializer(serializers.Serializer):
    amount_minor = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class RefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = Refund
        fields = [
            "id",
            "payment_intent",
            "amount_minor",
            "currency",
            "reason",
            "status",
            "provider_refund_id",
            "failure_reason",
            "created_at",
        ]
        read_only_fields = fields


class RejectRequestSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)


class AccessDecisionSerializer(serializers.Serializer):
    allowed = serializers.BooleanField()
    remaining = serializers.IntegerField(allow_null=True)
    limit = serializers.IntegerField(allow_null=True)
    tier = serializers.CharField()
