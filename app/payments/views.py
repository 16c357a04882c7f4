"""
DRF views for payments app.

This module provides API views for:
- Checkout (start a provider session for a booking or subscription)
- Payment intent status and synchronous confirm
- Staff refunds and administrative rejection
- Entitlement access checks

Related files:
    - services/: CheckoutService, SettlementService, RefundService
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/checkout/ - Start a checkout
    GET /api/v1/payments/intents/{id}/ - Intent status
    POST /api/v1/payments/intents/{id}/confirm/ - Synchronous confirm/capture
    POST /api/v1/payments/intents/{id}/refund/ - Refund (staff)
    POST /api/v1/payments/intents/{id}/reject/ - Reject (staff)
    GET /api/v1/payments/entitlements/{subscription_id}/{feature_key}/ - Access check

Security:
    - All endpoints require authentication (webhooks live in webhooks/views.py)
    - Clients only see and pay for their own bookings and subscriptions
    - Provider error details are logged, never returned
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from bookings.models import Booking
from core.exceptions import BaseApplicationError
from payments.entitlements import EntitlementService
from payments.exceptions import (
    PaymentNotFoundError,
    PaymentPermissionError,
    ProviderError,
)
from payments.models import PaymentIntent, Subscription
from payments.serializers import (
    AccessDecisionSerializer,
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    ConfirmRequestSerializer,
    IntentStatusSerializer,
    PaymentIntentSerializer,
    RefundRequestSerializer,
    RefundSerializer,
    RejectRequestSerializer,
)
from payments.services import CheckoutService, RefundService, SettlementService
from payments.services.checkout_service import GENERIC_PROVIDER_MESSAGE
from payments.state_machines import PaymentPurpose

logger = logging.getLogger(__name__)


def error_response(exc: BaseApplicationError) -> Response:
    """Translate a domain error; provider details stay in the logs."""
    if isinstance(exc, ProviderError):
        logger.warning(
            f"Provider error returned to client: {exc}",
            extra={"provider": exc.provider, "error_code": exc.error_code},
        )
        return Response(
            {"error": GENERIC_PROVIDER_MESSAGE, "error_code": exc.error_code},
            status=exc.http_status,
        )
    return Response(exc.to_dict(), status=exc.http_status)


def _load_owned(model, pk, user, owner_field: str):
    try:
        obj = model.objects.get(pk=pk)
    except model.DoesNotExist as e:
        raise PaymentNotFoundError(
            f"{model.__name__} not found",
            details={"id": str(pk)},
        ) from e
    if getattr(obj, f"{owner_field}_id") != user.pk and not user.is_staff:
        raise PaymentPermissionError(f"You cannot pay for this {model.__name__.lower()}")
    return obj


def _load_intent_for(user, intent_id) -> PaymentIntent:
    try:
        intent = PaymentIntent.objects.select_related("booking", "subscription").get(pk=intent_id)
    except PaymentIntent.DoesNotExist as e:
        raise PaymentNotFoundError(
            "Payment intent not found",
            details={"payment_intent_id": str(intent_id)},
        ) from e
    if user.is_staff:
        return intent
    if intent.purpose == PaymentPurpose.BOOKING_PAYMENT:
        owner_user_id = intent.booking.client_id
    else:
        owner_user_id = intent.subscription.subscriber_id
    if owner_user_id != user.pk:
        # Not revealing existence to other users
        raise PaymentNotFoundError(
            "Payment intent not found",
            details={"payment_intent_id": str(intent_id)},
        )
    return intent


class CheckoutView(APIView):
    """
    Start a checkout.

    POST /api/v1/payments/checkout/

    Request body:
        {
            "purpose": "booking_payment",
            "booking_id": "<uuid>",
            "amount_minor": 50000,
            "currency": "PHP",
            "provider": "wallet_a",
            "return_context": {"success_url": "...", "cancel_url": "..."}
        }

    Returns:
        201 {"intent_id": "...", "redirect_url": "...", "client_payload": {}}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_checkout",
        summary="Start a checkout",
        request=CheckoutRequestSerializer,
        responses={
            201: CheckoutResponseSerializer,
            400: OpenApiResponse(description="Validation failed"),
            403: OpenApiResponse(description="Not the owner"),
            404: OpenApiResponse(description="Booking or subscription not found"),
            409: OpenApiResponse(description="Payment already in progress"),
            503: OpenApiResponse(description="Provider unavailable, retry later"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            if data["purpose"] == PaymentPurpose.BOOKING_PAYMENT:
                owner = _load_owned(Booking, data["booking_id"], request.user, "client")
            else:
                owner = _load_owned(Subscription, data["subscription_id"], request.user, "subscriber")

            result = CheckoutService().initiate(
                owner=owner,
                purpose=data["purpose"],
                amount_minor=data["amount_minor"],
                currency=data["currency"],
                provider=data["provider"],
                return_context=data.get("return_context") or {},
                plan_tier=data.get("plan_tier"),
                initiated_by=request.user,
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(
            CheckoutResponseSerializer(result.to_dict()).data,
            status=status.HTTP_201_CREATED,
        )


class PaymentIntentDetailView(APIView):
    """
    Payment intent status.

    GET /api/v1/payments/intents/{id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment_intent",
        summary="Get payment intent status",
        responses={200: PaymentIntentSerializer, 404: OpenApiResponse(description="Not found")},
        tags=["Payments"],
    )
    def get(self, request, intent_id):
        try:
            intent = _load_intent_for(request.user, intent_id)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(PaymentIntentSerializer(intent).data)


class ConfirmPaymentView(APIView):
    """
    Synchronous confirm/capture after the client returns from the provider.

    POST /api/v1/payments/intents/{id}/confirm/

    Request body:
        {"payload": {...provider specific return data...}}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_payment",
        summary="Confirm a payment with the provider",
        request=ConfirmRequestSerializer,
        responses={200: IntentStatusSerializer, 503: OpenApiResponse(description="Provider unavailable")},
        tags=["Payments"],
    )
    def post(self, request, intent_id):
        serializer = ConfirmRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            intent = _load_intent_for(request.user, intent_id)
            new_status = CheckoutService().confirm(intent.id, serializer.validated_data["payload"])
        except BaseApplicationError as e:
            return error_response(e)
        return Response(IntentStatusSerializer({"intent_id": intent.id, "status": new_status}).data)


class RefundPaymentView(APIView):
    """
    Refund part or all of a settled intent.

    POST /api/v1/payments/intents/{id}/refund/

    Request body:
        {"amount_minor": 10000, "reason": "Booking cancelled"}

    Returns:
        201 with the refund; its status is "failed" when the provider
        rejected it (the failure is queued for operator review)
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="refund_payment",
        summary="Refund a settled payment",
        request=RefundRequestSerializer,
        responses={201: RefundSerializer, 409: OpenApiResponse(description="Intent not settled")},
        tags=["Payments - Staff"],
    )
    def post(self, request, intent_id):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            refund = RefundService().refund(
                intent_id=intent_id,
                amount_minor=serializer.validated_data["amount_minor"],
                reason=serializer.validated_data["reason"],
                requested_by=request.user,
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


class RejectPaymentView(APIView):
    """
    Administrative rejection of an intent awaiting its provider result.

    POST /api/v1/payments/intents/{id}/reject/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="reject_payment",
        summary="Reject an awaiting payment",
        request=RejectRequestSerializer,
        responses={200: IntentStatusSerializer, 409: OpenApiResponse(description="Not awaiting a result")},
        tags=["Payments - Staff"],
    )
    def post(self, request, intent_id):
        serializer = RejectRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            new_status = SettlementService().reject(
                intent_id,
                reason=serializer.validated_data["reason"],
                actor=f"admin:{request.user.pk}",
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(IntentStatusSerializer({"intent_id": intent_id, "status": new_status}).data)


class EntitlementCheckView(APIView):
    """
    Feature access check for a subscription.

    GET /api/v1/payments/entitlements/{subscription_id}/{feature_key}/

    Returns:
        {"allowed": true, "remaining": 7, "limit": 10, "tier": "free"}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="check_entitlement",
        summary="Check feature access",
        responses={200: AccessDecisionSerializer, 400: OpenApiResponse(description="Unknown feature")},
        tags=["Entitlements"],
    )
    def get(self, request, subscription_id, feature_key):
        try:
            _load_owned(Subscription, subscription_id, request.user, "subscriber")
            decision = EntitlementService.check_access(subscription_id, feature_key)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(AccessDecisionSerializer(decision.to_dict()).data)
